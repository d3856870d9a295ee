import os
import time
import logging
import importlib
import subprocess
from datetime import datetime
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional, Tuple

from .settings import MonadConfig, MonadError
from .frontmatter import Meta, normalize_source, parse_superset
from .template import (
    FileSystemFragmentStore, FragmentStore, RenderContext,
    compose, extract_slots, fill_slots, has_slot,
)
from .routes import (
    PageSource, Route, find_duplicate_routes, list_pages, map_route, normalize_url, read_page,
    source_format,
)
from .audit import AuditWarning, BUILD, audit_page
from .postprocess import (
    apply_performance_hints, build_asset_tags, build_font_tags, build_meta_tags,
    canonical_url, insert_into_head, load_manifest, minify_html,
)
from .artifacts import (
    generate_netlify_redirects, generate_robots, generate_sitemap, generate_vercel_redirects,
)
from .report import build_report_data, count_failures, render_html_report, render_json

DEFAULT_LAYOUT = '<!doctype html><html><head>{{slot:head}}</head><body>{{slot:main}}</body></html>'
DEFAULT_DESCRIPTION = 'Built with Monad.'
NOT_FOUND_ROUTE = '/404'
NOT_FOUND_TITLE = 'Page Not Found'
BUNDLED_NOT_FOUND = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates', '404.html')
REPORT_DIR = '__monad'


class AuditFailedError(MonadError):
    """Raised after reports are written when a ``fail`` audit mode found problems."""

    def __init__(self, counts: Dict[str, int], report_path: str):
        self.counts = counts
        self.report_path = report_path
        total = sum(counts.values())
        detail = ', '.join(f"{category}: {count}" for category, count in sorted(counts.items()))
        super().__init__(f"Monad audit failed: {total} warnings ({detail}); see {report_path}")


@dataclass
class RenderResult:
    route: str
    out_path: str
    html: str
    meta: Meta
    warnings: List[AuditWarning] = field(default_factory=list)


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages (and anything louder) on the console."""
    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        allowed_messages = [
            "Site build completed in",
            "Total pages generated:",
            "Total warnings:",
            "Building 404 page",
            "Generating XML sitemap",
            "Generating robots.txt",
            "Generating redirects",
            "Writing audit report",
            "Skipping sitemap and robots.txt",
            "Running Lighthouse CI",
        ]
        return any(msg in record.getMessage() for msg in allowed_messages)


def default_title(site_name: Optional[str], route: str) -> str:
    label = 'Home' if route == '/' else route.replace('/', ' ').strip()
    return f"{site_name or 'Monad'} | {label}"


def og_slug(route: str) -> str:
    if route == '/':
        return 'home'
    slug = route.strip('/')
    if slug.endswith('.html'):
        slug = slug[:-len('.html')]
    return slug.replace('/', '_')


def resolve_provider(target: str) -> Callable[..., Any]:
    """Import a ``module:callable`` og-image provider."""
    module_name, sep, attr = (target or '').partition(':')
    if not sep or not module_name or not attr:
        raise ValueError(f"og provider must look like 'module:callable', got {target!r}")
    provider = getattr(importlib.import_module(module_name), attr)
    if not callable(provider):
        raise ValueError(f"og provider {target!r} is not callable")
    return provider


class Monad:
    """
    Static site compositor.

    Renders every page under ``pages_dir`` through its layout, audits the
    result against the full route table and writes pages, site artifacts
    and reports to ``out_dir``.
    """

    def __init__(self, config: Optional[MonadConfig] = None, store: Optional[FragmentStore] = None,
                 og_generator: Optional[Callable[..., Any]] = None):
        self.config = config or MonadConfig()
        self.setup_logging()

        self.store = store or FileSystemFragmentStore(self.config.partials_path)
        self.site = MappingProxyType(self.config.site.as_context())
        self.og_generator = og_generator
        self.manifest = None
        self.collections = MappingProxyType({})

        self.pages_generated = 0

    def setup_logging(self):
        """Set up logging configuration."""
        self.logger = logging.getLogger('Monad')
        self.logger.setLevel(logging.DEBUG)

        if not self.logger.handlers:
            # Console handler with filter
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.addFilter(InfoFilter())
            console_handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(console_handler)

            # File handler for all logs
            if self.config.log_dir:
                logs_dir = self.config.path(self.config.log_dir)
                try:
                    os.makedirs(logs_dir, exist_ok=True)
                    log_filename = datetime.now().strftime('monad_%Y-%m-%d_%H-%M-%S.log')
                    file_handler = logging.FileHandler(os.path.join(logs_dir, log_filename), encoding='utf-8')
                    file_handler.setLevel(logging.DEBUG)
                    file_handler.setFormatter(
                        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
                    self.logger.addHandler(file_handler)
                except (IOError, OSError, PermissionError) as e:
                    self.logger.warning(f"Could not create log file in {logs_dir}: {e}")

    # Inputs

    def load_collections(self) -> MappingProxyType:
        """Load the collections data file; missing or invalid data yields no collections."""
        data = {}
        if self.config.collections.enabled:
            path = self.config.path(self.config.collections.data_file)
            if os.path.exists(path):
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        result = parse_superset(f.read())
                except (IOError, OSError, UnicodeDecodeError) as e:
                    self.logger.warning(f"Failed to read collections data from {path}: {e}")
                else:
                    if result.ok and isinstance(result.value, dict):
                        data = result.value
                    else:
                        self.logger.warning(
                            f"Failed to parse collections data from {path}: {result.error or 'not an object'}")
            else:
                self.logger.debug(f"No collections data file at {path}")
        self.collections = MappingProxyType(data)
        return self.collections

    def collect_pages(self) -> List[Tuple[PageSource, Route]]:
        """Read every page source and map it to its route, in listing order."""
        pages_dir = self.config.pages_path
        exclude = (self.config.not_found.template,) if self.config.not_found.enabled else ()
        pages = []
        for path in list_pages(pages_dir, self.config.markdown.enabled, exclude=exclude):
            source = read_page(path, pages_dir)
            if source is None:
                continue
            route = map_route(source.rel, self.config.clean_urls, self.config.trailing_slash)
            pages.append((source, route))
        return pages

    # Rendering

    def _head_tags(self, route: str, title: str, description: str, extra_head: str,
                   og_image: Optional[str], dev: bool) -> str:
        site = self.config.site
        tags = [
            build_meta_tags(site.url, route, title, description, locale=site.locale,
                            twitter_handle=site.twitter_handle, og_image=og_image,
                            theme_color=site.theme_color),
            build_asset_tags(self.config.assets.entry, self.manifest, dev=dev),
        ]
        if self.config.fonts.enabled and not dev:
            tags.append(build_font_tags(self.config.fonts))
        tags.append(extra_head.strip())
        return '\n'.join(tag for tag in tags if tag)

    def _load_layout(self, ref: str) -> Tuple[str, Tuple[str, ...]]:
        key = self.store.locate(ref)
        if key is None:
            self.logger.debug(f"Layout {ref} not found, using the default layout")
            return DEFAULT_LAYOUT, ()
        try:
            return self.store.read(key), (key,)
        except (IOError, OSError) as e:
            self.logger.error(f"Failed to read layout {key}: {e}")
            return DEFAULT_LAYOUT, ()

    def generate_og_image(self, route: str, title: str, subtitle: str) -> str:
        """
        Ask the og-image provider for this page's card and return its absolute URL.

        Raises:
            Exception: Whatever the provider raises, or ValueError/IOError when no image is produced
        """
        og = self.config.og
        generator = self.og_generator or resolve_provider(og.provider)
        filename = 'og.png' if og.mode == 'single' else f"{og_slug(route)}.png"
        out_path = os.path.join(self.config.out_path, og.output_dir, filename)
        os.makedirs(os.path.dirname(out_path), exist_ok=True)

        result = generator(title=title, subtitle=subtitle, width=og.width, height=og.height, output=out_path)
        if not os.path.exists(out_path) and isinstance(result, (bytes, bytearray)):
            with open(out_path, 'wb') as f:
                f.write(result)
        if not os.path.exists(out_path):
            raise ValueError("provider ran but no output file was created")

        rel = os.path.relpath(out_path, self.config.out_path).replace(os.sep, '/')
        return canonical_url(self.config.site.url, '/' + rel)

    def render_document(self, meta: Meta, body: str, route: str, out_path: str,
                        routes: List[str], dev: bool = False, layout: Optional[str] = None,
                        fallback_title: Optional[str] = None) -> RenderResult:
        """
        Compose one page body into its layout, post-process and audit it.

        Args:
            meta: Parsed frontmatter
            body: Page body HTML (markdown already rendered)
            route: Page URL
            out_path: Absolute output file path
            routes: Every route of the build, for the link check
            dev: On-demand rendering (dev asset tags, no post-processing)
            layout: Layout reference overriding the page's and the default
            fallback_title: Title used when the page sets none
        """
        config = self.config
        loops = config.collections.enabled
        warnings: List[AuditWarning] = []

        slots, rest = extract_slots(body)
        title = meta.title or fallback_title or default_title(config.site.name, route)
        description = meta.description or DEFAULT_DESCRIPTION

        page = {'route': route, 'title': title, 'description': description}
        page.update(meta.to_mapping())
        page['title'] = title
        page['description'] = description
        context = RenderContext(site=self.site, page=MappingProxyType(page), data={},
                                collections=self.collections)

        values = {name: compose(value, self.store, context, loops) for name, value in slots.items()}
        values['main'] = compose(rest, self.store, context, loops)
        extra_head = '\n'.join(part for part in ((meta.head or '').strip(), values.pop('head', '')) if part)

        og_image = None
        if config.og.enabled and not dev:
            try:
                og_image = self.generate_og_image(
                    route, meta.og.get('title') or title, meta.og.get('subtitle') or config.site.name or '')
            except Exception as e:
                self.logger.warning(f"OG image skipped for {route}: {e}")
                warnings.append(AuditWarning(BUILD, f"OG image skipped: {e}"))
        og_image = meta.og.get('image') or og_image

        layout_text, layout_stack = self._load_layout(layout or meta.layout or config.default_layout)
        document = compose(layout_text, self.store, context, loops, stack=layout_stack)

        head = self._head_tags(route, title, description, extra_head, og_image, dev)
        if has_slot(document, 'head'):
            values['head'] = head
            document = fill_slots(document, values)
        else:
            document = insert_into_head(fill_slots(document, values), head)

        if not dev:
            if config.performance.enabled:
                document = apply_performance_hints(document, config.performance)
            if config.minify.enabled:
                document = minify_html(document, config.minify)

        out_root = None if dev else config.out_path
        warnings += audit_page(document, routes, config, out_root=out_root)

        resolved = Meta.from_mapping(meta.to_mapping())
        resolved.title = title
        resolved.description = description
        return RenderResult(route=route, out_path=out_path, html=document, meta=resolved, warnings=warnings)

    def render_page(self, source: PageSource, route: Route, routes: List[str], dev: bool = False) -> RenderResult:
        parsed = normalize_source(source.text, source.format, self.config.markdown)
        if parsed.error:
            self.logger.warning(f"{source.rel}: {parsed.error}")
        out_path = os.path.join(self.config.out_path, *route.out_path.split('/'))
        self.logger.debug(f"Rendering {source.rel} as {route.url}")
        return self.render_document(parsed.meta, parsed.body, route.url, out_path, routes, dev=dev)

    def render_all(self, dev: bool = False) -> List[RenderResult]:
        """
        Render every page.

        All routes are mapped before the first page renders, so each page's
        link check sees the whole site.
        """
        self.load_collections()
        self.manifest = None if dev else load_manifest(self.config.out_path)

        pages = self.collect_pages()
        routes = [route.url for _, route in pages]
        if self.config.not_found.enabled:
            routes.append(NOT_FOUND_ROUTE)
        duplicates = find_duplicate_routes({source.rel: route.url for source, route in pages})

        results = []
        for source, route in pages:
            result = self.render_page(source, route, routes, dev=dev)
            claimants = duplicates.get(normalize_url(route.url))
            if claimants:
                others = ', '.join(rel for rel in claimants if rel != source.rel)
                self.logger.warning(f"Duplicate route {route.url}: {source.rel} and {others}")
                result.warnings.insert(0, AuditWarning(BUILD, f"Duplicate route {route.url} (also produced by {others})"))
            results.append(result)
        return results

    def render_not_found(self, routes: List[str], dev: bool = False) -> Optional[RenderResult]:
        """Render the 404 page from the pages directory, or the bundled default."""
        not_found = self.config.not_found
        if not not_found.enabled:
            return None

        path = os.path.join(self.config.pages_path, not_found.template)
        if not os.path.isfile(path):
            path = BUNDLED_NOT_FOUND
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except (IOError, OSError) as e:
            self.logger.error(f"Failed to read 404 template {path}: {e}")
            return None

        parsed = normalize_source(raw, source_format(path), self.config.markdown)
        if parsed.error:
            self.logger.warning(f"{path}: {parsed.error}")
        out_path = os.path.join(self.config.out_path, '404.html')
        return self.render_document(parsed.meta, parsed.body, NOT_FOUND_ROUTE, out_path, routes,
                                    dev=dev, layout=not_found.layout, fallback_title=NOT_FOUND_TITLE)

    def render_url(self, url: str) -> Optional[Tuple[int, str]]:
        """
        Render the page served at ``url`` on demand.

        The whole site is recomputed for every request. Returns
        ``(200, html)`` for a page, ``(404, html)`` for the 404 page, or None
        when nothing matches and the 404 page is disabled.
        """
        wanted = normalize_url(url)
        if wanted.endswith('/index.html'):
            wanted = normalize_url(wanted[:-len('index.html')])

        results = self.render_all(dev=True)
        for result in results:
            if normalize_url(result.route) == wanted:
                return 200, result.html

        not_found = self.render_not_found([r.route for r in results] + [NOT_FOUND_ROUTE], dev=True)
        if not_found is None:
            return None
        return 404, not_found.html

    # Output

    def write_file(self, path: str, content: str) -> bool:
        """Write ``content`` to ``path``, creating parent directories."""
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
            self.logger.debug(f"Wrote {path}")
            return True
        except (IOError, OSError, PermissionError) as e:
            self.logger.error(f"Failed to write {path}: {e}")
            return False

    def generate_site_files(self, results: List[RenderResult]):
        """Write sitemap.xml, robots.txt and redirect manifests."""
        config = self.config
        out = config.out_path

        if config.sitemap.enabled or config.robots.enabled:
            if not config.site.url:
                self.logger.info("Skipping sitemap and robots.txt (no site.url).")
            else:
                if config.sitemap.enabled:
                    routes = [r.route for r in results if r.route != NOT_FOUND_ROUTE]
                    sitemap = generate_sitemap(config.site.url, routes, changefreq=config.sitemap.changefreq,
                                               priority=config.sitemap.priority, exclude=config.sitemap.exclude)
                    if self.write_file(os.path.join(out, 'sitemap.xml'), sitemap):
                        self.logger.info("Generating XML sitemap")
                if config.robots.enabled:
                    robots = generate_robots(config.site.url, config.robots.policy, config.robots.disallow)
                    if self.write_file(os.path.join(out, 'robots.txt'), robots):
                        self.logger.info("Generating robots.txt")

        redirects = config.redirects
        if redirects.enabled and redirects.rules:
            self.logger.info(f"Generating redirects for {redirects.platform}")
            if redirects.platform in ('netlify', 'both'):
                self.write_file(os.path.join(out, '_redirects'), generate_netlify_redirects(redirects.rules))
            if redirects.platform in ('vercel', 'both'):
                self.write_file(os.path.join(out, 'vercel.json'), generate_vercel_redirects(redirects.rules))

    def write_reports(self, results: List[RenderResult]) -> Tuple[Dict[str, Any], str]:
        """Write ``__monad/report.json`` and ``report.html``; return the data and the HTML path."""
        report_dir = os.path.join(self.config.out_path, REPORT_DIR)
        data = build_report_data(results)
        html_path = os.path.join(report_dir, 'report.html')
        self.logger.info(f"Writing audit report to {html_path}")
        self.write_file(os.path.join(report_dir, 'report.json'), render_json(data))
        self.write_file(html_path, render_html_report(data))
        return data, html_path

    def run_lighthouse(self):
        """Run Lighthouse CI against the output directory; failures are logged, never raised."""
        out = self.config.out_path
        command = [
            'npx', 'lhci', 'autorun',
            f'--collect.staticDistDir={out}',
            '--upload.target=filesystem',
            f'--upload.outputDir={os.path.join(out, REPORT_DIR, "lighthouse")}',
        ]
        self.logger.info("Running Lighthouse CI")
        try:
            completed = subprocess.run(command, cwd=self.config.path(), check=False)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning(f"Lighthouse CI could not run: {e}")
            return False
        if completed.returncode != 0:
            self.logger.warning(f"Lighthouse CI exited with status {completed.returncode}")
            return False
        return True

    def build(self) -> List[RenderResult]:
        """
        Main build process.

        Raises:
            AuditFailedError: When a ``fail`` audit mode found warnings; every
                file, reports included, is written first
        """
        start_time = time.time()
        config = self.config
        self.logger.debug("Starting site build...")
        os.makedirs(config.out_path, exist_ok=True)

        results = self.render_all()
        for result in results:
            if self.write_file(result.out_path, result.html):
                self.pages_generated += 1

        routes = [r.route for r in results]
        self.logger.info("Building 404 page")
        not_found = self.render_not_found(routes + [NOT_FOUND_ROUTE])
        if not_found is not None:
            self.write_file(not_found.out_path, not_found.html)
            results.append(not_found)

        self.generate_site_files(results)

        if config.audit.enabled or config.accessibility.enabled:
            data, report_path = self.write_reports(results)
            self.logger.info(f"Total warnings: {data['totals']['warnings']}")
            failures = count_failures(
                data,
                config.audit.mode if config.audit.enabled else 'off',
                config.accessibility.mode if config.accessibility.enabled else 'off',
            )
            if failures:
                raise AuditFailedError(failures, report_path)

        if config.lighthouse.enabled:
            self.run_lighthouse()

        self.logger.info(f"Total pages generated: {self.pages_generated}")
        self.logger.info(f"Site build completed in {time.time() - start_time:.6f} seconds.")
        return results

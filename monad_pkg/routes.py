"""
Route mapping and page discovery.
"""

import os
import re
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .frontmatter import MARKUP, MARKDOWN

logger = logging.getLogger('Monad.routes')

PAGE_EXT_RE = re.compile(r'\.(html|md)$', re.IGNORECASE)


@dataclass(frozen=True)
class Route:
    """A page's URL path and its output file path relative to the output root."""

    url: str
    out_path: str


@dataclass(frozen=True)
class PageSource:
    path: str
    rel: str
    format: str
    text: str


def map_route(rel_path: str, clean_urls: bool = True, trailing_slash: bool = True) -> Route:
    """
    Derive the route for a page from its path relative to the pages root.

    >>> map_route('index.html').url
    '/'
    >>> map_route('about.html').url
    '/about/'
    >>> map_route('about.html', clean_urls=False).url
    '/about.html'
    """
    posix = rel_path.replace(os.sep, '/').replace('\\', '/').lstrip('/')
    stem = PAGE_EXT_RE.sub('', posix)

    if not clean_urls:
        if stem.lower() == 'index':
            return Route('/', 'index.html')
        return Route('/' + stem + '.html', stem + '.html')

    if stem.lower() == 'index':
        return Route('/', 'index.html')

    url = re.sub(r'/+', '/', '/' + re.sub(r'(^|/)index$', r'\1', stem, flags=re.IGNORECASE))
    folder = url.strip('/')
    out_path = folder + '/index.html'
    if trailing_slash:
        if not url.endswith('/'):
            url += '/'
    else:
        url = url.rstrip('/') or '/'
    return Route(url, out_path)


def normalize_url(url: str) -> str:
    """Drop query string and fragment, and compare routes without a trailing slash."""
    path = re.split(r'[?#]', url, maxsplit=1)[0]
    if len(path) > 1:
        path = path.rstrip('/') or '/'
    return path or '/'


def is_fragment_file(name: str) -> bool:
    return os.path.basename(name).startswith('_')


def list_pages(pages_dir: str, markdown_enabled: bool = False,
               exclude: Iterable[str] = ()) -> List[str]:
    """
    Return the page files under ``pages_dir``, sorted.

    Files whose name starts with ``_`` are fragments and never pages.
    ``exclude`` holds paths (relative to ``pages_dir``) to leave out.
    """
    if not os.path.isdir(pages_dir):
        logger.warning(f"Pages directory not found: {pages_dir}")
        return []

    skip = {os.path.normpath(p) for p in exclude}
    pages = []
    for dirpath, dirnames, filenames in os.walk(pages_dir):
        dirnames.sort()
        for filename in filenames:
            if is_fragment_file(filename):
                continue
            lower = filename.lower()
            if not (lower.endswith('.html') or (markdown_enabled and lower.endswith('.md'))):
                continue
            path = os.path.join(dirpath, filename)
            if os.path.normpath(os.path.relpath(path, pages_dir)) in skip:
                continue
            pages.append(path)
    return sorted(pages)


def source_format(path: str) -> str:
    return MARKDOWN if path.lower().endswith('.md') else MARKUP


def read_page(path: str, pages_dir: str) -> Optional[PageSource]:
    """Read one page file, or None (logged) if it cannot be read."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except (IOError, OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read page {path}: {e}")
        return None
    rel = os.path.relpath(path, pages_dir).replace(os.sep, '/')
    return PageSource(path=path, rel=rel, format=source_format(path), text=text)


def find_duplicate_routes(routes: Dict[str, str]) -> Dict[str, List[str]]:
    """
    Map each URL claimed by more than one page to those pages.

    Args:
        routes: page rel path -> URL
    """
    claims = defaultdict(list)
    for rel, url in routes.items():
        claims[normalize_url(url)].append(rel)
    return {url: sorted(rels) for url, rels in claims.items() if len(rels) > 1}

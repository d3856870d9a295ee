"""
Build-time audit of rendered pages.

Every check takes a parsed document and returns a list of AuditWarning.
Checks are wrapped by :func:`guarded`, so a check that raises reports
nothing instead of breaking the build.
"""

import os
import re
import logging
import functools
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from bs4 import BeautifulSoup

from .routes import normalize_url
from .settings import AuditChecks

logger = logging.getLogger('Monad.audit')

# Warning categories
SEO = 'seo'
IMAGE = 'image'
LINK = 'link'
HINT = 'hint'
BUILD = 'build'
ACCESSIBILITY = 'accessibility'

CATEGORIES = (SEO, IMAGE, LINK, HINT, BUILD, ACCESSIBILITY)

HTML_PARSER = 'html.parser'

# Rendered pages are only valid link targets through the route table
PAGE_SUFFIXES = ('.html', '.htm')

VALID_ARIA_ATTRIBUTES = frozenset([
    'aria-label', 'aria-labelledby', 'aria-describedby', 'aria-hidden', 'aria-expanded',
    'aria-selected', 'aria-checked', 'aria-pressed', 'aria-disabled', 'aria-required',
    'aria-invalid', 'aria-live', 'aria-atomic', 'aria-busy', 'aria-relevant',
    'aria-dropeffect', 'aria-grabbed', 'aria-haspopup', 'aria-level', 'aria-multiline',
    'aria-multiselectable', 'aria-orientation', 'aria-readonly', 'aria-sort',
    'aria-valuemax', 'aria-valuemin', 'aria-valuenow', 'aria-valuetext',
    'aria-controls', 'aria-flowto', 'aria-owns', 'aria-posinset', 'aria-setsize',
    'aria-activedescendant', 'aria-current', 'aria-details', 'aria-errormessage',
    'aria-keyshortcuts', 'aria-roledescription', 'aria-autocomplete', 'aria-colcount',
    'aria-colindex', 'aria-colspan', 'aria-rowcount', 'aria-rowindex', 'aria-rowspan',
])

VALID_ARIA_ROLES = frozenset([
    'alert', 'alertdialog', 'application', 'article', 'banner', 'button', 'cell',
    'checkbox', 'columnheader', 'combobox', 'complementary', 'contentinfo',
    'definition', 'dialog', 'directory', 'document', 'feed', 'figure', 'form',
    'grid', 'gridcell', 'group', 'heading', 'img', 'link', 'list', 'listbox',
    'listitem', 'log', 'main', 'marquee', 'math', 'menu', 'menubar', 'menuitem',
    'menuitemcheckbox', 'menuitemradio', 'navigation', 'none', 'note', 'option',
    'presentation', 'progressbar', 'radio', 'radiogroup', 'region', 'row',
    'rowgroup', 'rowheader', 'scrollbar', 'search', 'separator', 'slider',
    'spinbutton', 'status', 'switch', 'tab', 'table', 'tablist', 'tabpanel',
    'term', 'textbox', 'timer', 'toolbar', 'tooltip', 'tree', 'treegrid',
    'treeitem',
])

REDUNDANT_ALT_PHRASES = ('image of', 'picture of', 'graphic of')

# Inputs that carry no user-entered value, so need no label
UNLABELLED_INPUT_TYPES = frozenset(['hidden', 'submit', 'button', 'reset', 'image'])

LARGE_TEXT_MINIMUM_RATIO = 3.0


@dataclass(frozen=True)
class AuditWarning:
    category: str
    message: str

    def to_dict(self):
        return {'category': self.category, 'message': self.message}


def guarded(check):
    """Run ``check``; an exception inside it counts as no finding."""
    @functools.wraps(check)
    def wrapper(*args, **kwargs):
        try:
            return list(check(*args, **kwargs))
        except Exception as e:
            logger.debug(f"Audit check {check.__name__} failed: {e}")
            return []
    return wrapper


def parse_html(html: Union[str, BeautifulSoup]) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or '', HTML_PARSER)


def _attr(tag, name: str) -> Optional[str]:
    value = tag.get(name)
    if isinstance(value, list):
        return ' '.join(value)
    return value


def _rel_values(tag) -> List[str]:
    rel = tag.get('rel') or []
    if isinstance(rel, str):
        rel = rel.split()
    return [r.lower() for r in rel]


# Colour maths

HEX_RE = re.compile(r'^#?([0-9a-f]{3}|[0-9a-f]{6})$', re.IGNORECASE)
RGB_RE = re.compile(r'^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})', re.IGNORECASE)


def hex_to_rgb(value: str) -> Optional[Tuple[int, int, int]]:
    """Parse ``#rgb``, ``#rrggbb`` or ``rgb(r, g, b)``; None for anything else."""
    value = (value or '').strip()
    m = RGB_RE.match(value)
    if m:
        channels = tuple(int(c) for c in m.groups())
        return channels if all(c <= 255 for c in channels) else None
    m = HEX_RE.match(value)
    if not m:
        return None
    digits = m.group(1)
    if len(digits) == 3:
        digits = ''.join(c * 2 for c in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def relative_luminance(r: int, g: int, b: int) -> float:
    """WCAG relative luminance of an sRGB colour."""
    def linear(channel):
        c = channel / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    return 0.2126 * linear(r) + 0.7152 * linear(g) + 0.0722 * linear(b)


def contrast_ratio(first: str, second: str) -> Optional[float]:
    """WCAG contrast ratio of two colours, from 1.0 to 21.0; None if either is unparseable."""
    rgb1 = hex_to_rgb(first)
    rgb2 = hex_to_rgb(second)
    if rgb1 is None or rgb2 is None:
        return None
    lighter, darker = sorted((relative_luminance(*rgb1), relative_luminance(*rgb2)), reverse=True)
    return (lighter + 0.05) / (darker + 0.05)


def parse_style(style: str) -> dict:
    """Inline ``style`` attribute as a dict of lower-cased property -> value."""
    declarations = {}
    for part in (style or '').split(';'):
        prop, sep, value = part.partition(':')
        if sep:
            declarations[prop.strip().lower()] = value.strip()
    return declarations


def _background_color(declarations: dict) -> Optional[str]:
    if 'background-color' in declarations:
        return declarations['background-color']
    background = declarations.get('background', '')
    m = re.search(r'#[0-9a-f]{3,6}\b|rgba?\([^)]*\)', background, re.IGNORECASE)
    return m.group(0) if m else None


def _is_large_text(declarations: dict) -> bool:
    m = re.match(r'([\d.]+)px', declarations.get('font-size', ''))
    if not m:
        return False
    size = float(m.group(1))
    weight = declarations.get('font-weight', '').lower()
    bold = weight == 'bold' or weight == 'bolder' or (weight.isdigit() and int(weight) >= 700)
    return size >= 24 or (bold and size >= 18.66)


# SEO, image, link and hint checks

@guarded
def check_title(soup):
    title = soup.find('title')
    if title is None or not title.get_text(strip=True):
        yield AuditWarning(SEO, 'Missing <title>')


@guarded
def check_description(soup):
    for meta in soup.find_all('meta', attrs={'name': re.compile(r'^description$', re.I)}):
        if (_attr(meta, 'content') or '').strip():
            return
    yield AuditWarning(SEO, 'Missing meta description')


@guarded
def check_h1(soup):
    count = len(soup.find_all('h1'))
    if count == 0:
        yield AuditWarning(SEO, 'Missing <h1>')
    elif count > 1:
        yield AuditWarning(SEO, f'Multiple <h1> ({count})')


@guarded
def check_image_alt(soup):
    for img in soup.find_all('img'):
        if not (_attr(img, 'alt') or '').strip():
            yield AuditWarning(SEO, 'Image missing alt attribute')


def _local_file(src: str, out_root: str) -> Optional[str]:
    """Path under ``out_root`` that a root-relative reference points at."""
    if not src.startswith('/') or src.startswith('//'):
        return None
    rel = re.split(r'[?#]', src, maxsplit=1)[0].lstrip('/')
    root = os.path.abspath(out_root)
    path = os.path.abspath(os.path.join(root, *rel.split('/')))
    if path != root and not path.startswith(root + os.sep):
        return None
    return path


@guarded
def check_image_weight(soup, out_root: Optional[str], max_bytes: int):
    if not out_root:
        return
    for img in soup.find_all('img'):
        src = _attr(img, 'src') or ''
        path = _local_file(src, out_root)
        if path is None or not os.path.isfile(path):
            continue
        size = os.path.getsize(path)
        if size > max_bytes:
            yield AuditWarning(
                IMAGE,
                f'Large image ({round(size / 1024)} KB): {src} (budget {round(max_bytes / 1024)} KB)',
            )


@guarded
def check_links(soup, routes: Iterable[str], out_root: Optional[str] = None):
    known = {normalize_url(route) for route in routes}
    for anchor in soup.find_all('a', href=True):
        href = _attr(anchor, 'href') or ''
        if not href.startswith('/') or href.startswith('//'):
            continue
        if normalize_url(href) in known:
            continue
        if out_root:
            path = _local_file(href, out_root)
            if path and os.path.isfile(path) and not path.lower().endswith(PAGE_SUFFIXES):
                continue
        yield AuditWarning(LINK, f'Broken internal link: {href}')


@guarded
def check_favicon(soup):
    for link in soup.find_all('link'):
        if 'icon' in _rel_values(link):
            return
    yield AuditWarning(HINT, 'No favicon <link rel="icon"> found (consider adding)')


@guarded
def check_canonical(soup):
    for link in soup.find_all('link'):
        if 'canonical' in _rel_values(link):
            return
    yield AuditWarning(SEO, 'Missing canonical link tag')


def audit_html(html, routes: Optional[Iterable[str]] = None, out_root: Optional[str] = None,
               max_image_bytes: int = 500_000, checks: Optional[AuditChecks] = None) -> List[AuditWarning]:
    """
    Run the SEO, image, link and hint checks over one rendered page.

    Args:
        html: Rendered HTML (or an already parsed document)
        routes: Every route of the build; the link check is skipped when None
        out_root: Output directory, for image sizes and static files
        max_image_bytes: Image weight budget
        checks: AuditChecks toggles; every check runs when None
    """
    checks = checks or AuditChecks()
    soup = parse_html(html)
    warnings = []
    if checks.title:
        warnings += check_title(soup)
    if checks.description:
        warnings += check_description(soup)
    if checks.h1:
        warnings += check_h1(soup)
    if checks.image_alt:
        warnings += check_image_alt(soup)
    if checks.image_weight:
        warnings += check_image_weight(soup, out_root, max_image_bytes)
    if checks.links and routes is not None:
        warnings += check_links(soup, routes, out_root)
    if checks.favicon:
        warnings += check_favicon(soup)
    if checks.canonical:
        warnings += check_canonical(soup)
    return warnings


# Accessibility checks

def _a11y(message: str) -> AuditWarning:
    return AuditWarning(ACCESSIBILITY, message)


def _has_label_attr(tag) -> bool:
    return bool((_attr(tag, 'aria-label') or '').strip() or (_attr(tag, 'aria-labelledby') or '').strip())


@guarded
def check_heading_hierarchy(soup):
    previous = 0
    h1_count = 0
    for heading in soup.find_all(re.compile(r'^h[1-6]$')):
        level = int(heading.name[1])
        if level == 1:
            h1_count += 1
        if previous and level > previous + 1:
            yield _a11y(f'Heading hierarchy skipped level: H{level} after H{previous}')
        previous = level
    if h1_count > 1:
        yield _a11y(f'Multiple h1 elements found ({h1_count}). Use only one h1 per page')


@guarded
def check_aria(soup):
    for tag in soup.find_all(True):
        for name in tag.attrs:
            if name.startswith('aria-') and name not in VALID_ARIA_ATTRIBUTES:
                yield _a11y(f'Invalid ARIA attribute: {name} on {tag.name}')

        role = (_attr(tag, 'role') or '').strip()
        if not role:
            continue
        for value in role.split():
            if value not in VALID_ARIA_ROLES:
                yield _a11y(f'Invalid ARIA role: {value} on {tag.name}')

        roles = role.split()
        if 'button' in roles and not _has_label_attr(tag) and not tag.get_text(strip=True):
            yield _a11y('Button with role="button" must have accessible text '
                        '(aria-label, aria-labelledby, or text content)')
        if 'img' in roles and not _has_label_attr(tag):
            yield _a11y('Element with role="img" must have aria-label or aria-labelledby')


@guarded
def check_alt_text(soup):
    for img in soup.find_all('img'):
        alt = _attr(img, 'alt')
        if alt is None:
            yield _a11y('Image missing alt attribute')
        elif not alt.strip():
            if _attr(img, 'role') not in ('presentation', 'none') and not img.has_attr('aria-hidden'):
                yield _a11y('Image has empty alt attribute without role="presentation" or aria-hidden')
        elif any(phrase in alt.lower() for phrase in REDUNDANT_ALT_PHRASES):
            yield _a11y('Alt text should not include redundant phrases like "image of" or "picture of"')

    for img in soup.select('a img, button img'):
        control = img.find_parent(['a', 'button'])
        if (_attr(img, 'alt') or '').strip():
            continue
        if control is not None and (control.get_text(strip=True) or _has_label_attr(control)):
            continue
        yield _a11y('Image inside button/link must have alt text when no other text is present')


@guarded
def check_keyboard_navigation(soup):
    for anchor in soup.find_all('a'):
        if not (_attr(anchor, 'href') or '').strip():
            yield _a11y('Link element without href attribute - use button for actions')
    for button in soup.find_all('button'):
        if not button.has_attr('type'):
            yield _a11y('Button element should have explicit type attribute')
    for tag in soup.find_all(['div', 'span', 'p'], onclick=True):
        yield _a11y(f'Interactive behavior on non-interactive element: {tag.name} with onclick. '
                    'Consider using button or adding role and keyboard support')


def _accessible_text(tag) -> bool:
    if tag.get_text(strip=True) or _has_label_attr(tag) or (_attr(tag, 'title') or '').strip():
        return True
    return any((_attr(img, 'alt') or '').strip() for img in tag.find_all('img'))


@guarded
def check_screen_reader(soup):
    label_targets = {_attr(label, 'for') for label in soup.find_all('label') if label.has_attr('for')}

    for control in soup.find_all(['input', 'select', 'textarea']):
        if control.name == 'input' and (_attr(control, 'type') or '').lower() in UNLABELLED_INPUT_TYPES:
            continue
        if _has_label_attr(control) or (_attr(control, 'title') or '').strip():
            continue
        control_id = _attr(control, 'id')
        if control_id and control_id in label_targets:
            continue
        if control.find_parent('label') is not None:
            continue
        yield _a11y(f'Form input without accessible label: {control.name}')

    for table in soup.find_all('table'):
        if table.find('caption') is None and not table.has_attr('summary') and not _has_label_attr(table):
            yield _a11y('Data table should have caption, summary, or aria-label for screen readers')

    for item in soup.find_all('li'):
        if item.parent is None or item.parent.name not in ('ul', 'ol', 'menu'):
            yield _a11y('List item (li) must be inside ul or ol element')

    for control in soup.find_all(['button', 'a']):
        if control.name == 'a' and not control.has_attr('href'):
            continue
        if not _accessible_text(control):
            yield _a11y(f'Interactive element without accessible text: {control.name}')


@guarded
def check_skip_links(soup):
    skip_links = [a for a in soup.find_all('a', href=True) if (_attr(a, 'href') or '').startswith('#')]
    has_main_content = (soup.find('main') or soup.find(attrs={'role': 'main'})
                        or soup.find(id='main') or soup.find(id='content'))
    if has_main_content and not skip_links:
        yield _a11y('Consider adding skip links to main content for keyboard navigation')

    for link in skip_links:
        href = _attr(link, 'href')
        target = href[1:]
        if not target:
            continue
        if soup.find(id=target) is None and soup.find('a', attrs={'name': target}) is None:
            yield _a11y(f'Skip link points to non-existent target: {href}')


@guarded
def check_landmarks(soup):
    mains = soup.find_all('main') + [tag for tag in soup.find_all(attrs={'role': 'main'}) if tag.name != 'main']
    if not mains:
        yield _a11y('Page should have a main landmark (main element or role="main")')
    elif len(mains) > 1:
        yield _a11y(f'Multiple main landmarks found ({len(mains)}). Use only one main per page')


@guarded
def check_tab_index(soup):
    for tag in soup.find_all(tabindex=True):
        value = (_attr(tag, 'tabindex') or '').strip()
        if re.match(r'^\+?\d+$', value) and int(value) > 0:
            yield _a11y(f'Avoid positive tabindex values: {tag.name} has tabindex="{value}"')


OUTLINE_NONE_RE = re.compile(r'outline\s*:\s*(none|0)\b', re.IGNORECASE)


@guarded
def check_focus_indicators(soup):
    css = '\n'.join(style.get_text() for style in soup.find_all('style'))
    if OUTLINE_NONE_RE.search(css) and ':focus' not in css:
        yield _a11y('CSS removes focus outline without providing alternative focus indicator')
    for tag in soup.find_all(['a', 'button', 'input', 'select', 'textarea'], style=True):
        if OUTLINE_NONE_RE.search(_attr(tag, 'style') or ''):
            yield _a11y(f'Inline style removes focus outline on {tag.name}')


@guarded
def check_color_contrast(soup, minimum_ratio: float = 4.5, check_large_text: bool = True):
    for tag in soup.find_all(style=True):
        declarations = parse_style(_attr(tag, 'style'))
        foreground = declarations.get('color')
        background = _background_color(declarations)
        if not foreground or not background:
            continue
        ratio = contrast_ratio(foreground, background)
        if ratio is None:
            continue
        required = minimum_ratio
        if check_large_text and _is_large_text(declarations):
            required = min(minimum_ratio, LARGE_TEXT_MINIMUM_RATIO)
        if ratio < required:
            yield _a11y(f'Low color contrast ratio: {ratio:.2f}:1 (minimum: {required:g}:1) on {tag.name}')


def audit_accessibility(html, rules, color_contrast) -> List[AuditWarning]:
    """
    Run the enabled accessibility rules over one rendered page.

    Args:
        html: Rendered HTML (or an already parsed document)
        rules: AccessibilityRules toggles
        color_contrast: ColorContrastConfig
    """
    soup = parse_html(html)
    warnings = []
    if rules.heading_hierarchy:
        warnings += check_heading_hierarchy(soup)
    if rules.aria_attributes:
        warnings += check_aria(soup)
    if rules.alt_text:
        warnings += check_alt_text(soup)
    if rules.keyboard_navigation:
        warnings += check_keyboard_navigation(soup)
    if rules.screen_reader:
        warnings += check_screen_reader(soup)
    if rules.skip_links:
        warnings += check_skip_links(soup)
    if rules.landmark_roles:
        warnings += check_landmarks(soup)
    if rules.tab_index:
        warnings += check_tab_index(soup)
    if rules.focus_indicators:
        warnings += check_focus_indicators(soup)
    if rules.color_contrast:
        warnings += check_color_contrast(soup, color_contrast.minimum_ratio, color_contrast.check_large_text)
    return warnings


def audit_page(html: str, routes: Iterable[str], config, out_root: Optional[str] = None) -> List[AuditWarning]:
    """
    Audit one rendered page under ``config`` (a MonadConfig).

    The document is parsed once and shared by both audits.
    """
    run_seo = config.audit.enabled and config.audit.mode != 'off'
    run_a11y = config.accessibility.enabled and config.accessibility.mode != 'off'
    if not (run_seo or run_a11y):
        return []

    soup = parse_html(html)
    warnings = []
    if run_seo:
        warnings += audit_html(soup, routes, out_root, config.audit.max_image_bytes, config.audit.checks)
    if run_a11y:
        warnings += audit_accessibility(soup, config.accessibility.rules, config.accessibility.color_contrast)
    return warnings

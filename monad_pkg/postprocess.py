"""
Build-time HTML post-processing: head tags, asset tags from the bundler
manifest, font hints, performance hints and minification.
"""

import os
import re
import json
import html
import logging
from typing import Any, Dict, Optional

import csscompressor
import rjsmin
from bs4 import BeautifulSoup

logger = logging.getLogger('Monad.postprocess')

MANIFEST_CANDIDATES = (
    ('manifest.json',),
    ('.vite', 'manifest.json'),
)


def escape_html(text: str) -> str:
    return html.escape(text or '', quote=False)


def escape_attr(text: str) -> str:
    return html.escape(text or '', quote=True)


def canonical_url(site_url: str, route: str) -> str:
    return (site_url or '').rstrip('/') + (route or '/')


def build_meta_tags(site_url, route, title, description, locale='en_US',
                    twitter_handle=None, og_image=None, theme_color=None) -> str:
    """Head tags for one page: charset, viewport, title, description, canonical, Open Graph and Twitter."""
    canonical = canonical_url(site_url, route)
    tags = [
        '<meta charset="utf-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1">',
        f'<title>{escape_html(title)}</title>',
        f'<meta name="description" content="{escape_attr(description)}">',
        f'<link rel="canonical" href="{escape_attr(canonical)}">',
    ]
    if theme_color:
        tags.append(f'<meta name="theme-color" content="{escape_attr(theme_color)}">')

    tags += [
        '<meta property="og:type" content="website">',
        f'<meta property="og:locale" content="{escape_attr(locale or "en_US")}">',
        f'<meta property="og:title" content="{escape_attr(title)}">',
        f'<meta property="og:description" content="{escape_attr(description)}">',
        f'<meta property="og:url" content="{escape_attr(canonical)}">',
    ]
    if og_image:
        tags.append(f'<meta property="og:image" content="{escape_attr(og_image)}">')

    tags.append('<meta name="twitter:card" content="summary_large_image">')
    if twitter_handle:
        tags.append(f'<meta name="twitter:site" content="{escape_attr(twitter_handle)}">')
    tags += [
        f'<meta name="twitter:title" content="{escape_attr(title)}">',
        f'<meta name="twitter:description" content="{escape_attr(description)}">',
    ]
    if og_image:
        tags.append(f'<meta name="twitter:image" content="{escape_attr(og_image)}">')
    return '\n'.join(tags)


def load_manifest(out_dir: str) -> Optional[Dict[str, Any]]:
    """Load the bundler manifest from ``out_dir``; None when absent or unreadable."""
    for parts in MANIFEST_CANDIDATES:
        path = os.path.join(out_dir, *parts)
        if not os.path.exists(path):
            continue
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (IOError, OSError, ValueError) as e:
            logger.warning(f"Could not read asset manifest {path}: {e}")
    return None


def build_asset_tags(entry: str, manifest: Optional[Dict[str, Any]] = None, dev: bool = False) -> str:
    """
    Script and stylesheet tags for the bundler entry.

    In dev mode the entry source is referenced directly; otherwise the
    manifest's stylesheets come first, then the module script.
    """
    if dev:
        return f'<script type="module" src="/{entry.lstrip("/")}"></script>'
    if not manifest:
        return ''
    chunk = manifest.get(entry)
    if not isinstance(chunk, dict):
        return ''
    tags = [f'<link rel="stylesheet" href="/{css}">' for css in chunk.get('css') or []]
    if chunk.get('file'):
        tags.append(f'<script type="module" src="/{chunk["file"]}"></script>')
    return '\n'.join(tags)


def build_font_tags(fonts) -> str:
    """Preconnect, dns-prefetch and preload links plus the font-display rule for a FontsConfig."""
    tags = []
    for url in fonts.preconnect:
        tags.append(f'<link rel="preconnect" href="{escape_attr(url)}">')
        tags.append(f'<link rel="dns-prefetch" href="{escape_attr(url)}">')

    for font in fonts.preload:
        attrs = ['rel="preload"', f'href="{escape_attr(font.href)}"', 'as="font"']
        if font.type:
            attrs.append(f'type="{escape_attr(font.type)}"')
        crossorigin = 'anonymous' if font.crossorigin is None else font.crossorigin
        attrs.append(f'crossorigin="{escape_attr(crossorigin)}"')
        tags.append(f'<link {" ".join(attrs)}>')

    if fonts.display_optimization:
        tags.append('<style>\n@font-face {\n  font-display: %s;\n}\n</style>' % fonts.display_optimization)
    return '\n'.join(tags)


def insert_into_head(document: str, tags: str) -> str:
    """Insert ``tags`` just before ``</head>``, or at the top when there is no head."""
    if not tags:
        return document
    match = re.search(r'</head\s*>', document, re.IGNORECASE)
    if match:
        return document[:match.start()] + tags + '\n' + document[match.start():]
    return tags + '\n' + document


def _stylesheets(soup):
    return [link for link in soup.find_all('link', href=True)
            if 'stylesheet' in [r.lower() for r in (link.get('rel') or [])]]


def apply_performance_hints(document: str, performance) -> str:
    """
    Add resource hints to a rendered page.

    - the first two stylesheets are also preloaded, with a noscript fallback
    - the first image and first stylesheet get ``fetchpriority="high"``
    - images from the third on are lazy-loaded and decoded asynchronously
    """
    if not (performance.preload_critical_css or performance.add_fetch_priority
            or performance.lazy_load_images):
        return document

    soup = BeautifulSoup(document, 'html.parser')
    stylesheets = _stylesheets(soup)
    images = soup.find_all('img')

    if performance.preload_critical_css and soup.head is not None:
        for link in stylesheets[:2]:
            href = link['href']
            preload = soup.new_tag('link', attrs={
                'rel': 'preload', 'href': href, 'as': 'style',
                'onload': "this.onload=null;this.rel='stylesheet'",
            })
            noscript = soup.new_tag('noscript')
            noscript.append(soup.new_tag('link', attrs={'rel': 'stylesheet', 'href': href}))
            soup.head.append(preload)
            soup.head.append(noscript)

    if performance.add_fetch_priority:
        if images:
            images[0]['fetchpriority'] = 'high'
        if stylesheets:
            stylesheets[0]['fetchpriority'] = 'high'

    if performance.lazy_load_images:
        for img in images[2:]:
            if not img.has_attr('loading'):
                img['loading'] = 'lazy'
            img['decoding'] = 'async'

    return str(soup)


# Minification

RAW_BLOCK_RE = re.compile(r'<(pre|textarea|script|style)\b[^>]*>[\s\S]*?</\1\s*>', re.IGNORECASE)
COMMENT_RE = re.compile(r'<!--(?!\[if|<!|>)[\s\S]*?-->')
TAG_RE = re.compile(r'<[a-zA-Z][^>]*>')
BLOCK_TAGS = (
    'html|head|body|title|meta|link|base|div|p|ul|ol|li|dl|dt|dd|table|thead|tbody|tfoot|tr|td|th|'
    'caption|section|article|aside|header|footer|nav|main|h[1-6]|form|fieldset|legend|figure|'
    'figcaption|blockquote|hr|br|noscript|address|details|summary|option|select|!doctype'
)
BLOCK_BEFORE_RE = re.compile(r'\s+(</?(?:%s)\b)' % BLOCK_TAGS, re.IGNORECASE)
BLOCK_AFTER_RE = re.compile(r'(</?(?:%s)\b[^>]*>)\s+' % BLOCK_TAGS, re.IGNORECASE)
REDUNDANT_ATTR_RE = re.compile(
    r'(<(?:script|style|link)\b[^>]*?)\s+type=(["\'])text/(?:javascript|css)\2', re.IGNORECASE)
EMPTY_ATTR_RE = re.compile(r'\s+(?:class|id|style|title|lang|dir)=(["\'])\s*\1', re.IGNORECASE)
MARKUP_RE = re.compile(r'<[^>]*>')
QUOTED_OR_SPACE_RE = re.compile(r'("[^"]*"|\'[^\']*\')|\s+')
JS_TYPES = ('', 'text/javascript', 'module', 'application/javascript')


def _minify_raw_block(block: str, minify) -> str:
    m = re.match(r'(<(\w+)\b[^>]*>)([\s\S]*?)(</\2\s*>)$', block, re.IGNORECASE)
    if not m:
        return block
    open_tag, name, body, close_tag = m.group(1), m.group(2).lower(), m.group(3), m.group(4)
    try:
        if name == 'style' and minify.minify_css:
            body = csscompressor.compress(body)
        elif name == 'script' and minify.minify_js and not re.search(r'\ssrc=', open_tag, re.IGNORECASE):
            script_type = re.search(r'\stype=(["\'])(.*?)\1', open_tag, re.IGNORECASE)
            if script_type is None or script_type.group(2).lower() in JS_TYPES:
                body = rjsmin.jsmin(body)
    except Exception as e:
        logger.warning(f"Could not minify inline <{name}>: {e}")
    if minify.remove_redundant_attributes:
        open_tag = REDUNDANT_ATTR_RE.sub(r'\1', open_tag)
    return open_tag + body + close_tag


def _collapse_whitespace(chunk: str) -> str:
    """Collapse runs of whitespace in text and between attributes, never inside attribute values."""
    parts = []
    pos = 0
    for m in MARKUP_RE.finditer(chunk):
        parts.append(re.sub(r'\s+', ' ', chunk[pos:m.start()]))
        parts.append(QUOTED_OR_SPACE_RE.sub(lambda q: q.group(1) or ' ', m.group(0)))
        pos = m.end()
    parts.append(re.sub(r'\s+', ' ', chunk[pos:]))
    return ''.join(parts)


def _minify_markup(chunk: str, minify) -> str:
    if minify.remove_comments:
        chunk = COMMENT_RE.sub('', chunk)

    def tag(m):
        text = m.group(0)
        if minify.remove_redundant_attributes:
            text = REDUNDANT_ATTR_RE.sub(r'\1', text)
        if minify.remove_empty_attributes:
            text = EMPTY_ATTR_RE.sub('', text)
        return text

    chunk = TAG_RE.sub(tag, chunk)
    if minify.collapse_whitespace:
        chunk = _collapse_whitespace(chunk)
        chunk = BLOCK_BEFORE_RE.sub(r'\1', chunk)
        chunk = BLOCK_AFTER_RE.sub(r'\1', chunk)
    return chunk


def minify_html(document: str, minify) -> str:
    """
    Minify a rendered page according to a MinifyConfig.

    ``pre``, ``textarea``, ``script`` and ``style`` contents keep their
    whitespace; inline CSS goes through csscompressor and inline JavaScript
    through rjsmin. Conditional comments survive comment removal.
    """
    parts = []
    pos = 0
    for m in RAW_BLOCK_RE.finditer(document):
        parts.append(_minify_markup(document[pos:m.start()], minify))
        parts.append(_minify_raw_block(m.group(0), minify))
        pos = m.end()
    parts.append(_minify_markup(document[pos:], minify))

    return ''.join(parts).strip()

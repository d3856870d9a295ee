"""
Page frontmatter parsing and source normalization.

Markup pages carry their metadata in a ``<!-- monad { ... } -->`` comment,
Markdown pages in a ``---`` delimited header. Both parsers degrade
gracefully: a broken block yields empty metadata plus a diagnostic, never an
exception.
"""

import re
import html
import json
import logging
import yaml
import mistune
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger('Monad.frontmatter')

MARKUP = 'markup'
MARKDOWN = 'markdown'

# <!-- monad { ... } -->, but not the <!-- monad:slot --> family of markers
META_BLOCK_RE = re.compile(r'<!--\s*monad(?![\w:-])\s*([\s\S]*?)-->', re.IGNORECASE)

OG_KEYS = ('title', 'subtitle', 'image')
FALLBACK_KEYS = ('title', 'description', 'layout')


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing a JSON-superset block: a value or a diagnostic."""

    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_superset(text: Optional[str]) -> ParseResult:
    """
    Parse JSON-superset text (strict JSON first, then YAML flow/block syntax).

    YAML accepts the relaxed object forms authors tend to write
    (``{title: 'Home', }``, unquoted keys, single quotes).
    """
    text = (text or '').strip()
    if not text:
        return ParseResult(value={})
    try:
        return ParseResult(value=json.loads(text))
    except ValueError:
        pass
    try:
        return ParseResult(value=yaml.safe_load(text))
    except yaml.YAMLError as e:
        return ParseResult(error=str(e).replace('\n', ' '))


def parse_object(text: Optional[str]) -> ParseResult:
    """Like parse_superset, but anything other than a mapping is an error."""
    result = parse_superset(text)
    if not result.ok:
        return result
    if result.value is None:
        return ParseResult(value={})
    if not isinstance(result.value, dict):
        return ParseResult(error=f"expected an object, got {type(result.value).__name__}")
    return result


@dataclass
class Meta:
    """Per-page metadata. Unknown keys are kept in ``extra``."""

    title: Optional[str] = None
    description: Optional[str] = None
    layout: Optional[str] = None
    head: Optional[str] = None
    og: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> 'Meta':
        data = dict(data or {})
        meta = cls()
        for key in ('title', 'description', 'layout', 'head'):
            value = data.pop(key, None)
            if value is not None:
                setattr(meta, key, str(value))
        og = data.pop('og', None)
        if isinstance(og, dict):
            meta.og = {k: str(v) for k, v in og.items() if k in OG_KEYS and v is not None}
        elif og is not None:
            meta.extra['og'] = og
        meta.extra.update(data)
        return meta

    def to_mapping(self) -> Dict[str, Any]:
        data = dict(self.extra)
        for key in ('title', 'description', 'layout', 'head'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.og:
            data['og'] = dict(self.og)
        return data


@dataclass(frozen=True)
class Frontmatter:
    meta: Meta
    body: str
    error: Optional[str] = None


def serialize_page_meta(meta: Meta) -> str:
    """Render ``meta`` as a markup frontmatter block."""
    payload = json.dumps(meta.to_mapping(), ensure_ascii=False, indent=2)
    # A literal --> inside a string would close the comment early
    payload = payload.replace('-->', '--\\u003e')
    return f'<!-- monad {payload} -->'


def parse_page_meta(raw: str) -> Frontmatter:
    """
    Split a markup page into metadata and body.

    The first ``<!-- monad {...} -->`` block anywhere in the file is the
    metadata; the body is the remaining text, trimmed. An invalid block is
    still removed from the body.
    """
    match = META_BLOCK_RE.search(raw)
    if not match:
        return Frontmatter(meta=Meta(), body=raw)

    body = META_BLOCK_RE.sub('', raw, count=1).strip()
    result = parse_object(match.group(1))
    if not result.ok:
        return Frontmatter(meta=Meta(), body=body, error=f"Invalid monad frontmatter: {result.error}")
    return Frontmatter(meta=Meta.from_mapping(result.value), body=body)


def parse_markdown_frontmatter(raw: str) -> Frontmatter:
    """
    Split a Markdown page into metadata and (unrendered) Markdown body.

    The header sits between two lines consisting solely of ``---`` at the top
    of the file. YAML is tried first; if that fails, ``key: value`` lines are
    read one by one for title, description and layout.
    """
    text = raw.lstrip('\ufeff')
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != '---':
        return Frontmatter(meta=Meta(), body=text.strip())

    closing = None
    for index in range(1, len(lines)):
        if lines[index].strip() == '---':
            closing = index
            break
    if closing is None:
        return Frontmatter(meta=Meta(), body=text.strip())

    header = ''.join(lines[1:closing])
    body = ''.join(lines[closing + 1:]).strip()

    try:
        data = yaml.safe_load(header)
    except yaml.YAMLError as e:
        logger.debug(f"YAML frontmatter failed, using line fallback: {e}")
        data = None
    else:
        if data is None:
            return Frontmatter(meta=Meta(), body=body)
        if isinstance(data, dict):
            return Frontmatter(meta=Meta.from_mapping(data), body=body)

    meta = Meta()
    for line in header.splitlines():
        key, sep, value = line.partition(':')
        key = key.strip()
        if not sep or key not in FALLBACK_KEYS:
            continue
        value = re.sub(r'^["\']|["\']$', '', value.strip())
        setattr(meta, key, value)
    return Frontmatter(meta=meta, body=body, error="Frontmatter is not valid YAML; read it line by line")


def create_markdown_parser(gfm=True, breaks=False, pedantic=False):
    """Create a Mistune markdown parser honouring the GFM/breaks/pedantic flags."""
    plugins = []
    if gfm and not pedantic:
        plugins = ['table', 'strikethrough', 'task_lists', 'url']
    return mistune.create_markdown(
        escape=False,
        hard_wrap=bool(breaks) and not pedantic,
        plugins=plugins,
    )


def render_markdown(text: str, gfm=True, breaks=False, pedantic=False) -> str:
    """Convert markdown text to HTML; on renderer failure show the source verbatim."""
    try:
        return create_markdown_parser(gfm, breaks, pedantic)(text)
    except Exception as e:
        logger.warning(f"Markdown parsing error: {e}")
        return f'<pre><code>{html.escape(text, quote=False)}</code></pre>'


def normalize_source(raw: str, fmt: str, markdown_config=None) -> Frontmatter:
    """
    Return ``(meta, html_body)`` for a page source of the given format.

    Args:
        raw: Page file contents
        fmt: MARKUP or MARKDOWN
        markdown_config: MarkdownConfig with gfm/breaks/pedantic flags

    Returns:
        Frontmatter whose body is HTML
    """
    if fmt != MARKDOWN:
        return parse_page_meta(raw)

    parsed = parse_markdown_frontmatter(raw)
    options = {}
    if markdown_config is not None:
        options = dict(gfm=markdown_config.gfm, breaks=markdown_config.breaks,
                       pedantic=markdown_config.pedantic)
    return Frontmatter(meta=parsed.meta, body=render_markdown(parsed.body, **options),
                       error=parsed.error)

"""
Template composition: fragment inclusion, slots, collection loops and
``{{dotted.path}}`` interpolation.

Text is parsed into a small node list (text, token, include, slot, loop) and
every stage is a walk over those nodes. Stages that emit text (inclusion,
loop expansion) hand their output to the next stage as a string, which
re-parses it.
"""

import os
import re
import json
import logging
import posixpath
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .frontmatter import parse_object

logger = logging.getLogger('Monad.template')

TAG_RE = re.compile(
    r'(?P<include><%\s*(?P<ref>[^,%]+?)\s*(?:,\s*(?P<data>[\s\S]*?))?\s*%>)'
    r'|(?P<slot_open><!--\s*monad:slot\s+(?P<slot_name>\w+)\s*-->)'
    r'|(?P<slot_close><!--\s*monad:endslot\s*-->)'
    r'|(?P<loop_open><!--\s*monad:loop\s+(?P<loop_var>\w+)\s+in\s+(?P<loop_path>[\w.]+)\s*-->)'
    r'|(?P<loop_close><!--\s*monad:endloop\s*-->)'
    r'|(?P<token>\{\{\s*(?P<expr>[^}]+?)\s*\}\})',
    re.IGNORECASE,
)

SLOT_TOKEN_RE = re.compile(r'^slot:(\w+)$')


# Nodes

@dataclass
class Text:
    source: str


@dataclass
class Token:
    expr: str
    source: str


@dataclass
class Include:
    ref: str
    data: Optional[str]
    source: str


@dataclass
class Slot:
    name: str
    open_source: str
    close_source: str = ''
    children: List[Any] = field(default_factory=list)


@dataclass
class Loop:
    var: str
    path: str
    open_source: str
    close_source: str = ''
    children: List[Any] = field(default_factory=list)


def parse(text: str) -> List[Any]:
    """
    Parse template text into nodes.

    Slot and loop blocks nest. A close marker that does not match the
    innermost open block, and an open marker that is never closed, are
    kept as plain text.
    """
    root: List[Any] = []
    stack: List[Tuple[Any, List[Any]]] = []
    out = root
    pos = 0

    for m in TAG_RE.finditer(text):
        if m.start() > pos:
            out.append(Text(text[pos:m.start()]))
        pos = m.end()
        source = m.group(0)

        if m.group('include'):
            out.append(Include(ref=m.group('ref').strip(), data=m.group('data'), source=source))
        elif m.group('token'):
            out.append(Token(expr=m.group('expr').strip(), source=source))
        elif m.group('slot_open') or m.group('loop_open'):
            if m.group('slot_open'):
                block = Slot(name=m.group('slot_name'), open_source=source)
            else:
                block = Loop(var=m.group('loop_var'), path=m.group('loop_path'), open_source=source)
            out.append(block)
            stack.append((block, out))
            out = block.children
        else:
            kind = Slot if m.group('slot_close') else Loop
            if stack and isinstance(stack[-1][0], kind):
                block, out = stack.pop()
                block.close_source = source
            else:
                out.append(Text(source))

    if pos < len(text):
        out.append(Text(text[pos:]))

    # Unclosed blocks: demote the opening marker to text, keep the children
    while stack:
        block, parent = stack.pop()
        index = next(i for i, node in enumerate(parent) if node is block)
        parent[index:index + 1] = [Text(block.open_source)] + block.children

    return root


def render_nodes(nodes: List[Any],
                 token: Optional[Callable[[Token], str]] = None,
                 include: Optional[Callable[[Include], str]] = None,
                 loop: Optional[Callable[[Loop], str]] = None,
                 slot: Optional[Callable[[Slot], str]] = None) -> str:
    """Serialize ``nodes``, letting the callbacks replace nodes of their kind."""
    parts = []
    for node in nodes:
        if isinstance(node, Text):
            parts.append(node.source)
        elif isinstance(node, Token):
            parts.append(token(node) if token else node.source)
        elif isinstance(node, Include):
            parts.append(include(node) if include else node.source)
        elif isinstance(node, Loop) and loop:
            parts.append(loop(node))
        elif isinstance(node, Slot) and slot:
            parts.append(slot(node))
        else:
            inner = render_nodes(node.children, token, include, loop, slot)
            parts.append(node.open_source + inner + node.close_source)
    return ''.join(parts)


def to_source(nodes: List[Any]) -> str:
    return render_nodes(nodes)


# Context and lookups

@dataclass(frozen=True)
class RenderContext:
    """
    Layered lookup scope for interpolation.

    ``site`` is shared by the whole build, ``page`` belongs to one page,
    ``data`` accumulates inclusion-site arguments and ``collections`` is the
    build's loop data.
    """

    site: Mapping[str, Any] = field(default_factory=dict)
    page: Mapping[str, Any] = field(default_factory=dict)
    data: Mapping[str, Any] = field(default_factory=dict)
    collections: Mapping[str, Any] = field(default_factory=dict)

    def with_data(self, extra: Optional[Mapping[str, Any]]) -> 'RenderContext':
        """New context whose data layer is this one's shallow-merged with ``extra``."""
        merged = dict(self.data)
        merged.update(extra or {})
        return replace(self, data=merged)

    def as_mapping(self) -> Dict[str, Any]:
        return {'site': self.site, 'page': self.page, 'data': self.data, 'collections': self.collections}


def lookup(obj: Any, path: str) -> Any:
    """Resolve a dotted path by successive key (or list index) lookups; None on a miss."""
    current = obj
    for part in (p for p in path.split('.') if p):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def _plain(value):
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def stringify(value: Any) -> str:
    """Text form of a looked-up value; None is empty, containers are JSON."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(',', ':'), default=_plain)
    return str(value)


def serialize_item(value: Any) -> str:
    """JSON form of a whole loop item; strings keep their quotes."""
    return json.dumps(value, ensure_ascii=False, separators=(',', ':'), default=_plain)


def _root_name(expr: str) -> str:
    return expr.split('.', 1)[0]


def interpolate(text: str, context, keep_loop_tokens: bool = False,
                loop_vars: FrozenSet[str] = frozenset()) -> str:
    """
    Substitute every ``{{dotted.path}}`` in ``text``; unresolved paths become ''.

    ``{{slot:NAME}}`` placeholders are never touched. With
    ``keep_loop_tokens`` the tokens that belong to an enclosing loop (its
    item variable, ``@index`` and ``@index1``) are left in place so a later
    loop expansion can still fill them; ``loop_vars`` names loops that
    enclose ``text`` from outside.
    """
    scope = context.as_mapping() if isinstance(context, RenderContext) else context

    def substitute(nodes, names):
        def token(node):
            if SLOT_TOKEN_RE.match(node.expr):
                return node.source
            if keep_loop_tokens and (node.expr.startswith('@') or _root_name(node.expr) in names):
                return node.source
            return stringify(lookup(scope, node.expr))

        def loop(node):
            inner = substitute(node.children, names | {node.var})
            return node.open_source + inner + node.close_source

        return render_nodes(nodes, token=token, loop=loop)

    return substitute(parse(text), frozenset(loop_vars))


# Fragment stores

def fragment_path(ref: str) -> str:
    """
    Map a fragment reference to its file path relative to the fragment root.

    ``header`` -> ``_header.html``; ``blog/card.html`` -> ``blog/_card.html``.
    """
    ref = re.sub(r'^["\']|["\']$', '', ref.strip())
    ext = '' if ref.endswith('.html') else '.html'
    directory, base = posixpath.split(ref)
    name = base if base.startswith('_') else '_' + base
    return posixpath.join(directory, name + ext) if directory else name + ext


class FragmentStore:
    """Read capability for fragments: locate a reference, then read it."""

    def locate(self, ref: str) -> Optional[str]:
        """Return a stable identity for ``ref``, or None if it does not exist."""
        raise NotImplementedError

    def read(self, key: str) -> str:
        raise NotImplementedError


class FileSystemFragmentStore(FragmentStore):
    """Fragments stored as files under a single root directory."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def locate(self, ref):
        path = os.path.abspath(os.path.join(self.root, *fragment_path(ref).split('/')))
        return path if os.path.isfile(path) else None

    def read(self, key):
        with open(key, 'r', encoding='utf-8') as f:
            return f.read()


class MemoryFragmentStore(FragmentStore):
    """Fragments held in a dict keyed by their fragment path (``_header.html``)."""

    def __init__(self, fragments: Optional[Mapping[str, str]] = None):
        self.fragments = dict(fragments or {})

    def locate(self, ref):
        key = fragment_path(ref)
        return key if key in self.fragments else None

    def read(self, key):
        return self.fragments[key]


# Inclusion

def missing_marker(ref: str) -> str:
    return f'<!-- monad:missing-partial {ref} -->'


def cycle_marker(ref: str) -> str:
    return f'<!-- monad:cycle {ref} -->'


def parse_include_data(raw: Optional[str]) -> Dict[str, Any]:
    result = parse_object(raw)
    if not result.ok:
        logger.warning(f"Ignoring invalid inclusion data {raw!r}: {result.error}")
        return {}
    return result.value


def expand_includes(text: str, store: FragmentStore, context: RenderContext,
                    stack: Tuple[str, ...] = (), defer_interpolation: bool = False,
                    loop_vars: FrozenSet[str] = frozenset()) -> str:
    """
    Recursively replace ``<% ref[, data] %>`` tags with the fragments they name.

    Each inclusion renders with ``context.with_data(data)``; ``stack`` holds
    the identities of the fragments currently being expanded, and a
    reference back into it yields a cycle marker instead of recursing.
    Unless ``defer_interpolation`` is set, the result is interpolated
    against ``context``.
    """
    def walk(nodes, names):
        def include(node):
            key = store.locate(node.ref)
            if key is None:
                logger.warning(f"Missing partial: {node.ref}")
                return missing_marker(node.ref)
            if key in stack:
                logger.warning(f"Partial cycle detected at {node.ref}")
                return cycle_marker(node.ref)
            try:
                raw = store.read(key)
            except (IOError, OSError) as e:
                logger.error(f"Failed to read partial {key}: {e}")
                return missing_marker(node.ref)

            child = context.with_data(parse_include_data(node.data))
            expanded = expand_includes(raw, store, child, stack + (key,),
                                       defer_interpolation=True, loop_vars=names)
            return interpolate(expanded, child, keep_loop_tokens=True, loop_vars=names)

        def loop(node):
            inner = walk(node.children, names | {node.var})
            return node.open_source + inner + node.close_source

        return render_nodes(nodes, include=include, loop=loop)

    expanded = walk(parse(text), frozenset(loop_vars))
    if defer_interpolation:
        return expanded
    return interpolate(expanded, context)


# Slots

def extract_slots(text: str) -> Tuple[Dict[str, str], str]:
    """
    Pull ``<!-- monad:slot NAME --> ... <!-- monad:endslot -->`` blocks out of ``text``.

    Returns the slot contents by name (trimmed; a later block with the same
    name wins) and the remaining text, trimmed.
    """
    slots: Dict[str, str] = {}

    def take(node):
        slots[node.name] = to_source(node.children).strip()
        return ''

    rest = render_nodes(parse(text), slot=take)
    return slots, rest.strip()


def has_slot(template: str, name: str) -> bool:
    found = []

    def token(node):
        m = SLOT_TOKEN_RE.match(node.expr)
        if m and m.group(1) == name:
            found.append(node)
        return node.source

    render_nodes(parse(template), token=token)
    return bool(found)


def fill_slots(template: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{slot:NAME}}`` placeholder; names without a value become ''."""
    def token(node):
        m = SLOT_TOKEN_RE.match(node.expr)
        if not m:
            return node.source
        return values.get(m.group(1), '')

    return render_nodes(parse(template), token=token)


# Collection loops

def missing_collection_marker(path: str) -> str:
    return f'<!-- monad:missing-collection {path} -->'


def expand_loops(text: str, collections: Mapping[str, Any]) -> str:
    """
    Expand ``<!-- monad:loop VAR in PATH --> ... <!-- monad:endloop -->`` blocks.

    The body is instantiated once per item of the sequence at ``PATH`` (a
    path into ``collections``, or into an enclosing loop's item), in
    sequence order, with ``{{VAR}}`` (the item as JSON), ``{{VAR.field}}``, ``{{@index}}`` and
    ``{{@index1}}`` resolved. Other tokens are left for the final
    interpolation pass. A path that is not a sequence becomes a diagnostic
    comment.
    """
    def walk(nodes, scope):
        def token(node):
            if node.expr in scope and not node.expr.startswith('@'):
                return serialize_item(scope[node.expr])
            if node.expr in scope or _root_name(node.expr) in scope:
                return stringify(lookup(scope, node.expr))
            return node.source

        def loop(node):
            source = scope if _root_name(node.path) in scope else collections
            items = lookup(source, node.path)
            if not isinstance(items, (list, tuple)):
                logger.warning(f"Collection {node.path} not found or not a list")
                return missing_collection_marker(node.path)
            rendered = []
            for index, item in enumerate(items):
                child = dict(scope)
                child.update({node.var: item, '@index': index, '@index1': index + 1})
                rendered.append(walk(node.children, child))
            return ''.join(rendered)

        return render_nodes(nodes, token=token, loop=loop)

    return walk(parse(text), {})


def compose(text: str, store: FragmentStore, context: RenderContext, loops: bool = False,
            stack: Tuple[str, ...] = ()) -> str:
    """
    Full composition of one template: inclusions, then loops (when enabled),
    then the final interpolation.
    """
    if not loops:
        return expand_includes(text, store, context, stack)
    expanded = expand_includes(text, store, context, stack, defer_interpolation=True)
    return interpolate(expand_loops(expanded, context.collections), context)

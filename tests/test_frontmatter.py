"""Tests for frontmatter parsing and source normalization."""

import pytest

from monad_pkg.frontmatter import (
    MARKDOWN, MARKUP, Meta, normalize_source, parse_markdown_frontmatter,
    parse_object, parse_page_meta, parse_superset, render_markdown, serialize_page_meta,
)
from monad_pkg.settings import MarkdownConfig


class TestParseSuperset:
    """Test cases for JSON-superset parsing."""

    def test_strict_json(self):
        """Strict JSON parses as-is."""
        result = parse_superset('{"title": "Home", "count": 2}')
        assert result.ok
        assert result.value == {'title': 'Home', 'count': 2}

    def test_relaxed_object(self):
        """Unquoted keys, single quotes and trailing commas are accepted."""
        result = parse_superset("{title: 'Home', layout: 'main',}")
        assert result.ok
        assert result.value == {'title': 'Home', 'layout': 'main'}

    def test_empty_text_is_empty_object(self):
        """Blank input means no data."""
        assert parse_superset('   ').value == {}
        assert parse_superset(None).value == {}

    def test_invalid_text_is_diagnostic(self):
        """Unparseable text yields an error, not an exception."""
        result = parse_superset('{title: [unclosed')
        assert not result.ok
        assert result.error

    def test_parse_object_rejects_non_mapping(self):
        """A list is valid data but not an object."""
        result = parse_object('[1, 2]')
        assert not result.ok
        assert 'object' in result.error


class TestPageMeta:
    """Test cases for markup page metadata."""

    def test_block_anywhere_in_file(self):
        """The metadata comment can appear after content."""
        raw = '<h1>Hi</h1>\n<!-- monad {"title": "Hi", "description": "Greeting"} -->\n<p>Body</p>'
        parsed = parse_page_meta(raw)
        assert parsed.meta.title == 'Hi'
        assert parsed.meta.description == 'Greeting'
        assert '<!-- monad' not in parsed.body
        assert parsed.body.startswith('<h1>Hi</h1>')
        assert parsed.body.endswith('<p>Body</p>')

    def test_no_block(self):
        """Without a block the meta is empty and the text is the body."""
        raw = '<h1>Plain</h1>'
        parsed = parse_page_meta(raw)
        assert parsed.meta == Meta()
        assert parsed.body == raw
        assert parsed.error is None

    def test_invalid_block_still_produces_body(self):
        """A broken block gives empty meta and a diagnostic, but the body survives."""
        parsed = parse_page_meta('<!-- monad {title: [oops -->\n<p>Body</p>')
        assert parsed.meta == Meta()
        assert parsed.body == '<p>Body</p>'
        assert parsed.error

    def test_slot_markers_are_not_metadata(self):
        """monad:slot comments are left in the body."""
        raw = '<!-- monad:slot head --><meta name="x"><!-- monad:endslot --><p>Body</p>'
        parsed = parse_page_meta(raw)
        assert parsed.meta == Meta()
        assert parsed.body == raw

    def test_og_and_extra_keys(self):
        """Social-card overrides are kept and unknown keys go to extra."""
        parsed = parse_page_meta('<!-- monad {"og": {"title": "Card", "image": "/c.png"}, "tags": ["a"]} -->')
        assert parsed.meta.og == {'title': 'Card', 'image': '/c.png'}
        assert parsed.meta.extra == {'tags': ['a']}

    def test_round_trip(self):
        """Serializing meta and parsing it back gives the same meta and body."""
        meta = Meta(title='A --> B', description='Desc', layout='wide', og={'subtitle': 'Sub'})
        raw = serialize_page_meta(meta) + '\n<p>Body</p>'
        parsed = parse_page_meta(raw)
        assert parsed.meta == meta
        assert parsed.body == '<p>Body</p>'


class TestMarkdownFrontmatter:
    """Test cases for Markdown headers."""

    def test_yaml_header(self):
        """A valid YAML header becomes meta."""
        parsed = parse_markdown_frontmatter('---\ntitle: Post\nlayout: post\n---\n# Heading\n')
        assert parsed.meta.title == 'Post'
        assert parsed.meta.layout == 'post'
        assert parsed.body == '# Heading'
        assert parsed.error is None

    def test_line_fallback(self):
        """Invalid YAML falls back to key: value lines."""
        raw = '---\ntitle: "Broken: yes"\ndescription: x: y: z\n  - bad\n---\nBody'
        parsed = parse_markdown_frontmatter(raw)
        assert parsed.meta.title == 'Broken: yes'
        assert parsed.body == 'Body'
        assert parsed.error

    def test_no_header(self):
        """Markdown without a header is all body."""
        parsed = parse_markdown_frontmatter('# Just text\n')
        assert parsed.meta == Meta()
        assert parsed.body == '# Just text'

    def test_unclosed_header_is_body(self):
        """An opening delimiter without a closing one is not a header."""
        parsed = parse_markdown_frontmatter('---\ntitle: Nope\n')
        assert parsed.meta == Meta()
        assert 'title: Nope' in parsed.body


class TestNormalizeSource:
    """Test cases for turning page sources into meta and HTML."""

    def test_markup_passthrough(self):
        """Markup bodies are returned unchanged apart from the meta block."""
        parsed = normalize_source('<!-- monad {"title": "T"} --><p>x</p>', MARKUP)
        assert parsed.meta.title == 'T'
        assert parsed.body == '<p>x</p>'

    def test_markdown_rendered(self):
        """Markdown bodies are rendered to HTML."""
        parsed = normalize_source('---\ntitle: T\n---\n# Heading\n\nSome *text*.', MARKDOWN, MarkdownConfig())
        assert parsed.meta.title == 'T'
        assert '<h1>Heading</h1>' in parsed.body
        assert '<em>text</em>' in parsed.body

    def test_gfm_table(self):
        """GitHub-flavoured tables are rendered when gfm is on."""
        html = render_markdown('| a | b |\n| - | - |\n| 1 | 2 |\n', gfm=True)
        assert '<table>' in html

    def test_strikethrough_needs_gfm(self):
        """Strikethrough is a GFM extension."""
        assert '<del>gone</del>' in render_markdown('~~gone~~', gfm=True)
        assert '<del>' not in render_markdown('~~gone~~', gfm=False)

    @pytest.mark.parametrize('breaks,expected', [(True, '<br'), (False, None)])
    def test_line_breaks(self, breaks, expected):
        """Single newlines become <br> only with breaks on."""
        html = render_markdown('one\ntwo', breaks=breaks)
        if expected:
            assert expected in html
        else:
            assert '<br' not in html

"""Tests for route mapping and page discovery."""

import os
from pathlib import Path

import pytest

from monad_pkg.routes import (
    Route, find_duplicate_routes, list_pages, map_route, normalize_url, read_page,
)
from monad_pkg.frontmatter import MARKDOWN, MARKUP


class TestMapRoute:
    """Test cases for map_route."""

    def test_index_is_root(self):
        """index.html maps to / with clean URLs."""
        assert map_route('index.html', clean_urls=True, trailing_slash=True) == Route('/', 'index.html')

    def test_clean_url(self):
        """A leaf page becomes a directory index."""
        assert map_route('about.html', clean_urls=True, trailing_slash=True) == \
            Route('/about/', 'about/index.html')

    @pytest.mark.parametrize('trailing_slash', [True, False])
    def test_non_clean_url(self, trailing_slash):
        """Without clean URLs the page keeps its .html name."""
        route = map_route('about.html', clean_urls=False, trailing_slash=trailing_slash)
        assert route == Route('/about.html', 'about.html')

    def test_nested_index(self):
        """A directory's index maps to the directory."""
        assert map_route('blog/index.html') == Route('/blog/', 'blog/index.html')

    def test_no_trailing_slash(self):
        """trailing_slash=False drops the slash on non-root routes only."""
        assert map_route('docs/intro.md', trailing_slash=False) == Route('/docs/intro', 'docs/intro/index.html')
        assert map_route('blog/index.html', trailing_slash=False).url == '/blog'
        assert map_route('index.html', trailing_slash=False).url == '/'

    def test_markdown_extension(self):
        """.md pages map like .html pages."""
        assert map_route('posts/hello.md').url == '/posts/hello/'

    def test_windows_separators(self):
        """Backslash-separated paths give the same route."""
        assert map_route('blog\\post.html') == map_route('blog/post.html')

    def test_index_case_insensitive(self):
        """An index leaf is recognised in any case, with or without clean URLs."""
        assert map_route('Index.html') == Route('/', 'index.html')
        assert map_route('INDEX.HTML', clean_urls=False) == Route('/', 'index.html')
        assert map_route('Blog/Index.html') == Route('/Blog/', 'Blog/index.html')

    def test_pure(self):
        """Identical inputs always give identical routes."""
        assert map_route('a/b.html', True, False) == map_route('a/b.html', True, False)


class TestNormalizeUrl:
    """Test cases for URL normalization."""

    @pytest.mark.parametrize('url,expected', [
        ('/about/', '/about'),
        ('/about', '/about'),
        ('/about/?q=1', '/about'),
        ('/about#team', '/about'),
        ('/', '/'),
        ('/?x', '/'),
    ])
    def test_normalize(self, url, expected):
        """Query, fragment and trailing slash are ignored."""
        assert normalize_url(url) == expected


class TestListPages:
    """Test cases for page discovery."""

    def test_skips_fragments_and_sorts(self, temp_dir):
        """Underscore files are not pages; results are sorted."""
        root = Path(temp_dir)
        (root / 'b').mkdir()
        for name in ('index.html', '_partial.html', 'b/z.html', 'a.html', 'notes.md', 'style.css'):
            (root / name).write_text('x')
        pages = [os.path.relpath(p, temp_dir).replace(os.sep, '/') for p in list_pages(temp_dir)]
        assert pages == ['a.html', 'b/z.html', 'index.html']

    def test_markdown_enabled(self, temp_dir):
        """Markdown files are pages only when markdown is enabled."""
        (Path(temp_dir) / 'notes.md').write_text('# Notes')
        assert list_pages(temp_dir) == []
        assert len(list_pages(temp_dir, markdown_enabled=True)) == 1

    def test_exclude(self, temp_dir):
        """Excluded relative paths are left out."""
        for name in ('index.html', '404.html'):
            (Path(temp_dir) / name).write_text('x')
        pages = list_pages(temp_dir, exclude=['404.html'])
        assert [os.path.basename(p) for p in pages] == ['index.html']

    def test_missing_directory(self, temp_dir):
        """A missing pages directory yields no pages."""
        assert list_pages(os.path.join(temp_dir, 'nope')) == []

    def test_read_page_format(self, temp_dir):
        """read_page records the relative path and format."""
        (Path(temp_dir) / 'docs').mkdir()
        (Path(temp_dir) / 'docs' / 'a.md').write_text('# A')
        (Path(temp_dir) / 'b.html').write_text('<p>b</p>')
        md = read_page(os.path.join(temp_dir, 'docs', 'a.md'), temp_dir)
        html = read_page(os.path.join(temp_dir, 'b.html'), temp_dir)
        assert (md.rel, md.format, md.text) == ('docs/a.md', MARKDOWN, '# A')
        assert (html.rel, html.format) == ('b.html', MARKUP)


class TestDuplicateRoutes:
    """Test cases for duplicate route detection."""

    def test_detects_collisions(self):
        """Two sources claiming the same URL are reported together."""
        duplicates = find_duplicate_routes({
            'about.html': '/about/',
            'about/index.html': '/about/',
            'index.html': '/',
        })
        assert duplicates == {'/about': ['about.html', 'about/index.html']}

    def test_no_collisions(self):
        """Distinct routes give no duplicates."""
        assert find_duplicate_routes({'a.html': '/a/', 'b.html': '/b/'}) == {}

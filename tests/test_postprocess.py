"""Tests for head tags, asset tags, performance hints and minification."""

import json
from pathlib import Path

from bs4 import BeautifulSoup

from monad_pkg.postprocess import (
    apply_performance_hints, build_asset_tags, build_font_tags, build_meta_tags,
    canonical_url, insert_into_head, load_manifest, minify_html,
)
from monad_pkg.settings import FontPreload, FontsConfig, MinifyConfig, PerformanceConfig


MANIFEST = {
    'src/entry.ts': {
        'file': 'assets/entry-3f2a.js',
        'css': ['assets/entry-9c1b.css'],
    },
}


class TestMetaTags:
    """Test cases for per-page head tags."""

    def test_canonical_url(self):
        """Site URL and route are joined with a single slash."""
        assert canonical_url('https://example.com/', '/about/') == 'https://example.com/about/'
        assert canonical_url('https://example.com', '/') == 'https://example.com/'

    def test_escaping(self):
        """Titles and descriptions are escaped."""
        tags = build_meta_tags('https://example.com', '/', 'A & B', 'Say "hi"')
        assert '<title>A &amp; B</title>' in tags
        assert 'content="Say &quot;hi&quot;"' in tags

    def test_open_graph_and_twitter(self):
        """Social tags are emitted, with the image only when one is given."""
        tags = build_meta_tags('https://example.com', '/about/', 'About', 'Desc', locale='fr_FR',
                               twitter_handle='@example', theme_color='#112233')
        assert '<link rel="canonical" href="https://example.com/about/">' in tags
        assert '<meta property="og:url" content="https://example.com/about/">' in tags
        assert '<meta property="og:locale" content="fr_FR">' in tags
        assert '<meta name="twitter:site" content="@example">' in tags
        assert '<meta name="theme-color" content="#112233">' in tags
        assert 'og:image' not in tags

        with_image = build_meta_tags('https://example.com', '/', 'T', 'D', og_image='https://example.com/og/index.png')
        assert '<meta property="og:image" content="https://example.com/og/index.png">' in with_image
        assert '<meta name="twitter:image" content="https://example.com/og/index.png">' in with_image

    def test_insert_into_head(self):
        """Tags go just before </head>, or first when there is no head."""
        doc = '<html><head><title>x</title></head><body></body></html>'
        assert insert_into_head(doc, '<meta a>') == '<html><head><title>x</title><meta a>\n</head><body></body></html>'
        assert insert_into_head('<p>x</p>', '<meta a>') == '<meta a>\n<p>x</p>'
        assert insert_into_head(doc, '') == doc


class TestAssetTags:
    """Test cases for bundler asset tags."""

    def test_dev_mode(self):
        """Dev mode references the entry source directly."""
        assert build_asset_tags('src/entry.ts', dev=True) == '<script type="module" src="/src/entry.ts"></script>'

    def test_manifest(self):
        """Stylesheets come before the module script."""
        tags = build_asset_tags('src/entry.ts', MANIFEST)
        assert tags.splitlines() == [
            '<link rel="stylesheet" href="/assets/entry-9c1b.css">',
            '<script type="module" src="/assets/entry-3f2a.js"></script>',
        ]

    def test_missing_entry(self):
        """No manifest or no entry means no tags."""
        assert build_asset_tags('src/entry.ts', None) == ''
        assert build_asset_tags('src/other.ts', MANIFEST) == ''

    def test_load_manifest(self, temp_dir):
        """The manifest is found in the output's .vite directory."""
        assert load_manifest(temp_dir) is None
        vite = Path(temp_dir) / '.vite'
        vite.mkdir()
        (vite / 'manifest.json').write_text(json.dumps(MANIFEST))
        assert load_manifest(temp_dir) == MANIFEST

    def test_unreadable_manifest(self, temp_dir):
        """Invalid JSON is treated as no manifest."""
        (Path(temp_dir) / 'manifest.json').write_text('{not json')
        assert load_manifest(temp_dir) is None


class TestFontTags:
    """Test cases for font optimisation tags."""

    def test_font_tags(self):
        """Preconnect, preload and font-display are all emitted."""
        fonts = FontsConfig(
            enabled=True,
            preconnect=('https://fonts.gstatic.com',),
            preload=(FontPreload(href='/fonts/inter.woff2', type='font/woff2'),),
        )
        tags = build_font_tags(fonts)
        assert '<link rel="preconnect" href="https://fonts.gstatic.com">' in tags
        assert '<link rel="dns-prefetch" href="https://fonts.gstatic.com">' in tags
        assert ('<link rel="preload" href="/fonts/inter.woff2" as="font" type="font/woff2" '
                'crossorigin="anonymous">') in tags
        assert 'font-display: swap;' in tags

    def test_no_display_rule(self):
        """A null display option omits the style block."""
        assert build_font_tags(FontsConfig(display_optimization=None)) == ''


class TestPerformanceHints:
    """Test cases for resource hints."""

    DOC = ('<html><head><link rel="stylesheet" href="/a.css"></head>'
           '<body><img src="/1.png" alt="1"><img src="/2.png" alt="2">'
           '<img src="/3.png" alt="3"><img src="/4.png" alt="4" loading="eager"></body></html>')

    def test_hints(self):
        """Preload, fetchpriority and lazy loading are applied."""
        soup = BeautifulSoup(apply_performance_hints(self.DOC, PerformanceConfig()), 'html.parser')
        preload = soup.find('link', attrs={'rel': 'preload'})
        assert preload['href'] == '/a.css'
        assert preload['as'] == 'style'
        assert soup.find('noscript').find('link')['href'] == '/a.css'

        images = soup.find_all('img')
        assert images[0]['fetchpriority'] == 'high'
        assert not images[1].has_attr('loading')
        assert images[2]['loading'] == 'lazy'
        assert images[2]['decoding'] == 'async'
        assert images[3]['loading'] == 'eager'

    def test_all_off(self):
        """With every hint disabled the document is unchanged."""
        config = PerformanceConfig(preload_critical_css=False, add_fetch_priority=False, lazy_load_images=False)
        assert apply_performance_hints(self.DOC, config) == self.DOC


class TestMinify:
    """Test cases for HTML minification."""

    DOC = """<html>
  <head>
    <!-- build note -->
    <!--[if IE]><p>old browser</p><![endif]-->
    <style type="text/css">
      body { color: red; }
    </style>
    <script>
      var  answer = 42 ;
    </script>
    <script type="application/ld+json">{ "a":  1 }</script>
  </head>
  <body>
    <pre>  keep   this  </pre>
    <p class="">Hi   there</p>
  </body>
</html>"""

    def test_minify(self):
        """Comments and whitespace go; pre and conditional comments stay."""
        out = minify_html(self.DOC, MinifyConfig())
        assert '<!-- build note -->' not in out
        assert '<!--[if IE]>' in out
        assert '<pre>  keep   this  </pre>' in out
        assert '<p>Hi there</p>' in out
        assert 'class=""' not in out
        assert 'type="text/css"' not in out
        assert 'body{color:red}' in out
        assert 'var answer=42' in out
        assert '{ "a":  1 }' in out

    def test_keep_comments(self):
        """Comment removal can be switched off."""
        out = minify_html('<p>a</p><!-- keep --><p>b</p>', MinifyConfig(remove_comments=False))
        assert '<!-- keep -->' in out

    def test_attribute_values_keep_whitespace(self):
        """Whitespace inside quoted attribute values is left alone."""
        out = minify_html('<p title="a  b"\n   class="x">one   two</p><img alt=\'big  cat\' src="/c.png">',
                          MinifyConfig())
        assert out == '<p title="a  b" class="x">one two</p><img alt=\'big  cat\' src="/c.png">'

"""Tests for build reports and site artifacts."""

import json

from monad_pkg.artifacts import (
    generate_netlify_redirects, generate_robots, generate_sitemap, generate_vercel_redirects,
    sitemap_entry,
)
from monad_pkg.audit import ACCESSIBILITY, AuditWarning, HINT, LINK, SEO
from monad_pkg.core import RenderResult
from monad_pkg.frontmatter import Meta
from monad_pkg.report import build_report_data, count_failures, render_html_report, render_json
from monad_pkg.settings import RedirectRule


def make_results():
    return [
        RenderResult(route='/', out_path='index.html', html='', meta=Meta(title='Home'), warnings=[
            AuditWarning(SEO, 'Missing meta description'),
            AuditWarning(HINT, 'No favicon <link rel="icon"> found (consider adding)'),
        ]),
        RenderResult(route='/about/', out_path='about/index.html', html='', meta=Meta(title='About'), warnings=[
            AuditWarning(ACCESSIBILITY, 'Heading hierarchy skipped level: H3 after H1'),
            AuditWarning(LINK, 'Broken internal link: /gone/'),
        ]),
        RenderResult(route='/blog/', out_path='blog/index.html', html='', meta=Meta(), warnings=[]),
    ]


class TestReportData:
    """Test cases for report assembly."""

    def test_totals(self):
        """Pages, warnings and per-category counts are summed."""
        data = build_report_data(make_results(), generated_at='2024-01-01T00:00:00+00:00')
        assert data['generatedAt'] == '2024-01-01T00:00:00+00:00'
        assert data['totals'] == {
            'pages': 3,
            'warnings': 4,
            'byCategory': {SEO: 1, LINK: 1, HINT: 1, ACCESSIBILITY: 1},
        }

    def test_pages_in_order(self):
        """Each page keeps its route, title and warnings."""
        data = build_report_data(make_results())
        assert [p['route'] for p in data['pages']] == ['/', '/about/', '/blog/']
        assert data['pages'][2] == {'route': '/blog/', 'title': '', 'warnings': []}
        assert data['pages'][1]['warnings'][1] == {'category': LINK, 'message': 'Broken internal link: /gone/'}

    def test_json_is_valid(self):
        """The JSON report parses back to the same data."""
        data = build_report_data(make_results())
        assert json.loads(render_json(data)) == data

    def test_html_report(self):
        """The HTML report has a row per route and escapes messages."""
        html = render_html_report(build_report_data(make_results()))
        assert '<code>/about/</code>' in html
        assert 'Broken internal link: /gone/' in html
        assert '&lt;link rel=&#34;icon&#34;&gt;' in html
        assert '<span class="ok">OK</span>' in html


class TestCountFailures:
    """Test cases for fail-mode accounting."""

    def test_warn_never_fails(self):
        """warn modes count nothing."""
        data = build_report_data(make_results())
        assert count_failures(data, 'warn', 'warn') == {}

    def test_audit_fail(self):
        """Audit fail counts every non-accessibility category."""
        data = build_report_data(make_results())
        assert count_failures(data, 'fail', 'warn') == {SEO: 1, HINT: 1, LINK: 1}

    def test_accessibility_fail(self):
        """Accessibility fail counts only accessibility warnings."""
        data = build_report_data(make_results())
        assert count_failures(data, 'off', 'fail') == {ACCESSIBILITY: 1}


class TestSitemap:
    """Test cases for sitemap.xml."""

    def test_entries(self):
        """Each route becomes an absolute <loc>."""
        xml = generate_sitemap('https://example.com/', ['/', '/about/'], lastmod='2024-05-01')
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<url><loc>https://example.com/</loc><lastmod>2024-05-01</lastmod></url>' in xml
        assert '<loc>https://example.com/about/</loc>' in xml

    def test_options_and_exclude(self):
        """changefreq, priority and excluded prefixes are honoured."""
        xml = generate_sitemap('https://example.com', ['/', '/drafts/x/'], changefreq='weekly',
                               priority=0.8, exclude=['/drafts'], lastmod='2024-05-01')
        assert '<changefreq>weekly</changefreq><priority>0.8</priority>' in xml
        assert 'drafts' not in xml

    def test_entry_escaping(self):
        """Special characters in URLs are escaped."""
        assert '<loc>https://example.com/?a=1&amp;b=2</loc>' in sitemap_entry('https://example.com/?a=1&b=2')


class TestRobots:
    """Test cases for robots.txt."""

    def test_allow_all(self):
        """The default policy allows everything and links the sitemap."""
        assert generate_robots('https://example.com/') == \
            'User-agent: *\nAllow: /\nSitemap: https://example.com/sitemap.xml\n'

    def test_disallow_all(self):
        """disallowAll blocks the whole site."""
        assert 'Disallow: /\n' in generate_robots('https://example.com', 'disallowAll')

    def test_disallow_paths(self):
        """Listed paths are disallowed individually."""
        robots = generate_robots('https://example.com', disallow=['/admin', '/tmp'])
        assert 'Disallow: /admin\nDisallow: /tmp\n' in robots
        assert 'Allow: /' not in robots


class TestRedirects:
    """Test cases for hosting redirect files."""

    RULES = (RedirectRule('/old', '/new'), RedirectRule('/temp', '/elsewhere', 302))

    def test_netlify(self):
        """One line per rule."""
        assert generate_netlify_redirects(self.RULES) == '/old  /new  301\n/temp  /elsewhere  302\n'

    def test_vercel(self):
        """301 is permanent; other codes are carried explicitly."""
        data = json.loads(generate_vercel_redirects(self.RULES))
        assert data == {'redirects': [
            {'source': '/old', 'destination': '/new', 'permanent': True},
            {'source': '/temp', 'destination': '/elsewhere', 'permanent': False, 'statusCode': 302},
        ]}

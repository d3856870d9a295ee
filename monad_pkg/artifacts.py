"""
Site-level artifacts written next to the pages: sitemap.xml, robots.txt and
hosting redirect manifests.
"""

import json
from datetime import date
from typing import Iterable, Optional
from xml.sax.saxutils import escape

from .postprocess import canonical_url


def sitemap_entry(url: str, lastmod: Optional[str] = None, changefreq: Optional[str] = None,
                  priority: Optional[float] = None) -> str:
    """Format a single sitemap entry."""
    parts = [f'<loc>{escape(url)}</loc>']
    if lastmod:
        parts.append(f'<lastmod>{lastmod}</lastmod>')
    if changefreq:
        parts.append(f'<changefreq>{escape(changefreq)}</changefreq>')
    if priority is not None:
        parts.append(f'<priority>{float(priority):.1f}</priority>')
    return '<url>' + ''.join(parts) + '</url>'


def generate_sitemap(site_url: str, routes: Iterable[str], changefreq: Optional[str] = None,
                     priority: Optional[float] = None, exclude: Iterable[str] = (),
                     lastmod: Optional[str] = None) -> str:
    """
    Build sitemap.xml for ``routes``.

    Routes starting with any prefix in ``exclude`` are left out; ``lastmod``
    defaults to today.
    """
    lastmod = lastmod or date.today().isoformat()
    prefixes = tuple(exclude)
    entries = [
        sitemap_entry(canonical_url(site_url, route), lastmod, changefreq, priority)
        for route in routes
        if not (prefixes and route.startswith(prefixes))
    ]
    return ('<?xml version="1.0" encoding="UTF-8"?>\n'
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            + ''.join(entries) + '</urlset>')


def generate_robots(site_url: str, policy: str = 'allowAll', disallow: Iterable[str] = ()) -> str:
    lines = ['User-agent: *']
    disallow = list(disallow)
    if policy == 'disallowAll':
        lines.append('Disallow: /')
    elif disallow:
        lines.extend(f'Disallow: {path}' for path in disallow)
    else:
        lines.append('Allow: /')
    lines.append(f'Sitemap: {(site_url or "").rstrip("/")}/sitemap.xml')
    return '\n'.join(lines) + '\n'


def generate_netlify_redirects(rules) -> str:
    """Netlify ``_redirects``: one ``from  to  status`` line per rule."""
    return ''.join(f'{rule.source}  {rule.destination}  {rule.status}\n' for rule in rules)


def generate_vercel_redirects(rules) -> str:
    """Vercel ``vercel.json`` with a ``redirects`` list; 301 is permanent, anything else carries its code."""
    redirects = []
    for rule in rules:
        entry = {
            'source': rule.source,
            'destination': rule.destination,
            'permanent': rule.status == 301,
        }
        if rule.status != 301:
            entry['statusCode'] = rule.status
        redirects.append(entry)
    return json.dumps({'redirects': redirects}, indent=2)

"""Test configuration and fixtures for Monad tests."""

import pytest
import tempfile
import shutil
import os
import json
from pathlib import Path

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from monad_pkg.settings import MonadConfig
from monad_pkg.template import MemoryFragmentStore, RenderContext


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def make_config(temp_dir):
    """Build a MonadConfig rooted in the temporary directory, without a log file."""
    def factory(**overrides):
        data = {'root': temp_dir, 'log_dir': None, 'site': {'url': 'https://example.com', 'name': 'Example'}}
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = dict(data[key], **value)
            else:
                data[key] = value
        return MonadConfig.from_dict(data)
    return factory


@pytest.fixture
def fragments():
    """An in-memory fragment store with a few common fragments."""
    return MemoryFragmentStore({
        '_header.html': '<header>{{site.name}} / {{data.active}}</header>',
        '_greeting.html': '<p>Hello {{data.name}}</p>',
        'blog/_card.html': '<article>{{data.title}}</article>',
    })


@pytest.fixture
def context():
    """A render context with site and page layers."""
    return RenderContext(
        site={'name': 'Example', 'url': 'https://example.com'},
        page={'route': '/', 'title': 'Home'},
    )


LAYOUT = """<!doctype html>
<html lang="en">
<head>
{{slot:head}}
<link rel="icon" href="/favicon.ico">
</head>
<body>
<a href="#main">Skip to content</a>
<% header, { active: '{{page.title}}' } %>
<main id="main">
{{slot:main}}
</main>
<footer>{{slot:footer}}</footer>
</body>
</html>
"""


@pytest.fixture
def mock_site_dir(temp_dir):
    """Create a small site: pages, partials, a layout and collections data."""
    root = Path(temp_dir)
    pages = root / 'pages'
    partials = root / 'partials'
    (pages / 'blog').mkdir(parents=True)
    (partials / 'blog').mkdir(parents=True)

    (partials / '_layout.html').write_text(LAYOUT)
    (partials / '_header.html').write_text('<header><a href="/">{{site.name}}</a> {{data.active}}</header>')
    (partials / 'blog' / '_card.html').write_text('<article><h2>{{data.title}}</h2></article>')

    (pages / 'index.html').write_text("""<!-- monad { title: 'Welcome', description: 'The home page' } -->
<h1>Welcome to {{site.name}}</h1>
<p><a href="/about/">About us</a></p>
<!-- monad:slot footer --><p>Home footer</p><!-- monad:endslot -->
""")
    (pages / 'about.html').write_text("""<!-- monad {"title": "About", "description": "About the site"} -->
<h1>About</h1>
<% blog/card, { title: 'Card title' } %>
<p><a href="/">Home</a></p>
""")
    (pages / 'blog' / 'index.html').write_text("""<!-- monad {"title": "Blog", "description": "All posts"} -->
<h1>Blog</h1>
<!-- monad:loop post in posts --><h2>{{@index1}}. {{post.title}}</h2><!-- monad:endloop -->
""")
    (pages / '_draft.html').write_text('<h1>Not a page</h1>')

    (root / 'collections.json').write_text(json.dumps({
        'posts': [{'title': 'First post'}, {'title': 'Second post'}],
    }))
    return temp_dir

"""
Monad - a static-site template compositor.

Monad turns a tree of HTML and Markdown pages plus a library of reusable
fragments into fully resolved HTML documents. Fragments are included with
``<% name, {data} %>``, values are interpolated with ``{{dotted.path}}``,
pages fill layout slots and can repeat blocks over collection data. Every
rendered page is audited for SEO, accessibility and broken internal links.
"""

__version__ = "0.1.0"

from .settings import MonadConfig, MonadSettings, MonadError, ConfigError
from .core import Monad, RenderResult, AuditFailedError

__all__ = [
    'Monad', 'RenderResult', 'MonadConfig', 'MonadSettings',
    'MonadError', 'ConfigError', 'AuditFailedError',
]

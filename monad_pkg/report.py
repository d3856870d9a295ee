"""
Build report assembly: a JSON summary and a human-readable HTML table.
"""

import os
import json
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .audit import ACCESSIBILITY, CATEGORIES

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')
REPORT_TEMPLATE = 'report.html'


def build_report_data(results: Iterable[Any], generated_at: Optional[str] = None) -> Dict[str, Any]:
    """
    Summarize render results.

    Args:
        results: RenderResult-like objects (``route``, ``meta.title``, ``warnings``)
        generated_at: ISO timestamp; defaults to now (UTC)

    Returns:
        ``{"generatedAt", "pages": [{"route", "title", "warnings"}], "totals"}``
    """
    pages = []
    by_category = Counter()
    for result in results:
        warnings = [w.to_dict() for w in result.warnings]
        by_category.update(w['category'] for w in warnings)
        pages.append({
            'route': result.route,
            'title': result.meta.title or '',
            'warnings': warnings,
        })

    return {
        'generatedAt': generated_at or datetime.now(timezone.utc).isoformat(),
        'pages': pages,
        'totals': {
            'pages': len(pages),
            'warnings': sum(len(p['warnings']) for p in pages),
            'byCategory': {c: by_category[c] for c in CATEGORIES if by_category[c]},
        },
    }


def render_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def create_environment() -> Environment:
    return Environment(loader=FileSystemLoader(TEMPLATES_DIR),
                       autoescape=select_autoescape(['html']))


def render_html_report(data: Dict[str, Any], env: Optional[Environment] = None) -> str:
    """Render the report summary as an HTML table, one row per route."""
    env = env or create_environment()
    return env.get_template(REPORT_TEMPLATE).render(report=data, categories=CATEGORIES)


def count_failures(data: Dict[str, Any], audit_mode: str, accessibility_mode: str) -> Dict[str, int]:
    """
    Warning counts, by category, that a ``fail`` mode turns into a build failure.

    ``audit_mode == 'fail'`` counts everything except accessibility;
    ``accessibility_mode == 'fail'`` counts accessibility.
    """
    counts = Counter()
    for page in data['pages']:
        for warning in page['warnings']:
            category = warning['category']
            if category == ACCESSIBILITY:
                if accessibility_mode == 'fail':
                    counts[category] += 1
            elif audit_mode == 'fail':
                counts[category] += 1
    return dict(counts)

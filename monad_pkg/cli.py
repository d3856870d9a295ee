#!/usr/bin/env python3
"""
Command-line interface for Monad - static site template compositor.
"""

import os
import sys
import argparse
from typing import List, Optional

from . import __version__
from .core import Monad
from .settings import MonadSettings, AUDIT_MODES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='monad', description='Monad - Static Site Template Compositor')
    parser.add_argument('--config-dir', type=str,
                        help='Directory containing monad.yml/monad.yaml/monad.json (defaults to the current directory)')
    parser.add_argument('--root', type=str,
                        help='Project root that pages, partials and output paths are relative to')
    parser.add_argument('--pages', dest='pages_dir', type=str,
                        help='Pages directory')
    parser.add_argument('--partials', dest='partials_dir', type=str,
                        help='Partials (fragments and layouts) directory')
    parser.add_argument('--output', dest='out_dir', type=str,
                        help='Output directory for the generated site')
    parser.add_argument('--site-url', dest='site.url', type=str,
                        help='Site URL for canonical links, sitemap and robots.txt')
    parser.add_argument('--site-name', dest='site.name', type=str,
                        help='Site name used in default titles')
    parser.add_argument('--audit-mode', dest='audit.mode', type=str, choices=AUDIT_MODES,
                        help='SEO/link audit policy')
    parser.add_argument('--accessibility-mode', dest='accessibility.mode', type=str, choices=AUDIT_MODES,
                        help='Accessibility audit policy')
    parser.add_argument('--no-minify', dest='minify.enabled', action='store_const', const=False,
                        help='Skip HTML minification')
    parser.add_argument('--markdown', dest='markdown.enabled', action='store_const', const=True,
                        help='Also treat .md files in the pages directory as pages')
    parser.add_argument('--collections', dest='collections.enabled', action='store_const', const=True,
                        help='Enable collection loops')
    parser.add_argument('--lighthouse', dest='lighthouse.enabled', action='store_const', const=True,
                        help='Run Lighthouse CI after the build')
    parser.add_argument('--render', type=str, metavar='URL',
                        help='Render a single URL on demand and print it instead of building')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load settings from configuration file
    settings_loader = MonadSettings(args.config_dir)
    settings_loader.load_settings()

    # Everything but the command switches is a settings override
    args_dict = {k: v for k, v in vars(args).items()
                 if v is not None and k not in ('config_dir', 'render')}
    if 'root' in args_dict:
        args_dict['root'] = os.path.abspath(os.path.expanduser(args_dict['root']))

    try:
        config = settings_loader.to_config(args_dict)
        generator = Monad(config)

        if args.render:
            rendered = generator.render_url(args.render)
            if rendered is None:
                print(f"Error: nothing is served at {args.render}", file=sys.stderr)
                sys.exit(1)
            status, html = rendered
            if status != 200:
                print(f"Status: {status}", file=sys.stderr)
            print(html)
            return

        generator.build()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()

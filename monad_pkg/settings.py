#!/usr/bin/env python3
"""
Settings loader for Monad static site compositor.
Supports configuration from monad.yml, monad.yaml, or monad.json files.
"""

import os
import copy
import json
import yaml
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple


AUDIT_MODES = ('off', 'warn', 'fail')
ROBOTS_POLICIES = ('allowAll', 'disallowAll')
REDIRECT_PLATFORMS = ('netlify', 'vercel', 'both')
OG_MODES = ('single', 'per-route')
FONT_DISPLAY_MODES = ('swap', 'fallback', 'optional')


class MonadError(Exception):
    """Base class for errors raised by Monad."""


class ConfigError(MonadError):
    """Raised when the configuration cannot be turned into a MonadConfig."""


@dataclass(frozen=True)
class SiteConfig:
    url: str = ''
    name: Optional[str] = None
    locale: str = 'en_US'
    theme_color: Optional[str] = None
    twitter_handle: Optional[str] = None

    def as_context(self) -> Dict[str, Any]:
        """Mapping exposed to templates as the ``site`` layer."""
        return {
            'url': self.url,
            'name': self.name or '',
            'locale': self.locale,
            'themeColor': self.theme_color or '',
            'twitterHandle': self.twitter_handle or '',
        }


@dataclass(frozen=True)
class SitemapConfig:
    enabled: bool = True
    changefreq: Optional[str] = None
    priority: Optional[float] = None
    exclude: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RobotsConfig:
    enabled: bool = True
    policy: str = 'allowAll'
    disallow: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AuditChecks:
    title: bool = True
    description: bool = True
    h1: bool = True
    image_alt: bool = True
    image_weight: bool = True
    links: bool = True
    favicon: bool = True
    canonical: bool = True


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = True
    mode: str = 'warn'
    max_image_bytes: int = 500_000
    checks: AuditChecks = field(default_factory=AuditChecks)


@dataclass(frozen=True)
class AccessibilityRules:
    heading_hierarchy: bool = True
    aria_attributes: bool = True
    color_contrast: bool = True
    alt_text: bool = True
    keyboard_navigation: bool = True
    screen_reader: bool = True
    skip_links: bool = True
    landmark_roles: bool = True
    tab_index: bool = True
    focus_indicators: bool = True


@dataclass(frozen=True)
class ColorContrastConfig:
    minimum_ratio: float = 4.5
    check_large_text: bool = True


@dataclass(frozen=True)
class AccessibilityConfig:
    enabled: bool = True
    mode: str = 'warn'
    rules: AccessibilityRules = field(default_factory=AccessibilityRules)
    color_contrast: ColorContrastConfig = field(default_factory=ColorContrastConfig)


@dataclass(frozen=True)
class OgConfig:
    enabled: bool = False
    provider: Optional[str] = None
    mode: str = 'per-route'
    output_dir: str = 'og'
    width: int = 1200
    height: int = 630


@dataclass(frozen=True)
class LighthouseConfig:
    enabled: bool = False


@dataclass(frozen=True)
class NotFoundConfig:
    enabled: bool = True
    template: str = '404.html'
    layout: Optional[str] = None


@dataclass(frozen=True)
class RedirectRule:
    source: str
    destination: str
    status: int = 301


@dataclass(frozen=True)
class RedirectsConfig:
    enabled: bool = False
    platform: str = 'both'
    rules: Tuple[RedirectRule, ...] = ()


@dataclass(frozen=True)
class MarkdownConfig:
    enabled: bool = False
    gfm: bool = True
    breaks: bool = False
    pedantic: bool = False


@dataclass(frozen=True)
class MinifyConfig:
    enabled: bool = True
    collapse_whitespace: bool = True
    remove_comments: bool = True
    remove_redundant_attributes: bool = True
    remove_empty_attributes: bool = True
    minify_css: bool = True
    minify_js: bool = True


@dataclass(frozen=True)
class PerformanceConfig:
    enabled: bool = True
    preload_critical_css: bool = True
    add_fetch_priority: bool = True
    lazy_load_images: bool = True


@dataclass(frozen=True)
class FontPreload:
    href: str
    type: Optional[str] = None
    crossorigin: Optional[str] = None


@dataclass(frozen=True)
class FontsConfig:
    enabled: bool = False
    preconnect: Tuple[str, ...] = ()
    preload: Tuple[FontPreload, ...] = ()
    display_optimization: Optional[str] = 'swap'


@dataclass(frozen=True)
class CollectionsConfig:
    enabled: bool = False
    data_file: str = 'collections.json'


@dataclass(frozen=True)
class AssetsConfig:
    entry: str = 'src/entry.ts'


@dataclass(frozen=True)
class MonadConfig:
    """Immutable configuration for one build, passed to every component."""

    root: str = '.'
    pages_dir: str = 'pages'
    partials_dir: str = 'partials'
    out_dir: str = 'dist'
    default_layout: str = 'layout.html'
    clean_urls: bool = True
    trailing_slash: bool = True
    log_dir: Optional[str] = 'logs'
    site: SiteConfig = field(default_factory=SiteConfig)
    sitemap: SitemapConfig = field(default_factory=SitemapConfig)
    robots: RobotsConfig = field(default_factory=RobotsConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    accessibility: AccessibilityConfig = field(default_factory=AccessibilityConfig)
    og: OgConfig = field(default_factory=OgConfig)
    lighthouse: LighthouseConfig = field(default_factory=LighthouseConfig)
    not_found: NotFoundConfig = field(default_factory=NotFoundConfig)
    redirects: RedirectsConfig = field(default_factory=RedirectsConfig)
    markdown: MarkdownConfig = field(default_factory=MarkdownConfig)
    minify: MinifyConfig = field(default_factory=MinifyConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    fonts: FontsConfig = field(default_factory=FontsConfig)
    collections: CollectionsConfig = field(default_factory=CollectionsConfig)
    assets: AssetsConfig = field(default_factory=AssetsConfig)

    def path(self, *parts: str) -> str:
        """Absolute path of ``parts`` joined under the project root."""
        return os.path.abspath(os.path.join(self.root, *parts))

    @property
    def pages_path(self) -> str:
        return self.path(self.pages_dir)

    @property
    def partials_path(self) -> str:
        return self.path(self.partials_dir)

    @property
    def out_path(self) -> str:
        return self.path(self.out_dir)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'MonadConfig':
        """
        Build a configuration tree from a (possibly nested) settings dictionary.

        Args:
            data: Settings as loaded from a config file and merged with CLI args

        Returns:
            A frozen MonadConfig

        Raises:
            ConfigError: If a value is outside its allowed set
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        audit = _section(data, 'audit')
        a11y = _section(data, 'accessibility')
        redirects = _section(data, 'redirects')
        fonts = _section(data, 'fonts')

        config = cls(
            root=str(data.get('root') or '.'),
            pages_dir=str(data.get('pages_dir') or 'pages'),
            partials_dir=str(data.get('partials_dir') or 'partials'),
            out_dir=str(data.get('out_dir') or 'dist'),
            default_layout=str(data.get('default_layout') or 'layout.html'),
            clean_urls=bool(data.get('clean_urls', True)),
            trailing_slash=bool(data.get('trailing_slash', True)),
            log_dir=data.get('log_dir', 'logs'),
            site=_build(SiteConfig, _section(data, 'site')),
            sitemap=_build(SitemapConfig, _section(data, 'sitemap'), tuples=('exclude',)),
            robots=_build(RobotsConfig, _section(data, 'robots'), tuples=('disallow',)),
            audit=_build(AuditConfig, dict(audit, checks=_build(AuditChecks, _section(audit, 'checks')))),
            accessibility=AccessibilityConfig(
                enabled=bool(a11y.get('enabled', True)),
                mode=a11y.get('mode', 'warn'),
                rules=_build(AccessibilityRules, _section(a11y, 'rules')),
                color_contrast=_build(ColorContrastConfig, _section(a11y, 'color_contrast')),
            ),
            og=_build(OgConfig, _section(data, 'og')),
            lighthouse=_build(LighthouseConfig, _section(data, 'lighthouse')),
            not_found=_build(NotFoundConfig, _section(data, 'not_found')),
            redirects=RedirectsConfig(
                enabled=bool(redirects.get('enabled', False)),
                platform=redirects.get('platform', 'both'),
                rules=tuple(_redirect_rule(rule) for rule in redirects.get('rules') or []),
            ),
            markdown=_build(MarkdownConfig, _section(data, 'markdown')),
            minify=_build(MinifyConfig, _section(data, 'minify')),
            performance=_build(PerformanceConfig, _section(data, 'performance')),
            fonts=FontsConfig(
                enabled=bool(fonts.get('enabled', False)),
                preconnect=tuple(fonts.get('preconnect') or ()),
                preload=tuple(_font_preload(item) for item in fonts.get('preload') or []),
                display_optimization=fonts.get('display_optimization', 'swap'),
            ),
            collections=_build(CollectionsConfig, _section(data, 'collections')),
            assets=_build(AssetsConfig, _section(data, 'assets')),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check enum-like values; raise ConfigError on the first bad one."""
        checks = [
            ('audit.mode', self.audit.mode, AUDIT_MODES),
            ('accessibility.mode', self.accessibility.mode, AUDIT_MODES),
            ('robots.policy', self.robots.policy, ROBOTS_POLICIES),
            ('redirects.platform', self.redirects.platform, REDIRECT_PLATFORMS),
            ('og.mode', self.og.mode, OG_MODES),
        ]
        if self.fonts.display_optimization is not None:
            checks.append(('fonts.display_optimization', self.fonts.display_optimization, FONT_DISPLAY_MODES))
        for name, value, allowed in checks:
            if value not in allowed:
                raise ConfigError(f"Invalid value for {name}: {value!r} (expected one of {', '.join(allowed)})")
        if self.audit.max_image_bytes <= 0:
            raise ConfigError("audit.max_image_bytes must be positive")
        if self.accessibility.color_contrast.minimum_ratio < 1:
            raise ConfigError("accessibility.color_contrast.minimum_ratio must be at least 1")


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Configuration section '{key}' must be a mapping")
    return value


def _build(cls, values: Dict[str, Any], tuples: Tuple[str, ...] = ()):
    known = set(cls.__dataclass_fields__)
    kwargs = {}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown setting '{key}' for {cls.__name__}")
        kwargs[key] = tuple(value or ()) if key in tuples else value
    return cls(**kwargs)


def _redirect_rule(rule: Any) -> RedirectRule:
    if not isinstance(rule, dict) or 'from' not in rule or 'to' not in rule:
        raise ConfigError(f"Redirect rules need 'from' and 'to': {rule!r}")
    return RedirectRule(source=str(rule['from']), destination=str(rule['to']),
                        status=int(rule.get('status') or 301))


def _font_preload(item: Any) -> FontPreload:
    if isinstance(item, str):
        return FontPreload(href=item)
    if not isinstance(item, dict) or 'href' not in item:
        raise ConfigError(f"Font preload entries need an 'href': {item!r}")
    return FontPreload(href=str(item['href']), type=item.get('type'), crossorigin=item.get('crossorigin'))


class MonadSettings:
    """Load and manage Monad configuration settings."""

    # Default configuration
    DEFAULT_SETTINGS = {
        'root': '.',
        'pages_dir': 'pages',
        'partials_dir': 'partials',
        'out_dir': 'dist',
        'default_layout': 'layout.html',
        'clean_urls': True,
        'trailing_slash': True,
        'log_dir': 'logs',
        'site': {'url': ''},
    }

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['monad.yml', 'monad.yaml', 'monad.json']

    def __init__(self, config_dir: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
        """
        self.config_dir = config_dir or os.getcwd()
        self.settings = copy.deepcopy(self.DEFAULT_SETTINGS)
        self.config_file_path = None

    def load_settings(self) -> Dict[str, Any]:
        """
        Load settings from configuration file if it exists.

        Returns:
            Dictionary of configuration settings
        """
        config_file = self._find_config_file()

        if config_file:
            self.config_file_path = config_file
            try:
                loaded_settings = self._load_config_file(config_file)
                if loaded_settings:
                    if not isinstance(loaded_settings, dict):
                        raise ValueError("top-level value must be a mapping")
                    self.settings = _deep_merge(self.settings, loaded_settings)
                    print(f"Loaded configuration from: {os.path.relpath(config_file)}")
            except Exception as e:
                print(f"Warning: Failed to load config file {config_file}: {e}")

        # Relative project roots are relative to the config file's directory
        root = self.settings.get('root') or '.'
        if not os.path.isabs(root):
            self.settings['root'] = os.path.normpath(os.path.join(self.config_dir, root))

        return copy.deepcopy(self.settings)

    def _find_config_file(self) -> Optional[str]:
        """
        Find the first available configuration file.

        Returns:
            Path to config file or None if not found
        """
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dictionary of configuration settings
        """
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    return yaml.safe_load(f) or {}
                elif file_ext == '.json':
                    return json.load(f) or {}
                else:
                    raise ValueError(f"Unsupported config file format: {file_ext}")
        except PermissionError:
            raise PermissionError(f"Permission denied reading configuration file: {config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file {config_path}: {e}")

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.

        Args:
            args_dict: Dictionary of command-line arguments; dotted keys such as
                ``audit.mode`` address nested sections

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(self.settings)

        for key, value in args_dict.items():
            if value is None:
                continue
            target = merged
            parts = key.split('.')
            for part in parts[:-1]:
                if not isinstance(target.get(part), dict):
                    target[part] = {}
                target = target[part]
            target[parts[-1]] = value

        return merged

    def to_config(self, args_dict: Optional[Dict[str, Any]] = None) -> MonadConfig:
        """Merge ``args_dict`` over the loaded settings and freeze the result."""
        return MonadConfig.from_dict(self.merge_with_args(args_dict or {}))


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged

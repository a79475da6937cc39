"""
Layered configuration.

Settings are read from ``configuration/base.yaml``, then from
``configuration/{environment}.yaml`` and finally from environment variables
prefixed with ``APP_`` using ``__`` as the nesting separator, e.g.
``APP_INFINITE_SCROLLING__SCROLL_CHECKS=5`` sets
``Settings.infinite_scrolling.scroll_checks``.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("local", "production")
ENV_PREFIX = "APP_"
ENV_SEPARATOR = "__"

SPIDER_KINDS = ("infinite_scrolling", "multipage")


@dataclass
class HttpSettings:
    timeout_secs: float = 30
    max_retries: int = 3
    backoff_min_secs: float = 1.0
    backoff_max_secs: float = 10.0
    user_agent: Optional[str] = None


@dataclass
class InfiniteScrollingSettings:
    scroll_delay_milis: int = 1000
    # Consecutive readings without growth before the page counts as loaded
    scroll_checks: int = 3
    max_scrolls: Optional[int] = 200
    wait_timeout_secs: float = 5
    # Attach to an already running browser instead of launching one
    cdp_url: Optional[str] = None


@dataclass
class SpiderSettings:
    name: str
    kind: str
    base_url: str
    subroutes: List[str]
    selector: str
    delay_milis: Optional[int] = None
    extractor: str = "attributes"
    fields: Dict[str, str] = field(default_factory=dict)
    impersonate: Optional[str] = None


@dataclass
class Settings:
    out_path: Path
    headless: bool = True
    delay_milis: int = 1000
    crawlers_buffer_size: int = 2
    spiders_buffer_size: int = 4
    show_progress: bool = True
    infinite_scrolling: InfiniteScrollingSettings = field(default_factory=InfiniteScrollingSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    spiders: List[SpiderSettings] = field(default_factory=list)

    def spider(self, name: str) -> SpiderSettings:
        for spider in self.spiders:
            if spider.name == name:
                return spider
        raise ConfigurationError(f"No spider named {name!r}")


def parse_environment(value: str) -> str:
    environment = value.lower()
    if environment not in ENVIRONMENTS:
        raise ConfigurationError(
            f"{value} is not a supported environment. Use either `local` or `production`."
        )
    return environment


def load_yaml(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration file {path}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must hold a mapping")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` on top of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _is_settings_path(path: List[str]) -> bool:
    """Whether ``path`` names a field of Settings or of one of its sections."""
    cls = Settings
    for depth, part in enumerate(path):
        fields = {f.name: f for f in dataclasses.fields(cls)}
        if part not in fields:
            return False
        if depth < len(path) - 1:
            cls = fields[part].type
            if not dataclasses.is_dataclass(cls):
                return False
    return True


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    Nested overrides from ``APP_`` variables.

    Variables that do not name a known setting (``APP_NAME``,
    ``APP_VERSION``...) belong to something else and are ignored.
    """
    overrides: Dict[str, Any] = {}
    for key, raw in environ.items():
        if not key.upper().startswith(ENV_PREFIX) or key.upper() == "APP_ENVIRONMENT":
            continue
        path = key[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR)
        if not _is_settings_path(path):
            logger.debug(f"Ignoring environment variable {key}, it is not a setting")
            continue
        try:
            value = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return overrides


def _build(cls, data: Any, section: str):
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"`{section}` must be a mapping")
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in `{section}`: {sorted(unknown)}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid `{section}` settings") from e


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"`{name}` must be a positive integer, got {value!r}")
    return value


def _non_negative(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigurationError(f"`{name}` must be a non-negative number, got {value!r}")
    return value


def _build_spider(data: Any, index: int) -> SpiderSettings:
    spider = _build(SpiderSettings, data, f"spiders[{index}]")
    if spider.kind not in SPIDER_KINDS:
        raise ConfigurationError(
            f"Unknown spider kind {spider.kind!r} for {spider.name}, use one of {SPIDER_KINDS}"
        )
    if not isinstance(spider.subroutes, list) or not all(isinstance(s, str) for s in spider.subroutes):
        raise ConfigurationError(f"`subroutes` of {spider.name} must be a list of strings")
    if spider.delay_milis is not None:
        _non_negative(spider.delay_milis, f"{spider.name}.delay_milis")
    if not isinstance(spider.fields, Mapping):
        raise ConfigurationError(f"`fields` of {spider.name} must be a mapping")
    return spider


def settings_from_dict(data: Mapping[str, Any]) -> Settings:
    """Validate a merged configuration mapping and build Settings."""
    data = dict(data)
    if "out_path" not in data:
        raise ConfigurationError("Missing `out_path`")
    data["out_path"] = Path(data["out_path"])
    data["infinite_scrolling"] = _build(
        InfiniteScrollingSettings, data.get("infinite_scrolling") or {}, "infinite_scrolling"
    )
    data["http"] = _build(HttpSettings, data.get("http") or {}, "http")
    data["spiders"] = [_build_spider(s, i) for i, s in enumerate(data.get("spiders") or [])]
    settings = _build(Settings, data, "settings")

    _positive_int(settings.crawlers_buffer_size, "crawlers_buffer_size")
    _positive_int(settings.spiders_buffer_size, "spiders_buffer_size")
    _non_negative(settings.delay_milis, "delay_milis")
    scrolling = settings.infinite_scrolling
    _positive_int(scrolling.scroll_checks, "infinite_scrolling.scroll_checks")
    _non_negative(scrolling.scroll_delay_milis, "infinite_scrolling.scroll_delay_milis")
    _non_negative(scrolling.wait_timeout_secs, "infinite_scrolling.wait_timeout_secs")
    if scrolling.max_scrolls is not None:
        _positive_int(scrolling.max_scrolls, "infinite_scrolling.max_scrolls")
    _non_negative(settings.http.max_retries, "http.max_retries")

    names = [spider.name for spider in settings.spiders]
    duplicated = {name for name in names if names.count(name) > 1}
    if duplicated:
        raise ConfigurationError(f"Duplicated spider names: {sorted(duplicated)}")
    return settings


def get_configuration(config_dir: Optional[Path] = None,
                      environment: Optional[str] = None,
                      environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load the layered configuration.

    Args:
        config_dir: Directory holding the YAML files, ``./configuration`` by default
        environment: ``local`` or ``production``, read from APP_ENVIRONMENT
            when not given and ``local`` when unset
        environ: Environment variables, ``os.environ`` by default

    Raises:
        ConfigurationError: on a missing file or invalid values
    """
    environ = os.environ if environ is None else environ
    config_dir = Path(config_dir) if config_dir else Path.cwd() / "configuration"
    environment = parse_environment(environment or environ.get("APP_ENVIRONMENT", "local"))

    data = load_yaml(config_dir / "base.yaml")
    data = merge(data, load_yaml(config_dir / f"{environment}.yaml"))
    data = merge(data, env_overrides(environ))
    logger.debug(f"Loaded configuration for `{environment}` from {config_dir}")
    return settings_from_dict(data)

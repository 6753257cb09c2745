"""
Front-End Cache Configuration Module

Central configuration for the front-end response cache and the Flask host it is
mounted on. Environment variables, including a .env file loaded through python-dotenv,
are read when ``get_config`` resolves a configuration and turn into two things:

- Flask configuration classes (``BaseConfig`` and its environment-specific
  subclasses) consumed by the application factory.
- ``CacheSettings``, the immutable cache policy built once per worker from the
  Flask configuration and passed explicitly to every cache component.

Administrative changes made through the settings endpoint are persisted to a
JSON overrides file under the cache root and merged over the environment values
when a worker starts.

Environment Variables:
- FRONTEND_CACHE_ROOT: directory holding the per-tenant cache directories
- FRONTEND_CACHE_TTL: server-side time to live in seconds
- FRONTEND_CACHE_USE_CACHE_HEADER / _USE_COMPRESSION / _USE_STATISTICS / _CSS
- FRONTEND_CACHE_LAZY_LOAD_IMAGES: add loading="lazy" to cached HTML images
- FRONTEND_CACHE_COUNTER_WINDOW: max-age cap for counted responses
- FRONTEND_CACHE_PAGES / FRONTEND_CACHE_EXCLUDED_OPS: comma separated lists
- FRONTEND_CACHE_ROUTING_MODE: ``path_info`` or ``query``
- FRONTEND_CACHE_CONTEXT_PARAMS: query parameter names that select a context
"""

import json
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Type

import structlog
from dotenv import find_dotenv, load_dotenv
from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate

logger = structlog.get_logger(__name__)

SETTINGS_OVERRIDES_FILENAME = "settings.json"

DEFAULT_CACHEABLE_PAGES = (
    "about", "announcement", "help", "index", "information", "sitemap", "catalog",
    # journals
    "article", "issue",
    # preprint servers
    "preprint", "preprints",
)

DEFAULT_NON_CACHEABLE_OPERATIONS = (
    "catalog/fullSize", "catalog/thumbnail", "catalog/download",
    # journals
    "article/download",
    "issue/download",
    # preprint servers
    "preprint/download",
    "preprints/fullSize", "preprints/thumbnail",
)


class ConfigurationError(Exception):
    """Custom exception for configuration validation errors."""

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.errors = errors or {}


class RoutingMode(str, Enum):
    """How the host application encodes page and operation in URLs."""
    PATH_INFO = "path_info"     # /<context>/<page>/<op>/<args>
    QUERY = "query"             # ?journal=<context>&page=<page>&op=<op>&path=<args>


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


# Flask config keys read from the same-named environment variables
ENVIRONMENT_PARSERS: Dict[str, Callable[[str], Any]] = {
    "SECRET_KEY": str,
    "LOG_LEVEL": str.upper,
    "LOG_FORMAT": str,
    "FRONTEND_CACHE_ENABLED": _parse_bool,
    "FRONTEND_CACHE_ROOT": str,
    "FRONTEND_CACHE_TTL": int,
    "FRONTEND_CACHE_USE_CACHE_HEADER": _parse_bool,
    "FRONTEND_CACHE_USE_COMPRESSION": _parse_bool,
    "FRONTEND_CACHE_USE_STATISTICS": _parse_bool,
    "FRONTEND_CACHE_CSS": _parse_bool,
    "FRONTEND_CACHE_LAZY_LOAD_IMAGES": _parse_bool,
    "FRONTEND_CACHE_COUNTER_WINDOW": int,
    "FRONTEND_CACHE_PAGES": _parse_list,
    "FRONTEND_CACHE_EXCLUDED_OPS": _parse_list,
    "FRONTEND_CACHE_ROUTING_MODE": str,
    "FRONTEND_CACHE_CONTEXT_PARAMS": _parse_list,
    "FRONTEND_CACHE_INSTALLED": _parse_bool,
    "FRONTEND_CACHE_DEFAULT_LOCALE": str,
}


class CacheSettingsSchema(Schema):
    """Marshmallow schema validating cache policy values from config or the admin form."""

    class Meta:
        unknown = EXCLUDE

    cache_root = fields.Str(validate=validate.Length(min=1))
    time_to_live_seconds = fields.Int(strict=False, validate=validate.Range(min=1))
    use_cache_header = fields.Bool()
    use_compression = fields.Bool()
    use_statistics = fields.Bool()
    cache_css = fields.Bool()
    lazy_load_images = fields.Bool()
    counter_window_seconds = fields.Int(strict=False, validate=validate.Range(min=0))
    cacheable_pages = fields.List(fields.Str(validate=validate.Length(min=1)))
    non_cacheable_operations = fields.List(
        fields.Str(validate=validate.Regexp(r"^[^/\s]+/[^/\s]*$", error="Expected 'page/operation'."))
    )
    routing_mode = fields.Str(validate=validate.OneOf([mode.value for mode in RoutingMode]))
    context_params = fields.List(fields.Str(validate=validate.Length(min=1)))
    installed = fields.Bool()
    default_locale = fields.Str(validate=validate.Length(min=1))


@dataclass(frozen=True)
class CacheSettings:
    """
    Immutable cache policy shared by every component of one worker.

    Built once at startup and never mutated; the admin surface replaces the
    whole value through ``FrontEndCacheEngine.reconfigure``.
    """
    cache_root: Path = Path("cache/frontEndCache")
    time_to_live_seconds: int = 3600
    use_cache_header: bool = True
    use_compression: bool = True
    use_statistics: bool = True
    cache_css: bool = True
    lazy_load_images: bool = True
    counter_window_seconds: int = 10
    cacheable_pages: FrozenSet[str] = field(default_factory=lambda: frozenset(DEFAULT_CACHEABLE_PAGES))
    non_cacheable_operations: FrozenSet[str] = field(
        default_factory=lambda: frozenset(DEFAULT_NON_CACHEABLE_OPERATIONS)
    )
    routing_mode: RoutingMode = RoutingMode.PATH_INFO
    context_params: FrozenSet[str] = field(default_factory=lambda: frozenset({"journal"}))
    installed: bool = True
    default_locale: str = "en"

    @property
    def overrides_path(self) -> Path:
        return Path(self.cache_root) / SETTINGS_OVERRIDES_FILENAME

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheSettings":
        """
        Validate a plain mapping with ``CacheSettingsSchema`` and build settings.

        Keys that are absent keep their defaults.

        Raises:
            ConfigurationError: When any value fails validation
        """
        return cls().with_overrides(data)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "CacheSettings":
        """Build settings from a Flask config mapping (``FRONTEND_CACHE_*`` keys)."""
        data = {
            name: config[key]
            for name, key in _CONFIG_KEYS.items()
            if config.get(key) is not None
        }
        settings = cls.from_dict(data)

        overrides = load_settings_overrides(settings.overrides_path)
        overrides.pop("cache_root", None)
        if overrides:
            try:
                settings = settings.with_overrides(overrides)
            except ConfigurationError as e:
                logger.warning(
                    "Ignoring invalid cache settings overrides",
                    path=str(settings.overrides_path),
                    errors=e.errors
                )
        return settings

    def with_overrides(self, data: Mapping[str, Any]) -> "CacheSettings":
        """Return a copy with validated values from ``data`` applied."""
        try:
            loaded = CacheSettingsSchema().load(dict(data))
        except ValidationError as e:
            raise ConfigurationError("Invalid front-end cache settings", errors=e.messages)
        return self._merged(loaded)

    def _merged(self, loaded: Mapping[str, Any]) -> "CacheSettings":
        changes: Dict[str, Any] = {}
        for name, value in loaded.items():
            if name == "cache_root":
                value = Path(value)
            elif name == "routing_mode":
                value = RoutingMode(value)
            elif name in ("cacheable_pages", "non_cacheable_operations", "context_params"):
                value = frozenset(value)
            changes[name] = value
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation used by the admin surface and the overrides file."""
        return {
            "cache_root": str(self.cache_root),
            "time_to_live_seconds": self.time_to_live_seconds,
            "use_cache_header": self.use_cache_header,
            "use_compression": self.use_compression,
            "use_statistics": self.use_statistics,
            "cache_css": self.cache_css,
            "lazy_load_images": self.lazy_load_images,
            "counter_window_seconds": self.counter_window_seconds,
            "cacheable_pages": sorted(self.cacheable_pages),
            "non_cacheable_operations": sorted(self.non_cacheable_operations),
            "routing_mode": self.routing_mode.value,
            "context_params": sorted(self.context_params),
            "installed": self.installed,
            "default_locale": self.default_locale,
        }


# CacheSettings field -> Flask config key
_CONFIG_KEYS = {
    "cache_root": "FRONTEND_CACHE_ROOT",
    "time_to_live_seconds": "FRONTEND_CACHE_TTL",
    "use_cache_header": "FRONTEND_CACHE_USE_CACHE_HEADER",
    "use_compression": "FRONTEND_CACHE_USE_COMPRESSION",
    "use_statistics": "FRONTEND_CACHE_USE_STATISTICS",
    "cache_css": "FRONTEND_CACHE_CSS",
    "lazy_load_images": "FRONTEND_CACHE_LAZY_LOAD_IMAGES",
    "counter_window_seconds": "FRONTEND_CACHE_COUNTER_WINDOW",
    "cacheable_pages": "FRONTEND_CACHE_PAGES",
    "non_cacheable_operations": "FRONTEND_CACHE_EXCLUDED_OPS",
    "routing_mode": "FRONTEND_CACHE_ROUTING_MODE",
    "context_params": "FRONTEND_CACHE_CONTEXT_PARAMS",
    "installed": "FRONTEND_CACHE_INSTALLED",
    "default_locale": "FRONTEND_CACHE_DEFAULT_LOCALE",
}


def load_settings_overrides(path: Path) -> Dict[str, Any]:
    """
    Read the admin overrides file, returning an empty mapping when absent or unreadable.
    """
    if not path.is_file():
        return {}

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable cache settings overrides", path=str(path), error=str(e))
        return {}

    if not isinstance(data, dict):
        logger.warning("Ignoring malformed cache settings overrides", path=str(path))
        return {}
    return data


def save_settings_overrides(settings: CacheSettings) -> Path:
    """
    Persist ``settings`` to its overrides file, creating the cache root if needed.

    Raises:
        OSError: When the file cannot be written
    """
    path = settings.overrides_path
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(json.dumps(settings.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
    os.replace(tmp_path, path)

    logger.info("Cache settings overrides saved", path=str(path))
    return path


def load_environment(env_file: Optional[str] = None) -> Optional[str]:
    """Load a .env file without overriding variables already set."""
    env_file = env_file or find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(env_file, override=False)
        logger.debug("Environment file loaded", env_file=env_file)
    return env_file or None


def environment_overrides(pinned: Iterable[str] = ()) -> Dict[str, Any]:
    """Config values set in the process environment, parsed to their config types."""
    pinned = frozenset(pinned)
    return {
        key: parse(os.environ[key])
        for key, parse in ENVIRONMENT_PARSERS.items()
        if key in os.environ and key not in pinned
    }


class BaseConfig:
    """Base Flask configuration shared by every environment."""

    # Keys the environment may not override for this configuration
    ENVIRONMENT_PINNED: FrozenSet[str] = frozenset()

    SECRET_KEY = "change-me"
    TESTING = False
    DEBUG = False

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"

    FRONTEND_CACHE_ENABLED = True
    FRONTEND_CACHE_ROOT = "cache/frontEndCache"
    FRONTEND_CACHE_TTL = 3600
    FRONTEND_CACHE_USE_CACHE_HEADER = True
    FRONTEND_CACHE_USE_COMPRESSION = True
    FRONTEND_CACHE_USE_STATISTICS = True
    FRONTEND_CACHE_CSS = True
    FRONTEND_CACHE_LAZY_LOAD_IMAGES = True
    FRONTEND_CACHE_COUNTER_WINDOW = 10
    FRONTEND_CACHE_PAGES = list(DEFAULT_CACHEABLE_PAGES)
    FRONTEND_CACHE_EXCLUDED_OPS = list(DEFAULT_NON_CACHEABLE_OPERATIONS)
    FRONTEND_CACHE_ROUTING_MODE = RoutingMode.PATH_INFO.value
    FRONTEND_CACHE_CONTEXT_PARAMS = ["journal"]
    FRONTEND_CACHE_INSTALLED = True
    FRONTEND_CACHE_DEFAULT_LOCALE = "en"


class DevelopmentConfig(BaseConfig):
    """Development configuration with console logging."""

    DEBUG = True
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "console"


class TestingConfig(BaseConfig):
    """Testing configuration; the test suite points FRONTEND_CACHE_ROOT at a tmp dir."""

    ENVIRONMENT_PINNED = frozenset({"SECRET_KEY", "LOG_LEVEL", "LOG_FORMAT", "FRONTEND_CACHE_COUNTER_WINDOW"})

    TESTING = True
    SECRET_KEY = "test-secret-key"
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "console"
    FRONTEND_CACHE_COUNTER_WINDOW = 30


class ProductionConfig(BaseConfig):
    """Production configuration requiring an explicit secret key."""

    @classmethod
    def validate(cls) -> None:
        if cls.SECRET_KEY in (None, "", "change-me"):
            raise ConfigurationError("SECRET_KEY must be set in production")


CONFIG_BY_NAME: Dict[str, Type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config(config_name: Optional[str] = None) -> Type[BaseConfig]:
    """
    Resolve a configuration class by name, defaulting to FLASK_ENV.

    The .env file is loaded first; environment values then override the
    class defaults on a subclass, leaving the named class untouched.

    Raises:
        ConfigurationError: When the name is unknown
    """
    load_environment()
    name = (config_name or os.getenv("FLASK_ENV", "production")).lower()

    try:
        config_class = CONFIG_BY_NAME[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown configuration '{name}'",
            errors={"available": sorted(CONFIG_BY_NAME)}
        )

    overrides = environment_overrides(config_class.ENVIRONMENT_PINNED)
    if overrides:
        config_class = type(config_class.__name__, (config_class,), overrides)

    if hasattr(config_class, "validate"):
        config_class.validate()
    return config_class

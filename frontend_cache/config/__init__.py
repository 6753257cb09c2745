"""Configuration package for the front-end cache and its Flask host."""

from .settings import (
    BaseConfig,
    CacheSettings,
    CacheSettingsSchema,
    ConfigurationError,
    DevelopmentConfig,
    ProductionConfig,
    RoutingMode,
    TestingConfig,
    environment_overrides,
    get_config,
    load_environment,
    load_settings_overrides,
    save_settings_overrides,
)

__all__ = [
    "BaseConfig",
    "CacheSettings",
    "CacheSettingsSchema",
    "ConfigurationError",
    "DevelopmentConfig",
    "ProductionConfig",
    "RoutingMode",
    "TestingConfig",
    "environment_overrides",
    "get_config",
    "load_environment",
    "load_settings_overrides",
    "save_settings_overrides",
]

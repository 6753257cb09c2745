"""
Flask Application Factory

Builds a Flask application with the front-end cache mounted in front of its
views:

- environment-specific configuration (``frontend_cache.config``)
- structured logging (structlog)
- Flask-Login, whose ``current_user`` decides whether a request is anonymous
  and which protects the administrative blueprint
- the cache engine with its Prometheus metrics and statistics collaborator
- the ``FrontEndCache`` extension and the admin blueprint

The host registers its own page blueprints on the returned application.

Examples:
    # Development application
    app = create_app('development')

    # Test application with a temporary cache root
    app = create_app('testing', FRONTEND_CACHE_ROOT=str(tmp_path))

    # WSGI deployment
    application = create_app()
"""

import time
from typing import Any, Callable, Optional

import structlog
from flask import Flask
from flask_login import LoginManager
from prometheus_client import CollectorRegistry

from frontend_cache.blueprints import admin_bp
from frontend_cache.cache import (
    CacheMetrics,
    FlaskRequestAdapter,
    FrontEndCache,
    FrontEndCacheEngine,
    LoggingStatisticsRecorder,
    StatisticsRecorder,
)
from frontend_cache.config.settings import CacheSettings, get_config
from frontend_cache.monitoring import setup_structured_logging

logger = structlog.get_logger(__name__)


def create_app(
    config_name: Optional[str] = None,
    statistics_recorder: Optional[StatisticsRecorder] = None,
    user_loader: Optional[Callable[[str], Any]] = None,
    metrics_registry: Optional[CollectorRegistry] = None,
    context_resolver: Optional[Callable[[str], Optional[int]]] = None,
    clock: Callable[[], float] = time.time,
    **config_overrides
) -> Flask:
    """
    Create the Flask application.

    Args:
        config_name: Environment configuration name (development, testing, production)
        statistics_recorder: Statistics collaborator; logs usage events when omitted
        user_loader: Flask-Login user loader for the host's user model
        metrics_registry: Prometheus registry for the cache metrics
        context_resolver: Maps a context path to a context id
        clock: Time source shared by the cache components
        **config_overrides: Additional configuration values

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: If the configuration or the cache settings are invalid
    """
    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    app.config.update(config_overrides)

    setup_structured_logging(app.config['LOG_LEVEL'], app.config['LOG_FORMAT'])

    login_manager = LoginManager()
    login_manager.init_app(app)
    login_manager.user_loader(user_loader or _no_user)

    settings = CacheSettings.from_mapping(app.config)
    engine = FrontEndCacheEngine(
        settings,
        recorder=statistics_recorder or LoggingStatisticsRecorder(),
        metrics=CacheMetrics(metrics_registry),
        clock=clock
    )
    FrontEndCache(app, engine=engine, request_adapter=FlaskRequestAdapter(context_resolver))

    app.register_blueprint(admin_bp)

    logger.info(
        "Flask application created",
        config_name=config_name,
        testing=app.testing,
        cache_enabled=app.config.get('FRONTEND_CACHE_ENABLED', True),
        cache_root=str(settings.cache_root)
    )
    return app


def _no_user(user_id: str) -> None:
    return None

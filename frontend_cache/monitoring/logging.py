"""
Structured logging configuration.

structlog is layered over the standard ``logging`` module so that library
loggers (werkzeug, gunicorn) and the cache's own ``structlog.get_logger``
loggers share one handler configuration. Events are rendered as JSON lines
in production and with the console renderer during development and tests.

Within a request, events carry the HTTP method and path of the request being
served.
"""

import logging
import logging.config
from typing import Callable, Optional

import structlog
from flask import has_request_context, request

APPLICATION_NAME = "frontend_cache"

LOG_FORMATS = ("json", "console")


def create_request_context_processor() -> Callable:
    """
    Create structlog processor adding the current request's method and path.

    Returns:
        Processor function for structlog
    """
    def processor(logger, method_name, event_dict):
        if has_request_context():
            event_dict.setdefault("http_method", request.method)
            event_dict.setdefault("http_path", request.path)
        return event_dict

    return processor


def setup_structured_logging(level: str = "INFO", fmt: str = "json") -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the standard library logging handlers.

    Args:
        level: Root log level name
        fmt: ``json`` or ``console``; anything else falls back to JSON

    Returns:
        The application logger
    """
    level = (level or "INFO").upper()

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        create_request_context_processor(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {
                'format': '%(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': 'ext://sys.stdout'
            }
        },
        'loggers': {
            '': {
                'handlers': ['console'],
                'level': level,
            }
        }
    })

    logger = get_logger()
    logger.info("Structured logging initialized", log_level=level, log_format=fmt)
    return logger


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name or APPLICATION_NAME)


__all__ = [
    'APPLICATION_NAME',
    'LOG_FORMATS',
    'create_request_context_processor',
    'setup_structured_logging',
    'get_logger',
]

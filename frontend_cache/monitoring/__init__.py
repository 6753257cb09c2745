"""Logging setup shared by the application factory and the Gunicorn hooks."""

from .logging import get_logger, setup_structured_logging

__all__ = ['get_logger', 'setup_structured_logging']

"""Flask blueprints registered by the application factory."""

from .admin import admin_bp

__all__ = ['admin_bp']

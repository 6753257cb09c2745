"""
Administrative Blueprint for the front-end cache.

JSON endpoints backing the cache settings form:

- ``GET  /admin/frontend-cache/settings``: current cache policy
- ``PUT  /admin/frontend-cache/settings``: validate, persist and apply a new policy
- ``POST /admin/frontend-cache/clear``: bulk-delete the entries of one or more contexts
- ``GET  /admin/frontend-cache/metrics``: Prometheus exposition of the cache metrics

Every route requires an authenticated user (Flask-Login). Saved settings are
written to the overrides file under the cache root and applied to the
current worker immediately; other workers pick them up on restart.
"""

from typing import Any, List, Optional

import structlog
from flask import Blueprint, Response, jsonify, request
from flask_login import current_user, login_required
from marshmallow import EXCLUDE, Schema, ValidationError, fields
from prometheus_client import CONTENT_TYPE_LATEST

from frontend_cache.cache.response_cache import get_frontend_cache
from frontend_cache.config.settings import ConfigurationError, save_settings_overrides

logger = structlog.get_logger("blueprints.admin")

admin_bp = Blueprint('frontend_cache_admin', __name__, url_prefix='/admin/frontend-cache')


class ContextIdField(fields.Field):
    """A context id; ``null`` or an empty string selects the shared scope."""

    def _deserialize(self, value: Any, attr, data, **kwargs) -> Optional[int]:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise ValidationError("Not a valid context id.")
        try:
            context_id = int(value)
        except (TypeError, ValueError):
            raise ValidationError("Not a valid context id.")
        if context_id < 0:
            raise ValidationError("Not a valid context id.")
        return context_id


class ClearCacheSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    contexts = fields.List(ContextIdField(allow_none=True), load_default=lambda: [None])


def _user_id() -> Optional[str]:
    return getattr(current_user, "id", None)


@admin_bp.route('/settings', methods=['GET'])
@login_required
def get_settings():
    settings = get_frontend_cache().settings
    return jsonify({'status': 'success', 'data': settings.to_dict()})


@admin_bp.route('/settings', methods=['PUT'])
@login_required
def update_settings():
    """
    Replace the cache policy.

    The cache root is fixed at deployment time and cannot be changed here.

    Returns:
        JSON response with the applied settings, 400 on validation errors
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'error': 'Expected a JSON object'}), 400
    payload.pop('cache_root', None)

    extension = get_frontend_cache()
    try:
        settings = extension.settings.with_overrides(payload)
    except ConfigurationError as e:
        return jsonify({'error': 'Invalid input data', 'validation_errors': e.errors}), 400

    try:
        save_settings_overrides(settings)
    except OSError as e:
        logger.error("Failed to persist cache settings", error=str(e), exc_info=True)
        return jsonify({'error': 'Failed to save settings'}), 500

    extension.engine.reconfigure(settings)
    logger.info("Front-end cache settings updated", user_id=_user_id(), settings=settings.to_dict())

    return jsonify({'status': 'success', 'data': settings.to_dict()})


@admin_bp.route('/clear', methods=['POST'])
@login_required
def clear_cache():
    """
    Delete every cached entry of the requested contexts.

    Request body: ``{"contexts": [1, 2, null]}``; defaults to the shared scope.
    """
    try:
        data = ClearCacheSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return jsonify({'error': 'Invalid input data', 'validation_errors': e.messages}), 400

    contexts: List[Optional[int]] = list(dict.fromkeys(data['contexts']))
    removed = get_frontend_cache().engine.clear_many(contexts)

    logger.info("Front-end cache cleared", user_id=_user_id(), contexts=contexts, removed=removed)

    return jsonify({'status': 'success', 'data': {'contexts': contexts, 'removed': removed}})


@admin_bp.route('/metrics', methods=['GET'])
@login_required
def metrics():
    return Response(get_frontend_cache().engine.metrics.export(), content_type=CONTENT_TYPE_LATEST)

"""
Flask integration for the front-end cache.

``FrontEndCache`` follows the Flask extension pattern (``init_app``) and
plugs the engine into the request lifecycle:

- a ``before_request`` hook translates ``flask.request`` into a
  ``CacheRequest`` and asks the engine for a disposition. SERVE answers the
  request from cache, CAPTURE remembers the pending capture on ``g``.
- an ``after_request`` hook hands the rendered response of a pending capture
  to the engine and replaces it with the reply formatted from the new entry.

Views report the entities they render through ``record_render_entities``::

    @bp.route("/article/view/<int:article_id>")
    def view_article(article_id):
        article = load_article(article_id)
        record_render_entities({"article": article, "issue": article.issue}, counted=True)
        return render_template("article.html", article=article)

A host that needs a request handled outside the cache sets
``g.frontend_cache_skip = True`` in a ``before_request`` hook registered
ahead of the extension, or the ``frontend_cache.skip`` WSGI environ key from
middleware.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import structlog
from flask import Flask, Request, Response, current_app, g, has_request_context, request
from flask_login import current_user

from frontend_cache.config.settings import CacheSettings, RoutingMode

from .capture import RenderCapture
from .engine import FrontEndCacheEngine
from .models import CachedReply, CacheRequest, DispositionKind

logger = structlog.get_logger(__name__)

EXTENSION_KEY = "frontend_cache"

_PENDING_ATTR = "_frontend_cache_pending"

SAFE_METHODS = frozenset({"GET", "HEAD"})

# WSGI environ flag set by middleware for requests that must bypass the cache
SKIP_ENVIRON_KEY = "frontend_cache.skip"


@dataclass
class PendingCapture:
    """Capture state kept on ``g`` between the before/after request hooks."""
    request: CacheRequest
    key: str
    capture: RenderCapture


class FlaskRequestAdapter:
    """
    Builds a ``CacheRequest`` from the current Flask request.

    Path-info routing reads ``[context]/page/op/args...`` from the path; query
    routing reads ``page``, ``op`` and ``path`` from the query string.

    Args:
        context_resolver: Maps a context path (first path segment, or the value
            of a context query parameter) to a context id. Without it requests
            belong to the shared scope and the path carries no context segment.
    """

    def __init__(self, context_resolver: Optional[Callable[[str], Optional[int]]] = None):
        self.context_resolver = context_resolver

    def build(self, flask_request: Request, settings: CacheSettings) -> CacheRequest:
        query = flask_request.args.to_dict(flat=True)

        if settings.routing_mode is RoutingMode.QUERY:
            context_id = self._query_context(query, settings)
            page = query.get("page") or None
            operation = query.get("op") or None
            path_args = tuple(segment for segment in query.get("path", "").split("/") if segment)
        else:
            segments = [segment for segment in flask_request.path.split("/") if segment]
            context_id = None
            if self.context_resolver is not None and segments:
                context_id = self.context_resolver(segments.pop(0))
            page = segments[0] if segments else None
            operation = segments[1] if len(segments) > 1 else None
            path_args = tuple(segments[2:])

        return CacheRequest(
            method=flask_request.method,
            path=flask_request.path,
            query=query,
            routing_mode=settings.routing_mode,
            has_body=self._has_body(flask_request),
            authenticated=self._is_authenticated(),
            session_init_suppressed=self._skip_requested(flask_request),
            installed=settings.installed,
            context_id=context_id,
            locale=self._locale(flask_request, settings),
            page=page,
            operation=operation,
            path_args=path_args,
            if_none_match=flask_request.headers.get("If-None-Match"),
            accept_encoding=flask_request.headers.get("Accept-Encoding", ""),
        )

    def _query_context(self, query: Mapping[str, str], settings: CacheSettings) -> Optional[int]:
        if self.context_resolver is None:
            return None
        for name in sorted(settings.context_params):
            if query.get(name):
                return self.context_resolver(query[name])
        return None

    @staticmethod
    def _skip_requested(flask_request: Request) -> bool:
        return bool(g.get("frontend_cache_skip", False) or flask_request.environ.get(SKIP_ENVIRON_KEY))

    @staticmethod
    def _has_body(flask_request: Request) -> bool:
        if flask_request.method not in SAFE_METHODS:
            return True
        return bool(flask_request.content_length) or "Transfer-Encoding" in flask_request.headers

    @staticmethod
    def _is_authenticated() -> bool:
        if getattr(current_app, "login_manager", None) is None:
            return False
        return bool(current_user and current_user.is_authenticated)

    @staticmethod
    def _locale(flask_request: Request, settings: CacheSettings) -> str:
        locale = g.get("locale")
        if locale:
            return str(locale)
        return flask_request.accept_languages.best or settings.default_locale


class FrontEndCache:
    """
    Flask extension serving anonymous GET responses from the on-disk cache.

    Args:
        app: Flask application to initialize immediately
        engine: Preconfigured engine; built from ``app.config`` when omitted
        request_adapter: Translator from ``flask.request`` to ``CacheRequest``
    """

    def __init__(
        self,
        app: Optional[Flask] = None,
        engine: Optional[FrontEndCacheEngine] = None,
        request_adapter: Optional[FlaskRequestAdapter] = None
    ):
        self.engine = engine
        self.request_adapter = request_adapter or FlaskRequestAdapter()

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        if self.engine is None:
            self.engine = FrontEndCacheEngine(CacheSettings.from_mapping(app.config))

        app.extensions[EXTENSION_KEY] = self

        if not app.config.get("FRONTEND_CACHE_ENABLED", True):
            logger.info("Front-end cache disabled by configuration")
            return

        app.before_request(self._before_request)
        app.after_request(self._after_request)

        settings = self.engine.settings
        logger.info(
            "Front-end cache initialized",
            cache_root=str(settings.cache_root),
            routing_mode=settings.routing_mode.value,
            time_to_live_seconds=settings.time_to_live_seconds,
            use_compression=settings.use_compression
        )

    @property
    def settings(self) -> CacheSettings:
        return self.engine.settings

    def _before_request(self) -> Optional[Response]:
        try:
            cache_request = self.request_adapter.build(request, self.engine.settings)
        except Exception as e:
            self.engine.report_failure("adapt", e)
            return None

        disposition = self.engine.handle(cache_request)

        if disposition.kind is DispositionKind.SERVE:
            return make_flask_response(disposition.reply)

        if disposition.kind is DispositionKind.CAPTURE:
            setattr(g, _PENDING_ATTR, PendingCapture(cache_request, disposition.key, disposition.capture))

        return None

    def _after_request(self, response: Response) -> Response:
        pending: Optional[PendingCapture] = g.pop(_PENDING_ATTR, None)
        if pending is None:
            return response

        if response.is_streamed or response.direct_passthrough:
            logger.debug("Streamed response not captured", path=pending.request.path)
            return response

        reply = self.engine.finalize(
            pending.request,
            pending.key,
            pending.capture,
            response.status_code,
            list(response.headers.items()),
            response.get_data()
        )
        if reply is None:
            return response

        replacement = make_flask_response(reply)
        # Cookies belong to this visitor only; they are sent but never stored
        for cookie in response.headers.getlist("Set-Cookie"):
            replacement.headers.add("Set-Cookie", cookie)
        return replacement


def make_flask_response(reply: CachedReply) -> Response:
    return Response(reply.body, status=reply.status_code, headers=reply.headers)


def get_frontend_cache(app: Optional[Flask] = None) -> FrontEndCache:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]


def record_render_entities(bound_entities: Mapping[str, Any], counted: bool = False) -> None:
    """
    Report the entities bound to the page being rendered and whether the view
    was counted by the statistics subsystem. A no-op outside a captured request.
    """
    if not has_request_context():
        return
    pending: Optional[PendingCapture] = g.get(_PENDING_ATTR)
    if pending is None:
        return
    extension = current_app.extensions.get(EXTENSION_KEY)
    if extension is None:
        return
    extension.engine.capture_entities(pending.capture, bound_entities, counted)


__all__ = [
    'FrontEndCache',
    'FlaskRequestAdapter',
    'PendingCapture',
    'make_flask_response',
    'get_frontend_cache',
    'record_render_entities',
]

"""
Front-end cache engine.

Single entry point of the cache, framework agnostic. The host calls:

- ``handle(request)`` before rendering. It returns a ``Disposition``: PASS
  (render normally, no caching), SERVE (reply from cache and stop) or
  CAPTURE (render normally, then hand the output to ``finalize``).
- ``capture_entities(capture, bound_entities, counted)`` from the render
  pipeline, near the end of rendering.
- ``finalize(...)`` with the rendered response of a CAPTURE disposition.

Nothing raised inside the engine reaches the host: unexpected exceptions are
wrapped in ``EngineFailureError``, logged, counted and turned into
pass-through behaviour for the current request.
"""

import time
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple

import structlog

from frontend_cache.config.settings import CacheSettings

from .capture import CapturePipeline, RenderCapture
from .eligibility import explain
from .exceptions import EngineFailureError
from .freshness import FreshnessEngine
from .keys import derive_key
from .models import CachedReply, CacheRequest, Disposition, DispositionKind, NegotiationStatus
from .monitoring import CacheMetrics
from .statistics import StatisticsRecorder, StatisticsReplayer
from .store import CacheStore

logger = structlog.get_logger(__name__)


class FrontEndCacheEngine:
    """
    Orchestrates eligibility, lookup, freshness and capture for each request.

    Args:
        settings: Cache policy, immutable for the lifetime of the worker
        store: Cache store; built from ``settings.cache_root`` when omitted
        recorder: Statistics collaborator used to replay counted views
        metrics: Metrics sink; a private registry is used when omitted
        clock: Callable returning the current UNIX time
    """

    def __init__(
        self,
        settings: CacheSettings,
        store: Optional[CacheStore] = None,
        recorder: Optional[StatisticsRecorder] = None,
        metrics: Optional[CacheMetrics] = None,
        clock: Callable[[], float] = time.time
    ):
        self.clock = clock
        self.metrics = metrics or CacheMetrics()
        self.recorder = recorder
        self.store = store or CacheStore(settings.cache_root, clock=clock, metrics=self.metrics)
        self._configure(settings)

    def _configure(self, settings: CacheSettings) -> None:
        self.settings = settings
        self.replayer = StatisticsReplayer(settings, self.recorder, self.metrics)
        self.freshness = FreshnessEngine(settings, self.replayer, self.clock)
        self.pipeline = CapturePipeline(settings, self.store, self.freshness, self.clock)

    def reconfigure(self, settings: CacheSettings) -> None:
        """Swap in a new policy for subsequent requests."""
        if settings.cache_root != self.settings.cache_root:
            self.store = CacheStore(settings.cache_root, clock=self.clock, metrics=self.metrics)
        self._configure(settings)

        logger.info(
            "Front-end cache reconfigured",
            time_to_live_seconds=settings.time_to_live_seconds,
            use_cache_header=settings.use_cache_header,
            use_compression=settings.use_compression,
            use_statistics=settings.use_statistics
        )

    def handle(self, request: CacheRequest) -> Disposition:
        """
        Decide how the host should answer ``request``.

        Server-side freshness is checked first; client revalidation only
        applies to entries that are still fresh on disk.
        """
        try:
            return self._handle(request)
        except Exception as e:
            self.report_failure("handle", e)
            return Disposition.passthrough()

    def _handle(self, request: CacheRequest) -> Disposition:
        settings = self.settings

        reason = explain(request, settings)
        if reason is not None:
            logger.debug("Request bypasses front-end cache", reason=reason, path=request.path)
            self.metrics.record_lookup("pass")
            return Disposition.passthrough()

        key = derive_key(request, settings.context_params)
        stored = self.store.lookup(key, request.context_id, settings.time_to_live_seconds)

        if stored is None:
            self.metrics.record_lookup("miss")
            return Disposition(DispositionKind.CAPTURE, key=key, capture=RenderCapture())

        with self.metrics.time_serve():
            negotiation = self.freshness.negotiate(request, stored.entry, stored.modified_at)

        outcome = "not_modified" if negotiation.status is NegotiationStatus.FRESH_304 else "hit"
        self.metrics.record_lookup(outcome)
        logger.debug("Serving from front-end cache", key=key, outcome=outcome)

        return Disposition(
            DispositionKind.SERVE,
            key=key,
            reply=CachedReply.from_negotiation(negotiation)
        )

    def capture_entities(
        self,
        capture: Optional[RenderCapture],
        bound_entities: Mapping[str, Any],
        counted: bool
    ) -> None:
        if capture is None:
            return
        try:
            capture.observe(bound_entities, counted)
        except Exception as e:
            self.report_failure("capture_entities", e)

    def finalize(
        self,
        request: CacheRequest,
        key: str,
        capture: Optional[RenderCapture],
        status_code: int,
        headers: Iterable[Tuple[str, str]],
        body: bytes
    ) -> Optional[CachedReply]:
        """
        Commit a rendered response and build the reply to send instead of it.

        Returns:
            The reply, or None when the host response must be sent untouched
        """
        try:
            negotiation = self.pipeline.process(request, key, status_code, headers, body, capture)
        except Exception as e:
            self.report_failure("finalize", e)
            return None

        if negotiation is None:
            return None
        return CachedReply.from_negotiation(negotiation)

    def clear(self, context_id: Optional[int] = None) -> int:
        return self.store.invalidate(context_id)

    def clear_many(self, context_ids: Iterable[Optional[int]]) -> int:
        return self.store.invalidate_many(context_ids)

    def report_failure(self, stage: str, error: Exception) -> EngineFailureError:
        """Log and count an unexpected failure; must be called from an ``except`` block."""
        failure = EngineFailureError(stage, error)
        self.metrics.record_engine_failure(stage)
        logger.error(failure.message, exc_info=True, **failure.details)
        return failure

"""
Usage statistics replay.

When a counted page is served from cache the rendering pipeline never runs,
so the usage event it would have raised must be reproduced from the entity
ids stored in the entry. The statistics subsystem is an injected collaborator
implementing ``StatisticsRecorder``.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog

from frontend_cache.config.settings import CacheSettings

from .models import CacheEntry, CacheRequest
from .monitoring import CacheMetrics

logger = structlog.get_logger(__name__)

# Entity kinds that identify a submission, in lookup order
SUBMISSION_KINDS = ("article", "publishedSubmission", "preprint")


class StatisticsRecorder(ABC):
    """Outbound interface to the statistics subsystem."""

    @abstractmethod
    def record_view(
        self,
        context_id: Optional[int],
        issue_id: Optional[int] = None,
        article_id: Optional[int] = None,
        series_id: Optional[int] = None
    ) -> None:
        """Record one countable view, as a live render would have done."""


class NullStatisticsRecorder(StatisticsRecorder):
    def record_view(self, context_id, issue_id=None, article_id=None, series_id=None) -> None:
        return None


class LoggingStatisticsRecorder(StatisticsRecorder):
    """Emits each replayed view as a structured log event."""

    def __init__(self, logger_name: str = "frontend_cache.statistics"):
        self._logger = structlog.get_logger(logger_name)

    def record_view(self, context_id, issue_id=None, article_id=None, series_id=None) -> None:
        self._logger.info(
            "usage_event",
            context_id=context_id,
            issue_id=issue_id,
            article_id=article_id,
            series_id=series_id
        )


class CallbackStatisticsRecorder(StatisticsRecorder):
    """Adapts a plain callable taking the same keyword arguments."""

    def __init__(self, callback: Callable[..., None]):
        self._callback = callback

    def record_view(self, context_id, issue_id=None, article_id=None, series_id=None) -> None:
        self._callback(
            context_id=context_id,
            issue_id=issue_id,
            article_id=article_id,
            series_id=series_id
        )


class StatisticsReplayer:
    """Replays the usage event of a counted cache entry."""

    def __init__(
        self,
        settings: CacheSettings,
        recorder: Optional[StatisticsRecorder] = None,
        metrics: Optional[CacheMetrics] = None
    ):
        self.settings = settings
        self.recorder = recorder or NullStatisticsRecorder()
        self.metrics = metrics

    def replay(self, request: CacheRequest, entry: CacheEntry) -> bool:
        """
        Inform the statistics subsystem of a view served from cache.

        Returns:
            True when a view was recorded
        """
        if not self.settings.use_statistics or not entry.counted:
            return False

        ids = entry.entity_ids
        article_id = next((ids[kind] for kind in SUBMISSION_KINDS if ids.get(kind)), None)

        try:
            self.recorder.record_view(
                request.context_id,
                issue_id=ids.get("issue"),
                article_id=article_id,
                series_id=ids.get("series"),
            )
        except Exception as e:
            logger.warning(
                "Statistics replay failed",
                error=str(e),
                error_type=type(e).__name__,
                context_id=request.context_id
            )
            return False

        if self.metrics:
            self.metrics.record_statistics_replay()
        return True

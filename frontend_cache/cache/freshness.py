"""
Freshness and client revalidation.

Turns a stored ``CacheEntry`` into the reply for one request:

- ``Cache-Control: public, max-age=<n>, must-revalidate`` and a strong
  ``ETag`` built from the content hash, when header emission is enabled.
  Counted responses cap ``max-age`` at the COUNTER duplicate-click window so
  repeated views inside the window collapse into one browser request, while
  later views reach the server again and are counted again.
- ``304 Not Modified`` when the client's ``If-None-Match`` matches the hash.
- Otherwise the stored body, gunzipped on the fly for clients that do not
  accept gzip, with an exact ``Content-Length``.

Server-side freshness is decided by the store before this module runs; a
missing or expired entry arrives here as None and yields ``STALE``.
"""

import gzip
import time
from typing import Callable, List, Optional, Tuple

import structlog
from werkzeug.datastructures import ETags
from werkzeug.http import parse_accept_header, parse_etags, quote_etag

from frontend_cache.config.settings import CacheSettings

from .models import CacheEntry, CacheRequest, Negotiation, NegotiationStatus, split_header
from .statistics import StatisticsReplayer

logger = structlog.get_logger(__name__)


def client_accepts_gzip(accept_encoding: Optional[str]) -> bool:
    """Whether ``Accept-Encoding`` allows gzip (``q=0`` counts as refused)."""
    if not accept_encoding:
        return False
    return parse_accept_header(accept_encoding).quality("gzip") > 0


def etag_matches(if_none_match: Optional[str], content_hash: str) -> bool:
    """Weak comparison of ``If-None-Match`` against a stored content hash."""
    if not if_none_match:
        return False
    etags: ETags = parse_etags(if_none_match)
    return etags.contains_weak(content_hash)


class FreshnessEngine:
    """
    Computes cache headers and negotiates 304/full responses for stored entries.

    Args:
        settings: Active cache policy
        replayer: Statistics replayer invoked before serving a cached view
        clock: Callable returning the current UNIX time
    """

    def __init__(
        self,
        settings: CacheSettings,
        replayer: StatisticsReplayer,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings
        self.replayer = replayer
        self.clock = clock

    def max_age(self, entry: CacheEntry, cache_date: float) -> int:
        expiry = cache_date + self.settings.time_to_live_seconds
        remaining = int(expiry - self.clock())
        if entry.counted:
            remaining = min(self.settings.counter_window_seconds, remaining)
        return max(0, remaining)

    def cache_control_headers(self, entry: CacheEntry, cache_date: float) -> List[Tuple[str, str]]:
        if not self.settings.use_cache_header:
            return []
        return [
            ("Cache-Control", f"public, max-age={self.max_age(entry, cache_date)}, must-revalidate"),
            ("ETag", quote_etag(entry.content_hash)),
        ]

    def negotiate(
        self,
        request: CacheRequest,
        entry: Optional[CacheEntry],
        cache_date: Optional[float] = None,
        trigger_statistics: bool = True
    ) -> Negotiation:
        """
        Decide between 304, full body and stale for ``entry``.

        Args:
            request: The incoming request
            entry: Fresh entry from the store, None when missing or expired
            cache_date: Date the entry was last (re)validated; defaults to its creation time
            trigger_statistics: Replay usage statistics before answering
        """
        if entry is None:
            return Negotiation(NegotiationStatus.STALE)

        if cache_date is None:
            cache_date = entry.created_at

        headers = [split_header(raw) for raw in entry.headers]
        headers.extend(self.cache_control_headers(entry, cache_date))

        if self.settings.use_cache_header and etag_matches(request.if_none_match, entry.content_hash):
            if trigger_statistics:
                self.replayer.replay(request, entry)
            logger.debug("Client cache still valid", content_hash=entry.content_hash)
            return Negotiation(NegotiationStatus.FRESH_304, 304, headers, b"")

        if trigger_statistics:
            self.replayer.replay(request, entry)

        body = entry.body
        if entry.is_gzipped:
            headers.append(("Vary", "Accept-Encoding"))
            if client_accepts_gzip(request.accept_encoding):
                headers.append(("Content-Encoding", "gzip"))
            else:
                body = gzip.decompress(body)

        headers.append(("Content-Length", str(len(body))))
        return Negotiation(NegotiationStatus.FRESH_BODY, entry.status_code, headers, body)

"""
Capture pipeline for responses rendered on a cache miss.

The host renders the page normally; the rendered output is then handed to
``CapturePipeline.process`` which:

1. leaves non-2xx/3xx responses and host 304s untouched,
2. optionally adds ``loading="lazy"`` to ``<img>`` tags of HTML documents,
3. gzips the body when compression is enabled,
4. builds a ``CacheEntry`` from the body, the headers present at that point
   and the statistics metadata gathered by ``RenderCapture``,
5. commits it through ``CacheStore.commit`` and formats the reply with the
   freshness engine (without replaying statistics, the live render already
   counted the view).

``RenderCapture`` is the per-request accumulator the render pipeline feeds
through ``observe`` near the end of rendering with the template's bound
entities and whether the view was counted.
"""

import gzip
import re
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import structlog

from frontend_cache.config.settings import CacheSettings

from .freshness import FreshnessEngine
from .models import GZIP_MAGIC, CacheEntry, CacheRequest, Negotiation, join_header
from .store import CacheStore

logger = structlog.get_logger(__name__)

# Headers recomputed on every serve or private to one client; never stored
EXCLUDED_HEADERS = frozenset({
    "cache-control",
    "etag",
    "content-encoding",
    "content-length",
    "expires",
    "pragma",
    "set-cookie",
})

_DOCTYPE_HTML = "<!doctype html"
_IMG_TAG = re.compile(r"<img\s+([^>]*)>", re.IGNORECASE)
_LOADING_ATTRIBUTE = re.compile(r"\bloading\s*=", re.IGNORECASE)


def extract_id(value: Any) -> Optional[int]:
    """
    Numeric id of a bound template entity.

    Accepts a plain int, a mapping with an ``id`` key, or an object exposing
    ``get_id()`` or an ``id`` attribute. Anything else yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value

    if isinstance(value, Mapping):
        candidate = value.get("id")
    elif callable(getattr(value, "get_id", None)):
        candidate = value.get_id()
    else:
        candidate = getattr(value, "id", None)

    if candidate is None or isinstance(candidate, bool):
        return None
    try:
        return int(candidate)
    except (TypeError, ValueError):
        return None


# Entity kind -> extraction function, for the template variables a page binds
ENTITY_EXTRACTORS: Dict[str, Callable[[Any], Optional[int]]] = {
    "issue": extract_id,
    "article": extract_id,
    "series": extract_id,
    "publishedSubmission": extract_id,
    "preprint": extract_id,
}


class RenderCapture:
    """Statistics metadata gathered while one response renders."""

    def __init__(self, extractors: Optional[Mapping[str, Callable[[Any], Optional[int]]]] = None):
        self.extractors = dict(ENTITY_EXTRACTORS if extractors is None else extractors)
        self.entity_ids: Dict[str, int] = {}
        self.counted = False

    def observe(self, bound_entities: Mapping[str, Any], counted: bool) -> None:
        """Record the bound entities and counted flag reported by the render pipeline."""
        self.counted = self.counted or bool(counted)

        for kind, extractor in self.extractors.items():
            if kind in self.entity_ids or kind not in bound_entities:
                continue
            entity_id = extractor(bound_entities[kind])
            if entity_id is not None:
                self.entity_ids[kind] = entity_id


def add_lazy_loading(html: str) -> str:
    """Add ``loading="lazy"`` to ``<img>`` tags of an HTML document that lack one."""
    if _DOCTYPE_HTML not in html.lower():
        return html

    def _rewrite(match: "re.Match[str]") -> str:
        attributes = match.group(1)
        if _LOADING_ATTRIBUTE.search(attributes):
            return match.group(0)
        return f'<img loading="lazy" {attributes}>'

    return _IMG_TAG.sub(_rewrite, html)


def storable_headers(headers: Iterable[Tuple[str, str]]) -> Tuple[str, ...]:
    return tuple(
        join_header(name, value)
        for name, value in headers
        if name.lower() not in EXCLUDED_HEADERS
    )


class CapturePipeline:
    """
    Turns a freshly rendered response into a committed cache entry.

    Args:
        settings: Active cache policy
        store: Store the entry is committed to
        freshness: Engine formatting the reply for the new entry
        clock: Callable returning the current UNIX time
    """

    def __init__(
        self,
        settings: CacheSettings,
        store: CacheStore,
        freshness: FreshnessEngine,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings
        self.store = store
        self.freshness = freshness
        self.clock = clock

    def process(
        self,
        request: CacheRequest,
        key: str,
        status_code: int,
        headers: Iterable[Tuple[str, str]],
        body: bytes,
        capture: Optional[RenderCapture] = None
    ) -> Optional[Negotiation]:
        """
        Capture, commit and format one rendered response.

        Returns:
            The negotiated reply, or None when the response must be sent untouched
        """
        # A host 304 has no body worth storing
        if status_code // 100 not in (2, 3) or status_code == 304:
            logger.debug("Response status not cacheable", status_code=status_code, key=key)
            return None

        capture = capture or RenderCapture()
        already_gzipped = body[:2] == GZIP_MAGIC

        if self.settings.lazy_load_images and not already_gzipped:
            body = add_lazy_loading(body.decode("utf-8", "surrogateescape")).encode("utf-8", "surrogateescape")

        # Fixed gzip mtime: identical output must hash identically
        if self.settings.use_compression and not already_gzipped:
            body = gzip.compress(body, mtime=0)

        now = self.clock()
        entry = CacheEntry.build(
            created_at=int(now),
            headers=storable_headers(headers),
            body=body,
            counted=capture.counted,
            entity_ids=capture.entity_ids,
            status_code=status_code,
        )

        self.store.commit(key, request.context_id, entry)

        return self.freshness.negotiate(request, entry, cache_date=now, trigger_statistics=False)

"""
Front-end response cache.

Caches whole rendered responses of anonymous GET requests on the local
filesystem and serves them without running the rendering pipeline.

Package Organization:
- keys.py: cache key derivation and on-disk layout
- eligibility.py: request classification policy
- store.py: locked file store, reads, commits and invalidation
- freshness.py: Cache-Control/ETag emission, 304 and gzip negotiation
- capture.py: output capture, lazy loading, compression and commit
- statistics.py: usage statistics replay for counted views
- engine.py: the dispatcher tying the components together
- response_cache.py: Flask extension and request adapter
- monitoring.py: Prometheus metrics
- exceptions.py: cache error hierarchy

Usage Examples:
    >>> from frontend_cache.cache import FrontEndCache, FrontEndCacheEngine
    >>> from frontend_cache.config import CacheSettings
    >>> engine = FrontEndCacheEngine(CacheSettings(cache_root=Path("/var/cache/site")))
    >>> FrontEndCache(app, engine=engine)
"""

from .capture import ENTITY_EXTRACTORS, CapturePipeline, RenderCapture, add_lazy_loading, extract_id
from .eligibility import explain, is_cacheable, is_css_request
from .engine import FrontEndCacheEngine
from .exceptions import CacheError, CorruptEntryError, EngineFailureError, StorageUnavailableError
from .freshness import FreshnessEngine, client_accepts_gzip, etag_matches
from .keys import derive_key, entry_path, normalize_path, scope_directory
from .models import (
    STRUCTURE_VERSION,
    CachedReply,
    CacheEntry,
    CacheRequest,
    CommitResult,
    Disposition,
    DispositionKind,
    Negotiation,
    NegotiationStatus,
    compute_content_hash,
)
from .monitoring import CacheMetrics
from .response_cache import FlaskRequestAdapter, FrontEndCache, get_frontend_cache, record_render_entities
from .statistics import (
    CallbackStatisticsRecorder,
    LoggingStatisticsRecorder,
    NullStatisticsRecorder,
    StatisticsRecorder,
    StatisticsReplayer,
)
from .store import CacheStore, StoredEntry

__all__ = [
    # Engine and Flask integration
    'FrontEndCacheEngine',
    'FrontEndCache',
    'FlaskRequestAdapter',
    'get_frontend_cache',
    'record_render_entities',

    # Components
    'CacheStore',
    'StoredEntry',
    'FreshnessEngine',
    'CapturePipeline',
    'RenderCapture',
    'StatisticsReplayer',
    'StatisticsRecorder',
    'NullStatisticsRecorder',
    'LoggingStatisticsRecorder',
    'CallbackStatisticsRecorder',
    'CacheMetrics',

    # Functions
    'derive_key',
    'normalize_path',
    'scope_directory',
    'entry_path',
    'explain',
    'is_cacheable',
    'is_css_request',
    'add_lazy_loading',
    'extract_id',
    'client_accepts_gzip',
    'etag_matches',
    'compute_content_hash',
    'ENTITY_EXTRACTORS',

    # Data model
    'STRUCTURE_VERSION',
    'CacheEntry',
    'CacheRequest',
    'CachedReply',
    'CommitResult',
    'Disposition',
    'DispositionKind',
    'Negotiation',
    'NegotiationStatus',

    # Exceptions
    'CacheError',
    'StorageUnavailableError',
    'CorruptEntryError',
    'EngineFailureError',
]

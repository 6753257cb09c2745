"""
Cache key derivation and on-disk layout.

A cache key is a deterministic function of everything that makes two
responses interchangeable: routing mode, normalized path (plus the
page/operation/path triple in query routing mode), the allow-listed query
parameters in sorted order, the active locale and the context (tenant).
Stylesheet requests key on their whole query.

Layout::

    <cache_root>/<key>.cache                 shared/site scope
    <cache_root>/<context_id>/<key>.cache    one directory per context
"""

import hashlib
import re
from pathlib import Path
from typing import Iterable, Optional

from frontend_cache.config.settings import RoutingMode

from .models import CacheRequest

ENTRY_EXTENSION = ".cache"

QUERY_ROUTING_PARAMS = frozenset({"page", "op", "path"})

# Path-info marker of the component router
COMPONENT_ROUTER_MARKER = "$$$call$$$"
CSS_PATH_FRAGMENT = f"{COMPONENT_ROUTER_MARKER}/page/page/css"
CSS_COMPONENT = "page.page"
CSS_OPERATION = "css"

_KEY_DELIMITER = "\x1f"
_SLASHES = re.compile(r"/{2,}")


def is_css_request(request: CacheRequest) -> bool:
    """Whether the request targets the stylesheet-serving pseudo page."""
    if request.routing_mode is RoutingMode.QUERY:
        return (request.query.get("component"), request.query.get("op")) == (CSS_COMPONENT, CSS_OPERATION)
    return CSS_PATH_FRAGMENT in (request.path or "")


def normalize_path(path: Optional[str]) -> str:
    """Collapse repeated slashes and drop the trailing slash; empty becomes ``index``."""
    path = _SLASHES.sub("/", path or "").strip("/")
    return path or "index"


def allowed_query_params(routing_mode: RoutingMode, context_params: Iterable[str]) -> frozenset:
    """Query parameter names a cacheable request may carry in ``routing_mode``."""
    if routing_mode is RoutingMode.QUERY:
        return frozenset(context_params) | QUERY_ROUTING_PARAMS
    return frozenset()


def derive_key(request: CacheRequest, context_params: Iterable[str] = ()) -> str:
    """
    Compute the cache key for an eligible request.

    Only allow-listed query parameters take part in the key; the classifier
    has already rejected requests carrying anything else. Stylesheet requests
    are eligible with any query, so every parameter keys them.
    """
    if is_css_request(request):
        names = sorted(request.query)
    else:
        allowed = allowed_query_params(request.routing_mode, context_params)
        names = [name for name in sorted(request.query) if name in allowed]
    query = "&".join(f"{name}={request.query[name]}" for name in names)

    if request.routing_mode is RoutingMode.QUERY:
        route = "/".join([
            request.page or "index",
            request.operation or "index",
            "/".join(request.path_args),
        ])
    else:
        route = ""

    parts = [
        request.routing_mode.value,
        normalize_path(request.path),
        route,
        query,
        request.locale or "",
        "" if request.context_id is None else str(request.context_id),
    ]
    return hashlib.md5(_KEY_DELIMITER.join(parts).encode("utf-8"), usedforsecurity=False).hexdigest()


def scope_directory(root: Path, context_id: Optional[int]) -> Path:
    """Directory holding every entry of one context (``root`` for the shared scope)."""
    root = Path(root)
    if context_id is None or context_id == 0:
        return root
    return root / str(int(context_id))


def entry_path(root: Path, context_id: Optional[int], key: str) -> Path:
    return scope_directory(root, context_id) / f"{key}{ENTRY_EXTENSION}"

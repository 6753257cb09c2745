"""
Front-end cache data model.

Value objects exchanged between the cache components. The engine core never
touches framework objects: the Flask adapter turns ``flask.request`` into a
``CacheRequest`` and turns a ``CachedReply`` back into a ``flask.Response``.

On-disk format:
    One file per cache key holding a single JSON document::

        {
            "version": 1,
            "time": 1700000000,
            "status": 200,
            "headers": ["Content-Type: text/html; charset=utf-8", ...],
            "hash": "2873914233",
            "counted": true,
            "entities": {"article": 12, "issue": 3},
            "content": "<base64 body>"
        }

    Any document whose ``version`` differs from ``STRUCTURE_VERSION`` is
    treated as absent, which lets the format change without a migration.
"""

import base64
import binascii
import json
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from frontend_cache.config.settings import RoutingMode

from .exceptions import CorruptEntryError

# Bump whenever the serialized structure changes
STRUCTURE_VERSION = 1

GZIP_MAGIC = b"\x1f\x8b"


def compute_content_hash(body: bytes) -> str:
    """Unsigned CRC-32 of ``body`` in decimal, used as the ETag value."""
    return str(zlib.crc32(body) & 0xFFFFFFFF)


@dataclass(frozen=True)
class CacheEntry:
    """
    The unit of storage: one fully rendered response.

    Immutable once committed. Revalidation only refreshes the file's
    modification time, never the entry itself.
    """
    created_at: int
    headers: Tuple[str, ...]
    body: bytes
    content_hash: str
    counted: bool = False
    entity_ids: Mapping[str, int] = field(default_factory=dict)
    status_code: int = 200
    structure_version: int = STRUCTURE_VERSION

    @classmethod
    def build(
        cls,
        created_at: int,
        headers: Tuple[str, ...],
        body: bytes,
        counted: bool = False,
        entity_ids: Optional[Mapping[str, int]] = None,
        status_code: int = 200
    ) -> "CacheEntry":
        """Create an entry whose ``content_hash`` is computed over ``body``."""
        return cls(
            created_at=int(created_at),
            headers=tuple(headers),
            body=body,
            content_hash=compute_content_hash(body),
            counted=bool(counted),
            entity_ids=dict(entity_ids or {}),
            status_code=int(status_code),
        )

    @property
    def is_gzipped(self) -> bool:
        return self.body[:2] == GZIP_MAGIC

    def to_bytes(self) -> bytes:
        document = {
            "version": self.structure_version,
            "time": self.created_at,
            "status": self.status_code,
            "headers": list(self.headers),
            "hash": self.content_hash,
            "counted": self.counted,
            "entities": dict(self.entity_ids),
            "content": base64.b64encode(self.body).decode("ascii"),
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "CacheEntry":
        """
        Decode a serialized entry.

        Raises:
            CorruptEntryError: When the payload cannot be decoded, the version
                does not match ``STRUCTURE_VERSION`` or the hash does not match
                the body
        """
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise CorruptEntryError("Cache entry is not valid JSON", STRUCTURE_VERSION, cause=e)

        if not isinstance(document, dict):
            raise CorruptEntryError("Cache entry is not a JSON object", STRUCTURE_VERSION)

        version = document.get("version")
        if version != STRUCTURE_VERSION:
            raise CorruptEntryError(
                "Cache entry structure version mismatch",
                expected_version=STRUCTURE_VERSION,
                found_version=version
            )

        try:
            body = base64.b64decode(document["content"], validate=True)
            entry = cls(
                created_at=int(document["time"]),
                headers=tuple(str(header) for header in document["headers"]),
                body=body,
                content_hash=str(document["hash"]),
                counted=bool(document.get("counted", False)),
                entity_ids={str(k): int(v) for k, v in (document.get("entities") or {}).items()},
                status_code=int(document.get("status", 200)),
                structure_version=version,
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise CorruptEntryError("Cache entry has missing or invalid fields", STRUCTURE_VERSION, version, e)

        if entry.content_hash != compute_content_hash(body):
            raise CorruptEntryError("Cache entry hash does not match its content", STRUCTURE_VERSION, version)

        return entry


@dataclass(frozen=True)
class CacheRequest:
    """
    Framework-agnostic view of an incoming request.

    ``page`` and ``operation`` are resolved by the host adapter; ``path_args``
    is the remainder of the route (``path`` in query routing mode).
    """
    method: str = "GET"
    path: str = "/"
    query: Mapping[str, str] = field(default_factory=dict)
    routing_mode: RoutingMode = RoutingMode.PATH_INFO
    has_body: bool = False
    authenticated: bool = False
    session_init_suppressed: bool = False
    installed: bool = True
    context_id: Optional[int] = None
    locale: str = "en"
    page: Optional[str] = None
    operation: Optional[str] = None
    path_args: Tuple[str, ...] = ()
    if_none_match: Optional[str] = None
    accept_encoding: str = ""


class CommitResult(str, Enum):
    """Outcome of ``CacheStore.commit``."""
    WRITTEN = "written"             # entry rewritten under an exclusive lock
    REVALIDATED = "revalidated"     # same hash on disk, modification time refreshed
    CONTENDED = "contended"         # another writer holds the lock, not persisted
    FAILED = "failed"               # storage unavailable, not persisted


class NegotiationStatus(str, Enum):
    FRESH_304 = "fresh_304"
    FRESH_BODY = "fresh_body"
    STALE = "stale"


@dataclass
class Negotiation:
    """Result of freshness/revalidation: what to send for a given entry."""
    status: NegotiationStatus
    status_code: int = 200
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @property
    def is_fresh(self) -> bool:
        return self.status is not NegotiationStatus.STALE


@dataclass
class CachedReply:
    """A complete HTTP reply produced by the engine."""
    status_code: int
    headers: List[Tuple[str, str]]
    body: bytes

    @classmethod
    def from_negotiation(cls, negotiation: Negotiation) -> "CachedReply":
        return cls(negotiation.status_code, list(negotiation.headers), negotiation.body)


class DispositionKind(str, Enum):
    PASS = "pass"           # ineligible, leave the request untouched
    SERVE = "serve"         # reply from cache and stop
    CAPTURE = "capture"     # render normally, then capture the output


@dataclass
class Disposition:
    """Decision returned by ``FrontEndCacheEngine.handle`` for one request."""
    kind: DispositionKind
    key: Optional[str] = None
    reply: Optional[CachedReply] = None
    capture: Optional[Any] = None

    @classmethod
    def passthrough(cls) -> "Disposition":
        return cls(DispositionKind.PASS)


def split_header(raw: str) -> Tuple[str, str]:
    """Split a raw ``"Name: value"`` header string."""
    name, _, value = raw.partition(":")
    return name.strip(), value.strip()


def join_header(name: str, value: str) -> str:
    return f"{name}: {value}"

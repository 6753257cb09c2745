"""
On-disk cache store with advisory file locking.

``CacheStore`` exclusively owns the cache files. Every operation degrades to
cache-miss behaviour on storage failure: reads return None, commits report
``CommitResult.FAILED``, and the failure is logged and counted but never
raised to the caller.

Concurrency protocol (POSIX ``flock``, one lock per cache file, no global lock):

- Readers take a shared lock before reading, so they never observe a file
  that is being truncated or rewritten.
- Writers open the file without truncating it, take a shared lock and
  re-read the current entry. When its hash equals the new entry's hash the
  content is unchanged: the lock is released and only the modification time
  is refreshed (revalidation).
- Otherwise the writer tries a non-blocking exclusive lock. If it is granted,
  the file is truncated, rewritten, flushed and fsynced before the lock is
  released. If it is refused another request is already rewriting the same
  key; the commit is skipped and a later request persists the content.

Freshness is judged from the file's modification time, which the store sets
from its injected clock on every write and revalidation.
"""

import fcntl
import os
import time
from pathlib import Path
from typing import Callable, Iterable, NamedTuple, Optional

import structlog

from .exceptions import CorruptEntryError, StorageUnavailableError
from .keys import ENTRY_EXTENSION, entry_path, scope_directory
from .models import CacheEntry, CommitResult
from .monitoring import CacheMetrics

logger = structlog.get_logger(__name__)


class StoredEntry(NamedTuple):
    entry: CacheEntry
    modified_at: float


class CacheStore:
    """
    Filesystem-backed store holding one serialized ``CacheEntry`` per key.

    Args:
        root: Cache root directory; contexts get one sub-directory each
        clock: Callable returning the current UNIX time
        metrics: Optional metrics sink for storage errors and commit results
    """

    def __init__(
        self,
        root: Path,
        clock: Callable[[], float] = time.time,
        metrics: Optional[CacheMetrics] = None
    ):
        self.root = Path(root)
        self.clock = clock
        self.metrics = metrics

    def path_for(self, key: str, context_id: Optional[int] = None) -> Path:
        return entry_path(self.root, context_id, key)

    def read(self, key: str, context_id: Optional[int] = None) -> Optional[CacheEntry]:
        """Load the entry stored under ``key`` or None when absent, unreadable or corrupt."""
        return self._load(self.path_for(key, context_id))

    def read_if_fresh(
        self,
        key: str,
        context_id: Optional[int],
        ttl_seconds: int
    ) -> Optional[CacheEntry]:
        """As ``read``, but None once ``modified_at + ttl_seconds`` is not in the future."""
        stored = self.lookup(key, context_id, ttl_seconds)
        return stored.entry if stored else None

    def lookup(
        self,
        key: str,
        context_id: Optional[int],
        ttl_seconds: int
    ) -> Optional[StoredEntry]:
        """
        Fresh entry together with the modification time used as its cache date.
        """
        path = self.path_for(key, context_id)
        modified_at = self._modified_at(path)
        if modified_at is None:
            return None

        if modified_at + ttl_seconds <= self.clock():
            return None

        entry = self._load(path)
        if entry is None:
            return None
        return StoredEntry(entry, modified_at)

    def modified_at(self, key: str, context_id: Optional[int] = None) -> Optional[float]:
        return self._modified_at(self.path_for(key, context_id))

    def commit(self, key: str, context_id: Optional[int], entry: CacheEntry) -> CommitResult:
        """
        Persist ``entry`` following the shared-then-exclusive locking protocol.

        Returns:
            The ``CommitResult`` describing what happened on disk
        """
        path = self.path_for(key, context_id)
        result = self._commit(path, entry)

        if self.metrics:
            self.metrics.record_commit(result.value)
        return result

    def invalidate(self, context_id: Optional[int] = None) -> int:
        """
        Delete every entry of one context scope (``None`` for the shared scope).

        Per-file failures are logged and skipped.

        Returns:
            Number of files removed
        """
        directory = scope_directory(self.root, context_id)
        if not directory.is_dir():
            return 0

        removed = 0
        for path in directory.glob(f"*{ENTRY_EXTENSION}"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                self._storage_failure("invalidate", path, e)

        if self.metrics:
            self.metrics.record_invalidation(removed)

        logger.info(
            "Front-end cache invalidated",
            context_id=context_id,
            directory=str(directory),
            removed=removed
        )
        return removed

    def invalidate_many(self, context_ids: Iterable[Optional[int]]) -> int:
        return sum(self.invalidate(context_id) for context_id in context_ids)

    def _commit(self, path: Path, entry: CacheEntry) -> CommitResult:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            self._storage_failure("commit", path, e)
            return CommitResult.FAILED

        with os.fdopen(fd, "r+b") as handle:
            try:
                fcntl.flock(fd, fcntl.LOCK_SH)

                existing = self._decode(handle.read(), path)
                if existing is not None and existing.content_hash == entry.content_hash:
                    fcntl.flock(fd, fcntl.LOCK_UN)
                    self._touch(path)
                    logger.debug("Cache entry revalidated", path=str(path), content_hash=entry.content_hash)
                    return CommitResult.REVALIDATED

                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.debug("Cache entry is locked by another writer, skipping commit", path=str(path))
                    return CommitResult.CONTENDED

                handle.seek(0)
                handle.truncate(0)
                handle.write(entry.to_bytes())
                handle.flush()
                os.fsync(fd)
                self._touch(path)

                logger.debug(
                    "Cache entry written",
                    path=str(path),
                    content_hash=entry.content_hash,
                    size=len(entry.body)
                )
                return CommitResult.WRITTEN

            except OSError as e:
                self._storage_failure("commit", path, e)
                return CommitResult.FAILED
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)

    def _load(self, path: Path) -> Optional[CacheEntry]:
        try:
            with open(path, "rb") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_SH)
                try:
                    raw = handle.read()
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            return None
        except OSError as e:
            self._storage_failure("read", path, e)
            return None

        return self._decode(raw, path)

    def _decode(self, raw: bytes, path: Path) -> Optional[CacheEntry]:
        # A file created by a writer that lost the lock race stays empty
        if not raw:
            return None

        try:
            return CacheEntry.from_bytes(raw)
        except CorruptEntryError as e:
            if self.metrics:
                self.metrics.record_corrupt_entry()
            logger.warning("Ignoring unreadable cache entry", path=str(path), **e.details)
            return None

    def _modified_at(self, path: Path) -> Optional[float]:
        try:
            return path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            self._storage_failure("stat", path, e)
            return None

    def _touch(self, path: Path) -> None:
        now = self.clock()
        os.utime(path, (now, now))

    def _storage_failure(self, operation: str, path: Path, error: OSError) -> None:
        failure = StorageUnavailableError(
            "Front-end cache storage unavailable",
            path=str(path),
            operation=operation,
            os_error=error
        )
        if self.metrics:
            self.metrics.record_storage_error(operation)
        logger.warning(failure.message, **failure.details)

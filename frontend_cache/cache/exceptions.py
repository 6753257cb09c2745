"""
Front-end cache exception classes.

Error taxonomy for the response cache engine. None of these errors is ever
surfaced to the end user: storage and decoding failures degrade to cache-miss
behaviour, and anything unexpected raised inside the dispatcher hook is caught
at the hook boundary so the host application renders the page uncached.

Taxonomy:
- StorageUnavailableError: filesystem read/write/lock failure
- CorruptEntryError: undecodable cache file or structure version mismatch
- EngineFailureError: any other failure inside the cache-check hook

Lock contention has no exception class. Losing the race for an exclusive
lock is reported through ``CommitResult.CONTENDED``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class CacheError(Exception):
    """
    Base exception class for all front-end cache errors.

    Attributes:
        message: Human-readable error description
        error_code: Standardized error code for monitoring and alerting
        details: Additional error context for debugging and observability
        timestamp: Error occurrence timestamp for correlation with logs
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CACHE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for structured logging and admin responses.

        Returns:
            Dictionary containing error information
        """
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class StorageUnavailableError(CacheError):
    """
    Raised when the cache directory or a cache file cannot be read, written or locked.

    Attributes:
        path: Filesystem path involved in the failed operation
        operation: Store operation that failed (read, commit, invalidate)
        os_error: Original OSError for diagnostics
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        operation: Optional[str] = None,
        os_error: Optional[BaseException] = None
    ):
        details = {
            "path": path,
            "operation": operation,
            "os_error_type": type(os_error).__name__ if os_error else None,
            "os_error_message": str(os_error) if os_error else None
        }

        super().__init__(
            message=message,
            error_code="CACHE_STORAGE_UNAVAILABLE",
            details=details
        )

        self.path = path
        self.operation = operation
        self.os_error = os_error


class CorruptEntryError(CacheError):
    """
    Raised when a cache file cannot be decoded or carries an unexpected structure version.

    Attributes:
        expected_version: Structure version the running engine understands
        found_version: Structure version found on disk, if any
    """

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        found_version: Optional[Any] = None,
        cause: Optional[BaseException] = None
    ):
        details = {
            "expected_version": expected_version,
            "found_version": found_version,
            "cause": repr(cause) if cause else None
        }

        super().__init__(
            message=message,
            error_code="CACHE_CORRUPT_ENTRY",
            details=details
        )

        self.expected_version = expected_version
        self.found_version = found_version


class EngineFailureError(CacheError):
    """
    Wraps an unexpected exception caught at the dispatcher hook boundary.

    Attributes:
        stage: Engine stage that failed (handle, finalize, capture_entities)
        original: The exception that was caught
    """

    def __init__(self, stage: str, original: BaseException):
        super().__init__(
            message=f"Unexpected failure in front-end cache during {stage}",
            error_code="CACHE_ENGINE_FAILURE",
            details={
                "stage": stage,
                "error_type": type(original).__name__,
                "error_message": str(original)
            }
        )

        self.stage = stage
        self.original = original

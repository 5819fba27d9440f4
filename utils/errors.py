"""
Error Taxonomy - Sync Engine Exceptions

Defines the exception hierarchy shared by the syncer app and utilities.

Propagation:
- ConfigError, FatalFetchError and SyncInterrupted terminate a run
- TransientFetchError / RateLimitedError are retried by the backoff retrier
- ParseError and RecordShapeError are recovered where they are raised
"""

from typing import Any, Optional


class SyncError(Exception):
    """Base exception for all sync engine errors."""

    pass


class ConfigError(SyncError):
    """Required configuration is missing or invalid."""

    pass


class TransientFetchError(SyncError):
    """A page request failed in a way that may succeed on retry."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TransientFetchError):
    """Remote source answered with a rate-limit status."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class FatalFetchError(SyncError):
    """A page request exhausted its retry budget."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class ParseError(SyncError):
    """A persisted state file could not be decoded."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class RecordShapeError(SyncError):
    """A raw remote record cannot be normalized."""

    def __init__(self, message: str, record: Any = None) -> None:
        super().__init__(message)
        self.record = record


class SyncInterrupted(SyncError):
    """The run was cancelled at a page boundary after flushing its state."""

    def __init__(self, last_completed_page: int) -> None:
        super().__init__(f"Sync interrupted after page {last_completed_page}")
        self.last_completed_page = last_completed_page

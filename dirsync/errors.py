"""Exception taxonomy for directory sync cycles."""

from __future__ import annotations

from typing import Optional


class DirectorySyncError(Exception):
    """Base class for every error that aborts (or rejects) a sync cycle."""


class TransportError(DirectorySyncError):
    """Network failure or non-success HTTP status from the provider."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(TransportError):
    """HTTP 429. Retrying is left to the caller."""

    def __init__(self, message: str, reset_at: Optional[int] = None) -> None:
        super().__init__(message, status_code=429)
        self.reset_at = reset_at


class AuthError(DirectorySyncError):
    """The provider rejected our credential (401/403)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(DirectorySyncError):
    """A page body could not be decoded into records."""


class CursorError(DirectorySyncError):
    """Missing or unusable continuation link. Treated as end of pages."""


class SyncCancelledError(DirectorySyncError):
    """The caller cancelled the cycle."""


class SyncInProgressError(DirectorySyncError):
    """Another cycle is already running on this provider instance."""


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""

"""Exceptions raised by the sync pipelines."""

from typing import Optional


class SyncError(Exception):
    """Base class for sync pipeline errors."""


class ConfigurationError(SyncError):
    """Shop credentials are missing or unusable. Fatal, raised before any fetch."""


class RemoteTransientError(SyncError):
    """Network failure, timeout or 5xx from the marketplace API."""


class RemoteLogicalError(SyncError):
    """The marketplace API answered with a business error."""

    def __init__(self, error_code: str, message: Optional[str] = None):
        self.error_code = error_code
        self.remote_message = message
        super().__init__(f"{error_code}: {message}" if message else error_code)


class PersistenceError(SyncError):
    """A write to the local store failed."""


class SyncInProgressError(SyncError):
    """Another run already holds the claim for this shop and user."""


def public_error(error: Exception) -> str:
    """Message safe to return to API callers.

    Sync errors carry their own short message. Anything else (driver errors
    with SQL text and bound parameters, for instance) is reduced to its type
    and should be logged in full by the caller.
    """
    if isinstance(error, SyncError):
        return str(error)
    return f"Unexpected {type(error).__name__}, see server logs"

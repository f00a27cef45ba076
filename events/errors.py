"""Exceptions raised by the event synchronization layer."""


class SyncError(Exception):
    """Base exception for event storage and sync errors."""
    pass


class RemoteError(SyncError):
    """The remote store did not complete an operation."""
    pass


class RemoteUnavailable(RemoteError):
    """Network failure, timeout, rate limit or server error. Transient."""
    pass


class RemoteRejected(RemoteError):
    """The remote store refused the request (validation, auth, not found)."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class LocalStoreCorrupt(SyncError):
    """Persisted cache content could not be parsed."""
    pass


class InvalidRecord(SyncError):
    """A stored record cannot be decoded into an Event."""
    pass


class LocalStoreError(SyncError):
    """The storage primitive behind the local cache failed to read or write."""
    pass

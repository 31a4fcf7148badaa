"""Exception types raised by sync collaborators."""
from typing import Optional


class SyncError(Exception):
    """Base class for calendar relay errors."""


class ConfigError(SyncError):
    """Missing or invalid configuration."""


class FetchError(SyncError):
    """The source calendar could not be read for a window."""

    def __init__(self, message: str, window: Optional[tuple] = None):
        super().__init__(message)
        self.window = window


class StorageError(SyncError):
    """The dedup store could not be opened, read or written."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        super().__init__(message)
        self.event_id = event_id


class NotifyError(SyncError):
    """A notification could not be delivered."""


class ReplicationError(SyncError):
    """A single event could not be created in the replica calendar."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        super().__init__(message)
        self.event_id = event_id

"""
Exceptions raised by the synchronization pipeline.
"""


class SyncError(Exception):
    """Base class for pipeline errors."""


class TransientNetworkError(SyncError):
    """A remote service failed in a way that may succeed on retry."""


class RateLimitError(TransientNetworkError):
    """The remote service answered HTTP 429."""


class SourceNotFoundError(SyncError):
    """The requested dump does not exist (yet) on the publisher side."""


class MalformedDumpError(SyncError):
    """A dump file could not be parsed as XML."""


class PersistenceError(SyncError):
    """A statement against the store failed."""


class CheckpointIOError(SyncError):
    """The checkpoint file could not be written. Aborts the run."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Base class for object storage failures."""

    reason = "StorageError"


class ObjectNotFound(StorageError):
    """Raised when no committed object exists for an id."""

    reason = "NotFound"


class WriteFailure(StorageError):
    """Raised when the backing medium rejects or fails a chunk write."""

    reason = "WriteFailure"


class ReadFailure(StorageError):
    """Raised when the backing medium fails while an object is being streamed."""

    reason = "ReadFailure"


class StoreUnavailable(StorageError):
    """Raised when the backing medium cannot be reached at all."""

    reason = "StoreUnavailable"


class RangeNotSatisfiable(StorageError):
    """Raised when a requested byte range lies outside the object."""

    reason = "RangeNotSatisfiable"

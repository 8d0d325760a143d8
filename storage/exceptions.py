"""Exceptions for the storage layer.

These are absorbed at the StorageManager boundary: public methods log them,
record the last one on ``StorageManager.last_error`` and return a failure
value instead of raising.
"""


class StorageError(Exception):
    """Base class for storage errors."""


class StorageUnavailableError(StorageError):
    """The storage mechanism is absent or disabled."""


class QuotaExceededError(StorageError):
    """A write would exceed the storage capacity."""

    def __init__(self, requested: int, quota: int):
        self.requested = requested
        self.quota = quota
        super().__init__(
            f"Storage quota exceeded: {requested} bytes requested, quota is {quota} bytes"
        )


class CorruptDataError(StorageError):
    """Stored bytes could not be decoded."""

    def __init__(self, key: str, raw: str, reason: str):
        self.key = key
        self.raw = raw
        super().__init__(f"Corrupted data under '{key}': {reason}")


class MalformedImportError(StorageError):
    """An import payload or backup lacks its required fields."""


class BackupReadError(StorageError):
    """A backup file could not be read."""

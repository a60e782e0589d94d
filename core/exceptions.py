"""Typed exceptions for invoice history storage."""


class HistoryError(Exception):
    """Base class for invoice history errors."""


class StorageError(HistoryError):
    """The backing medium failed. Wraps the backend's own exception."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{message} (key={key!r})")


class StorageReadError(StorageError):
    """
    Stored value could not be read.

    The history store recovers from this as an empty collection.
    """


class StorageWriteError(StorageError):
    """
    Value could not be written (disk full, permissions, connection lost).

    Writes replace the whole value, so the previously stored value is intact.
    """

"""
Change notifications for invoice history.

Events deliberately carry no snapshot data: a listener that receives one
must re-read the history. They may also arrive when nothing actually
changed (e.g. another context rewrote identical content), so handlers must
be idempotent.

- InvoiceHistoryUpdated: this store wrote the history
- StorageChanged: the backing medium reports a change to a key, possibly
  made by another process sharing the same storage
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class HistoryEvent:
    """Base class for all history events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InvoiceHistoryUpdated(HistoryEvent):
    """The history was written by this store (save or status change)."""
    name: str = "invoice-history-updated"

    @classmethod
    def create(cls, name: str | None = None) -> "InvoiceHistoryUpdated":
        if name is None:
            return cls()
        return cls(name=name)


@dataclass(frozen=True)
class StorageChanged(HistoryEvent):
    """
    A key in the backing storage changed.

    key is None when the backend can't tell which key changed (treat as
    "everything may have changed").
    """
    key: str | None = None

    @classmethod
    def create(cls, key: str | None) -> "StorageChanged":
        return cls(key=key)

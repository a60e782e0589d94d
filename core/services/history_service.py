"""
Invoice history store.

Keeps the last few invoices the user generated, newest first, under a
single storage key. Re-generating the same invoice without changes updates
the newest entry instead of adding a duplicate.

This is a convenience cache, not a system of record: corrupt or unreadable
storage reads as an empty history and failed writes are logged, never
raised, so nothing here can abort document generation.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from clients.storage import StorageBackend
from core.config import HistoryConfig
from core.event_bus import EventBus
from core.events import HistoryEvent, InvoiceHistoryUpdated, StorageChanged
from core.exceptions import StorageReadError, StorageWriteError
from core.models import (
    InvoicePaymentStatus,
    InvoiceSnapshotData,
    Snapshot,
    StoredSnapshot,
    calculate_total,
    resolve_title,
)
from core.status import derive_status
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class InvoiceHistoryStore:
    """
    Bounded, deduplicated history of generated invoices.

    Usage:
        store = InvoiceHistoryStore(MemoryStorage(), EventBus())
        unsubscribe = store.subscribe(lambda event: refresh(store.list()))
        store.save(data)
        store.set_status(store.latest().id, InvoicePaymentStatus.PAID)
    """

    def __init__(
        self,
        storage: StorageBackend,
        event_bus: EventBus,
        config: HistoryConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.storage = storage
        self.event_bus = event_bus
        self.config = config or HistoryConfig()
        self.clock = clock
        self._unwatch = storage.watch(self._on_storage_change)

    # =========================================================================
    # READ
    # =========================================================================

    def _read_history(self) -> list[StoredSnapshot]:
        """Read and normalize the stored history. Never raises."""
        key = self.config.storage_key
        try:
            raw = self.storage.get_item(key)
        except StorageReadError:
            logger.warning("Unable to read invoice history", exc_info=True)
            return []

        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Unable to parse invoice history: %s", e)
            return []

        if not isinstance(entries, list):
            logger.warning("Invoice history is not a list (got %s)", type(entries).__name__)
            return []

        now = self.clock()
        history = []
        seen_ids = set()
        for index, entry in enumerate(entries):
            try:
                stored = StoredSnapshot.model_validate(entry)
            except ValidationError as e:
                logger.warning(
                    "Dropping malformed history entry %d: %d validation error(s)",
                    index,
                    e.error_count(),
                )
                continue

            if stored.id in seen_ids:
                logger.warning("Dropping duplicate history entry id=%s", stored.id)
                continue
            seen_ids.add(stored.id)

            stored.status = derive_status(stored.data, stored.status, now)
            history.append(stored)

        return history

    def list(self) -> list[Snapshot]:
        """
        All saved invoices, newest first.

        Returns an empty list if nothing is stored or storage is unreadable.
        Statuses are re-derived against the current time.
        """
        return [stored.to_snapshot() for stored in self._read_history()]

    def latest(self) -> Snapshot | None:
        """Most recently saved invoice, or None if the history is empty."""
        history = self._read_history()
        if not history:
            return None
        return history[0].to_snapshot()

    def get_by_id(self, snapshot_id: str) -> Snapshot | None:
        """
        Get a saved invoice by ID.

        Returns None if no snapshot has that ID.
        """
        for stored in self._read_history():
            if stored.id == snapshot_id:
                return stored.to_snapshot()
        return None

    # =========================================================================
    # WRITE
    # =========================================================================

    def save(self, data: InvoiceSnapshotData | dict[str, Any]) -> Snapshot:
        """
        Record an invoice that was just generated.

        If the content matches the newest entry, that entry is updated in
        place (title, total, updated_at, status re-derived with a paid status
        kept). Otherwise a new entry is prepended and the oldest entries
        beyond the retention limit are evicted.

        Args:
            data: Invoice payload (model or dict with camelCase/snake_case keys)

        Returns:
            The saved snapshot. Returned even if persisting it failed.

        Raises:
            pydantic.ValidationError: If a dict payload has the wrong shape
        """
        normalized = self._normalize(data)
        signature = normalized.signature()
        history = self._read_history()
        now = self.clock()

        if history and history[0].signature == signature:
            head = history[0]
            updated = head.model_copy(update={
                "data": normalized,
                "title": resolve_title(normalized),
                "total": calculate_total(normalized.invoice_details.items),
                "updated_at": self._advance(head.updated_at, now),
                "status": derive_status(normalized, head.status, now),
            })
            logger.debug("Invoice %s re-saved unchanged; updated in place", head.id)
            self._write_history([updated, *history[1:]])
            return updated.to_snapshot()

        snapshot = StoredSnapshot(
            id=self._new_id(now, history),
            title=resolve_title(normalized),
            total=calculate_total(normalized.invoice_details.items),
            created_at=now,
            updated_at=now,
            status=derive_status(normalized, None, now),
            data=normalized,
            signature=signature,
        )

        limit = self.config.history_limit
        next_history = [snapshot, *history][:limit]
        evicted = len(history) + 1 - len(next_history)
        if evicted > 0:
            logger.debug("Evicting %d oldest invoice(s) beyond limit %d", evicted, limit)

        self._write_history(next_history)
        return snapshot.to_snapshot()

    def set_status(self, snapshot_id: str, status: InvoicePaymentStatus) -> Snapshot | None:
        """
        Explicitly set an invoice's payment status.

        This is the only way to mark an invoice paid; a paid status then
        survives re-derivation until changed here again.

        Args:
            snapshot_id: Snapshot ID
            status: New status

        Returns:
            Updated snapshot, or None if no snapshot has that ID (nothing written)

        Raises:
            ValueError: If status is not a known payment status
        """
        status = InvoicePaymentStatus(status)
        history = self._read_history()

        for index, stored in enumerate(history):
            if stored.id != snapshot_id:
                continue
            updated = stored.model_copy(update={
                "status": status,
                "updated_at": self._advance(stored.updated_at, self.clock()),
            })
            history[index] = updated
            self._write_history(history)
            return updated.to_snapshot()

        logger.debug("set_status: no invoice with id=%s", snapshot_id)
        return None

    def _write_history(self, history: list[StoredSnapshot]) -> bool:
        """
        Persist the whole history and notify listeners.

        Returns True on success. Failures are logged, not raised, and
        listeners are not notified.
        """
        key = self.config.storage_key
        try:
            payload = json.dumps(
                [stored.model_dump(mode="json", by_alias=True) for stored in history]
            )
            self.storage.set_item(key, payload)
        except (StorageWriteError, TypeError, ValueError):
            logger.exception("Unable to persist invoice history")
            return False

        self.event_bus.publish(InvoiceHistoryUpdated.create(self.config.updated_event))
        return True

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _normalize(data: InvoiceSnapshotData | dict[str, Any]) -> InvoiceSnapshotData:
        """Take an owned, normalized copy of the payload."""
        if isinstance(data, InvoiceSnapshotData):
            return InvoiceSnapshotData.model_validate(data.model_dump(by_alias=True))
        return InvoiceSnapshotData.model_validate(data)

    @staticmethod
    def _new_id(now: datetime, history: list[StoredSnapshot]) -> str:
        """
        Millisecond timestamp ID, unique within the history.

        Bumped past any existing numeric ID it would collide with.
        """
        candidate = int(now.timestamp() * 1000)
        existing = set()
        for stored in history:
            if stored.id.isdigit():
                existing.add(int(stored.id))
        while candidate in existing:
            candidate += 1
        return str(candidate)

    @staticmethod
    def _advance(previous: datetime, now: datetime) -> datetime:
        """now, or just after previous if the clock hasn't moved past it."""
        if now > previous:
            return now
        return previous + timedelta(microseconds=1)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _on_storage_change(self, key: str | None) -> None:
        if key is None or key == self.config.storage_key:
            self.event_bus.publish(StorageChanged.create(key))

    def subscribe(self, callback: Callable[[HistoryEvent], None]) -> Callable[[], None]:
        """
        Listen for history changes.

        callback receives a payload-free event after this store writes or
        when the backing storage reports a change to the history key. Call
        list() to see the new state. Notifications may be spurious.

        Returns:
            Function that removes the subscription
        """
        unsubscribers = [
            self.event_bus.subscribe(InvoiceHistoryUpdated.__name__, callback),
            self.event_bus.subscribe(StorageChanged.__name__, callback),
        ]

        def unsubscribe():
            for remove in unsubscribers:
                remove()

        return unsubscribe

    def close(self) -> None:
        """Stop listening to the backing storage."""
        self._unwatch()

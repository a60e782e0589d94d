"""
Observer-side view of the invoice history.

Holds the last list() result for presentation code and refreshes it
whenever the store announces a change.
"""

import logging

from core.events import HistoryEvent
from core.models import RevenueFilters, Snapshot
from core.services.analytics_service import build_revenue_csv, filter_invoices, infer_currency
from core.services.history_service import InvoiceHistoryStore

logger = logging.getLogger(__name__)


class InvoiceHistoryView:
    """
    Cached, self-refreshing copy of the history.

    Usage:
        view = InvoiceHistoryView(store)
        view.attach()
        render(view.history, view.latest)
        view.detach()
    """

    def __init__(self, store: InvoiceHistoryStore):
        self.store = store
        self.history: list[Snapshot] = []
        self._unsubscribe = None

    @property
    def latest(self) -> Snapshot | None:
        """Newest snapshot in the cached history."""
        return self.history[0] if self.history else None

    @property
    def currency(self) -> str:
        """Display currency: first one entered, else the configured default."""
        return infer_currency(self.history, fallback=self.store.config.default_currency)

    def refresh(self) -> list[Snapshot]:
        """
        Re-read the history from the store.

        Errors are logged and the previous copy is kept.
        """
        try:
            self.history = self.store.list()
        except Exception:
            logger.exception("Unable to read invoice history")
        return self.history

    def load_by_id(self, snapshot_id: str) -> Snapshot | None:
        """Fresh copy of one snapshot from the store, or None if it's gone."""
        return self.store.get_by_id(snapshot_id)

    def export_csv(self, filters: RevenueFilters | None = None) -> str:
        """Revenue CSV of the cached history, optionally filtered."""
        snapshots = self.history if filters is None else filter_invoices(self.history, filters)
        return build_revenue_csv(snapshots, default_currency=self.store.config.default_currency)

    def _on_change(self, event: HistoryEvent) -> None:
        self.refresh()

    def attach(self) -> None:
        """Load the history and keep it refreshed on every change. Idempotent."""
        self.refresh()
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def detach(self) -> None:
        """Stop refreshing."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

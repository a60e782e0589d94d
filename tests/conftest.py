"""Shared test fixtures for invoice history test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from clients.storage import MemoryStorage
from core.config import HistoryConfig
from core.event_bus import EventBus
from core.models import InvoiceSnapshotData


# =============================================================================
# CLOCK
# =============================================================================

# Fixed starting point for every test clock
TEST_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock. Time only moves when advance() is called."""

    def __init__(self, start: datetime = TEST_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# PAYLOAD FACTORY
# =============================================================================


def make_invoice(
    company_name: str | None = "Acme",
    invoice_number: str = "INV-001",
    items: list[dict] | None = None,
    due_date: str | None = "2024-07-15",
    issue_date: str | None = "2024-06-15",
    currency: str | None = "USD",
    email: str | None = None,
    your_name: str | None = "Jane Freelancer",
) -> InvoiceSnapshotData:
    """Build a realistic invoice payload, overriding only what a test cares about."""
    if items is None:
        items = [
            {"itemDescription": "Design work", "qty": 10, "amount": 100},
            {"itemDescription": "Hosting", "amount": "50"},
        ]
    return InvoiceSnapshotData.model_validate({
        "yourDetails": {"yourName": your_name, "yourEmail": "jane@example.com"},
        "companyDetails": {"companyName": company_name, "email": email},
        "paymentDetails": {"bankName": "First Bank", "accountNumber": "12345678"},
        "invoiceDetails": {"items": items, "currency": currency},
        "invoiceTerms": {
            "invoiceNumber": invoice_number,
            "issueDate": issue_date,
            "dueDate": due_date,
        },
    })


@pytest.fixture
def invoice_factory():
    return make_invoice


# =============================================================================
# STORE FIXTURES
# =============================================================================


@pytest.fixture
def config() -> HistoryConfig:
    return HistoryConfig(backend="memory")


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(storage, event_bus, config, clock):
    """InvoiceHistoryStore over in-memory storage with a fake clock."""
    from core.services.history_service import InvoiceHistoryStore

    history_store = InvoiceHistoryStore(storage, event_bus, config, clock=clock)
    yield history_store
    history_store.close()

"""Invoice snapshot domain models.

The payload mirrors what the invoice form produces. Field names are
snake_case in Python and camelCase on the wire, so persisted history keeps
the same layout the form layer reads and writes.
"""

import json
import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from utils.timezone import parse_date


PLACEHOLDER_TITLE = "Invoice"


class InvoicePaymentStatus(str, Enum):
    """Invoice payment lifecycle status."""

    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"


class PayloadModel(BaseModel):
    """Base for form payload sections: camelCase aliases, numbers coerced to text."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class IssuerDetails(PayloadModel):
    """The invoicing party (the user)."""

    your_name: str | None = None
    your_email: str | None = None
    your_address: str | None = None
    your_city: str | None = None
    your_state: str | None = None
    your_country: str | None = None
    your_zip: str | None = None
    your_tax_id: str | None = None
    your_logo: str | None = None


class CompanyDetails(PayloadModel):
    """The billed client."""

    company_name: str | None = None
    email: str | None = None
    company_address: str | None = None
    company_city: str | None = None
    company_state: str | None = None
    company_country: str | None = None
    company_zip: str | None = None
    company_tax_id: str | None = None
    company_logo: str | None = None


class PaymentDetails(PayloadModel):
    """Banking details printed on the invoice."""

    bank_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None
    routing_code: str | None = None
    swift_code: str | None = None
    ifsc_code: str | None = None


class Item(PayloadModel):
    """
    One invoice line.

    qty and amount are kept exactly as entered (number or text); they are
    only interpreted when computing totals.
    """

    item_description: str = ""
    qty: float | str | None = None
    amount: float | str | None = None

    @field_validator("item_description", mode="before")
    @classmethod
    def default_description(cls, value):
        return "" if value is None else value


class InvoiceItemDetails(PayloadModel):
    """Line items plus the invoice-wide money settings."""

    items: list[Item] = Field(default_factory=lambda: [Item()])
    currency: str | None = None
    note: str | None = None
    discount: float | str | None = None
    tax_rate: float | str | None = None

    @field_validator("items", mode="before")
    @classmethod
    def ensure_items(cls, value):
        """An invoice always has at least one (possibly blank) line."""
        if not value:
            return [Item()]
        return value


class InvoiceTerms(PayloadModel):
    """Numbering and dates. Dates are kept as entered and parsed leniently."""

    invoice_number: str | None = None
    issue_date: str | None = None
    due_date: str | None = None


class InvoiceSnapshotData(PayloadModel):
    """Everything needed to re-render an invoice."""

    your_details: IssuerDetails = Field(default_factory=IssuerDetails)
    company_details: CompanyDetails = Field(default_factory=CompanyDetails)
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    invoice_details: InvoiceItemDetails = Field(default_factory=InvoiceItemDetails)
    invoice_terms: InvoiceTerms = Field(default_factory=InvoiceTerms)

    def signature(self) -> str:
        """
        Canonical serialization used to detect re-saves of unchanged content.

        Keys are sorted so the signature doesn't depend on input ordering.
        """
        return json.dumps(
            self.model_dump(mode="json", by_alias=True),
            sort_keys=True,
            separators=(",", ":"),
        )


def to_number(value: object) -> float | None:
    """Interpret a form value as a finite number, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def calculate_total(items: list[Item]) -> float:
    """Sum of amount x qty. Missing qty counts as 1, missing amount as 0."""
    total = 0.0
    for item in items:
        price = to_number(item.amount) or 0.0
        quantity = to_number(item.qty)
        total += price * (1.0 if quantity is None else quantity)
    return total


def resolve_title(data: InvoiceSnapshotData) -> str:
    """Display label: client name, then client email, then issuer name."""
    candidates = (
        data.company_details.company_name,
        data.company_details.email,
        data.your_details.your_name,
    )
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return PLACEHOLDER_TITLE


class Snapshot(BaseModel):
    """One saved invoice as exposed to readers."""

    # Overflowing totals persist as Infinity instead of null
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        ser_json_inf_nan="constants",
    )

    id: str
    title: str
    total: float
    created_at: datetime
    updated_at: datetime
    status: InvoicePaymentStatus = InvoicePaymentStatus.PENDING
    data: InvoiceSnapshotData

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Timestamps are always aware UTC; naive stored values are taken as UTC."""
        return parse_date(value)

    @property
    def item_count(self) -> int:
        """Number of invoice lines."""
        return len(self.data.invoice_details.items)

    @property
    def currency(self) -> str | None:
        """Currency code entered on the invoice, if any."""
        return self.data.invoice_details.currency or None


class StoredSnapshot(Snapshot):
    """Snapshot as persisted, carrying its content signature."""

    signature: str

    def to_snapshot(self) -> Snapshot:
        """Public view without the signature."""
        return Snapshot.model_validate(self.model_dump(exclude={"signature"}))

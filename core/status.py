"""
Payment status derivation.

Status is never stored as the source of truth. It's recomputed from the
invoice's due date every time a snapshot is read or saved:

    paid     sticky; only an explicit status change moves an invoice out of it
    overdue  due date parsed and strictly in the past
    pending  everything else (no due date, unparseable, or not yet due)
"""

from datetime import datetime

from core.models.invoice import InvoicePaymentStatus, InvoiceSnapshotData
from utils.timezone import now_utc, parse_date


def derive_status(
    data: InvoiceSnapshotData,
    previous_status: InvoicePaymentStatus | None = None,
    now: datetime | None = None,
) -> InvoicePaymentStatus:
    """
    Derive the payment status of an invoice.

    Args:
        data: Invoice payload
        previous_status: Status currently recorded for the invoice, if any
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        PAID if previous_status is PAID, else OVERDUE or PENDING from the due date
    """
    if previous_status == InvoicePaymentStatus.PAID:
        return InvoicePaymentStatus.PAID

    due_date = parse_date(data.invoice_terms.due_date)
    if due_date is None:
        return InvoicePaymentStatus.PENDING

    current = now if now is not None else now_utc()
    if current.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    if due_date < current:
        return InvoicePaymentStatus.OVERDUE
    return InvoicePaymentStatus.PENDING

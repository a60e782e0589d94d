"""Core domain models."""

from core.models.invoice import (
    InvoicePaymentStatus,
    IssuerDetails, CompanyDetails, PaymentDetails,
    Item, InvoiceItemDetails, InvoiceTerms, InvoiceSnapshotData,
    Snapshot, StoredSnapshot,
    calculate_total, resolve_title, to_number,
)
from core.models.analytics import ALL, RevenueFilters, RevenueMetrics

__all__ = [
    # Payload
    "IssuerDetails", "CompanyDetails", "PaymentDetails",
    "Item", "InvoiceItemDetails", "InvoiceTerms", "InvoiceSnapshotData",
    # Snapshot
    "InvoicePaymentStatus", "Snapshot", "StoredSnapshot",
    "calculate_total", "resolve_title", "to_number",
    # Analytics
    "ALL", "RevenueFilters", "RevenueMetrics",
]

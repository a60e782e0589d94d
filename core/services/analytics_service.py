"""
Revenue analytics over saved invoices.

Pure functions over a sequence of snapshots (usually InvoiceHistoryStore.list()).
Nothing here touches storage.
"""

import csv
import io
import locale
import math
from typing import Iterable, Sequence

from core.models import (
    ALL,
    InvoicePaymentStatus,
    RevenueFilters,
    RevenueMetrics,
    Snapshot,
    resolve_title,
)
from utils.timezone import end_of_day, is_date_only, parse_date

DEFAULT_CURRENCY = "INR"

CSV_HEADERS = [
    "Invoice",
    "Client",
    "Total",
    "Status",
    "Currency",
    "Issue Date",
    "Due Date",
    "Created At",
    "Updated At",
]


def resolve_client_name(snapshot: Snapshot) -> str:
    """Client label used for grouping and filtering. Same rules as the title."""
    return resolve_title(snapshot.data)


def _effective_date(snapshot: Snapshot):
    """created_at, falling back to the issue date, then the due date."""
    terms = snapshot.data.invoice_terms
    return (
        parse_date(snapshot.created_at)
        or parse_date(terms.issue_date)
        or parse_date(terms.due_date)
    )


def _within_range(snapshot: Snapshot, start, end) -> bool:
    effective = _effective_date(snapshot)
    if effective is None:
        return not (start or end)

    start_date = parse_date(start)
    end_date = parse_date(end)
    # A bare end date includes that whole day
    if end_date is not None and is_date_only(end):
        end_date = end_of_day(end_date)

    if start_date is not None and effective < start_date:
        return False
    if end_date is not None and effective > end_date:
        return False
    return True


def filter_invoices(snapshots: Iterable[Snapshot], filters: RevenueFilters) -> list[Snapshot]:
    """
    Snapshots matching every filter.

    Args:
        snapshots: Snapshots to filter (order preserved)
        filters: Client ("all" or exact name), status ("all" or exact),
            inclusive date window on the effective date

    Returns:
        Matching snapshots in input order
    """
    result = []
    for snapshot in snapshots:
        if filters.client != ALL and resolve_client_name(snapshot) != filters.client:
            continue
        if filters.status != ALL and snapshot.status != filters.status:
            continue
        if not _within_range(snapshot, filters.start_date, filters.end_date):
            continue
        result.append(snapshot)
    return result


def compute_metrics(snapshots: Iterable[Snapshot]) -> RevenueMetrics:
    """
    Revenue totals in a single pass.

    Every snapshot counts toward total_revenue; paid ones toward paid, all
    others toward outstanding, and overdue ones additionally toward overdue.
    """
    total_revenue = outstanding = overdue = paid = 0.0

    for snapshot in snapshots:
        value = snapshot.total
        total_revenue += value
        if snapshot.status == InvoicePaymentStatus.PAID:
            paid += value
        else:
            outstanding += value
            if snapshot.status == InvoicePaymentStatus.OVERDUE:
                overdue += value

    return RevenueMetrics(
        total_revenue=total_revenue,
        outstanding=outstanding,
        overdue=overdue,
        paid=paid,
    )


def _collation_key(name: str):
    return (locale.strxfrm(name.casefold()), name)


def get_client_names(snapshots: Iterable[Snapshot]) -> list[str]:
    """
    Distinct client names, sorted for display (case-insensitive, locale-aware).

    Collation follows the process LC_COLLATE, which this library never sets.
    Under the default C locale the order is plain code points, so accented
    names sort after "z". Call locale.setlocale(locale.LC_COLLATE, "") at
    application start for the user's collation.
    """
    names = {resolve_client_name(snapshot) for snapshot in snapshots}
    return sorted(names, key=_collation_key)


def reconcile_filters(filters: RevenueFilters, client_names: Sequence[str]) -> RevenueFilters:
    """
    Reset the client filter to "all" if the selected client no longer exists.

    Returns filters unchanged otherwise.
    """
    if filters.client != ALL and filters.client not in client_names:
        return filters.model_copy(update={"client": ALL})
    return filters


def infer_currency(snapshots: Iterable[Snapshot], fallback: str = DEFAULT_CURRENCY) -> str:
    """First currency set on any snapshot, in the order given; else fallback."""
    for snapshot in snapshots:
        if snapshot.currency:
            return snapshot.currency
    return fallback


def format_total(value: float) -> str:
    """Plain number text: 1500.0 -> "1500", 12.5 -> "12.5", inf -> "Infinity"."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == int(value):
        return str(int(value))
    return repr(value)


def build_revenue_csv(
    snapshots: Iterable[Snapshot],
    default_currency: str = DEFAULT_CURRENCY,
) -> str:
    """
    CSV export of snapshots, one row per snapshot after a header row.

    Fields containing a comma, quote or line break are quoted with internal
    quotes doubled. Rows are joined by newlines with no trailing newline.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADERS)

    for snapshot in snapshots:
        terms = snapshot.data.invoice_terms
        writer.writerow([
            snapshot.title,
            resolve_client_name(snapshot),
            format_total(snapshot.total),
            snapshot.status.value,
            snapshot.currency or default_currency,
            terms.issue_date or "",
            terms.due_date or "",
            snapshot.created_at.isoformat(),
            snapshot.updated_at.isoformat(),
        ])

    return buffer.getvalue().rstrip("\n")

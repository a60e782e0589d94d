"""Revenue dashboard query and result models."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from core.models.invoice import InvoicePaymentStatus

ALL = "all"


class RevenueFilters(BaseModel):
    """
    Dashboard filter selection.

    Date bounds are inclusive. They may be dates, datetimes or ISO strings;
    bounds that can't be parsed are ignored.
    """

    client: str = ALL
    status: InvoicePaymentStatus | Literal["all"] = ALL
    start_date: datetime | date | str | None = None
    end_date: datetime | date | str | None = None


class RevenueMetrics(BaseModel):
    """Aggregate totals over a set of snapshots. overdue is a subset of outstanding."""

    total_revenue: float = Field(0.0)
    outstanding: float = Field(0.0)
    overdue: float = Field(0.0)
    paid: float = Field(0.0)

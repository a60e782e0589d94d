"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, parse_date, is_date_only, end_of_day

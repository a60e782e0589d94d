"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import date, datetime, time, timedelta, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def is_date_only(value: object) -> bool:
    """Whether value is a calendar date without a time component."""
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    if isinstance(value, str):
        text = value.strip()
        try:
            date.fromisoformat(text)
        except ValueError:
            return False
        return True
    return False


def parse_date(value: object) -> datetime | None:
    """
    Leniently parse a date or datetime into an aware UTC datetime.

    Form data and persisted records carry dates as free text, so anything
    that can't be parsed is treated as absent rather than raised.

    - None, empty or whitespace-only strings -> None
    - "2024-01-31" or a date object -> midnight UTC of that day
    - ISO 8601 datetimes; naive values are taken as UTC
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return to_utc(dt)


def end_of_day(dt: datetime) -> datetime:
    """Last representable instant of dt's calendar day."""
    start = datetime.combine(dt.date(), time.min, tzinfo=dt.tzinfo)
    return start + timedelta(days=1) - timedelta(microseconds=1)

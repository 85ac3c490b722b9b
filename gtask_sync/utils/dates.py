"""
Date helpers for due-date handling.

Local records store due dates in several shapes (date objects, datetimes,
ISO 8601 strings). Google Tasks only keeps the date part of ``due`` and
expects an RFC 3339 timestamp.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any


def parse_due_date(value: Any) -> date | None:
    """
    Parse a stored due date into a calendar date.

    Args:
        value: A ``date``, ``datetime`` or ISO 8601 string

    Returns:
        The calendar date (UTC for aware datetimes), or None if the value
        is missing or cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()

    if isinstance(value, date):
        return value

    if not isinstance(value, str):
        return None

    text = value.strip()
    try:
        # Handle both 'Z' suffix and timezone offset
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 / RFC 3339 timestamp into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def end_of_day_rfc3339(day: date) -> str:
    """
    Render a date as an RFC 3339 timestamp at the last millisecond of the day.

    Example:
        >>> end_of_day_rfc3339(date(2024, 6, 1))
        '2024-06-01T23:59:59.999Z'
    """
    return f"{day.isoformat()}T23:59:59.999Z"


def utc_today(now: datetime | None = None) -> date:
    """Return the current UTC calendar date."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


def next_utc_midnight(now: datetime | None = None) -> datetime:
    """Return the next UTC midnight after ``now``."""
    tomorrow = utc_today(now) + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Render a datetime as ISO 8601 with a 'Z' suffix for UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

"""Shared time helpers used across the scheduling core."""

import re
from datetime import date, datetime, time, timedelta
from typing import Iterator

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> time:
    """Parse a 24-hour ``HH:MM`` string.

    Examples:
        >>> parse_hhmm("09:30")
        datetime.time(9, 30)
    """
    match = _HHMM.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time format, expected HH:MM: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap test for ``[a_start, a_end)`` and ``[b_start, b_end)``."""
    return a_start < b_end and b_start < a_end


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return ``[midnight, next midnight)`` for a calendar date."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def days_spanned(start: datetime, end: datetime) -> Iterator[date]:
    """Yield every calendar date touched by the half-open interval ``[start, end)``."""
    current = start.date()
    last = (end - timedelta(microseconds=1)).date() if end > start else start.date()
    while current <= last:
        yield current
        current += timedelta(days=1)


def require_calendar_date(value: date, name: str = "date") -> date:
    """Reject ``datetime`` values where a plain calendar date is required."""
    if isinstance(value, datetime):
        raise TypeError(f"{name} must be a calendar date without a time component")
    if not isinstance(value, date):
        raise TypeError(f"{name} must be a datetime.date, got {type(value).__name__}")
    return value

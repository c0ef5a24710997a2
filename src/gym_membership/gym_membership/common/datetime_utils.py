from __future__ import annotations

import calendar
from datetime import date, datetime

from ..core.exceptions import InvalidArgumentError


def parse_iso_date(value: str) -> date:
    """Parse YYYY-MM-DD string into date."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def to_local_naive(value: datetime) -> datetime:
    """Stored instants are naive local time; convert offset-aware values."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_iso_datetime(value: str, field_name: str = "date") -> datetime:
    """Parse an ISO-8601 timestamp (or a bare date, meaning midnight).

    A UTC offset is honoured and the result converted to naive local time.
    """
    if not isinstance(value, (str, type(None))):
        raise InvalidArgumentError(f"{field_name} must be an ISO date string")
    v = (value or "").strip()
    try:
        if len(v) == 10:
            return datetime.combine(parse_iso_date(v), datetime.min.time())
        return to_local_naive(datetime.fromisoformat(v))
    except ValueError:
        raise InvalidArgumentError(f"{field_name} is not a valid ISO date: {value!r}")


def now_local() -> datetime:
    """Current local time.

    Note: Wrapped so tests can patch/mocked easier.
    """
    return datetime.now()


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months keeping the time of day.

    The day is clamped to the last day of the target month (Jan 31 + 1 month -> Feb 28/29).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def same_calendar_month(a: datetime, b: datetime) -> bool:
    return a.year == b.year and a.month == b.month


def month_bounds(value: datetime) -> tuple[datetime, datetime]:
    """[first instant of the month, first instant of the next month)."""
    start = datetime(value.year, value.month, 1)
    return start, add_months(start, 1)

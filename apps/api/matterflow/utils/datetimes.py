"""Datetime helpers shared by the store and the due-date calculator."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

CLIO_DATE_FORMAT = "%Y-%m-%d"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite returns them naive)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_weekend(value: date) -> bool:
    return value.weekday() >= 5


def add_business_days(start: datetime, days: int) -> datetime:
    """Add ``days`` weekdays to ``start``, skipping Saturdays and Sundays."""
    current = start
    added = 0
    while added < days:
        current = current + timedelta(days=1)
        if not is_weekend(current):
            added += 1
    return current


def format_for_clio(value: datetime | date | None) -> str | None:
    """Clio takes due dates as plain ``yyyy-MM-dd``."""
    if value is None:
        return None
    return value.strftime(CLIO_DATE_FORMAT)

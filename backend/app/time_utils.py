"""Helpers for working with timezone-aware datetimes."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def coerce_utc(value: datetime | None) -> datetime | None:
    """Return a UTC-normalized datetime, assuming naive values are already UTC."""

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)


def to_db_datetime(value: datetime) -> datetime:
    """Strip tzinfo after normalizing to UTC.

    ``DateTime`` columns are declared without timezone support, so values are
    stored as naive UTC.
    """

    normalized = coerce_utc(value)
    assert normalized is not None
    return normalized.replace(tzinfo=None)

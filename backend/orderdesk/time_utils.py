from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def store_now(tz_name: str, now: Optional[datetime] = None) -> datetime:
    """
    Convert a UTC-naive instant to the store's local wall clock (aware).

    Queue numbers and opening hours follow the store calendar, not UTC.
    """
    instant = now or utcnow()
    return instant.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))


def store_today(tz_name: str, now: Optional[datetime] = None) -> date:
    return store_now(tz_name, now).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")

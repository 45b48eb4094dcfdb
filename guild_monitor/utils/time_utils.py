"""
Time helpers.

All timestamps handled by the monitor are timezone-aware UTC ``datetime``
objects. They are stored in SQLite as ISO-8601 strings with second
resolution, which keeps lexicographic order equal to chronological order so
delete-by-age queries can compare strings directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db_timestamp(dt: datetime) -> str:
    """Serialize ``dt`` as a UTC ISO-8601 string with second resolution."""
    return ensure_utc(dt).replace(microsecond=0).isoformat()


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; ``None`` passes through."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def parse_api_timestamp(value: str) -> datetime:
    """Parse an upstream timestamp such as ``"2024-03-01T18:22:05Z"``.

    Raises:
        ValueError: If ``value`` is not ISO-8601.
    """
    return ensure_utc(datetime.fromisoformat(value.strip()))


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Return the UTC datetime ``days`` days before ``now``."""
    return (now or utcnow()) - timedelta(days=days)

"""Datetime utilities for timezone-aware operations.

Every timestamp the engine stores or compares is timezone-aware UTC.
SQLite hands back naive datetimes, so values read from storage pass
through `ensure_utc` before they are compared with the clock.
"""

from collections.abc import Callable
from datetime import date, datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return current UTC time with timezone info.

    Returns:
        Current UTC datetime with tzinfo=timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no tzinfo), it's assumed to be UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: A datetime object (naive or aware)

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    """Check if a deadline has passed at `now`.

    Args:
        expires_at: Expiration datetime (or None for never expires)
        now: Reference time

    Returns:
        True if expired, False otherwise
    """
    if expires_at is None:
        return False
    return ensure_utc(now) >= ensure_utc(expires_at)


def utc_date(dt: datetime) -> date:
    """Calendar day of `dt` in UTC."""
    return ensure_utc(dt).date()

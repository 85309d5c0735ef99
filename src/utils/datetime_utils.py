"""Datetime utilities for timezone-aware UTC timestamps.

SQLite drops tzinfo on DateTime columns, so values read back are naive.
Everything that compares timestamps normalizes through ensure_utc() first.

Usage:
    from src.utils.datetime_utils import utc_now, ensure_utc

    timestamp = utc_now()
    completed_at = ensure_utc(log.completed_at)
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC.

    Args:
        value: Datetime to normalize (None passes through)

    Returns:
        Timezone-aware UTC datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

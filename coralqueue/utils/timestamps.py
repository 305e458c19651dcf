"""Timestamp utilities for UTC handling and database storage.

Queue timestamps are persisted as fixed-width ISO 8601 strings so that
string comparison in SQL matches chronological order on every backend.
"""

from datetime import datetime, timezone
from typing import Optional

DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Example:
        >>> utc_now().tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC; aware ones are converted.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_db_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime for database storage.

    Args:
        dt: Datetime object (naive values are treated as UTC)

    Returns:
        String like ``2025-03-09T10:36:05.000000Z`` or None

    Example:
        >>> format_db_timestamp(datetime(2025, 3, 9, 10, 36, 5, tzinfo=timezone.utc))
        '2025-03-09T10:36:05.000000Z'
    """
    if dt is None:
        return None
    return ensure_utc(dt).strftime(DB_TIMESTAMP_FORMAT)


def parse_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime.

    Accepts values with or without microseconds.

    Args:
        value: Stored timestamp string

    Returns:
        Timezone-aware datetime in UTC or None
    """
    if value is None or value == "":
        return None

    cleaned = value.rstrip("Z")
    try:
        dt = datetime.strptime(cleaned, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(cleaned, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)

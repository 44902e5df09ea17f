"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime as an ISO-8601 UTC string for indexing."""
    return to_utc(value).isoformat()


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> datetime:
    """Parse a stored timestamp back into an aware datetime.

    Args:
        value: ISO-8601 string, epoch seconds, datetime or None

    Returns:
        UTC datetime (the epoch when the value is missing or unparseable)
    """
    if value is None or value == '':
        return EPOCH
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return to_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except ValueError:
        return EPOCH


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Return the UTC datetime `days` before now."""
    now = to_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - timedelta(days=days)

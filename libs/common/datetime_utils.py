"""Datetime utilities.

Backend timestamps are stored in UTC; anything a customer reads (invoice
numbers, receipt dates) is rendered in the store timezone.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from libs.common.config import get_settings


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def store_now() -> datetime:
    """Current time in the store timezone."""
    return datetime.now(ZoneInfo(get_settings().TIMEZONE))


def to_store_tz(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(get_settings().TIMEZONE))


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the content backend."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

"""
OEE Monitor - Time Utilities

Timestamps are stored as aware UTC. Naive timestamps coming from operator
forms are plant-local wall clock and are localized with the shift timezone.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from oee_monitor.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime], local_timezone: Optional[str] = None) -> Optional[datetime]:
    """Normalize to aware UTC, localizing naive values to the plant timezone."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo(local_timezone or settings.SHIFT_TIMEZONE))
    return value.astimezone(timezone.utc)


def assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from stores that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

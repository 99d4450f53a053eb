"""
Time window rules.
Half-open [start, end) overlap, UTC normalisation and provider-local rendering.
"""
from datetime import datetime, timezone
from typing import Optional
import pytz

from ..config import settings


def overlaps(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """
    Check if two half-open intervals [start1, end1) and [start2, end2) intersect.
    Touching windows (end1 == start2) do not overlap.
    """
    return start1 < end2 and end1 > start2


def utc_now() -> datetime:
    """Current time as naive UTC, matching how job windows are compared."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to naive UTC.
    Aware values are converted; naive values are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def utc_to_local(dt: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert a (naive or aware) UTC datetime to the given timezone.

    Args:
        dt: UTC datetime
        timezone_str: IANA timezone name (default from settings)

    Returns:
        Timezone-aware local datetime
    """
    try:
        tz = pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        tz = pytz.timezone(settings.tz_default)
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(tz)

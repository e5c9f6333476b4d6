"""
Time helpers shared by tokens, prompts and jobs.
All persisted timestamps are naive UTC.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> int:
    return calendar.timegm(to_naive_utc(value).utctimetuple())


def from_epoch(value: Union[int, float]) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def parse_iso_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (a trailing Z is accepted) to naive UTC.
    Returns None for empty or unparseable input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    return to_naive_utc(parsed)


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone, falling back to UTC"""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def local_to_utc(value: Union[str, datetime], tz_name: str) -> datetime:
    """
    Convert a submitted slot boundary to naive UTC.
    Offset-aware values keep their offset; naive values are civil time in tz_name.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=get_zone(tz_name))
    return to_naive_utc(value)

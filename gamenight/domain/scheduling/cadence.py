"""
Weekly prompt cadence
Turns GroupPromptSettings (day of week, time of day, timezone) into concrete fire times.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ...models import GroupPromptSettings
from ...timeutils import get_zone, to_naive_utc

logger = logging.getLogger(__name__)

CADENCE_LOOKAHEAD = timedelta(hours=2)


def parse_schedule_time(value: str) -> time:
    """'HH:MM' or 'HH:MM:SS' -> time"""
    parts = [int(p) for p in value.strip().split(":")]
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid schedule time: {value!r}")
    return time(*parts)


def next_fire_time(day_of_week: int, at: time, tz_name: Optional[str], now: datetime) -> datetime:
    """
    Next instant (naive UTC, at or after `now`) matching the weekly schedule.

    day_of_week counts from 0 = Sunday; `at` is civil time in tz_name.
    """
    if not 0 <= day_of_week <= 6:
        raise ValueError(f"day_of_week must be 0-6, got {day_of_week}")

    zone = get_zone(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(zone)

    # Python weekdays count from Monday = 0
    target_weekday = (day_of_week - 1) % 7
    days_ahead = (target_weekday - local_now.weekday()) % 7
    candidate_date = local_now.date() + timedelta(days=days_ahead)
    candidate = datetime.combine(candidate_date, at, tzinfo=zone)
    if candidate < local_now:
        candidate = datetime.combine(candidate_date + timedelta(days=7), at, tzinfo=zone)
    return to_naive_utc(candidate)


def due_schedules(
    db: Session, now: datetime, lookahead: timedelta = CADENCE_LOOKAHEAD
) -> list[tuple[GroupPromptSettings, datetime]]:
    """Active schedules whose next fire time falls within [now, now + lookahead]"""
    now = to_naive_utc(now)
    due = []
    settings_rows = (
        db.query(GroupPromptSettings)
        .filter(
            GroupPromptSettings.is_active.is_(True),
            GroupPromptSettings.schedule_day_of_week.isnot(None),
            GroupPromptSettings.schedule_time.isnot(None),
        )
        .order_by(GroupPromptSettings.id)
        .all()
    )
    for settings in settings_rows:
        try:
            at = parse_schedule_time(settings.schedule_time)
            fire_at = next_fire_time(
                settings.schedule_day_of_week, at, settings.schedule_timezone, now
            )
        except ValueError as e:
            logger.warning(f"⚠️ Skipping invalid schedule for settings {settings.id}: {e}")
            continue
        if fire_at - now <= lookahead:
            due.append((settings, fire_at))
    return due

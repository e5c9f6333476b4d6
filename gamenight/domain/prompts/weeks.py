"""ISO-8601 week identifiers used to deduplicate prompts per group"""

from datetime import datetime, timezone
from typing import Optional

from ...timeutils import get_zone


def week_identifier(moment: datetime, tz_name: Optional[str] = "UTC") -> str:
    """
    Identifier of the ISO week containing `moment` as seen in tz_name, e.g. "2026-W42".

    Naive datetimes are taken as UTC. ISO weeks start on Monday and week 1 is the
    week holding the year's first Thursday, so the ISO year can differ from the
    calendar year around 1 January.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(get_zone(tz_name))
    iso_year, iso_week, _ = local.date().isocalendar()
    return f"{iso_year}-W{iso_week:02d}"

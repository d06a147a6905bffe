"""
Reading Goals - Deadline Calculation
Turns (creation time, duration, timezone) into an absolute UTC deadline
"""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from goals.errors import ValidationError

# Deadlines land on the last millisecond of the local day
END_OF_DAY = time(23, 59, 59, 999000)


def _is_whole_number(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Look up an IANA timezone.

    Raises:
        ValidationError: If the name is empty or unknown
    """
    if not name or not isinstance(name, str):
        raise ValidationError(["Timezone is required"])
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError([f"Unknown timezone: {name}"]) from None


def calculate_deadline(now: datetime, duration_days: int, timezone_name: str) -> datetime:
    """
    Compute the deadline for a goal created at `now`.

    The deadline is the end of the local day `duration_days` after the local
    date of `now` in `timezone_name`, converted to UTC. A goal created on
    2025-01-01 in America/New_York with 7 days ends at 2025-01-08
    23:59:59.999 New York time, not at UTC midnight.

    Args:
        now: Creation time; naive values are taken as UTC
        duration_days: Days to complete, at least 1
        timezone_name: IANA timezone id

    Returns:
        Aware UTC datetime
    """
    if not _is_whole_number(duration_days) or duration_days < 1:
        raise ValidationError(["Days to complete must be at least 1 day"])

    zone = resolve_timezone(timezone_name)

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local_date = now.astimezone(zone).date() + timedelta(days=duration_days)
    local_deadline = datetime.combine(local_date, END_OF_DAY, tzinfo=zone)
    return local_deadline.astimezone(timezone.utc)


def extend_deadline(deadline_utc: datetime, days: int) -> datetime:
    """
    Push a stored deadline out by whole days.

    Applied as UTC arithmetic on the stored instant: the timezone anchor was
    fixed at creation, so the deadline is never recomputed from "now".
    """
    if not _is_whole_number(days) or days < 1:
        raise ValidationError(["Days to add must be at least 1"])
    return deadline_utc + timedelta(days=days)

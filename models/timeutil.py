"""Small time helpers shared by the models and the scheduler."""

from datetime import datetime, timezone

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def ensure_aware(value: datetime, tz=timezone.utc) -> datetime:
    """Attach `tz` to naive datetimes; aware values pass through untouched."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open [start, end) overlap: StartA < EndB and StartB < EndA."""
    return a_start < b_end and b_start < a_end


def weekday_name(moment: datetime) -> str:
    return WEEKDAY_NAMES[moment.weekday()]

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Naive UTC now; all stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC, leave naive values untouched."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_duration(value: Optional[Union[int, timedelta]], default_minutes: int) -> timedelta:
    """Normalize a duration given as minutes or timedelta.

    Missing, zero and negative durations fall back to the default length.
    """
    if isinstance(value, timedelta):
        duration = value
    elif value:
        duration = timedelta(minutes=int(value))
    else:
        duration = timedelta(0)

    if duration <= timedelta(0):
        return timedelta(minutes=default_minutes)
    return duration


def day_bounds(day: datetime):
    """Return [start, end) of the calendar day containing ``day``."""
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)

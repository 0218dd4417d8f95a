"""Datetime helpers. The database stores naive UTC datetimes."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_window(start: date, end: date) -> Tuple[datetime, datetime]:
    """[start 00:00, day after end 00:00) so the whole end day is included."""
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)

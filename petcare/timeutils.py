"""
Datetime helpers.

All timestamps are persisted as naive UTC so that SQLite and PostgreSQL
compare them the same way.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Get the current UTC datetime without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def start_of_day(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        value = to_naive_utc(value).date()
    return datetime.combine(value, time.min)


def end_of_day(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        value = to_naive_utc(value).date()
    return datetime.combine(value, time.max)


def day_bounds(value: Union[date, datetime, None] = None) -> tuple[datetime, datetime]:
    """Return the first and last instant of the given day (today by default)."""
    value = value or utcnow()
    return start_of_day(value), end_of_day(value)


def _bucket(days: int) -> tuple[int, str]:
    if days < 7:
        return days, "days"
    if days < 30:
        return days // 7, "weeks"
    return days // 30, "months"


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    """Human label for a past moment, e.g. 'Yesterday' or '3 weeks ago'."""
    now = now or utcnow()
    days = (now - moment).days
    if days <= 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    amount, unit = _bucket(days)
    return f"{amount} {unit} ago"


def time_until(moment: datetime, now: Optional[datetime] = None) -> str:
    """Human label for a future moment, e.g. 'Tomorrow' or 'in 2 months'."""
    now = now or utcnow()
    days = (moment - now).days
    if days <= 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    amount, unit = _bucket(days)
    return f"in {amount} {unit}"

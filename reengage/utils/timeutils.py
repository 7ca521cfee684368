"""
UTC helpers. SQLite hands back naive datetimes for timezone-aware columns,
so every value read from the store goes through as_utc() before arithmetic.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a UTC calendar day."""
    start = start_of_day(day)
    return start, start + timedelta(days=1)


def seconds_until_hour(hour_utc: int, now: Optional[datetime] = None) -> float:
    """Seconds from now until the next occurrence of HH:00 UTC (tomorrow if already past)."""
    now = as_utc(now) or utcnow()
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()

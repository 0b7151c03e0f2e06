"""Date manipulation utilities"""

import math
from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_between(now: datetime, due_date: date) -> int:
    """Whole calendar days from now's date until due_date (negative once overdue)"""
    return (due_date - now.date()).days


def start_of_day_utc(day: date) -> datetime:
    """Midnight UTC at the start of the given day"""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def start_of_month_utc(now: datetime) -> datetime:
    """Midnight UTC on the first day of now's month"""
    return start_of_day_utc(now.date().replace(day=1))


def days_until(now: datetime, moment: datetime) -> int:
    """Days from now until moment, rounded up (0 if moment has passed)"""
    seconds = (moment - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / timedelta(days=1).total_seconds())

"""
Date and Time Utilities Module for Agent Trader.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


UTC = timezone.utc


def now_utc() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime in UTC
    """
    return datetime.now(UTC)


def start_of_day_utc(dt: Optional[datetime] = None) -> datetime:
    """
    Midnight UTC of the day containing dt (defaults to now).

    Args:
        dt: Reference datetime

    Returns:
        Start of that day in UTC
    """
    dt = (dt or now_utc()).astimezone(UTC)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def seconds_between(start: datetime, end: datetime) -> float:
    """Elapsed seconds between two aware datetimes."""
    return (end - start).total_seconds()


def add_seconds(dt: datetime, seconds: float) -> datetime:
    """Return dt shifted by the given number of seconds."""
    return dt + timedelta(seconds=seconds)

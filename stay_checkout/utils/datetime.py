"""UTC datetime utilities."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime in UTC

    Example:
        >>> utc_now().tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def expires_at(duration: timedelta, start: Optional[datetime] = None) -> datetime:
    """
    Return the moment something started at ``start`` (default now) runs out.

    Example:
        >>> start = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        >>> expires_at(timedelta(minutes=15), start)
        datetime.datetime(2025, 6, 1, 12, 15, tzinfo=datetime.timezone.utc)
    """
    return (start or utc_now()) + duration


def is_expired(deadline: datetime, now: Optional[datetime] = None) -> bool:
    return (now or utc_now()) >= deadline

"""
Datetime helper utilities to ensure consistent timezone handling across the application.

All datetime columns are timezone-naive UTC (DateTime(timezone=False)); ISO strings
that carry an offset are converted to naive UTC on parse.
"""

import math
from datetime import datetime, timezone
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)

DateLike = Union[datetime, str]


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Example:
        >>> aware_dt = datetime.now(timezone.utc)
        >>> naive_dt = ensure_naive_datetime(aware_dt)
        >>> assert naive_dt.tzinfo is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Current UTC time as naive datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: DateLike) -> datetime:
    """Parse an ISO-8601 string (a trailing 'Z' is accepted) into naive UTC"""
    if isinstance(value, datetime):
        return ensure_naive_datetime(value)
    if not value or not isinstance(value, str):
        raise ValueError(f"Not an ISO date-time: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_naive_datetime(datetime.fromisoformat(text))


def days_until(value: DateLike, now: Optional[datetime] = None) -> int:
    """Whole days until the target, rounded up (a due date later today counts as 1)"""
    target = parse_iso_datetime(value)
    current = ensure_naive_datetime(now) if now else get_naive_utc_now()
    seconds = (target - current).total_seconds()
    return math.ceil(seconds / 86400)


def format_date(value: DateLike) -> str:
    """Display form, e.g. 'December 13, 2025'"""
    dt = parse_iso_datetime(value)
    return f"{dt.strftime('%B')} {dt.day}, {dt.year}"


def is_past_date(value: DateLike, now: Optional[datetime] = None) -> bool:
    current = ensure_naive_datetime(now) if now else get_naive_utc_now()
    return parse_iso_datetime(value) < current

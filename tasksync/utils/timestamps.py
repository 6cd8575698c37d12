"""Timestamp helpers shared by the codecs and providers."""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601-ish timestamp, returning None when it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return ensure_utc(date_parser.isoparse(text))
    except (ValueError, OverflowError):
        pass
    try:
        return ensure_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way it is written to BACKLOG.md and issue bodies."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Return now, or one microsecond past ``previous`` if the clock has not moved."""
    now = utc_now()
    if previous is not None and now <= ensure_utc(previous):
        return ensure_utc(previous) + timedelta(microseconds=1)
    return now

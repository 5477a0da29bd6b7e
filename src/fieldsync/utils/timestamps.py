"""
timestamps.py - UTC timestamp helpers.

All timestamps written by fieldsync use one fixed-width format so that
string comparison in SQL matches chronological order.
"""

from datetime import datetime, timezone
from typing import Callable

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Render a datetime in the canonical storage format.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a stored timestamp back into an aware UTC datetime.

    Accepts the canonical format, SQLite's CURRENT_TIMESTAMP
    ("YYYY-MM-DD HH:MM:SS") and ISO 8601 with an offset or "Z".
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def now_timestamp(clock: Clock = utc_now) -> str:
    return format_timestamp(clock())

"""
utils - Small shared helpers.
"""

from fieldsync.utils.timestamps import (
    Clock,
    format_timestamp,
    now_timestamp,
    parse_timestamp,
    utc_now,
)

__all__ = [
    "Clock",
    "format_timestamp",
    "now_timestamp",
    "parse_timestamp",
    "utc_now",
]

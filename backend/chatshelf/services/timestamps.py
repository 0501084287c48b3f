"""
Tolerant timestamp parsing for chat stats.

Hosts report the last-message time in several shapes:
1. Epoch numbers, in seconds or milliseconds (also as numeric strings)
2. ISO-8601 strings
3. The "humanized" form "2024-5-12 @14h 30m 12s 345ms"
4. Anything else dateutil can read ("May 12, 2024 2:30pm")

Everything is normalized to an aware UTC datetime; naive values are
taken as UTC. Unparseable input yields None, never an exception.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser

# Epoch values above this are milliseconds (year 5138 in seconds)
MILLISECONDS_THRESHOLD = 1e11

HUMANIZED_PATTERN = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})\s*@\s*(\d{1,2})h\s*(\d{1,2})m"
    r"(?:\s*(\d{1,2})s)?(?:\s*(\d{1,3})ms)?$"
)

NUMERIC_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")


def _from_epoch(value: float) -> Optional[datetime]:
    if value > MILLISECONDS_THRESHOLD:
        value = value / 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_humanized(text: str) -> Optional[datetime]:
    match = HUMANIZED_PATTERN.match(text)
    if not match:
        return None
    year, month, day, hour, minute, second, millis = match.groups()
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second or 0),
            int(millis or 0) * 1000,
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a last-message timestamp; None if it cannot be placed in time."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if NUMERIC_PATTERN.match(text):
        return _from_epoch(float(text))

    humanized = _parse_humanized(text)
    if humanized is not None:
        return humanized

    try:
        return _as_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def date_key(value: datetime) -> str:
    """Calendar day used to group the recent view, e.g. 2024-05-12."""
    return value.strftime("%Y-%m-%d")

"""Cell-level parsing primitives shared by every importer.

Spreadsheet exports are messy: numbers arrive as "1,234", "12.5%", blank
cells or the odd "n/a". These helpers never raise; they coerce to a safe
default instead. Numeric counters are clamped to >= 0.
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Any

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes"}

_INT_PREFIX_RE = re.compile(r"-?\d+")
_FLOAT_PREFIX_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def safe_parse_int(value: Any) -> int:
    """Parse an integer counter, ignoring thousands separators and stray symbols.

    "1,234" -> 1234, "12.7" -> 12, "" -> 0, "-5" -> 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    match = _INT_PREFIX_RE.match(cleaned)
    if not match:
        return 0
    return max(0, int(match.group(0)))


def safe_parse_float(value: Any) -> float:
    """Parse a non-negative float, e.g. "4.5%" -> 4.5. Defaults to 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    cleaned = re.sub(r"[^0-9.]", "", str(value))
    match = _FLOAT_PREFIX_RE.match(cleaned)
    if not match:
        return 0.0
    return max(0.0, float(match.group(0)))


def parse_boolean(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _reinterpret_numeric_date(text: str) -> datetime | None:
    """Retry "MM/DD/YYYY" and then "DD/MM/YYYY" for three-part numeric dates."""
    parts = re.split(r"[-/]", text)
    if len(parts) != 3:
        return None
    try:
        first, second, year = (int(p) for p in parts)
    except ValueError:
        return None
    for month, day in ((first, second), (second, first)):
        try:
            return datetime(year, month, day)
        except ValueError:
            continue
    return None


def parse_datetime(value: Any) -> datetime | None:
    """Parse a date/datetime cell into a naive UTC datetime, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None
    try:
        return to_naive_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        pass
    return _reinterpret_numeric_date(text)


def safe_parse_date(value: Any, strict: bool = False) -> datetime | None:
    """Parse a date cell, falling back to the current time when unparseable.

    In strict mode the fallback is disabled and None is returned so the
    caller can report the row instead of filing it under today's date.
    """
    parsed = parse_datetime(value)
    if parsed is not None:
        return parsed
    if strict:
        return None
    logger.warning("Could not parse date %r, using current date", value)
    return utcnow()


def engagement_rate(engagements: int, impressions: int) -> float:
    """engagements / impressions, 0 when there are no impressions, capped at 1."""
    if impressions <= 0:
        return 0.0
    return min(1.0, engagements / impressions)


def click_through_rate(clicks: int, impressions: int) -> float:
    if impressions <= 0:
        return 0.0
    return min(1.0, clicks / impressions)

"""Free-text timezone labels from spreadsheet headers, resolved to hour offsets."""

import re

# Matches "GMT+8", "GMT -5", "UTC+10"
_GMT_OFFSET_RE = re.compile(r"(?:GMT|UTC)\s*([+-]?\d+)", re.IGNORECASE)

# Matches the time column header, e.g. "Time (GMT +8)" or "time (EST)"
_TIME_HEADER_RE = re.compile(r"Time\s*\(([^)]+)\)", re.IGNORECASE)

TIMEZONE_OFFSETS: dict[str, float] = {
    "PST": -8,
    "PDT": -7,
    "MST": -7,
    "MDT": -6,
    "CST": -6,
    "CDT": -5,
    "EST": -5,
    "EDT": -4,
    "UTC": 0,
    "GMT": 0,
    "BST": 1,
    "CET": 1,
    "CEST": 2,
    "IST": 5.5,  # India
    "HKT": 8,
    "JST": 9,
    "AEST": 10,
    "AEDT": 11,
}


def resolve_offset_hours(label: str | None) -> float:
    """Map a timezone label to its offset from UTC in hours.

    Unknown or missing labels resolve to 0 (UTC). Use is_known_timezone()
    to tell a genuine UTC label apart from an unresolvable one.
    """
    if not label or not label.strip():
        return 0

    match = _GMT_OFFSET_RE.search(label)
    if match:
        return int(match.group(1))

    return TIMEZONE_OFFSETS.get(label.strip().upper(), 0)


def is_known_timezone(label: str | None) -> bool:
    if not label or not label.strip():
        return False
    return bool(_GMT_OFFSET_RE.search(label)) or label.strip().upper() in TIMEZONE_OFFSETS


def extract_timezone_label(header_line: str) -> str | None:
    """Pull the timezone label out of a header line such as "Date,Time (GMT +8),..."."""
    if not header_line:
        return None
    match = _TIME_HEADER_RE.search(header_line)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None

"""Export format detection by header signature.

Formats are recognized by an ordered list of rules. The first rule whose
predicate accepts the (lower-cased) header set wins, so more specific
formats come before the catch-all legacy Twitter format. Adding a format
means adding a rule, not another branch.
"""

import enum
import re
from dataclasses import dataclass
from typing import Callable, Iterable

from postflow.ingest import IngestError, UnsupportedFormatError, normalize_header, split_csv_records


class Format(str, enum.Enum):
    TYPEFULLY_TWEETS = "typefully-tweets"
    TWITTER_LEGACY = "twitter-legacy"
    POSTS_WORKFLOW = "posts-workflow"
    FOLLOWERS = "followers"
    AGENCY_ANALYTICS = "agency-analytics"


@dataclass(frozen=True)
class FormatRule:
    format: Format
    matches: Callable[[frozenset[str]], bool]


def _has_columns(*names: str) -> Callable[[frozenset[str]], bool]:
    """Every name must be an exact header."""
    return lambda headers: all(name in headers for name in names)


def _has_column_like(*fragments: str) -> Callable[[frozenset[str]], bool]:
    """Every fragment must appear inside at least one header."""
    return lambda headers: all(
        any(fragment in header for header in headers) for fragment in fragments
    )


def _is_agency_analytics(headers: frozenset[str]) -> bool:
    return bool({"client name", "clientname"} & headers) and "date" in headers


FOLLOWERS_RULE = FormatRule(Format.FOLLOWERS, _has_column_like("date range", "followers"))
TYPEFULLY_RULE = FormatRule(Format.TYPEFULLY_TWEETS, _has_columns("tweet_id", "created_at"))
POSTS_RULE = FormatRule(Format.POSTS_WORKFLOW, _has_column_like("topic outline", "typefully"))
AGENCY_ANALYTICS_RULE = FormatRule(Format.AGENCY_ANALYTICS, _is_agency_analytics)
TWITTER_LEGACY_RULE = FormatRule(Format.TWITTER_LEGACY, lambda headers: True)

# Typefully tweet exports vs. everything else on the tweets upload path
ANALYTICS_RULES: tuple[FormatRule, ...] = (TYPEFULLY_RULE, TWITTER_LEGACY_RULE)

ALL_RULES: tuple[FormatRule, ...] = (
    FOLLOWERS_RULE,
    TYPEFULLY_RULE,
    POSTS_RULE,
    AGENCY_ANALYTICS_RULE,
    TWITTER_LEGACY_RULE,
)


def _header_set(headers: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_header(h) for h in headers if h is not None)


def detect_format(
    headers: Iterable[str],
    rules: tuple[FormatRule, ...] = ALL_RULES,
) -> Format:
    """Return the format of the first rule matching the headers.

    Raises:
        UnsupportedFormatError: If no rule matches.
    """
    header_set = _header_set(headers)
    for rule in rules:
        if rule.matches(header_set):
            return rule.format
    raise UnsupportedFormatError(
        f"Unrecognized CSV format (headers: {', '.join(sorted(header_set))})"
    )


def detect_analytics_format(headers: Iterable[str]) -> Format:
    """Classify a tweets upload as a Typefully export or a legacy Twitter export."""
    return detect_format(headers, ANALYTICS_RULES)


def detect_csv_format(csv_content: str) -> Format:
    """Classify raw CSV text by its first line.

    A first line whose first cell is a date is a posts sheet exported without
    its header row; anything else is treated as a header.

    Raises:
        IngestError: If the content is empty.
    """
    records = split_csv_records(csv_content) if csv_content and csv_content.strip() else []
    if not records:
        raise IngestError("CSV file is empty")
    first = records[0]
    if first and looks_like_date(first[0]):
        return Format.POSTS_WORKFLOW
    return detect_format(first)


def require_followers_format(headers: Iterable[str]) -> None:
    if not FOLLOWERS_RULE.matches(_header_set(headers)):
        raise UnsupportedFormatError(
            'Invalid followers CSV format. Expected "Date Range" and "Followers" columns'
        )


# ---------------------------------------------------------------------------
# Posts workflow header repair
# ---------------------------------------------------------------------------

SYNTHESIZED_POSTS_HEADER = (
    "Date",
    "Topic Outline",
    "Format",
    "Typefully Draft Link",
    None,  # time column, filled in per file
    "Typefully Scheduling",
    "Approval",
    "Status",
)

_NUMERIC_DATE_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$")

_DATA_DATE_RE = re.compile(
    r"^(?:"
    r"\d{1,2}/\d{1,2}(?:/\d{2,4})?"
    r"|\d{4}-\d{1,2}-\d{1,2}"
    r"|(?:[a-z]+,?\s+)?(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?"
    r"|\d{1,2}\s+(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?(?:\s+\d{4})?"
    r")$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class PostsHeader:
    columns: list[str]
    # True when the first CSV record is data and the header was synthesized
    synthesized: bool
    # True when no time column was found and the configured default stands in
    assumed_time_header: bool = False


def looks_like_date(cell: str) -> bool:
    return bool(_DATA_DATE_RE.match(cell.strip()))


def resolve_posts_header(first_record: list[str], default_time_header: str) -> PostsHeader:
    """Decide whether the first CSV record is a header row, repairing it if needed.

    Exports from the posts planning spreadsheet sometimes lose their header
    row (the first line is already a post) or carry a date in the header's
    first cell instead of "Date".

    Raises:
        UnsupportedFormatError: If the first record is neither a header nor a
            dated data row.
    """
    columns = [cell.strip() for cell in first_record]
    lowered = [col.lower() for col in columns]

    has_proper_headers = any("topic outline" in col for col in lowered) and any(
        "typefully" in col for col in lowered
    )
    if has_proper_headers:
        if columns and _NUMERIC_DATE_RE.match(columns[0]):
            columns[0] = "Date"
        return PostsHeader(columns=columns, synthesized=False)

    if columns and looks_like_date(columns[0]):
        time_header = next(
            (col for col in columns if "time" in col.lower() and "(" in col),
            None,
        )
        synthesized = [
            name or time_header or default_time_header
            for name in SYNTHESIZED_POSTS_HEADER
        ]
        return PostsHeader(
            columns=synthesized,
            synthesized=True,
            assumed_time_header=time_header is None,
        )

    raise UnsupportedFormatError(
        "Posts CSV is missing required columns. Expected a header row with "
        '"Topic Outline" and "Typefully Draft Link"'
    )

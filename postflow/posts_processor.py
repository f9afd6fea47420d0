"""Posts planning spreadsheet import.

The planning sheet lists one drafted post per row with its Typefully draft
link, a local publish date and time, and the reviewer's approval state.
Conventions handled here:

  - The date cell is only filled on the first post of each day; later rows
    inherit it (carry-forward).
  - Dates often have no year ("August 7"). The year is inferred relative to
    today so sheets spanning New Year resolve correctly.
  - Times are wall-clock times in the timezone named in the time column's
    header, e.g. "Time (GMT +8)". They are stored as naive UTC.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from itertools import accumulate
from typing import Any, Callable, Iterable

from dateutil import parser as date_parser
from sqlalchemy.orm import Session

from postflow.config import settings
from postflow.formats import Format, resolve_posts_header
from postflow.ingest import (
    IngestError,
    NotFoundError,
    rows_from_records,
    split_csv_records,
)
from postflow.models import Client, PostStatus, UploadStatus
from postflow.parsing import parse_datetime, utcnow
from postflow.store import (
    advance_upload,
    create_upload,
    fail_upload,
    finalize_upload,
    save_posts,
)
from postflow.timezones import extract_timezone_label, is_known_timezone, resolve_offset_hours

logger = logging.getLogger(__name__)

DEFAULT_CONTENT = "Post content not specified"
MAX_CONTENT_LENGTH = 1000

# A date further ahead than this is taken to belong to last year
YEAR_ROLLBACK_THRESHOLD = timedelta(days=180)

_FOUR_DIGIT_YEAR_RE = re.compile(r"\d{4}")
_TIME_RE = re.compile(
    r"^\s*(\d{1,2})(?::(\d{1,2}))?(?::\d{1,2})?\s*(?:([ap])\.?m?\.?)?\s*$",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Column schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostsSchema:
    """Logical field name -> predicate over a normalized header name."""

    fields: dict[str, Callable[[str], bool]]
    required: tuple[str, ...] = ()

    def resolve(self, headers: Iterable[str]) -> dict[str, str | None]:
        """Bind each logical field to the first matching header, once per file."""
        headers = list(headers)
        columns = {
            name: next((h for h in headers if matches(h)), None)
            for name, matches in self.fields.items()
        }
        missing = [name for name in self.required if columns[name] is None]
        if missing:
            raise IngestError(
                f"Posts CSV is missing required columns: {', '.join(missing)}"
            )
        return columns


POSTS_SCHEMA = PostsSchema(
    fields={
        "date": lambda h: h == "date",
        "topic_outline": lambda h: "topic outline" in h,
        "tweet_text": lambda h: "tweet text" in h,
        "typefully_link": lambda h: "typefully draft link" in h,
        "time": lambda h: h.startswith("time ("),
        "approval": lambda h: "approval" in h,
        "status": lambda h: h == "status",
        "client": lambda h: h == "client",
    },
    required=("typefully_link",),
)


def _cell(row: dict[str, str], columns: dict[str, str | None], name: str) -> str:
    key = columns.get(name)
    if key is None:
        return ""
    return (row.get(key) or "").strip()


# ---------------------------------------------------------------------------
# Carry-forward dates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CarryState:
    last_date: str | None = None


def carry_date(state: CarryState, cell: str) -> CarryState:
    """One step of the fold: a non-blank cell replaces the carried date."""
    cell = (cell or "").strip()
    return CarryState(last_date=cell) if cell else state


def effective_dates(cells: Iterable[str]) -> list[str | None]:
    """The date each row resolves to, in row order.

    A blank cell takes the last non-blank date above it. Rows before the
    first dated row resolve to None.
    """
    states = accumulate(cells, carry_date, initial=CarryState())
    next(states)  # initial state
    return [state.last_date for state in states]


# ---------------------------------------------------------------------------
# Dates, times and status
# ---------------------------------------------------------------------------


def infer_date(text: str, now: datetime | None = None) -> date | None:
    """Parse a sheet date, supplying the year when the cell has none."""
    text = (text or "").strip()
    if not text:
        return None

    if _FOUR_DIGIT_YEAR_RE.search(text):
        parsed = parse_datetime(text)
        return parsed.date() if parsed else None

    now = now or utcnow()
    try:
        candidate = date_parser.parse(text, default=datetime(now.year, 1, 1))
    except (ValueError, OverflowError):
        return None

    if candidate.year == now.year and candidate - now > YEAR_ROLLBACK_THRESHOLD:
        try:
            candidate = candidate.replace(year=now.year - 1)
        except ValueError:
            # Feb 29 in a non-leap year
            candidate = candidate.replace(year=now.year - 1, day=28)
    return candidate.date()


def parse_time_of_day(text: str) -> tuple[int, int] | None:
    """Parse "14:30", "9:05" or "2:30 PM" into (hour, minute)."""
    match = _TIME_RE.match(text or "")
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").lower()
    if meridiem == "p" and hours < 12:
        hours += 12
    elif meridiem == "a" and hours == 12:
        hours = 0
    if hours > 23 or minutes > 59:
        return None
    return hours, minutes


def to_utc(day: date, hours: int, minutes: int, offset_hours: float) -> datetime:
    """Local wall-clock time at a fixed UTC offset -> naive UTC."""
    local = datetime(day.year, day.month, day.day, hours, minutes)
    return local - timedelta(hours=offset_hours)


def resolve_status(status_cell: str, approval_cell: str) -> PostStatus:
    """A "Posted" status always wins; otherwise the approval column decides."""
    if "posted" in status_cell.lower():
        return PostStatus.PUBLISHED

    approval = approval_cell.lower()
    if "needs revision" in approval:
        return PostStatus.SUGGEST_CHANGES
    if "approved" in approval:
        return PostStatus.APPROVED
    if "rejected" in approval:
        return PostStatus.REJECTED
    return PostStatus.PENDING


def normalize_typefully_url(link: str) -> str:
    link = link.strip()
    if not link.startswith("http"):
        link = f"https://{link}"
    return link


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


def normalize_posts_rows(
    rows: list[dict[str, str]],
    columns: dict[str, str | None],
    offset_hours: float | None,
    *,
    first_line_number: int = 2,
    now: datetime | None = None,
    errors: list[str] | None = None,
    strict: bool = False,
) -> list[dict[str, Any]]:
    """Turn planning-sheet rows into Post field dicts.

    Args:
        rows: Rows keyed by normalized header.
        columns: POSTS_SCHEMA.resolve() output for the file.
        offset_hours: Timezone offset for the time column, or None when the
            timezone could not be resolved and times must not be trusted.
        first_line_number: CSV line number of rows[0], for error messages.
        now: Reference time for year inference.
        errors: Row errors are appended here.
        strict: Report unparseable dates instead of silently leaving the
            scheduled date empty.
    """
    now = now or utcnow()
    dates = effective_dates(_cell(row, columns, "date") for row in rows)

    posts = []
    for offset, (row, day_text) in enumerate(zip(rows, dates)):
        link = _cell(row, columns, "typefully_link")
        if not link:
            continue
        line = first_line_number + offset

        scheduled_date = None
        time_text = _cell(row, columns, "time")
        if day_text and time_text and offset_hours is not None:
            day = infer_date(day_text, now)
            clock = parse_time_of_day(time_text)
            if day is not None and clock is not None:
                scheduled_date = to_utc(day, clock[0], clock[1], offset_hours)
            else:
                logger.warning(
                    "Could not parse schedule on line %d: date=%r time=%r",
                    line, day_text, time_text,
                )
                if strict and errors is not None:
                    errors.append(
                        f'Row {line}: Could not parse date "{day_text}" and time "{time_text}"'
                    )

        content = _cell(row, columns, "topic_outline") or DEFAULT_CONTENT
        posts.append(
            {
                "content": content[:MAX_CONTENT_LENGTH],
                "tweet_text": _cell(row, columns, "tweet_text") or None,
                "typefully_url": normalize_typefully_url(link),
                "scheduled_date": scheduled_date,
                "status": resolve_status(
                    _cell(row, columns, "status"), _cell(row, columns, "approval")
                ),
                "client_name": _cell(row, columns, "client") or None,
            }
        )
    return posts


def find_client_for_posts(
    session: Session,
    agency_id: int,
    posts: list[dict[str, Any]],
) -> Client | None:
    """Find the agency's client named in the first post's Client column."""
    client_name = posts[0].get("client_name") if posts else None
    if not client_name:
        return None
    return (
        session.query(Client)
        .filter(Client.agency_id == agency_id, Client.name.contains(client_name))
        .order_by(Client.id)
        .first()
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


def process_posts_upload_file(
    session: Session,
    agency_id: int,
    client_id: int | None,
    csv_content: str,
    filename: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Import a posts planning CSV.

    When client_id is None the client is looked up from the sheet's Client
    column. The client's stored timezone is replaced by the one named in
    the time column header, if any.

    Returns:
        {success, processedRecords, savedPosts, timezone, uploadId, errors}

    Raises:
        NotFoundError: If the client does not exist for the agency.
        IngestError: "Posts CSV processing failed: <cause>" when the file
            cannot be imported at all.
    """
    client = None
    if client_id is not None:
        client = session.get(Client, client_id)
        if client is None or client.agency_id != agency_id:
            raise NotFoundError(f"Client not found: {client_id}")

    upload = create_upload(
        session,
        agency_id=agency_id,
        client_id=client_id,
        original_name=filename or "posts.csv",
        content=csv_content,
        file_format=Format.POSTS_WORKFLOW.value,
    )
    upload_id = upload.id
    strict = settings.strict_parsing
    errors: list[str] = []

    try:
        if not csv_content or not csv_content.strip():
            raise IngestError("CSV file is empty")
        records = split_csv_records(csv_content)
        if not records:
            raise IngestError("CSV file is empty")

        header = resolve_posts_header(records[0], settings.default_time_header)
        data = records if header.synthesized else records[1:]
        table = rows_from_records(
            header.columns, data, first_line_number=1 if header.synthesized else 2
        )
        columns = POSTS_SCHEMA.resolve(table.headers)

        # Read from the file's own first line, never from a synthesized header
        timezone_label = extract_timezone_label(",".join(records[0]))
        offset_hours: float | None = resolve_offset_hours(timezone_label)
        if timezone_label and not is_known_timezone(timezone_label):
            logger.warning("Unknown timezone %r, treating times as UTC", timezone_label)
            if strict:
                errors.append(
                    f'Unknown timezone "{timezone_label}"; scheduled dates were left empty'
                )
                offset_hours = None
        if header.assumed_time_header:
            logger.info("Posts CSV has no header row or time label; times are read as UTC")
        upload.timezone = timezone_label
        advance_upload(upload, UploadStatus.PARSED)

        posts = normalize_posts_rows(
            table.rows,
            columns,
            offset_hours,
            first_line_number=1 if header.synthesized else 2,
            now=now,
            errors=errors,
            strict=strict,
        )
        if not posts:
            raise IngestError("No posts with a Typefully draft link found in CSV")
        advance_upload(upload, UploadStatus.NORMALIZED)

        if client is None:
            client = find_client_for_posts(session, agency_id, posts)
            if client is None:
                raise NotFoundError("No client given and none matched the CSV Client column")
            upload.client_id = client.id

        stats = save_posts(session, client.id, upload_id, posts)
        advance_upload(upload, UploadStatus.PERSISTED)

        found_timezone = timezone_label
        if found_timezone:
            client.timezone = found_timezone
            logger.info("Client %s timezone set to %s", client.id, found_timezone)
        finalize_upload(session, upload, stats, posts_count=stats.processed)
    except Exception as exc:
        logger.error("Posts CSV processing failed for upload %s: %s", upload_id, exc)
        session.rollback()
        message = str(exc) or exc.__class__.__name__
        fail_upload(session, upload_id, message)
        error_cls = NotFoundError if isinstance(exc, NotFoundError) else IngestError
        raise error_cls(f"Posts CSV processing failed: {message}") from exc

    return {
        "success": True,
        "processedRecords": len(posts),
        "savedPosts": stats.processed,
        "timezone": found_timezone,
        "uploadId": upload_id,
        "errors": errors + stats.errors,
    }

"""Excel reports and Excel-driven updates.

Reports are built with openpyxl in memory and returned as .xlsx bytes.
Imports read the first worksheet of an uploaded workbook, with the first
row as headers.
"""

import io
import logging
from datetime import date, datetime
from typing import Any

import openpyxl
from sqlalchemy.orm import Session

from postflow.analytics_processor import import_agency_analytics_rows
from postflow.config import settings
from postflow.ingest import IngestError, NotFoundError, first_value, normalize_header
from postflow.models import Analytics, Client, Post, PostStatus

logger = logging.getLogger(__name__)

POSTS_REPORT_SHEET = "Posts Report"
POSTS_REPORT_HEADERS = [
    "Client Name",
    "Post Content",
    "Tweet Text",
    "Typefully URL",
    "Scheduled Date",
    "Status",
    "Feedback",
    "Created At",
    "Updated At",
]

CLIENT_POSTS_HEADERS = [
    "Post Content",
    "Tweet Text",
    "Typefully URL",
    "Status",
    "Scheduled Date",
    "Feedback",
    "Created At",
    "Updated At",
]

CLIENT_ANALYTICS_HEADERS = [
    "Date",
    "Impressions",
    "Engagements",
    "Engagement Rate",
    "Retweets",
    "Replies",
    "Likes",
    "Profile Clicks",
    "URL Clicks",
    "Hashtag Clicks",
    "Media Views",
    "Follows",
]

VALID_STATUSES = {status.value for status in PostStatus}


def _iso(value: datetime | date | None) -> str:
    """ISO-8601 text for a stored (naive UTC) datetime, or "" when unset."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds") + "Z"
    return value.isoformat()


def _status_text(status: PostStatus | str) -> str:
    return status.value if isinstance(status, PostStatus) else str(status)


def _to_bytes(wb: openpyxl.Workbook) -> bytes:
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _new_workbook() -> openpyxl.Workbook:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    return wb


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def generate_excel_report(session: Session, agency_id: int) -> bytes:
    """All posts of the agency's clients, newest first, as a one-sheet workbook."""
    posts = (
        session.query(Post)
        .join(Client, Post.client_id == Client.id)
        .filter(Client.agency_id == agency_id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )

    wb = _new_workbook()
    ws = wb.create_sheet(POSTS_REPORT_SHEET)
    ws.append(POSTS_REPORT_HEADERS)
    for post in posts:
        ws.append([
            post.client.name,
            post.content,
            post.tweet_text or "",
            post.typefully_url,
            _iso(post.scheduled_date),
            _status_text(post.status),
            post.feedback or "",
            _iso(post.created_at),
            _iso(post.updated_at),
        ])

    logger.info("Generated posts report for agency %s: %d posts", agency_id, len(posts))
    return _to_bytes(wb)


def generate_client_report(session: Session, client_id: int) -> bytes:
    """A client's posts and most recent daily analytics.

    Each sheet is written only when it has rows. A client with neither gets
    an empty "Posts" sheet so the workbook stays valid.
    """
    client = session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client not found: {client_id}")

    posts = (
        session.query(Post)
        .filter(Post.client_id == client_id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )
    analytics = (
        session.query(Analytics)
        .filter(Analytics.client_id == client_id)
        .order_by(Analytics.date.desc())
        .limit(settings.client_report_days)
        .all()
    )

    wb = _new_workbook()

    if posts:
        ws = wb.create_sheet("Posts")
        ws.append(CLIENT_POSTS_HEADERS)
        for post in posts:
            ws.append([
                post.content,
                post.tweet_text or "",
                post.typefully_url,
                _status_text(post.status),
                _iso(post.scheduled_date),
                post.feedback or "",
                _iso(post.created_at),
                _iso(post.updated_at),
            ])

    if analytics:
        ws = wb.create_sheet("Analytics")
        ws.append(CLIENT_ANALYTICS_HEADERS)
        for record in analytics:
            ws.append([
                record.date.isoformat(),
                record.impressions,
                record.engagements,
                f"{(record.engagement_rate or 0.0) * 100:.2f}%",
                record.retweets,
                record.replies,
                record.likes,
                record.profile_clicks,
                record.url_clicks,
                record.hashtag_clicks,
                record.media_views,
                record.follows,
            ])

    if not wb.sheetnames:
        wb.create_sheet("Posts").append(CLIENT_POSTS_HEADERS)

    logger.info(
        "Generated report for client %s: %d posts, %d analytics days",
        client_id, len(posts), len(analytics),
    )
    return _to_bytes(wb)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


def read_sheet_rows(content: bytes) -> list[tuple[int, dict[str, Any]]]:
    """(sheet row number, row) pairs from the first worksheet.

    Rows are keyed by normalized header. Blank rows are skipped, but the
    numbers stay those of the sheet, so error messages point at real rows.

    Raises:
        IngestError: If the workbook cannot be opened or has no header row.
    """
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=False, data_only=True)
    except Exception as exc:
        raise IngestError(f"Could not read Excel file: {exc}") from exc

    try:
        ws = wb.worksheets[0]
        header = next(ws.iter_rows(max_row=1, values_only=True), None)
        if not header or not any(cell is not None for cell in header):
            raise IngestError("Excel sheet has no header row")
        keys = [normalize_header(str(cell)) if cell is not None else "" for cell in header]

        records = []
        for row_number, values in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
            if all(v is None or not str(v).strip() for v in values):
                continue
            record: dict[str, Any] = {}
            for key, value in zip(keys, values):
                if key and key not in record:
                    record[key] = value
            records.append((row_number, record))
        return records
    finally:
        wb.close()


def process_excel_upload(session: Session, agency_id: int, content: bytes) -> dict[str, Any]:
    """Apply status and feedback edits from a posts report workbook.

    Posts are matched by Typefully URL and client name within the agency.

    Returns:
        {updated, errors}
    """
    rows = read_sheet_rows(content)
    updated = 0
    errors: list[str] = []

    for row_number, row in rows:
        url = first_value(row, "typefully url", "typefullyurl")
        client_name = first_value(row, "client name", "clientname")
        try:
            post = (
                session.query(Post)
                .join(Client, Post.client_id == Client.id)
                .filter(
                    Post.typefully_url == url,
                    Client.name == client_name,
                    Client.agency_id == agency_id,
                )
                .first()
            )
            if post is None:
                errors.append(
                    f'Row {row_number}: Post not found for client "{client_name}" with URL "{url}"'
                )
                continue

            status = first_value(row, "status").upper()
            if status not in VALID_STATUSES:
                errors.append(f'Row {row_number}: Invalid status "{status}"')
                continue

            with session.begin_nested():
                post.status = PostStatus(status)
                post.feedback = first_value(row, "feedback") or None
            updated += 1
        except Exception as exc:
            logger.warning("Failed to apply Excel row %d: %s", row_number, exc)
            errors.append(f"Row {row_number}: {exc}")

    session.commit()
    logger.info("Excel posts update for agency %s: %d updated, %d errors", agency_id, updated, len(errors))
    return {"updated": updated, "errors": errors}


def process_analytics_upload(session: Session, agency_id: int, content: bytes) -> dict[str, Any]:
    """Import agency daily analytics from the first sheet of a workbook.

    Returns:
        {imported, errors}
    """
    return import_agency_analytics_rows(session, agency_id, read_sheet_rows(content))

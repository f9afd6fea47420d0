"""Tweet, daily and follower analytics imports from CSV exports.

Three exports are handled here:
  - Typefully per-tweet exports (tweet_id, created_at, ...), upserted per tweet
  - Legacy Twitter account exports (date, impressions, ...), which replace
    the client's daily rows over the file's date span
  - Typefully follower exports (Date Range, Followers), upserted per week
"""

import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from postflow.config import settings
from postflow.formats import Format, detect_analytics_format, require_followers_format
from postflow.ingest import IngestError, NotFoundError, first_value, read_csv_rows
from postflow.models import Client, UploadStatus
from postflow.parsing import (
    click_through_rate,
    engagement_rate,
    parse_boolean,
    parse_datetime,
    safe_parse_date,
    safe_parse_float,
    safe_parse_int,
)
from postflow.store import (
    UpsertStats,
    advance_upload,
    fail_upload,
    finalize_upload,
    get_upload,
    replace_daily_analytics_range,
    save_follower_analytics,
    save_tweet_analytics,
)

logger = logging.getLogger(__name__)

# Typefully export column -> TweetAnalytics field
TYPEFULLY_COUNTERS = {
    "retweet_count": "retweet_count",
    "reply_count": "reply_count",
    "like_count": "like_count",
    "quote_count": "quote_count",
    "impression_count": "impression_count",
    "user_profile_clicks": "user_profile_clicks",
    "bookmark_count": "bookmark_count",
    "url_link_clicks": "url_link_clicks",
    "total_engagements": "total_engagements",
    "conversation_length": "conversation_length",
}

TYPEFULLY_FLAGS = ("is_thread_head", "is_thread_part", "is_note_tweet")

# Legacy Twitter export column -> Analytics field
TWITTER_COUNTERS = {
    "impressions": "impressions",
    "engagements": "engagements",
    "likes": "likes",
    "replies": "replies",
    "reposts": "retweets",
    "profile visits": "profile_clicks",
    "new follows": "follows",
    "media views": "media_views",
    "video views": "media_engagements",
}

# Counters the legacy export does not carry
TWITTER_UNAVAILABLE = (
    "url_clicks",
    "hashtag_clicks",
    "detail_expands",
    "permalink_clicks",
    "app_opens",
    "app_installs",
    "email_tweet",
    "dial_phone",
)

_FOLLOWER_COUNT_RE = re.compile(r"-?\d+")


def _row_label(index: int) -> str:
    # Row 1 is the header
    return f"Row {index + 2}"


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------


def normalize_typefully_rows(
    rows: list[dict[str, str]],
    errors: list[str] | None = None,
    strict: bool = False,
) -> list[dict[str, Any]]:
    """Map Typefully tweet export rows to TweetAnalytics field dicts.

    Rows without a tweet_id are dropped.
    """
    records = []
    for index, row in enumerate(rows):
        tweet_id = first_value(row, "tweet_id")
        if not tweet_id:
            continue

        created_at = safe_parse_date(row.get("created_at"), strict=strict)
        if created_at is None:
            if errors is not None:
                errors.append(
                    f"{_row_label(index)}: Invalid created_at \"{row.get('created_at', '')}\""
                )
            continue

        record: dict[str, Any] = {
            "tweet_id": tweet_id,
            "tweet_url": first_value(row, "url"),
            "text": row.get("text") or "",
            "created_at": created_at,
            "engagement_rate": safe_parse_float(row.get("engagement_rate")),
        }
        for column, name in TYPEFULLY_COUNTERS.items():
            record[name] = safe_parse_int(row.get(column))
        for flag in TYPEFULLY_FLAGS:
            record[flag] = parse_boolean(row.get(flag))
        records.append(record)
    return records


def normalize_twitter_rows(
    rows: list[dict[str, str]],
    errors: list[str] | None = None,
    strict: bool = False,
) -> list[dict[str, Any]]:
    """Map legacy Twitter analytics rows to daily Analytics field dicts.

    Rows without a date are dropped. Rates are derived from the counters
    rather than read from the file.
    """
    records = []
    for index, row in enumerate(rows):
        raw_date = first_value(row, "date")
        if not raw_date:
            continue

        parsed = safe_parse_date(raw_date, strict=strict)
        if parsed is None:
            if errors is not None:
                errors.append(f'{_row_label(index)}: Invalid date "{raw_date}"')
            continue

        record: dict[str, Any] = {"date": parsed.date()}
        for column, name in TWITTER_COUNTERS.items():
            record[name] = safe_parse_int(row.get(column))
        for name in TWITTER_UNAVAILABLE:
            record[name] = 0

        record["engagement_rate"] = engagement_rate(
            record["engagements"], record["impressions"]
        )
        record["click_through_rate"] = click_through_rate(
            record["profile_clicks"], record["impressions"]
        )
        records.append(record)
    return records


def _parse_follower_count(value: str) -> int | None:
    """Whole follower count, clamped to >= 0; None when the cell is not a number."""
    match = _FOLLOWER_COUNT_RE.match(value.replace(",", "").strip())
    return max(0, int(match.group(0))) if match else None


def normalize_followers_rows(
    rows: list[dict[str, str]],
    headers: list[str] | None = None,
) -> list[dict[str, Any]]:
    """Parse weekly follower rows into FollowerAnalytics field dicts.

    "2025-08-02 - 2025-08-08" gives a start and end date; a single date is
    used for both. Blank or unparseable rows are skipped. followers_gained is
    the change from the previous valid row, 0 for the first one.
    """
    headers = headers or (list(rows[0].keys()) if rows else [])
    range_key = next((h for h in headers if "date range" in h), "date range")
    count_key = next((h for h in headers if "followers" in h), "followers")

    records = []
    previous_count: int | None = None
    for row in rows:
        date_range = (row.get(range_key) or "").strip()
        count_text = (row.get(count_key) or "").strip()
        if not date_range or not count_text:
            logger.debug("Skipping follower row with blank cells: %r", row)
            continue

        start_text, _, end_text = date_range.partition(" - ")
        start = parse_datetime(start_text.strip())
        end = parse_datetime(end_text.strip()) if end_text.strip() else start
        if start is None or end is None:
            logger.debug("Skipping follower row with bad date range %r", date_range)
            continue

        follower_count = _parse_follower_count(count_text)
        if follower_count is None:
            logger.debug("Skipping follower row with bad count %r", count_text)
            continue

        gained = follower_count - previous_count if previous_count is not None else 0
        records.append(
            {
                "start_date": start.date(),
                "end_date": end.date(),
                "follower_count": follower_count,
                "followers_gained": gained,
            }
        )
        previous_count = follower_count
    return records


# ---------------------------------------------------------------------------
# Orchestrators
# ---------------------------------------------------------------------------


def _result(stats: UpsertStats, fmt: Format, errors: list[str]) -> dict[str, Any]:
    return {
        "success": True,
        "processedRecords": stats.processed,
        "newRecords": stats.created,
        "updatedRecords": stats.updated,
        "skippedRecords": stats.skipped,
        "format": fmt.value,
        "errors": errors + stats.errors,
    }


def _require_client(session: Session, client_id: int) -> Client:
    client = session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client not found: {client_id}")
    return client


def _fail(session: Session, upload_id: int, prefix: str, exc: Exception) -> IngestError:
    """Roll back, mark the upload failed and build the wrapped fatal error."""
    session.rollback()
    message = str(exc) or exc.__class__.__name__
    fail_upload(session, upload_id, message)
    error_cls = NotFoundError if isinstance(exc, NotFoundError) else IngestError
    return error_cls(f"{prefix}{message}")


def process_uploaded_file(
    session: Session,
    upload_id: int,
    client_id: int,
    csv_content: str,
) -> dict[str, Any]:
    """Import a tweets CSV (Typefully or legacy Twitter) for a client.

    Returns:
        {success, processedRecords, newRecords, updatedRecords,
        skippedRecords, format, errors}

    Raises:
        IngestError: "CSV processing failed: <cause>" when nothing can be
            imported (empty file, unknown upload/client, no valid rows).
    """
    strict = settings.strict_parsing
    try:
        upload = get_upload(session, upload_id)
        _require_client(session, client_id)

        table = read_csv_rows(csv_content)
        fmt = detect_analytics_format(table.headers)
        upload.format = fmt.value
        advance_upload(upload, UploadStatus.PARSED)
        logger.info("Detected %s export for client %s", fmt.value, client_id)

        errors: list[str] = []
        if fmt is Format.TYPEFULLY_TWEETS:
            records = normalize_typefully_rows(table.rows, errors, strict)
            if not records:
                raise IngestError("No valid tweet data found in Typefully CSV")
            advance_upload(upload, UploadStatus.NORMALIZED)
            stats = save_tweet_analytics(session, client_id, upload_id, records)
        else:
            records = normalize_twitter_rows(table.rows, errors, strict)
            if not records:
                raise IngestError("No valid analytics data found in Twitter CSV")
            advance_upload(upload, UploadStatus.NORMALIZED)
            stats = replace_daily_analytics_range(session, client_id, upload_id, records)

        advance_upload(upload, UploadStatus.PERSISTED)
        finalize_upload(session, upload, stats)
    except Exception as exc:
        logger.error("CSV processing failed for upload %s: %s", upload_id, exc)
        raise _fail(session, upload_id, "CSV processing failed: ", exc) from exc

    logger.info(
        "Processed %s CSV: %d new, %d updated, %d skipped",
        fmt.value, stats.created, stats.updated, stats.skipped,
    )
    return _result(stats, fmt, errors)


def process_followers_file(
    session: Session,
    upload_id: int,
    client_id: int,
    csv_content: str,
) -> dict[str, Any]:
    """Import a Typefully followers CSV for a client.

    Raises:
        IngestError: "Followers CSV processing failed: <cause>".
    """
    try:
        upload = get_upload(session, upload_id)
        _require_client(session, client_id)

        table = read_csv_rows(csv_content)
        require_followers_format(table.headers)
        upload.format = Format.FOLLOWERS.value
        advance_upload(upload, UploadStatus.PARSED)

        records = normalize_followers_rows(table.rows, table.headers)
        if not records:
            raise IngestError("No valid follower data found in CSV")
        advance_upload(upload, UploadStatus.NORMALIZED)

        stats = save_follower_analytics(session, client_id, upload_id, records)
        advance_upload(upload, UploadStatus.PERSISTED)
        finalize_upload(session, upload, stats)
    except Exception as exc:
        logger.error("Followers CSV processing failed for upload %s: %s", upload_id, exc)
        raise _fail(session, upload_id, "Followers CSV processing failed: ", exc) from exc

    return _result(stats, Format.FOLLOWERS, [])

"""Natural-key upserts and upload bookkeeping.

Every batch writer here runs each row inside its own SAVEPOINT, so a row
that fails to persist is rolled back on its own, logged, and counted as
skipped while the rest of the batch carries on. The session is committed
once, at the end of the batch.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from postflow.ingest import NotFoundError, compute_content_hash
from postflow.models import (
    Analytics,
    FollowerAnalytics,
    Post,
    TweetAnalytics,
    Upload,
    UploadStatus,
)
from postflow.parsing import utcnow

logger = logging.getLogger(__name__)


class UpsertOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class UpsertStats:
    """Counts from one batch of upserts."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.CREATED:
            self.created += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1


def _apply(instance: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(instance, key, value)


def _columns_of(model, record: dict[str, Any]) -> dict[str, Any]:
    """Keep only the record keys that are columns of the model."""
    names = set(model.__table__.columns.keys())
    return {k: v for k, v in record.items() if k in names}


# ---------------------------------------------------------------------------
# Single-row upserts
# ---------------------------------------------------------------------------


def upsert_tweet_analytics(
    session: Session,
    client_id: int,
    upload_id: int | None,
    record: dict[str, Any],
) -> UpsertOutcome:
    """Insert or fully update a tweet's analytics, keyed by (client_id, tweet_id).

    A later import is treated as authoritative for every field.
    """
    tweet_id = record.get("tweet_id")
    if not tweet_id:
        return UpsertOutcome.SKIPPED

    values = _columns_of(TweetAnalytics, record)
    values.update(client_id=client_id, upload_id=upload_id)

    existing = (
        session.query(TweetAnalytics)
        .filter_by(client_id=client_id, tweet_id=tweet_id)
        .first()
    )
    if existing:
        _apply(existing, values)
        return UpsertOutcome.UPDATED

    session.add(TweetAnalytics(**values))
    return UpsertOutcome.CREATED


def upsert_daily_analytics(
    session: Session,
    client_id: int,
    record: dict[str, Any],
    upload_id: int | None = None,
) -> UpsertOutcome:
    """Insert or update one day of account analytics, keyed by (client_id, date)."""
    values = _columns_of(Analytics, record)
    values.update(client_id=client_id, upload_id=upload_id)

    existing = (
        session.query(Analytics)
        .filter_by(client_id=client_id, date=record["date"])
        .first()
    )
    if existing:
        _apply(existing, values)
        return UpsertOutcome.UPDATED

    session.add(Analytics(**values))
    return UpsertOutcome.CREATED


def upsert_follower_analytics(
    session: Session,
    client_id: int,
    upload_id: int | None,
    record: dict[str, Any],
) -> UpsertOutcome:
    values = _columns_of(FollowerAnalytics, record)
    values["follower_count"] = max(0, int(values.get("follower_count") or 0))
    values.update(client_id=client_id, upload_id=upload_id)

    existing = (
        session.query(FollowerAnalytics)
        .filter_by(
            client_id=client_id,
            start_date=record["start_date"],
            end_date=record["end_date"],
        )
        .first()
    )
    if existing:
        _apply(existing, values)
        return UpsertOutcome.UPDATED

    session.add(FollowerAnalytics(**values))
    return UpsertOutcome.CREATED


def upsert_post(
    session: Session,
    client_id: int,
    upload_id: int | None,
    record: dict[str, Any],
) -> UpsertOutcome:
    """Insert or update a post keyed by (client_id, typefully_url).

    An update overwrites every imported field. Feedback is never taken from
    the import: it is written by reviewers after the spreadsheet was made and
    must survive a re-import of the same file.
    """
    values = _columns_of(Post, record)
    values.pop("feedback", None)
    values["content"] = (values.get("content") or "")[:1000]
    values.update(client_id=client_id, upload_id=upload_id)

    existing = (
        session.query(Post)
        .filter_by(client_id=client_id, typefully_url=record["typefully_url"])
        .first()
    )
    if existing:
        _apply(existing, values)
        return UpsertOutcome.UPDATED

    session.add(Post(**values))
    return UpsertOutcome.CREATED


# ---------------------------------------------------------------------------
# Batch writers
# ---------------------------------------------------------------------------


def _describe(record: dict[str, Any]) -> str:
    for key in ("tweet_id", "typefully_url", "date", "start_date"):
        if record.get(key) is not None:
            return f"{key}={record[key]}"
    return "record"


def _save_each(
    session: Session,
    records: Iterable[dict[str, Any]],
    write: Callable[[dict[str, Any]], UpsertOutcome],
    label: str,
    stats: UpsertStats | None = None,
) -> UpsertStats:
    """Write records one SAVEPOINT at a time, collecting outcomes."""
    stats = stats or UpsertStats()
    for record in records:
        try:
            with session.begin_nested():
                outcome = write(record)
        except Exception as exc:
            msg = f"Failed to save {label} ({_describe(record)}): {exc}"
            logger.warning(msg)
            stats.errors.append(msg)
            stats.skipped += 1
            continue
        stats.record(outcome)
    return stats


def save_tweet_analytics(
    session: Session,
    client_id: int,
    upload_id: int | None,
    records: list[dict[str, Any]],
) -> UpsertStats:
    stats = _save_each(
        session,
        records,
        lambda r: upsert_tweet_analytics(session, client_id, upload_id, r),
        "tweet analytics",
    )
    session.commit()
    logger.info(
        "Tweet analytics: %d new, %d updated, %d skipped",
        stats.created, stats.updated, stats.skipped,
    )
    return stats


def save_follower_analytics(
    session: Session,
    client_id: int,
    upload_id: int | None,
    records: list[dict[str, Any]],
) -> UpsertStats:
    stats = _save_each(
        session,
        records,
        lambda r: upsert_follower_analytics(session, client_id, upload_id, r),
        "follower analytics",
    )
    session.commit()
    logger.info(
        "Follower analytics: %d new, %d updated, %d skipped",
        stats.created, stats.updated, stats.skipped,
    )
    return stats


def save_posts(
    session: Session,
    client_id: int,
    upload_id: int | None,
    records: list[dict[str, Any]],
) -> UpsertStats:
    stats = _save_each(
        session,
        records,
        lambda r: upsert_post(session, client_id, upload_id, r),
        "post",
    )
    session.commit()
    logger.info(
        "Posts: %d new, %d updated, %d skipped",
        stats.created, stats.updated, stats.skipped,
    )
    return stats


def replace_daily_analytics_range(
    session: Session,
    client_id: int,
    upload_id: int,
    records: list[dict[str, Any]],
) -> UpsertStats:
    """Atomically replace a client's daily analytics over the batch's date span.

    Overlapping re-exports rarely share exact date boundaries, so a plain
    upsert would leave stale days behind. Within a single transaction this
    deletes the rows of this upload, deletes the client's rows dated within
    [min(dates), max(dates)] that came from any other upload, and inserts the
    new rows. Nothing is visible to other sessions until the final commit.
    """
    stats = UpsertStats()
    if not records:
        return stats

    dates = [r["date"] for r in records]
    first_day, last_day = min(dates), max(dates)

    try:
        session.query(Analytics).filter(Analytics.upload_id == upload_id).delete(
            synchronize_session=False
        )
        superseded = (
            session.query(Analytics)
            .filter(
                Analytics.client_id == client_id,
                Analytics.date >= first_day,
                Analytics.date <= last_day,
                or_(Analytics.upload_id.is_(None), Analytics.upload_id != upload_id),
            )
            .delete(synchronize_session=False)
        )
        logger.info(
            "Replacing %d analytics rows for client %s from %s to %s",
            superseded, client_id, first_day, last_day,
        )

        def _insert(record: dict[str, Any]) -> UpsertOutcome:
            values = _columns_of(Analytics, record)
            values.update(client_id=client_id, upload_id=upload_id)
            session.add(Analytics(**values))
            session.flush()
            return UpsertOutcome.CREATED

        _save_each(session, records, _insert, "daily analytics", stats)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        "Daily analytics: %d saved, %d skipped", stats.created, stats.skipped
    )
    return stats


# ---------------------------------------------------------------------------
# Upload bookkeeping
# ---------------------------------------------------------------------------


def create_upload(
    session: Session,
    agency_id: int,
    client_id: int | None,
    original_name: str,
    content: str | bytes | None = None,
    file_format: str | None = None,
) -> Upload:
    """Create and commit an Upload row in the "received" state."""
    stamp = utcnow().strftime("%Y%m%d%H%M%S%f")
    upload = Upload(
        client_id=client_id,
        uploaded_by_id=agency_id,
        filename=f"{stamp}-{original_name}",
        original_name=original_name,
        file_hash=compute_content_hash(content) if content else None,
        format=file_format,
        status=UploadStatus.RECEIVED.value,
        processed=False,
    )
    session.add(upload)
    session.commit()
    session.refresh(upload)
    logger.info("Upload %d received: %s", upload.id, original_name)
    return upload


def get_upload(session: Session, upload_id: int) -> Upload:
    upload = session.get(Upload, upload_id)
    if upload is None:
        raise NotFoundError(f"Upload record not found: {upload_id}")
    return upload


def advance_upload(upload: Upload, status: UploadStatus) -> None:
    """Move an upload to the next lifecycle state (persisted on the next commit)."""
    logger.debug("Upload %s: %s -> %s", upload.id, upload.status, status.value)
    upload.status = status.value


def finalize_upload(
    session: Session,
    upload: Upload,
    stats: UpsertStats,
    posts_count: int | None = None,
) -> None:
    upload.processed = True
    upload.records_created = stats.created
    upload.records_updated = stats.updated
    upload.records_skipped = stats.skipped
    if posts_count is not None:
        upload.posts_count = posts_count
    upload.error_message = None
    advance_upload(upload, UploadStatus.FINALIZED)
    session.commit()


def fail_upload(session: Session, upload_id: int | None, message: str) -> None:
    """Record a fatal error on an upload. Call after rolling the session back."""
    if upload_id is None:
        return
    upload = session.get(Upload, upload_id)
    if upload is None:
        return
    upload.status = UploadStatus.FAILED.value
    upload.error_message = message
    session.commit()
    logger.warning("Upload %s failed: %s", upload_id, message)

"""Agency-wide daily analytics import.

One file covers many clients: each row names its client, so rows are matched
to the agency's clients one at a time. The same row mapping serves CSV files
and Excel workbooks. Both Title Case ("Profile Clicks") and camelCase
("profileClicks") headers are accepted.
"""

import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session

from postflow.config import settings
from postflow.ingest import IngestError, NotFoundError, first_value, read_csv_rows
from postflow.models import Agency, Client
from postflow.parsing import click_through_rate, engagement_rate, safe_parse_date, safe_parse_int
from postflow.store import upsert_daily_analytics

logger = logging.getLogger(__name__)

# Analytics field -> accepted (normalized) header names
AGENCY_ANALYTICS_COLUMNS: dict[str, tuple[str, ...]] = {
    "impressions": ("impressions",),
    "engagements": ("engagements",),
    "retweets": ("retweets",),
    "replies": ("replies",),
    "likes": ("likes",),
    "profile_clicks": ("profile clicks", "profileclicks"),
    "url_clicks": ("url clicks", "urlclicks"),
    "hashtag_clicks": ("hashtag clicks", "hashtagclicks"),
    "detail_expands": ("detail expands", "detailexpands"),
    "permalink_clicks": ("permalink clicks", "permalinkclicks"),
    "follows": ("follows",),
    "media_views": ("media views", "mediaviews"),
    "media_engagements": ("media engagements", "mediaengagements"),
}

CLIENT_NAME_COLUMNS = ("client name", "clientname")


class RowError(Exception):
    """A problem confined to one row; reported and skipped."""


def _counter(row: dict[str, Any], keys: tuple[str, ...]) -> int:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return safe_parse_int(value)
    return 0


def normalize_agency_analytics_row(
    row: dict[str, Any],
    strict: bool = False,
) -> dict[str, Any]:
    """Map one agency analytics row to Analytics field values.

    Raises:
        RowError: If the date is missing, or unparseable in strict mode.
    """
    value = row.get("date")
    if value is None or not str(value).strip():
        raise RowError("Missing date")

    # Excel cells may already hold a datetime
    parsed = safe_parse_date(value, strict=strict)
    if parsed is None:
        raise RowError(f'Invalid date "{value}"')

    record: dict[str, Any] = {"date": parsed.date()}
    for name, keys in AGENCY_ANALYTICS_COLUMNS.items():
        record[name] = _counter(row, keys)

    record["engagement_rate"] = engagement_rate(record["engagements"], record["impressions"])
    record["click_through_rate"] = click_through_rate(record["url_clicks"], record["impressions"])
    return record


def import_agency_analytics_rows(
    session: Session,
    agency_id: int,
    rows: Iterable[tuple[int, dict[str, Any]]],
    strict: bool | None = None,
) -> dict[str, Any]:
    """Upsert daily analytics rows for the agency's clients.

    Each row is written in its own SAVEPOINT. Problems are reported as
    "Row N: reason".

    Args:
        rows: (row number, row) pairs, the number being the row's position
            in the source file with the header as row 1.

    Returns:
        {imported, errors}
    """
    if session.get(Agency, agency_id) is None:
        raise NotFoundError(f"Agency not found: {agency_id}")

    strict = settings.strict_parsing if strict is None else strict
    clients: dict[str, Client | None] = {}
    imported = 0
    errors: list[str] = []

    for row_number, row in rows:
        try:
            client_name = first_value(row, *CLIENT_NAME_COLUMNS)
            if not client_name:
                raise RowError("Missing client name")

            if client_name not in clients:
                clients[client_name] = (
                    session.query(Client)
                    .filter_by(agency_id=agency_id, name=client_name)
                    .first()
                )
            client = clients[client_name]
            if client is None:
                raise RowError(f'Client "{client_name}" not found')

            record = normalize_agency_analytics_row(row, strict=strict)
            with session.begin_nested():
                upsert_daily_analytics(session, client.id, record)
            imported += 1
        except Exception as exc:
            if not isinstance(exc, RowError):
                logger.warning("Failed to import analytics row %d: %s", row_number, exc)
            errors.append(f"Row {row_number}: {exc}")

    session.commit()
    logger.info("Agency %s analytics import: %d imported, %d errors", agency_id, imported, len(errors))
    return {"imported": imported, "errors": errors}


def process_analytics_csv(
    session: Session,
    agency_id: int,
    csv_content: str,
) -> dict[str, Any]:
    """Import an agency analytics CSV.

    Raises:
        IngestError: "Analytics CSV processing failed: <cause>" when the file
            cannot be read at all.
    """
    try:
        table = read_csv_rows(csv_content)
        if not any(key in table.headers for key in CLIENT_NAME_COLUMNS):
            raise IngestError('Expected a "Client Name" column')
    except IngestError as exc:
        raise IngestError(f"Analytics CSV processing failed: {exc}") from exc

    return import_agency_analytics_rows(session, agency_id, enumerate(table.rows, start=2))

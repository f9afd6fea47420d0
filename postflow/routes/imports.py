"""Upload endpoints: analytics, followers, posts and Excel imports.

Each endpoint reads the multipart file under the configured size limit,
validates it, and hands the content to the matching importer. Import
failures become 400 responses shaped {"error": ..., "details": ...}.
"""

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from postflow.analytics_processor import process_analytics_csv
from postflow.config import settings
from postflow.csv_processor import process_followers_file, process_uploaded_file
from postflow.database import get_session
from postflow.excel import process_analytics_upload, process_excel_upload
from postflow.formats import Format, detect_csv_format
from postflow.ingest import (
    CSV_EXTENSIONS,
    EXCEL_EXTENSIONS,
    IngestError,
    NotFoundError,
    decode_csv_bytes,
    validate_upload,
)
from postflow.models import Client
from postflow.posts_processor import process_posts_upload_file
from postflow.store import create_upload

# Chunk size for streaming reads (1 MiB)
_CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Explicit upload types; without one the format is detected from the file
_UPLOAD_TYPE_FORMATS = {"tweets": None, "followers": Format.FOLLOWERS}
UPLOAD_TYPES = set(_UPLOAD_TYPE_FORMATS)


def _error_response(error: str, details: str | None = None, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


def _read_upload(file: UploadFile, allowed_extensions: set[str]) -> tuple[str, bytes]:
    """Read an uploaded file, stopping as soon as it exceeds the size limit.

    Raises:
        IngestError: If the file is too large, empty, or of the wrong type.
    """
    original_filename = Path(file.filename or "upload").name
    max_bytes = settings.max_upload_size_bytes

    chunks = []
    total = 0
    while True:
        chunk = file.file.read(_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            logger.warning(
                "Upload '%s' rejected: exceeds %d MB limit",
                original_filename,
                settings.max_upload_size_mb,
            )
            raise IngestError(f"File exceeds the {settings.max_upload_size_mb} MB size limit.")
        chunks.append(chunk)

    content = b"".join(chunks)
    validate_upload(original_filename, content, allowed_extensions, max_bytes)
    return original_filename, content


def _require_client(db: Session, agency_id: int, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if client is None or client.agency_id != agency_id:
        raise NotFoundError(f"Client not found: {client_id}")
    return client


@router.post("/upload")
async def upload_analytics(
    file: UploadFile = File(...),
    agency_id: int = Form(...),
    client_id: int = Form(...),
    type: str | None = Form(None),
    db: Session = Depends(get_session),
):
    """Import a client CSV: tweets (Typefully or legacy Twitter) or followers.

    Without a type the format is detected from the file, and posts sheets
    and agency analytics files are routed to their importers as well.
    """
    if type is not None and type not in UPLOAD_TYPES:
        return _error_response("Invalid upload type", f"Expected 'tweets' or 'followers', got '{type}'")

    try:
        filename, content = _read_upload(file, CSV_EXTENSIONS)
        _require_client(db, agency_id, client_id)
        csv_content = decode_csv_bytes(content)
        fmt = _UPLOAD_TYPE_FORMATS[type] if type else detect_csv_format(csv_content)
    except NotFoundError as exc:
        return _error_response("Not found", str(exc), status_code=404)
    except IngestError as exc:
        logger.warning("Rejected upload '%s': %s", file.filename, exc)
        return _error_response("Invalid file", str(exc))

    if type is None:
        logger.info("Detected %s format for '%s'", fmt.value, filename)
    try:
        if fmt is Format.POSTS_WORKFLOW:
            return process_posts_upload_file(db, agency_id, client_id, csv_content, filename=filename)
        if fmt is Format.AGENCY_ANALYTICS:
            return process_analytics_csv(db, agency_id, csv_content)
    except NotFoundError as exc:
        return _error_response("Not found", str(exc), status_code=404)
    except IngestError as exc:
        logger.warning("Import failed for '%s': %s", filename, exc)
        return _error_response("Failed to process CSV file", str(exc))

    upload = create_upload(db, agency_id, client_id, filename, content)
    processor = process_followers_file if fmt is Format.FOLLOWERS else process_uploaded_file

    try:
        result = processor(db, upload.id, client_id, csv_content)
    except NotFoundError as exc:
        return _error_response("Not found", str(exc), status_code=404)
    except IngestError as exc:
        logger.warning("Import failed for '%s': %s", filename, exc)
        return _error_response("Failed to process CSV file", str(exc))

    logger.info(
        "Imported '%s' (%s): %d records", filename, result["format"], result["processedRecords"]
    )
    return {**result, "uploadId": upload.id}


@router.post("/posts/import")
async def import_posts(
    file: UploadFile = File(...),
    agency_id: int = Form(...),
    client_id: int | None = Form(None),
    db: Session = Depends(get_session),
) -> Any:
    """Import a posts planning CSV for a client."""
    try:
        filename, content = _read_upload(file, CSV_EXTENSIONS)
        result = process_posts_upload_file(
            db, agency_id, client_id, decode_csv_bytes(content), filename=filename
        )
    except NotFoundError as exc:
        return _error_response("Not found", str(exc), status_code=404)
    except IngestError as exc:
        logger.warning("Posts import failed for '%s': %s", file.filename, exc)
        return _error_response("Failed to process posts CSV", str(exc))

    logger.info("Imported %d posts from '%s'", result["savedPosts"], filename)
    return result


@router.post("/analytics/import")
async def import_agency_analytics(
    file: UploadFile = File(...),
    agency_id: int = Form(...),
    db: Session = Depends(get_session),
) -> Any:
    """Import an agency-wide daily analytics CSV."""
    try:
        _, content = _read_upload(file, CSV_EXTENSIONS)
        return process_analytics_csv(db, agency_id, decode_csv_bytes(content))
    except NotFoundError as exc:
        return _error_response("Not found", str(exc), status_code=404)
    except IngestError as exc:
        logger.warning("Analytics import failed for '%s': %s", file.filename, exc)
        return _error_response("Failed to process analytics CSV", str(exc))


@router.post("/excel/import")
async def import_excel(
    file: UploadFile = File(...),
    agency_id: int = Form(...),
    type: str = Form("posts"),
    db: Session = Depends(get_session),
) -> Any:
    """Apply post status edits (type=posts) or import daily analytics (type=analytics)."""
    if type not in {"posts", "analytics"}:
        return _error_response("Invalid import type", f"Expected 'posts' or 'analytics', got '{type}'")

    try:
        _, content = _read_upload(file, EXCEL_EXTENSIONS)
        if type == "analytics":
            return process_analytics_upload(db, agency_id, content)
        return process_excel_upload(db, agency_id, content)
    except NotFoundError as exc:
        return _error_response("Not found", str(exc), status_code=404)
    except IngestError as exc:
        logger.warning("Excel import failed for '%s': %s", file.filename, exc)
        return _error_response("Failed to process Excel file", str(exc))

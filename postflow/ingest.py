"""Shared ingestion plumbing: error types, upload validation, and CSV reading.

Every importer reads its input through read_csv_rows(), which returns rows
keyed by lower-cased, stripped header names. Blank lines are skipped the
way spreadsheet exports expect.
"""

import csv
import hashlib
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = {".csv"}
EXCEL_EXTENSIONS = {".xlsx", ".xls"}


class IngestError(Exception):
    """Raised when an import cannot proceed at all (batch-level failure)."""


class UnsupportedFormatError(IngestError):
    """Raised when the headers do not match the expected export format."""


class NotFoundError(IngestError):
    """Raised when a referenced upload, client, or agency does not exist."""


@dataclass
class CsvTable:
    """A parsed CSV: normalized header names plus one dict per data row."""

    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)


def compute_content_hash(content: str | bytes) -> str:
    """Compute the SHA256 hex digest of an upload's content for provenance."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def validate_upload(
    filename: str,
    content: bytes,
    allowed_extensions: set[str],
    max_size_bytes: int,
) -> None:
    """Validate an uploaded file before parsing.

    Args:
        filename: Original filename from the client.
        content: Raw file bytes.
        allowed_extensions: Lower-case suffixes accepted by the endpoint.
        max_size_bytes: Upper size bound.

    Raises:
        IngestError: If the file fails validation.
    """
    suffix = Path(filename).suffix.lower()
    if suffix not in allowed_extensions:
        raise IngestError(
            f"Unsupported file type '{suffix}'. Allowed: {', '.join(sorted(allowed_extensions))}"
        )

    if not content or not content.strip():
        raise IngestError("Uploaded file is empty.")

    if len(content) > max_size_bytes:
        raise IngestError(
            f"File exceeds maximum size of {max_size_bytes // (1024 * 1024)} MB."
        )


def decode_csv_bytes(content: bytes) -> str:
    """Decode uploaded CSV bytes, tolerating a UTF-8 BOM and Latin-1 exports."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("CSV is not valid UTF-8, falling back to latin-1")
        return content.decode("latin-1")


def normalize_header(header: str) -> str:
    return header.strip().lower()


def split_csv_records(csv_content: str) -> list[list[str]]:
    """Split CSV text into records, dropping lines that are entirely blank."""
    reader = csv.reader(io.StringIO(csv_content.lstrip("\ufeff")))
    try:
        records = [rec for rec in reader if any(cell.strip() for cell in rec)]
    except csv.Error as exc:
        raise IngestError(f"CSV parsing errors: {exc}") from exc
    return records


def rows_from_records(
    header: list[str],
    records: list[list[str]],
    first_line_number: int = 2,
) -> CsvTable:
    """Pair data records with a header row.

    Short records are padded with empty strings. A record with more non-empty
    cells than there are headers means the CSV structure is broken.
    """
    headers = [normalize_header(h) for h in header]
    table = CsvTable(headers=headers)
    for offset, record in enumerate(records):
        if len(record) > len(headers):
            extra = [cell for cell in record[len(headers):] if cell.strip()]
            if extra:
                raise IngestError(
                    f"CSV parsing errors: Row {first_line_number + offset} has "
                    f"{len(record)} fields, expected {len(headers)}"
                )
            record = record[: len(headers)]
        padded = record + [""] * (len(headers) - len(record))
        row: dict[str, str] = {}
        for key, value in zip(headers, padded):
            # First occurrence wins for duplicated header names
            if key and key not in row:
                row[key] = value
        table.rows.append(row)
    return table


def read_csv_rows(csv_content: str) -> CsvTable:
    """Parse CSV text with a header row into a CsvTable.

    Raises:
        IngestError: On empty content, a missing header, no data rows, or a
            structurally broken file.
    """
    if not csv_content or not csv_content.strip():
        raise IngestError("CSV file is empty")

    records = split_csv_records(csv_content)
    if not records:
        raise IngestError("CSV file is empty")

    header, data = records[0], records[1:]
    if not any(h.strip() for h in header):
        raise IngestError("CSV file has no column headers")

    table = rows_from_records(header, data)
    if not table.rows:
        raise IngestError("CSV file contains no data rows")
    return table


def first_value(row: dict[str, str], *keys: str) -> str:
    """Return the first non-blank value among the given (normalized) keys."""
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""

"""Excel report downloads and the health check."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from postflow.database import get_session
from postflow.excel import generate_client_report, generate_excel_report
from postflow.ingest import NotFoundError
from postflow.models import Agency
from postflow.parsing import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for Docker and load balancers."""
    return {"status": "ok"}


@router.get("/api/excel/export")
async def export_posts_report(
    agency_id: int = Query(...),
    db: Session = Depends(get_session),
) -> Response:
    """Download every post of the agency's clients as an .xlsx report.

    Raises:
        HTTPException 404: If the agency does not exist.
    """
    if db.get(Agency, agency_id) is None:
        raise HTTPException(status_code=404, detail=f"Agency {agency_id} not found.")
    content = generate_excel_report(db, agency_id)
    return _xlsx_response(content, f"posts-report-{utcnow():%Y-%m-%d}.xlsx")


@router.get("/api/excel/client/{client_id}")
async def export_client_report(
    client_id: int,
    db: Session = Depends(get_session),
) -> Response:
    """Download one client's posts and recent analytics.

    Raises:
        HTTPException 404: If the client does not exist.
    """
    try:
        content = generate_client_report(db, client_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _xlsx_response(content, f"client-{client_id}-report-{utcnow():%Y-%m-%d}.xlsx")

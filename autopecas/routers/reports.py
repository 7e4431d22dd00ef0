from __future__ import annotations

import io
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import require_permission
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.reports import (
    XLSX_MEDIA_TYPE,
    build_report_rows,
    report_filename,
    rows_to_csv,
    rows_to_xlsx,
)

router = APIRouter(prefix="/api/reports", tags=["reports"])
logger = logging.getLogger(__name__)


@router.get("/export")
def export_report(
    report_type: str = Query(..., alias="type"),
    report_format: str = Query("xlsx", alias="format"),
    period: Optional[str] = Query(None),
    user: User = Depends(require_permission("viewReports")),
    db: Session = Depends(get_db),
):
    report_type = report_type.strip().lower()
    report_format = report_format.strip().lower()
    if report_format not in {"xlsx", "csv"}:
        raise HTTPException(status_code=400, detail="Formato inválido")

    try:
        rows = build_report_rows(db, report_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_action(db, user_id=user.id, action="export_report", meta={"type": report_type, "format": report_format})
    db.commit()
    logger.info("Report exported type=%s format=%s rows=%s", report_type, report_format, len(rows))

    filename = report_filename(report_type, period, report_format)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if report_format == "csv":
        # BOM para o Excel abrir com acentuação correta
        content = ("\ufeff" + rows_to_csv(rows)).encode("utf-8")
        return StreamingResponse(io.BytesIO(content), media_type="text/csv; charset=utf-8", headers=headers)
    return StreamingResponse(io.BytesIO(rows_to_xlsx(rows)), media_type=XLSX_MEDIA_TYPE, headers=headers)

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from objectanalyzer import __version__
from objectanalyzer.config import settings
from objectanalyzer.database import UnitOfWork, get_db, store_lock
from objectanalyzer.exceptions import PipelineStageError
from objectanalyzer.schemas.objects import (
    BulkImportRequest,
    ImportResult,
    IntelRecordOut,
    StagedObjectIn,
    StagedObjectOut,
    TopObjectOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()

limiter = Limiter(key_func=get_remote_address)

_CSV_CONTENT_TYPES = ("text/csv", "application/vnd.ms-excel")


def _check_upload_size(file: UploadFile) -> None:
    """Reject uploads exceeding MAX_UPLOAD_SIZE_MB."""
    file.file.seek(0, 2)  # seek to end
    size_mb = file.file.tell() / (1024 * 1024)
    file.file.seek(0)  # reset
    if size_mb > settings.MAX_UPLOAD_SIZE_MB:
        raise HTTPException(
            status_code=413,
            detail=f"File too large ({size_mb:.1f} MB). Max: {settings.MAX_UPLOAD_SIZE_MB} MB.",
        )


def _stage(db: Session, records: list[dict]) -> int:
    from objectanalyzer.modules.staging import stage_objects

    try:
        with UnitOfWork(db, exclusive=True) as uow:
            return stage_objects(uow.session, records)
    except SQLAlchemyError as exc:
        logger.exception("Staging %d objects failed", len(records))
        raise PipelineStageError("staging", exc) from exc


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@router.post("/import", response_model=ImportResult, tags=["ingestion"])
def import_object(body: StagedObjectIn, db: Session = Depends(get_db)):
    """Stage a single reported object."""
    staged = _stage(db, [body.model_dump()])
    return ImportResult(staged=staged)


@router.post("/importJSON", response_model=ImportResult, tags=["ingestion"])
def import_json(body: BulkImportRequest, db: Session = Depends(get_db)):
    """Stage many objects in one transaction; any invalid entry rejects the request."""
    staged = _stage(db, [item.model_dump() for item in body.data])
    return ImportResult(staged=staged)


@router.post("/importFile", response_model=ImportResult, tags=["ingestion"])
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
def import_file(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    """Stage every row of an uploaded CSV (ASCII only, required columns object and object_type)."""
    from objectanalyzer.modules.csv_loader import import_csv_to_staging

    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only .csv files are accepted")
    content_type = (file.content_type or "").split(";")[0].strip()
    if content_type not in _CSV_CONTENT_TYPES:
        raise HTTPException(status_code=415, detail=f"Unsupported content type {content_type!r}")
    _check_upload_size(file)

    raw = file.file.read()
    if not raw.isascii():
        raise HTTPException(status_code=400, detail="CSV must contain only ASCII characters")

    try:
        with UnitOfWork(db, exclusive=True) as uow:
            result = import_csv_to_staging(uow.session, raw, strict_types=True)
    except SQLAlchemyError as exc:
        logger.exception("Staging upload %s failed", file.filename)
        raise PipelineStageError("staging", exc) from exc
    logger.info("Upload %s: %d staged, %d skipped", file.filename, result["staged"], result["skipped"])
    return ImportResult(**result)


@router.get("/verifyImport", response_model=StagedObjectOut, tags=["ingestion"])
def verify_import(
    object: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Look up a staged object that has not been merged yet."""
    from objectanalyzer.modules.staging import find_staged

    with store_lock.shared():
        row = find_staged(db, object)
        if row is None:
            raise HTTPException(status_code=404, detail="Object not found in staging")
        return StagedObjectOut.model_validate(row)


# ---------------------------------------------------------------------------
# Intel read-out
# ---------------------------------------------------------------------------

@router.get("/objects/{obj:path}", response_model=IntelRecordOut, tags=["intel"])
def get_object(obj: str, db: Session = Depends(get_db)):
    from objectanalyzer.modules.reports import get_intel

    with store_lock.shared():
        record = get_intel(db, obj)
        if record is None:
            raise HTTPException(status_code=404, detail="Object not found")
        return IntelRecordOut.model_validate(record)


@router.get("/reports/top", response_model=list[TopObjectOut], tags=["intel"])
def top_report(
    min_occurrences: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=10000),
    db: Session = Depends(get_db),
):
    """Most frequently reported objects."""
    from objectanalyzer.modules.reports import top_objects

    with store_lock.shared():
        rows = top_objects(db, limit or settings.REPORT_LIMIT, min_occurrences)
        return [TopObjectOut.model_validate(r) for r in rows]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

_STAGES = ("process-imports", "mark-trusted", "update-scores")


@router.post("/pipeline/{stage}", tags=["pipeline"])
def run_stage(stage: str, db: Session = Depends(get_db)):
    """Run one pipeline stage inline and return its summary."""
    from objectanalyzer.modules.intel_merge import process_pending_imports
    from objectanalyzer.modules.risk_scoring import update_risk_scores
    from objectanalyzer.modules.trust_matcher import mark_trusted_objects

    if stage not in _STAGES:
        raise HTTPException(status_code=404, detail=f"Unknown stage {stage!r}; expected one of {', '.join(_STAGES)}")

    with UnitOfWork(db, exclusive=True) as uow:
        if stage == "process-imports":
            summary = process_pending_imports(uow)
        elif stage == "mark-trusted":
            summary = mark_trusted_objects(uow)
        else:
            summary = update_risk_scores(uow)
    return {"stage": stage, **summary}


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------

@router.get("/config", tags=["system"])
def get_config():
    """Effective settings without the shared secret or database credentials."""
    return settings.model_dump(exclude={"API_KEY", "DATABASE_URL"})


@router.get("/health", tags=["system"])
def health_check(db: Session = Depends(get_db)):
    """Health check with DB latency measurement."""
    t0 = time.time()
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {e}"
    latency_ms = round((time.time() - t0) * 1000, 1)

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "version": __version__,
        "database": {"status": db_status, "latency_ms": latency_ms},
    }

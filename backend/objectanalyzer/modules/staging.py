"""Staging store: the queue of reported objects awaiting merge.

Ingestion collaborators (API handlers, CSV loaders) append rows here; the
intel merge engine consumes them oldest first and deletes each one whether it
was accepted or rejected. Functions flush but never commit, so the caller's
unit of work decides the transaction boundary.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from objectanalyzer.models.pending_import import PendingImport
from objectanalyzer.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Reporter-supplied fields accepted at the staging boundary
STAGED_FIELDS = (
    "object",
    "object_type",
    "notes",
    "source",
    "geo_region",
    "geo_country",
    "geo_org",
    "time_provided",
)


def _build_row(record: Mapping[str, Any], now: datetime) -> PendingImport:
    obj = record.get("object")
    object_type = record.get("object_type")
    if not obj or not object_type:
        raise ValueError("object and object_type are required")
    values = {field: record.get(field) for field in STAGED_FIELDS}
    # Enum members arrive from validated API payloads
    values["object_type"] = getattr(object_type, "value", object_type)
    return PendingImport(**values, ip_decimal=0, fidelity="Low", time_imported=now)


def stage_object(db: Session, record: Mapping[str, Any]) -> PendingImport:
    """Append one reported object to the staging queue."""
    row = _build_row(record, utcnow())
    db.add(row)
    db.flush()
    logger.debug("Staged %s (%s)", row.object, row.object_type)
    return row


def stage_objects(db: Session, records: Iterable[Mapping[str, Any]]) -> int:
    """Append many reported objects; returns how many were staged.

    A record missing ``object`` or ``object_type`` raises ValueError before
    anything is flushed, leaving the caller's transaction to roll back.
    """
    now = utcnow()
    rows = [_build_row(record, now) for record in records]
    db.add_all(rows)
    db.flush()
    logger.info("Staged %d objects", len(rows))
    return len(rows)


def find_staged(db: Session, obj: str) -> Optional[PendingImport]:
    """Most recently staged row for ``obj``, or None once it has been merged."""
    stmt = (
        select(PendingImport)
        .where(PendingImport.object == obj)
        .order_by(PendingImport.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def fetch_pending_batch(db: Session, limit: int) -> list[PendingImport]:
    stmt = select(PendingImport).order_by(PendingImport.id).limit(limit)
    return list(db.execute(stmt).scalars().all())


def count_pending(db: Session) -> int:
    return db.execute(select(func.count()).select_from(PendingImport)).scalar_one()

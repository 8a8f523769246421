"""Read-side queries over intel records for the API and CLI."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from objectanalyzer.models.object_intel import ObjectIntel
from objectanalyzer.models.trusted_object import TrustedObject
from objectanalyzer.modules.staging import count_pending
from objectanalyzer.modules.weekly_buckets import bucket_registry


def get_intel(db: Session, obj: str) -> Optional[ObjectIntel]:
    return db.get(ObjectIntel, obj)


def top_objects(db: Session, limit: int, min_occurrences: int = 1) -> list[ObjectIntel]:
    """Most frequently seen objects, highest ``occurrence_count`` first."""
    stmt = (
        select(ObjectIntel)
        .where(ObjectIntel.occurrence_count >= min_occurrences)
        .order_by(ObjectIntel.occurrence_count.desc(), ObjectIntel.object)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def pipeline_status(db: Session) -> dict:
    """Queue depth and table sizes at a glance."""
    def _count(stmt) -> int:
        return db.execute(stmt).scalar_one()

    return {
        "pending": count_pending(db),
        "intel_records": _count(select(func.count()).select_from(ObjectIntel)),
        "trusted_records": _count(
            select(func.count()).select_from(ObjectIntel).where(ObjectIntel.trusted == True)  # noqa: E712
        ),
        "scored_records": _count(
            select(func.count()).select_from(ObjectIntel).where(ObjectIntel.risk_score.is_not(None))
        ),
        "trusted_list": _count(select(func.count()).select_from(TrustedObject)),
        "buckets": [key.table_name for key in bucket_registry.list_buckets(db)],
    }

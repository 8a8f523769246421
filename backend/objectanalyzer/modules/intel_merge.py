"""Intel merge engine: drains the staging queue into long-lived intel records.

For each staged row, oldest first:

  1. Validate the object kind, and the address syntax for ipv4/ipv6.
  2. Upsert ``object_intel`` by ``object``: first sight inserts with
     occurrence_count=1; a repeat takes the incoming notes, moves last_seen
     to now and adds exactly 1 to occurrence_count.
  3. Append one occurrence row to the weekly bucket of the processing time.
  4. Delete the staged row.

Rejected rows skip steps 2 and 3 but are still deleted. The whole batch runs
in the caller's unit of work, so a storage failure anywhere leaves staging,
intel records and buckets exactly as they were.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from objectanalyzer.config import settings
from objectanalyzer.database import UnitOfWork, dialect_insert
from objectanalyzer.exceptions import ObjectValidationError, PipelineStageError
from objectanalyzer.models.base import ObjectTypeEnum
from objectanalyzer.models.object_intel import ObjectIntel
from objectanalyzer.models.pending_import import PendingImport
from objectanalyzer.modules.staging import count_pending, fetch_pending_batch
from objectanalyzer.modules.weekly_buckets import BucketHandle, BucketKey, bucket_registry
from objectanalyzer.utils.clock import as_naive_utc, utcnow
from objectanalyzer.utils.ip import ipv4_to_decimal, is_valid_ipv4, is_valid_ipv6

logger = logging.getLogger(__name__)


def validate_staged(obj: str, object_type: str) -> tuple[ObjectTypeEnum, int]:
    """Return the parsed kind and the ipv4 decimal (0 for other kinds).

    Raises ObjectValidationError for an unrecognized kind, a malformed IPv4
    address, or a malformed or IPv4-mapped IPv6 address.
    """
    kind = ObjectTypeEnum.parse(object_type)
    if kind is None:
        raise ObjectValidationError(obj, f"unrecognized object_type {object_type!r}")
    if kind is ObjectTypeEnum.IPV4:
        if not is_valid_ipv4(obj):
            raise ObjectValidationError(obj, "malformed ipv4 address")
        return kind, ipv4_to_decimal(obj)
    if kind is ObjectTypeEnum.IPV6:
        if not is_valid_ipv6(obj):
            raise ObjectValidationError(obj, "malformed or ipv4-mapped ipv6 address")
    return kind, 0


def _upsert_intel(
    db: Session,
    row: PendingImport,
    kind: ObjectTypeEnum,
    ip_decimal: int,
    now: datetime,
) -> None:
    table = ObjectIntel.__table__
    stmt = dialect_insert(db, table).values(
        object=row.object,
        object_type=kind.value,
        ip_decimal=ip_decimal,
        geo_region=row.geo_region,
        geo_country=row.geo_country,
        geo_org=row.geo_org,
        notes=row.notes,
        fidelity=row.fidelity or "Low",
        first_seen=now,
        last_seen=now,
        occurrence_count=1,
        confirmed_risk=False,
        trusted=False,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.object],
        set_={
            "notes": stmt.excluded.notes,
            "last_seen": stmt.excluded.last_seen,
            "occurrence_count": table.c.occurrence_count + 1,
        },
    )
    db.execute(stmt)


def process_pending_imports(
    uow: UnitOfWork,
    limit: Optional[int] = None,
    clock: Callable[[], datetime] = utcnow,
) -> dict:
    """Merge up to ``limit`` staged rows in one transaction.

    Returns ``{"processed", "merged", "rejected", "remaining"}``; ``remaining``
    is the staging queue depth after this batch. Raises PipelineStageError
    (stage ``"merge"``) on any storage failure; the unit of work then rolls
    the whole batch back.
    """
    db = uow.session
    limit = limit or settings.PENDING_IMPORT_BATCH_LIMIT
    merged = 0
    rejected = 0
    batch: list[PendingImport] = []
    buckets: dict[BucketKey, BucketHandle] = {}

    try:
        batch = fetch_pending_batch(db, limit)
        for row in batch:
            now = as_naive_utc(clock())
            try:
                kind, ip_decimal = validate_staged(row.object, row.object_type)
            except ObjectValidationError as exc:
                logger.warning("Rejected staged id=%s: %s", row.id, exc)
                db.delete(row)
                rejected += 1
                continue

            _upsert_intel(db, row, kind, ip_decimal, now)

            key = BucketKey.for_datetime(now)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = bucket_registry.ensure(db, key)
            bucket.append(
                object=row.object,
                object_type=kind.value,
                ip_decimal=ip_decimal,
                notes=row.notes,
                source=row.source,
                fidelity=row.fidelity or "Low",
                time_imported=row.time_imported,
                time_provided=row.time_provided,
            )

            db.delete(row)
            merged += 1
            logger.debug("Merged %s (%s)", row.object, kind.value)

        db.flush()
        remaining = count_pending(db)
    except SQLAlchemyError as exc:
        logger.exception("Merge batch of %d staged rows failed; rolling back", len(batch))
        raise PipelineStageError(
            "merge", exc, {"processed": 0, "merged": 0, "rejected": 0}
        ) from exc

    logger.info(
        "Merge: %d processed, %d merged, %d rejected, %d still staged",
        len(batch), merged, rejected, remaining,
    )
    return {
        "processed": len(batch),
        "merged": merged,
        "rejected": rejected,
        "remaining": remaining,
    }

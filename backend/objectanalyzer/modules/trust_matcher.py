"""Trust matcher: marks intel records that appear on the trusted list.

Two kinds of trusted entry:

  ipv4 / ipv6: exact match on ``object`` against intel records of the same type
  ipv4CIDR:    every ipv4 intel record whose ``ip_decimal`` lies in the block's
               usable range (network and broadcast excluded for /30 and wider)

Trusted records are loaded from CSV by ``load_trusted_objects`` (upsert by
``object``). Marking never clears a flag; removing an entry from the trusted
list does not untrust records already marked.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from objectanalyzer.database import UnitOfWork, dialect_insert
from objectanalyzer.exceptions import CSVFormatError, PipelineStageError
from objectanalyzer.models.base import ObjectTypeEnum, TrustedObjectTypeEnum
from objectanalyzer.models.object_intel import ObjectIntel
from objectanalyzer.models.trusted_object import TrustedObject
from objectanalyzer.utils.clock import utcnow
from objectanalyzer.utils.ip import cidr_usable_range, ipv4_to_decimal, is_valid_ipv4, is_valid_ipv6

logger = logging.getLogger(__name__)


# ── Loading ───────────────────────────────────────────────────────────────────

def _prepare_trusted_row(record: Mapping[str, Any], row_number: int) -> dict:
    obj = (record.get("object") or "").strip()
    raw_type = (record.get("object_type") or "").strip()
    try:
        kind = TrustedObjectTypeEnum(raw_type)
    except ValueError:
        raise CSVFormatError(f"row {row_number}: unsupported trusted object_type {raw_type!r}") from None

    ip_decimal = start = end = 0
    if kind is TrustedObjectTypeEnum.IPV4:
        if not is_valid_ipv4(obj):
            raise CSVFormatError(f"row {row_number}: invalid ipv4 address {obj!r}")
        ip_decimal = ipv4_to_decimal(obj)
    elif kind is TrustedObjectTypeEnum.IPV6:
        if not is_valid_ipv6(obj):
            raise CSVFormatError(f"row {row_number}: invalid ipv6 address {obj!r}")
    else:
        try:
            start, end = cidr_usable_range(obj)
        except ValueError as exc:
            raise CSVFormatError(f"row {row_number}: invalid ipv4 CIDR {obj!r}") from exc

    return {
        "object": obj,
        "object_type": kind.value,
        "ip_decimal": ip_decimal,
        "start_ip_decimal": start,
        "end_ip_decimal": end,
        "notes": record.get("notes"),
        "source": record.get("source"),
    }


def load_trusted_objects(db: Session, rows: Iterable[Mapping[str, Any]]) -> dict:
    """Upsert trusted entries by ``object``.

    Every row is validated before anything is written; one bad row raises
    CSVFormatError and nothing from the file is loaded. On conflict the
    incoming notes/source win, ``last_seen`` moves to now, the stored
    decimals are refreshed and ``occurrence_count`` grows by 1.

    Flushes only; the caller commits.
    """
    prepared = [_prepare_trusted_row(record, n) for n, record in enumerate(rows, start=1)]
    now = utcnow()
    table = TrustedObject.__table__

    for values in prepared:
        stmt = dialect_insert(db, table).values(
            **values,
            time_imported=now,
            last_seen=now,
            occurrence_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.object],
            set_={
                "notes": stmt.excluded.notes,
                "source": stmt.excluded.source,
                "object_type": stmt.excluded.object_type,
                "ip_decimal": stmt.excluded.ip_decimal,
                "start_ip_decimal": stmt.excluded.start_ip_decimal,
                "end_ip_decimal": stmt.excluded.end_ip_decimal,
                "last_seen": stmt.excluded.last_seen,
                "occurrence_count": table.c.occurrence_count + 1,
            },
        )
        db.execute(stmt)
    db.flush()

    ranges = sum(1 for v in prepared if v["object_type"] == TrustedObjectTypeEnum.IPV4_CIDR.value)
    logger.info("Loaded %d trusted objects (%d ranges)", len(prepared), ranges)
    return {"loaded": len(prepared), "exact": len(prepared) - ranges, "ranges": ranges}


# ── Marking ───────────────────────────────────────────────────────────────────

def _mark_exact(db: Session, object_type: str) -> int:
    trusted_objects = select(TrustedObject.object).where(TrustedObject.object_type == object_type)
    return (
        db.query(ObjectIntel)
        .filter(
            ObjectIntel.object_type == object_type,
            ObjectIntel.trusted == False,  # noqa: E712
            ObjectIntel.object.in_(trusted_objects),
        )
        .update({ObjectIntel.trusted: True}, synchronize_session="fetch")
    )


def _mark_range(db: Session, start: int, end: int) -> int:
    return (
        db.query(ObjectIntel)
        .filter(
            ObjectIntel.object_type == ObjectTypeEnum.IPV4.value,
            ObjectIntel.trusted == False,  # noqa: E712
            ObjectIntel.ip_decimal.between(start, end),
        )
        .update({ObjectIntel.trusted: True}, synchronize_session="fetch")
    )


def mark_trusted_objects(uow: UnitOfWork) -> dict:
    """Flag intel records matched by the trusted list, in one transaction.

    Returns ``{"exact_marked", "range_marked", "ranges_applied"}`` counting
    records newly flagged by this pass. Raises PipelineStageError (stage
    ``"trust"``) on a storage failure; the unit of work rolls back every flag
    set by the pass.
    """
    db = uow.session
    exact_marked = 0
    range_marked = 0
    ranges_applied = 0

    try:
        for kind in (TrustedObjectTypeEnum.IPV4, TrustedObjectTypeEnum.IPV6):
            exact_marked += _mark_exact(db, kind.value)

        cidrs = db.execute(
            select(TrustedObject.object).where(
                TrustedObject.object_type == TrustedObjectTypeEnum.IPV4_CIDR.value
            )
        ).scalars().all()
        for cidr in cidrs:
            try:
                start, end = cidr_usable_range(cidr)
            except ValueError:
                logger.warning("Skipping unparseable trusted range %r", cidr)
                continue
            marked = _mark_range(db, start, end)
            logger.debug("Range %s marked %d records", cidr, marked)
            range_marked += marked
            ranges_applied += 1
        db.flush()
    except SQLAlchemyError as exc:
        logger.exception("Trust marking failed; rolling back")
        raise PipelineStageError("trust", exc) from exc

    logger.info(
        "Trust: %d exact, %d by %d ranges", exact_marked, range_marked, ranges_applied
    )
    return {
        "exact_marked": exact_marked,
        "range_marked": range_marked,
        "ranges_applied": ranges_applied,
    }

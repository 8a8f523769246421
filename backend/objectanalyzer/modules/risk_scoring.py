"""Decaying risk score for untrusted ipv4 intel records.

Each pass picks candidates whose score is missing or older than the
staleness threshold, counts their occurrences in the weekly buckets for now,
-7d, -14d and -21d, and overwrites ``risk_score`` with the weighted sum. The
previous score plays no part; every pass is a full recompute.

Weights and the threshold come from ``config/risk_scoring.yaml``; any missing
value falls back to the built-in defaults (4/2/1/1, 2 days).

Every candidate's update commits on its own. A storage failure stops the run
but keeps the scores already written.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import yaml
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from objectanalyzer.config import settings
from objectanalyzer.database import UnitOfWork
from objectanalyzer.exceptions import PipelineStageError
from objectanalyzer.models.base import ObjectTypeEnum
from objectanalyzer.models.object_intel import ObjectIntel
from objectanalyzer.modules.weekly_buckets import BucketHandle, BucketKey, bucket_registry
from objectanalyzer.utils.clock import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

_SCORING_CONFIG: dict[str, Any] | None = None

# Ordered newest first: bucket for now, then 1, 2 and 3 weeks back
_WEIGHT_KEYS = ("current_week", "last_week", "two_weeks_ago", "three_weeks_ago")
_DEFAULT_WEIGHTS = {"current_week": 4, "last_week": 2, "two_weeks_ago": 1, "three_weeks_ago": 1}
_DEFAULT_STALE_AFTER_DAYS = 2


def _is_non_negative_number(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool) and val >= 0


def load_scoring_config() -> dict[str, Any]:
    global _SCORING_CONFIG
    if _SCORING_CONFIG is None:
        config_path = Path(settings.RISK_SCORING_CONFIG)
        if not config_path.exists():
            logger.warning("risk_scoring.yaml not found at %s, using default weights", config_path)
            _SCORING_CONFIG = {}
        else:
            with open(config_path) as f:
                _SCORING_CONFIG = yaml.safe_load(f) or {}
        weights = _SCORING_CONFIG.get("decay_weights") or {}
        missing = [k for k in _WEIGHT_KEYS if k not in weights]
        if missing:
            logger.warning("risk_scoring.yaml missing decay_weights: %s", ", ".join(missing))
        for key, val in weights.items():
            if not _is_non_negative_number(val):
                logger.warning("risk_scoring.yaml decay_weights.%s=%r is not a non-negative number", key, val)
        staleness = _SCORING_CONFIG.get("staleness") or {}
        if not isinstance(staleness, dict):
            logger.warning("risk_scoring.yaml staleness=%r is not a mapping", staleness)
        elif "stale_after_days" in staleness and not _is_non_negative_number(staleness["stale_after_days"]):
            logger.warning(
                "risk_scoring.yaml staleness.stale_after_days=%r is not a non-negative number",
                staleness["stale_after_days"],
            )
    return _SCORING_CONFIG


def reload_scoring_config() -> dict[str, Any]:
    """Force-reload scoring config from disk (e.g. after YAML edits)."""
    global _SCORING_CONFIG
    _SCORING_CONFIG = None
    return load_scoring_config()


def decay_weights() -> list[int]:
    """Weights ordered newest bucket first."""
    configured = load_scoring_config().get("decay_weights") or {}
    weights = []
    for key in _WEIGHT_KEYS:
        val = configured.get(key, _DEFAULT_WEIGHTS[key])
        if not _is_non_negative_number(val):
            val = _DEFAULT_WEIGHTS[key]
        weights.append(int(val))
    return weights


def stale_after() -> timedelta:
    """Age after which a score is recomputed; bad or missing values use the default."""
    staleness = load_scoring_config().get("staleness")
    days = staleness.get("stale_after_days") if isinstance(staleness, dict) else None
    if not _is_non_negative_number(days):
        days = _DEFAULT_STALE_AFTER_DAYS
    return timedelta(days=days)


def scoring_windows(now: datetime, weights: Optional[Sequence[int]] = None) -> list[tuple[BucketKey, int]]:
    """Bucket keys for now, -7d, -14d and -21d, each paired with its weight."""
    if weights is None:
        weights = decay_weights()
    return [
        (BucketKey.for_datetime(now - timedelta(days=7 * weeks_back)), weight)
        for weeks_back, weight in enumerate(weights)
    ]


def compute_risk_score(counts: Sequence[int], weights: Sequence[int]) -> int:
    """Weighted sum of per-bucket occurrence counts.

    >>> compute_risk_score([3, 2, 1, 0], [4, 2, 1, 1])
    17
    """
    if len(counts) != len(weights):
        raise ValueError(f"{len(counts)} counts for {len(weights)} weights")
    return sum(count * weight for count, weight in zip(counts, weights))


def select_scoring_candidates(db: Session, now: datetime, limit: int) -> list[str]:
    """Untrusted ipv4 objects never scored or scored at or before ``now - stale_after()``."""
    threshold = now - stale_after()
    stmt = (
        select(ObjectIntel.object)
        .where(
            ObjectIntel.object_type == ObjectTypeEnum.IPV4.value,
            ObjectIntel.trusted == False,  # noqa: E712
            or_(
                ObjectIntel.risk_score_last_updated.is_(None),
                ObjectIntel.risk_score_last_updated <= threshold,
            ),
        )
        .order_by(ObjectIntel.object)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def update_risk_scores(
    uow: UnitOfWork,
    clock: Callable[[], datetime] = utcnow,
    limit: Optional[int] = None,
) -> dict:
    """Rescore up to ``limit`` stale candidates, committing after each one.

    Returns ``{"candidates", "scored", "buckets_present"}``. On a storage
    failure the current candidate is rolled back and PipelineStageError
    (stage ``"scoring"``) is raised with the same keys in its summary.
    """
    db = uow.session
    now = as_naive_utc(clock())
    limit = limit or settings.RISK_SCORE_BATCH_LIMIT
    candidates: list[str] = []
    present: list[tuple[BucketHandle, int]] = []
    scored = 0

    try:
        for key, weight in scoring_windows(now):
            if bucket_registry.exists(db, key):
                present.append((BucketHandle(db, key, bucket_registry.table_for(key)), weight))
            else:
                logger.debug("Bucket %s absent, contributes 0", key.table_name)

        candidates = select_scoring_candidates(db, now, limit)
        for obj in candidates:
            counts = [bucket.count_matching(obj) for bucket, _ in present]
            score = compute_risk_score(counts, [weight for _, weight in present])
            (
                db.query(ObjectIntel)
                .filter(ObjectIntel.object == obj, ObjectIntel.trusted == False)  # noqa: E712
                .update(
                    {ObjectIntel.risk_score: score, ObjectIntel.risk_score_last_updated: now},
                    synchronize_session=False,
                )
            )
            uow.commit()
            scored += 1
            logger.debug("Scored %s = %d", obj, score)
    except SQLAlchemyError as exc:
        uow.rollback()
        logger.exception("Scoring stopped after %d of %d candidates", scored, len(candidates))
        raise PipelineStageError(
            "scoring",
            exc,
            {"candidates": len(candidates), "scored": scored, "buckets_present": len(present)},
        ) from exc

    logger.info("Scoring: %d of %d candidates scored (%d buckets present)", scored, len(candidates), len(present))
    return {"candidates": len(candidates), "scored": scored, "buckets_present": len(present)}

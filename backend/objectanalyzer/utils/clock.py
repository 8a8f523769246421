"""Naive-UTC clock shared by the pipeline stages.

Timestamps are stored as naive UTC ``DateTime`` columns (SQLite has no
timezone type), so every stage takes its "now" from here or from an injected
clock with the same contract.
"""
from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

"""Error taxonomy for the aggregation pipeline.

Row-local problems (``ObjectValidationError``) are logged and swallowed by the
batch that hit them. ``PipelineStageError`` is batch-fatal and always reaches
the caller of a stage, chained to the storage error that caused it.
"""
from __future__ import annotations

from typing import Any


class ObjectValidationError(ValueError):
    """A staged object was rejected (unknown kind or malformed address)."""

    def __init__(self, obj: str, reason: str):
        super().__init__(f"{reason}: {obj!r}")
        self.object = obj
        self.reason = reason


class CSVFormatError(ValueError):
    """A CSV file cannot be loaded (missing columns or an unloadable row)."""


class PipelineStageError(RuntimeError):
    """A pipeline stage aborted on a storage failure.

    ``summary`` holds whatever the stage had already committed before the
    failure. For merge and trust matching that is always nothing, for
    scoring it is the number of candidates already written.
    """

    def __init__(self, stage: str, cause: BaseException, summary: dict[str, Any] | None = None):
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.summary = summary or {}

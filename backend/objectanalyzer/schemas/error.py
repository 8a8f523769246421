"""Error body returned by the API exception handlers."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    detail: str
    code: str = "error"
    # Set for pipeline stage failures
    stage: Optional[str] = None
    summary: Optional[dict[str, Any]] = None

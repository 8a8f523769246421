"""PendingImport entity: staged object awaiting validation and merge.

Rows are written by the ingestion collaborators (API, CSV) and deleted by the
merge engine whether the object is accepted or rejected. Never updated in place.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from objectanalyzer.models.base import Base
from objectanalyzer.utils.clock import utcnow


class PendingImport(Base):
    __tablename__ = "pending_import"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    object: Mapped[str] = mapped_column(String, nullable=False, index=True)
    # Free text here: an unrecognized kind is a merge-time rejection, not a staging error
    object_type: Mapped[str] = mapped_column(String, nullable=False)
    ip_decimal: Mapped[int] = mapped_column(BigInteger, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    geo_region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    geo_country: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    geo_org: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    fidelity: Mapped[str] = mapped_column(String, default="Low")
    time_imported: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    # Reporter-supplied, kept verbatim (formats vary by source)
    time_provided: Mapped[Optional[str]] = mapped_column(String, nullable=True)

"""ObjectIntel entity: the durable, deduplicated per-object threat profile.

One row per distinct ``object`` string (case-sensitive as provided).
``first_seen`` is written once; ``occurrence_count`` only grows; ``trusted``
is owned by the trust matcher and ``risk_score`` by the scoring engine.
``confirmed_risk`` and ``fidelity`` are set externally and never touched here.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from objectanalyzer.models.base import Base


class ObjectIntel(Base):
    __tablename__ = "object_intel"
    __table_args__ = (
        Index("ix_object_intel_type_decimal", "object_type", "ip_decimal"),
        Index("ix_object_intel_scoring", "object_type", "trusted", "risk_score_last_updated"),
    )

    object: Mapped[str] = mapped_column(String, primary_key=True)
    object_additional_info: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    object_type: Mapped[str] = mapped_column(String, nullable=False)
    # 32-bit big-endian encoding for ipv4, 0 for every other kind
    ip_decimal: Mapped[int] = mapped_column(BigInteger, default=0)
    geo_region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    geo_country: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    geo_org: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    geo_asn: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fidelity: Mapped[str] = mapped_column(String, default="Low")
    first_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=1)
    risk_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    risk_score_last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    confirmed_risk: Mapped[bool] = mapped_column(Boolean, default=False)
    trusted: Mapped[bool] = mapped_column(Boolean, default=False)

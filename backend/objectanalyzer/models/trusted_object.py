"""TrustedObject entity: objects and ranges exempt from risk scoring.

Exact entries (ipv4/ipv6) match intel records by ``object``; ipv4CIDR entries
carry their usable range as decimals, computed once at load time.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from objectanalyzer.models.base import Base
from objectanalyzer.utils.clock import utcnow


class TrustedObject(Base):
    __tablename__ = "trusted_objects"

    object: Mapped[str] = mapped_column(String, primary_key=True)
    object_additional_info: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    object_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    ip_decimal: Mapped[int] = mapped_column(BigInteger, default=0)
    start_ip_decimal: Mapped[int] = mapped_column(BigInteger, default=0)
    end_ip_decimal: Mapped[int] = mapped_column(BigInteger, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    time_imported: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=1)
    last_seen: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

"""Pydantic schemas for staged objects and intel records."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from objectanalyzer.models.base import ObjectTypeEnum


class StagedObjectIn(BaseModel):
    object: str = Field(..., min_length=1)
    object_type: ObjectTypeEnum
    notes: Optional[str] = None
    source: Optional[str] = None
    time_provided: Optional[str] = None
    geo_region: Optional[str] = None
    geo_country: Optional[str] = None
    geo_org: Optional[str] = None

    @field_validator("object")
    @classmethod
    def object_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("object must not be blank")
        return v


class BulkImportRequest(BaseModel):
    data: list[StagedObjectIn] = Field(..., min_length=1)


class ImportResult(BaseModel):
    staged: int
    skipped: int = 0


class StagedObjectOut(BaseModel):
    id: int
    object: str
    object_type: str
    ip_decimal: int
    notes: Optional[str] = None
    source: Optional[str] = None
    geo_region: Optional[str] = None
    geo_country: Optional[str] = None
    geo_org: Optional[str] = None
    fidelity: Optional[str] = None
    time_imported: datetime
    time_provided: Optional[str] = None

    model_config = {"from_attributes": True}


class IntelRecordOut(BaseModel):
    object: str
    object_type: str
    ip_decimal: int
    geo_region: Optional[str] = None
    geo_country: Optional[str] = None
    geo_org: Optional[str] = None
    geo_asn: Optional[str] = None
    notes: Optional[str] = None
    fidelity: Optional[str] = None
    first_seen: datetime
    last_seen: Optional[datetime] = None
    occurrence_count: int
    risk_score: Optional[int] = None
    risk_score_last_updated: Optional[datetime] = None
    confirmed_risk: bool
    trusted: bool

    model_config = {"from_attributes": True}


class TopObjectOut(BaseModel):
    object: str
    object_type: str
    occurrence_count: int
    risk_score: Optional[int] = None
    trusted: bool

    model_config = {"from_attributes": True}

"""Import all models to register them with SQLAlchemy metadata.

Weekly occurrence buckets are Core tables on their own MetaData; see
``objectanalyzer.modules.weekly_buckets``.
"""
from objectanalyzer.models.base import Base, ObjectTypeEnum, TrustedObjectTypeEnum
from objectanalyzer.models.pending_import import PendingImport
from objectanalyzer.models.object_intel import ObjectIntel
from objectanalyzer.models.trusted_object import TrustedObject

__all__ = [
    "Base",
    "ObjectTypeEnum",
    "TrustedObjectTypeEnum",
    "PendingImport",
    "ObjectIntel",
    "TrustedObject",
]

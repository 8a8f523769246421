"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class ObjectTypeEnum(str, enum.Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    DOMAIN = "domain"
    URL = "url"
    HASH = "hash"

    @classmethod
    def parse(cls, value: str | None) -> "ObjectTypeEnum | None":
        """Return the member for an exact wire value, or None if unrecognized."""
        try:
            return cls(value)
        except ValueError:
            return None


class TrustedObjectTypeEnum(str, enum.Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    IPV4_CIDR = "ipv4CIDR"
    # ipv6CIDR is not matched yet; loading one is rejected.

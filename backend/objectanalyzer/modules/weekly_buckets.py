"""Weekly occurrence buckets.

One append-only table per ISO (year, week), named ``objects_<week>_<year>``.
Every accepted merge appends a row to the bucket of its processing time; the
risk scorer counts rows per object across the last four buckets.

Tables are created lazily ("create if absent") inside the caller's
transaction. The registry caches only the Core ``Table`` definitions, never
whether a table exists: DDL can be rolled back with the batch that issued it.
"""
from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from typing import Any, NamedTuple

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    inspect,
    select,
)
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_TABLE_NAME_RE = re.compile(r"^objects_(\d{1,2})_(\d{4})$")


class BucketKey(NamedTuple):
    year: int
    week: int

    @classmethod
    def for_datetime(cls, dt: datetime) -> "BucketKey":
        iso = dt.isocalendar()
        return cls(year=iso[0], week=iso[1])

    @classmethod
    def from_table_name(cls, name: str) -> "BucketKey | None":
        match = _TABLE_NAME_RE.match(name)
        if match is None:
            return None
        return cls(year=int(match.group(2)), week=int(match.group(1)))

    @property
    def table_name(self) -> str:
        return f"objects_{self.week}_{self.year}"


class BucketHandle:
    """A bucket table bound to one session."""

    def __init__(self, db: Session, key: BucketKey, table: Table):
        self.db = db
        self.key = key
        self.table = table

    def append(self, **row: Any) -> None:
        self.db.execute(self.table.insert().values(**row))

    def count_matching(self, obj: str) -> int:
        stmt = select(func.count()).select_from(self.table).where(self.table.c.object == obj)
        return self.db.execute(stmt).scalar_one()


class BucketRegistry:
    """Maps ``BucketKey`` to its table and creates tables on demand."""

    def __init__(self) -> None:
        self.metadata = MetaData()
        self._tables: dict[BucketKey, Table] = {}
        self._lock = threading.Lock()

    def table_for(self, key: BucketKey) -> Table:
        with self._lock:
            table = self._tables.get(key)
            if table is None:
                name = key.table_name
                table = Table(
                    name,
                    self.metadata,
                    Column("id", Integer, primary_key=True, autoincrement=True),
                    Column("object", String, nullable=False),
                    Column("object_type", String, nullable=False),
                    Column("ip_decimal", BigInteger, default=0),
                    Column("notes", Text),
                    Column("source", String),
                    Column("fidelity", String, default="Low"),
                    Column("time_imported", DateTime),
                    Column("time_provided", String),
                    Index(f"ix_{name}_object", "object"),
                )
                self._tables[key] = table
            return table

    def ensure(self, db: Session, key: BucketKey) -> BucketHandle:
        """Return a handle on the bucket, creating its table if absent. Idempotent."""
        table = self.table_for(key)
        conn = db.connection()
        if not inspect(conn).has_table(table.name):
            logger.info("Creating weekly bucket %s", table.name)
            table.create(bind=conn, checkfirst=True)
        return BucketHandle(db, key, table)

    def exists(self, db: Session, key: BucketKey) -> bool:
        return inspect(db.connection()).has_table(key.table_name)

    def count_matching(self, db: Session, key: BucketKey, obj: str) -> int:
        """Rows in the bucket whose ``object`` equals ``obj`` exactly; 0 if the bucket is absent."""
        if not self.exists(db, key):
            return 0
        return BucketHandle(db, key, self.table_for(key)).count_matching(obj)

    def list_buckets(self, db: Session) -> list[BucketKey]:
        """All bucket keys present in the store, newest first."""
        keys = []
        for name in inspect(db.connection()).get_table_names():
            key = BucketKey.from_table_name(name)
            if key is not None:
                keys.append(key)
        return sorted(keys, reverse=True)


bucket_registry = BucketRegistry()

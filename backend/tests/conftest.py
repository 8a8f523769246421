"""Shared fixtures: a file-backed SQLite store per test."""
import os
from datetime import datetime
from pathlib import Path

# Settings are read at import time; keep the global engine off the working tree
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault(
    "RISK_SCORING_CONFIG",
    str(Path(__file__).resolve().parents[2] / "config" / "risk_scoring.yaml"),
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from objectanalyzer.config import settings
from objectanalyzer.database import StoreLock, UnitOfWork, get_db
from objectanalyzer.models import Base  # noqa: F401 -- registers all models
from objectanalyzer.models.object_intel import ObjectIntel
from objectanalyzer.modules.staging import stage_objects


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'threatintel.sqlite'}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store_guard():
    return StoreLock()


@pytest.fixture
def make_uow(session_factory, store_guard):
    """Factory for units of work on fresh sessions, guarded by a per-test lock."""
    def _make(exclusive: bool = True) -> UnitOfWork:
        return UnitOfWork(exclusive=exclusive, lock=store_guard, session_factory=session_factory)
    return _make


@pytest.fixture
def stage(db):
    """Stage records and commit, so the next unit of work sees them."""
    def _stage(*records: dict) -> int:
        count = stage_objects(db, list(records))
        db.commit()
        return count
    return _stage


@pytest.fixture
def add_intel(db):
    """Insert an intel record directly, bypassing the merge engine."""
    def _add(obj: str, object_type: str = "ipv4", ip_decimal: int = 0, **fields) -> ObjectIntel:
        record = ObjectIntel(
            object=obj,
            object_type=object_type,
            ip_decimal=ip_decimal,
            first_seen=fields.pop("first_seen", datetime(2026, 1, 1)),
            last_seen=fields.pop("last_seen", datetime(2026, 1, 1)),
            occurrence_count=fields.pop("occurrence_count", 1),
            **fields,
        )
        db.add(record)
        db.commit()
        return record
    return _add


@pytest.fixture
def api_client(session_factory, monkeypatch):
    """TestClient with get_db overridden to use the per-test store."""
    monkeypatch.setattr(settings, "API_KEY", None)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    from objectanalyzer.main import app

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()

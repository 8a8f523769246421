import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from objectanalyzer.config import settings

logger = logging.getLogger(__name__)

_engine_kwargs: dict = {"pool_pre_ping": True}
if "sqlite" in settings.DATABASE_URL:
    _engine_kwargs["connect_args"] = {
        "check_same_thread": False,
        "timeout": settings.SQLITE_BUSY_TIMEOUT,
    }
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={settings.SQLITE_BUSY_TIMEOUT * 1000}")
    cursor.close()


if "sqlite" in settings.DATABASE_URL:
    event.listen(engine, "connect", _set_sqlite_pragmas)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the fixed tables. Weekly bucket tables are created lazily."""
    from objectanalyzer.models import Base  # noqa: F401 ensure all models are registered

    _ensure_sqlite_directory(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database or parsed.database == ":memory:":
        return
    Path(parsed.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Single-writer discipline
# ---------------------------------------------------------------------------


class StoreLock:
    """Process-wide readers/writer lock around the shared store.

    Read-only queries take ``shared()``; every mutating stage takes
    ``exclusive()`` for its whole batch. Waiting writers block new readers so
    a stream of report queries cannot starve the worker. Not re-entrant.
    Offers no coordination across processes; that is left to the storage
    engine's own transaction isolation.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()

    @property
    def held_exclusive(self) -> bool:
        return self._writer

    @property
    def reader_count(self) -> int:
        return self._readers


store_lock = StoreLock()


class UnitOfWork:
    """Transaction scope handed to each pipeline stage.

    Acquires the store guard on entry, commits on a clean exit, rolls back on
    any exception and releases the guard on every path. A session passed in
    by the caller (API dependency, tests) is left open; a session the unit of
    work opened itself is closed.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        *,
        exclusive: bool = True,
        lock: Optional[StoreLock] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.session = session
        self.exclusive = exclusive
        self._owns_session = session is None
        self._session_factory = session_factory or SessionLocal
        self._lock = lock if lock is not None else store_lock
        self._guard = None

    def __enter__(self) -> "UnitOfWork":
        self._guard = self._lock.exclusive() if self.exclusive else self._lock.shared()
        self._guard.__enter__()
        try:
            if self.session is None:
                self.session = self._session_factory()
        except BaseException:
            self._guard.__exit__(None, None, None)
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                try:
                    self.session.commit()
                except BaseException:
                    self.session.rollback()
                    raise
            else:
                self.session.rollback()
        finally:
            try:
                if self._owns_session:
                    self.session.close()
                    self.session = None
            finally:
                self._guard.__exit__(None, None, None)
                self._guard = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


def unit_of_work(exclusive: bool = True) -> UnitOfWork:
    """Open a unit of work on a fresh session from ``SessionLocal``."""
    return UnitOfWork(exclusive=exclusive)


def dialect_insert(db: Session, table):
    """``INSERT`` construct supporting ``on_conflict_do_update`` for the bound dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        raise ValueError(f"Upsert not supported on the {dialect!r} dialect")
    return insert(table)

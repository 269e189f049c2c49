import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


logger = logging.getLogger(__name__)


def _create_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    in_memory = url.database in (None, "", ":memory:")
    options: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if in_memory:
        # One shared connection, otherwise every session sees an empty database.
        options["poolclass"] = StaticPool
    eng = create_engine(url, **options)
    event.listen(
        eng,
        "connect",
        _enable_memory_pragmas if in_memory else _enable_file_pragmas,
    )
    return eng


def _enable_file_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _enable_memory_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db() -> None:
    """Create tables directly for throwaway in-memory databases.

    File and server databases are managed by Alembic instead.
    """
    if engine.dialect.name == "sqlite" and engine.url.database in (None, "", ":memory:"):
        import models  # noqa: F401

        Base.metadata.create_all(engine)
        logger.info("In-memory ledger schema created")


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

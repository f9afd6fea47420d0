"""Database engine, session factory, and initialization."""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from postflow.config import settings
from postflow.models import Base

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enable foreign keys and hand transaction control to SQLAlchemy.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT. Setting isolation_level=None disables that and the "begin"
    hook below emits BEGIN explicitly.
    """
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


def configure_sqlite(engine) -> None:
    """Attach the SQLite connection hooks to an engine (no-op for other backends)."""
    if engine.dialect.name != "sqlite":
        return
    event.listen(engine, "connect", _set_sqlite_pragmas)
    event.listen(engine, "begin", _emit_begin)


def create_db_engine(database_url: str | None = None):
    """Create a SQLAlchemy engine.

    Args:
        database_url: Override the default database URL (used in tests).

    Returns:
        A SQLAlchemy engine instance.
    """
    url = database_url or settings.database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args, echo=False)
    configure_sqlite(engine)
    return engine


# Default engine and session factory used by the application
engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(db_engine=None) -> None:
    """Create all tables defined in models.

    Args:
        db_engine: Override the engine (used in tests).
    """
    target = db_engine or engine
    if target.dialect.name == "sqlite" and not settings.database_url_override:
        # Ensure the data directory exists before creating the DB file
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=target)
    logger.info("Database initialized at %s", target.url)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager for standalone session usage (e.g. scripts)."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

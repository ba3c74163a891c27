"""
Database connection and session management.

The pass worker thread and the web request threads share one engine, so
SQLite connections run in WAL mode with a busy timeout.
"""

import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from letterboxd_trakt.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///data/letterboxd-trakt.db"
SQLITE_BUSY_TIMEOUT_MS = 5000

engine: Optional[Engine] = None
SessionLocal = None


def get_database_url() -> str:
    """Get database URL from environment or use default."""
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def _is_sqlite(db_url: str) -> bool:
    return db_url.startswith("sqlite")


def _is_memory(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def ensure_data_directory(db_url: str) -> None:
    """Create the directory holding a file-based SQLite database."""
    if not db_url.startswith("sqlite:///") or _is_memory(db_url):
        return
    db_dir = os.path.dirname(db_url[len("sqlite:///"):])
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)


def _configure_sqlite(db_engine: Engine, in_memory: bool) -> None:
    @event.listens_for(db_engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()


def init_db(database_url: Optional[str] = None) -> Engine:
    """
    Create the engine and session factory, then create missing tables.

    Calling it again replaces the previous engine.
    """
    global engine, SessionLocal

    db_url = database_url or get_database_url()
    ensure_data_directory(db_url)

    if engine is not None:
        close_db()

    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False} if _is_sqlite(db_url) else {},
        echo=False,
    )
    if _is_sqlite(db_url):
        _configure_sqlite(engine, _is_memory(db_url))

    SessionLocal = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    )

    Base.metadata.create_all(bind=engine)
    return engine


def get_session():
    """Get a database session, initialising the default database if needed."""
    if SessionLocal is None:
        init_db()
    return SessionLocal()


@contextmanager
def get_db_session():
    """Session scope that commits on success and rolls back on error."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Dispose of the engine and forget the session factory."""
    global engine, SessionLocal
    if SessionLocal is not None:
        SessionLocal.remove()
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None

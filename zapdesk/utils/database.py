"""
Database engine and sessions for the persistent store.

The store is a single SQLite file by default (DATABASE_URL overrides it).
Every connection gets the WAL and foreign-key pragmas so the console loop
thread and Flask health checks can share the file.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from zapdesk.utils.logger import logger


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/zapdesk.db")

SQLITE_PRAGMAS = (
    "PRAGMA foreign_keys=ON",
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def create_db_engine(url: str) -> Engine:
    """
    Build an engine for the store.

    For a SQLite file the parent directory is created and the pragmas are
    applied on every new connection.
    """
    if _is_sqlite(url) and ":memory:" not in url and url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    db_engine = create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if _is_sqlite(url) else {},
    )

    if _is_sqlite(url):
        @event.listens_for(db_engine, "connect")
        def apply_sqlite_pragmas(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

    return db_engine


engine = create_db_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: Callable[[], Session] = SessionLocal) -> Generator[Session, None, None]:
    """
    One database session per store call.

    Rolls back and re-raises on error; always closes.

    Example:
        with session_scope() as db:
            CollectionRepository(db).load("queue", {})
    """
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create the store tables that do not exist yet."""
    from zapdesk.models import Base
    Base.metadata.create_all(bind=engine)
    logger.info(f"Persistent store ready ({engine.url.render_as_string(hide_password=True)})")


def check_db_connection() -> bool:
    """True when the store answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False

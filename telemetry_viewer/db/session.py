"""Engines and session factories for the embedded SQLite store.

Writes go through a small bounded pool; reads use a larger pool of
``query_only`` connections. WAL journaling keeps readers and the writer
from blocking each other.
"""

import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from telemetry_viewer.core.config import settings

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


def _casefold(value):
    """SQL ``casefold(x)``: Unicode-aware lowering; SQLite's ``lower()`` folds ASCII only."""
    return value.casefold() if isinstance(value, str) else value


def _apply_pragmas(engine: Engine, *, read_only: bool) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
            cursor.execute("PRAGMA foreign_keys = ON")
            if read_only:
                cursor.execute("PRAGMA query_only = ON")
            else:
                cursor.execute("PRAGMA journal_mode = WAL")
                cursor.execute("PRAGMA synchronous = NORMAL")
        finally:
            cursor.close()
        dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)


def create_sqlite_engine(
    path: Path | str,
    *,
    read_only: bool = False,
    pool_size: int | None = None,
) -> Engine:
    """Create an engine for the SQLite file at ``path`` with the store's pragmas."""
    size = pool_size or (
        settings.DB_READER_POOL_SIZE if read_only else settings.DB_WRITER_POOL_SIZE
    )
    engine = create_engine(
        f"sqlite:///{path}",
        pool_pre_ping=True,
        pool_size=size,
        max_overflow=0,
        pool_timeout=settings.REQUEST_TIMEOUT_SECONDS,
        connect_args={"check_same_thread": False, "timeout": BUSY_TIMEOUT_MS / 1000},
    )
    _apply_pragmas(engine, read_only=read_only)
    return engine


def ensure_database_directory(path: Path) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Created database directory %s", path.parent)


engine = create_sqlite_engine(settings.database_path)
read_engine = create_sqlite_engine(settings.database_path, read_only=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
ReadSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=read_engine)

"""Startup and shutdown: template bootstrap, migrations, seeding, session cleaner."""

import logging
import shutil
import threading
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.migrations import MigrationError, MigrationStatus, ensure_migrations
from telemetry_viewer.core.structured_logging import configure_logging
from telemetry_viewer.db.enums import Role
from telemetry_viewer.db.models import Operator
from telemetry_viewer.db.session import (
    SessionLocal,
    create_sqlite_engine,
    engine,
    ensure_database_directory,
    read_engine,
)
from telemetry_viewer.services import operator_service, session_service

logger = logging.getLogger(__name__)

INITIAL_OPERATOR = "god"
PROCESS_STARTED_AT = time.monotonic()


def prepare_database(db_path: Path, template_path: Path | None) -> bool:
    """
    Copy the template into place on first boot.

    Returns True when a copy was made. An existing database is never touched.
    """
    if db_path.exists():
        return False
    ensure_database_directory(db_path)
    if template_path is None:
        return False
    if not template_path.is_file():
        logger.warning("Template database %s not found; starting from an empty store", template_path)
        return False
    shutil.copyfile(template_path, db_path)
    logger.info("Bootstrapped %s from template %s", db_path, template_path)
    return True


def seed_initial_operator(db: Session) -> Operator | None:
    """Create the ``god`` operator when no operators exist yet."""
    if operator_service.count_operators(db) > 0:
        return None
    operator = operator_service.create_operator(
        db,
        INITIAL_OPERATOR,
        settings.INITIAL_GOD_PASSWORD,
        role=Role.GOD,
    )
    logger.warning(
        "Seeded initial operator '%s' with the configured INITIAL_GOD_PASSWORD; change it now",
        INITIAL_OPERATOR,
    )
    return operator


def bootstrap_database(
    target_engine: Engine,
    db_path: Path,
    template_path: Path | None,
    auto_migrate: bool = True,
) -> MigrationStatus:
    """Template copy, migrations to head, then the initial operator seed."""
    prepare_database(db_path, template_path)
    status = ensure_migrations(target_engine, auto_migrate)
    if not status.is_up_to_date:
        raise MigrationError(
            "Database schema is behind head and AUTO_MIGRATE is disabled; run 'telemetry-viewer migrate'"
        )
    with Session(target_engine) as db:
        seed_initial_operator(db)
        db.commit()
    return status


def build_template(path: Path) -> MigrationStatus:
    """Write a fresh template DB holding the schema and the ``god`` operator."""
    if path.exists():
        raise FileExistsError(f"{path} already exists")
    ensure_database_directory(path)
    template_engine = create_sqlite_engine(path, pool_size=1)
    try:
        return bootstrap_database(template_engine, path, None)
    finally:
        template_engine.dispose()


class SessionCleaner(threading.Thread):
    """Daemon thread purging expired sessions every ``interval`` seconds."""

    def __init__(self, interval: float):
        super().__init__(name="session-cleaner", daemon=True)
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def run_once(self) -> int:
        db = SessionLocal()
        try:
            return session_service.purge_expired_sessions(db)
        except Exception:
            logger.exception("Session cleanup failed")
            db.rollback()
            return 0
        finally:
            db.close()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        self.join(timeout)


def startup() -> SessionCleaner:
    """Run the startup order; any exception here aborts the process."""
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting telemetry viewer %s (env=%s)", settings.VERSION, settings.ENV)
    bootstrap_database(
        engine,
        settings.database_path,
        settings.template_path,
        auto_migrate=settings.AUTO_MIGRATE,
    )
    cleaner = SessionCleaner(settings.SESSION_CLEANUP_INTERVAL_SECONDS)
    cleaner.start()
    return cleaner


def shutdown(cleaner: SessionCleaner | None) -> None:
    logger.info("Shutting down telemetry viewer")
    if cleaner is not None:
        cleaner.stop(timeout=settings.SHUTDOWN_GRACE_SECONDS)
    engine.dispose()
    read_engine.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    cleaner = startup()
    app.state.session_cleaner = cleaner
    try:
        yield
    finally:
        shutdown(cleaner)

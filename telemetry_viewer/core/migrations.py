"""Database migration utilities for startup checks and health probes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, event, inspect, pool
from sqlalchemy.engine import Connection, Engine

ALEMBIC_VERSION_TABLE = "alembic_version"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationStatus:
    current_heads: tuple[str, ...]
    head_revisions: tuple[str, ...]
    is_up_to_date: bool


class MigrationError(RuntimeError):
    """Raised when automatic migrations fail to reach head."""


def _get_alembic_config(engine: Engine) -> Config:
    project_root = Path(__file__).resolve().parents[2]
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.is_file():
        raise FileNotFoundError(f"Alembic config not found at {alembic_ini}")
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(project_root / "alembic"))
    config.set_main_option(
        "sqlalchemy.url", engine.url.render_as_string(hide_password=False)
    )
    config.attributes["url_overridden"] = True
    return config


def _tuple_or_empty(values: Iterable[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(values)


def _current_heads(connection: Connection) -> tuple[str, ...]:
    inspector = inspect(connection)
    if ALEMBIC_VERSION_TABLE not in inspector.get_table_names():
        return ()

    context = MigrationContext.configure(connection)
    return _tuple_or_empty(context.get_current_heads())


def get_head_revisions(engine: Engine) -> tuple[str, ...]:
    script = ScriptDirectory.from_config(_get_alembic_config(engine))
    return _tuple_or_empty(script.get_heads())


def get_migration_status(engine: Engine) -> MigrationStatus:
    head_revisions = get_head_revisions(engine)

    with engine.connect() as connection:
        current_heads = _current_heads(connection)

    is_up_to_date = set(current_heads) == set(head_revisions)
    return MigrationStatus(
        current_heads=current_heads,
        head_revisions=head_revisions,
        is_up_to_date=is_up_to_date,
    )


def ensure_migrations(engine: Engine, auto_migrate: bool) -> MigrationStatus:
    status = get_migration_status(engine)
    if status.is_up_to_date or not auto_migrate:
        return status

    logger.info(
        "Applying migrations: %s -> %s",
        ",".join(status.current_heads) or "<empty>",
        ",".join(status.head_revisions),
    )
    _upgrade_to_head(engine)
    status = get_migration_status(engine)
    if not status.is_up_to_date:
        raise MigrationError("Database migrations did not reach head after auto-upgrade.")
    logger.info("Database schema at %s", ",".join(status.current_heads))
    return status


def _upgrade_to_head(engine: Engine) -> None:
    config = _get_alembic_config(engine)

    # Dedicated connection so every revision gets a real BEGIN/COMMIT,
    # independent of the request pools.
    migration_engine = create_engine(engine.url, poolclass=pool.NullPool)

    @event.listens_for(migration_engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(migration_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    try:
        with migration_engine.connect() as connection:
            config.attributes["connection"] = connection
            command.upgrade(config, "head")
            if connection.in_transaction():
                connection.commit()
    except Exception as exc:
        raise MigrationError(f"Database migration failed: {exc}") from exc
    finally:
        migration_engine.dispose()

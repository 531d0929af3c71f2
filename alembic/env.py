from logging.config import fileConfig

from sqlalchemy import engine_from_config, event, pool

from alembic import context

# Import the Base and models for autogenerate support
from telemetry_viewer.db.base import Base
# Import all models here so they are registered with Base.metadata
import telemetry_viewer.db.models  # noqa: F401

from telemetry_viewer.core.config import settings

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# An embedding caller (startup, CLI, tests) hands over its own connection.
embedded_connection = config.attributes.get("connection")

# Override sqlalchemy.url with the value from settings unless a caller set one
if not config.attributes.get("url_overridden"):
    config.set_main_option("sqlalchemy.url", settings.database_url)

# Interpret the config file for Python logging, but leave the host
# application's logging alone when running embedded.
if config.config_file_name is not None and embedded_connection is None:
    fileConfig(config.config_file_name)

# Set target_metadata to Base.metadata for autogenerate support
target_metadata = Base.metadata


def _enable_transactional_ddl(connectable) -> None:
    # pysqlite defers BEGIN until the first DML statement; take over so
    # each revision's DDL runs inside a real transaction.
    @event.listens_for(connectable, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(connectable, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _configure_and_run(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
        transaction_per_migration=True,
        transactional_ddl=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    This configures the context with just a URL and emits the SQL to the
    script output instead of executing it.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    Uses the caller's connection when one was provided, otherwise builds
    a throwaway engine from the configured URL.
    """
    if embedded_connection is not None:
        _configure_and_run(embedded_connection)
        return

    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    _enable_transactional_ddl(connectable)

    with connectable.connect() as connection:
        _configure_and_run(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

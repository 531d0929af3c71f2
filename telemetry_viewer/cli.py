"""CLI tools for telemetry viewer administration."""

from pathlib import Path

import click
import uvicorn

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.lifecycle import build_template
from telemetry_viewer.core.migrations import MigrationError, ensure_migrations, get_migration_status
from telemetry_viewer.core.structured_logging import configure_logging
from telemetry_viewer.db.enums import Role
from telemetry_viewer.db.session import SessionLocal, engine
from telemetry_viewer.services import operator_service, session_service
from telemetry_viewer.services.operator_service import OperatorServiceError

ROLE_CHOICES = click.Choice([role.value for role in Role])


@click.group()
def cli():
    """Telemetry viewer CLI tools."""
    configure_logging(settings.LOG_LEVEL)


@cli.command()
@click.option("--reload", is_flag=True, help="Reload on code changes (development only)")
def serve(reload: bool):
    """Run the HTTP server on LISTEN_ADDRESS."""
    uvicorn.run(
        "telemetry_viewer.main:app",
        host=settings.listen_host,
        port=settings.listen_port,
        reload=reload,
        timeout_graceful_shutdown=settings.SHUTDOWN_GRACE_SECONDS,
        log_level=settings.LOG_LEVEL.lower(),
    )


@cli.command()
def migrate():
    """Apply pending schema migrations."""
    try:
        status = ensure_migrations(engine, auto_migrate=True)
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Schema at {', '.join(status.current_heads)}")


@cli.command("migration-status")
def migration_status():
    """Show current and head schema revisions."""
    status = get_migration_status(engine)
    click.echo(f"Current: {', '.join(status.current_heads) or '<empty>'}")
    click.echo(f"Head:    {', '.join(status.head_revisions)}")
    click.echo("Up to date" if status.is_up_to_date else "Pending migrations")


@cli.command("build-template")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
def build_template_command(path: Path):
    """
    Create a template database holding the schema and the initial god user.

    Example:
        telemetry-viewer build-template data/template.db
    """
    try:
        status = build_template(path)
    except FileExistsError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Template written to {path} (schema {', '.join(status.current_heads)})")


@cli.command("create-user")
@click.option("--username", required=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=ROLE_CHOICES, default=Role.BASIC.value, show_default=True)
@click.option("--producer", is_flag=True, help="Machine producer: long-lived sessions, CSRF-exempt ingest")
def create_user(username: str, password: str, role: str, producer: bool):
    """Create an operator account."""
    db = SessionLocal()
    try:
        operator_service.create_operator(db, username, password, role=role, is_producer=producer)
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"✓ Created {role} user {username}")


@cli.command("set-password")
@click.option("--username", required=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def set_password(username: str, password: str):
    """Reset an operator's password and revoke their sessions."""
    db = SessionLocal()
    try:
        operator_service.set_password(db, username, password)
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"✓ Password updated for {username}")


@cli.command("set-role")
@click.option("--username", required=True)
@click.option("--role", type=ROLE_CHOICES, required=True)
@click.option("--producer/--no-producer", default=None, help="Toggle the machine producer flag")
def set_role(username: str, role: str, producer: bool | None):
    """Change an operator's role (and optionally the producer flag)."""
    db = SessionLocal()
    try:
        operator_service.set_role(db, username, role, is_producer=producer)
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"✓ {username} is now {role}")


@cli.command("purge-sessions")
def purge_sessions():
    """Delete expired login sessions."""
    db = SessionLocal()
    try:
        removed = session_service.purge_expired_sessions(db)
    finally:
        db.close()
    click.echo(f"✓ Removed {removed} expired sessions")


if __name__ == "__main__":
    cli()

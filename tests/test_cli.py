"""Tests for the administration CLI."""
from click.testing import CliRunner

from telemetry_viewer.cli import cli
from telemetry_viewer.db.enums import Role
from telemetry_viewer.services import operator_service


def test_create_user_and_set_role(db):
    runner = CliRunner()

    created = runner.invoke(
        cli, ["create-user", "--username", "ops", "--password", "pw", "--role", "advanced", "--producer"]
    )
    assert created.exit_code == 0, created.output
    assert "Created advanced user ops" in created.output

    changed = runner.invoke(cli, ["set-role", "--username", "ops", "--role", "basic", "--no-producer"])
    assert changed.exit_code == 0, changed.output

    db.rollback()
    operator = operator_service.get_operator(db, "ops")
    assert operator.role == Role.BASIC.value
    assert operator.is_producer is False


def test_create_duplicate_user_fails(db, make_operator):
    make_operator("ops")

    result = CliRunner().invoke(cli, ["create-user", "--username", "ops", "--password", "pw"])

    assert result.exit_code != 0
    assert "already exists" in result.output


def test_build_template_command(tmp_path):
    target = tmp_path / "template.db"

    first = CliRunner().invoke(cli, ["build-template", str(target)])
    assert first.exit_code == 0, first.output
    assert target.exists()

    second = CliRunner().invoke(cli, ["build-template", str(target)])
    assert second.exit_code != 0


def test_migration_status(db):
    result = CliRunner().invoke(cli, ["migration-status"])

    assert result.exit_code == 0
    assert "Up to date" in result.output

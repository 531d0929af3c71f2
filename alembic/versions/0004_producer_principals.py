"""Producer principals (machine ingest without CSRF)

Revision ID: 0004_producer_principals
Revises: 0003_teams_and_orgs
Create Date: 2026-01-20

Adds the per-operator opt-in flag and marks the sessions it issues.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0004_producer_principals"
down_revision: Union[str, Sequence[str], None] = "0003_teams_and_orgs"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_column(table_name: str, column_name: str) -> bool:
    bind = op.get_bind()
    inspector = inspect(bind)
    return any(column.get("name") == column_name for column in inspector.get_columns(table_name))


def upgrade() -> None:
    if not _has_column("users", "is_producer"):
        with op.batch_alter_table("users") as batch_op:
            batch_op.add_column(
                sa.Column("is_producer", sa.Boolean(), server_default=sa.text("0"), nullable=False)
            )
    if not _has_column("auth_sessions", "is_producer"):
        with op.batch_alter_table("auth_sessions") as batch_op:
            batch_op.add_column(
                sa.Column("is_producer", sa.Boolean(), server_default=sa.text("0"), nullable=False)
            )


def downgrade() -> None:
    with op.batch_alter_table("auth_sessions") as batch_op:
        batch_op.drop_column("is_producer")
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("is_producer")

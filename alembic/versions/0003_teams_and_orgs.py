"""Teams, orgs, legacy org-team mappings, event-user links

Revision ID: 0003_teams_and_orgs
Revises: 0002_operators_and_sessions
Create Date: 2025-10-14

Moves org->team mapping out of the settings blob into tables. A
user_name may be linked to at most one team.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0003_teams_and_orgs"
down_revision: Union[str, Sequence[str], None] = "0002_operators_and_sessions"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table_name: str) -> bool:
    return sa.inspect(conn).has_table(table_name)


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
    )


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, "teams"):
        op.create_table(
            "teams",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("name_key", sa.String(100), nullable=False, unique=True),
            sa.Column("color", sa.String(7), nullable=True),
            sa.Column("logo_data", sa.LargeBinary(), nullable=True),
            sa.Column("logo_mime", sa.String(32), nullable=True),
            _timestamp_column("created_at"),
            _timestamp_column("updated_at"),
        )

    if not _table_exists(conn, "orgs"):
        op.create_table(
            "orgs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("org_id", sa.String(255), nullable=False),
            sa.Column("org_key", sa.String(255), nullable=False, unique=True),
            sa.Column("alias", sa.String(255), nullable=True),
            sa.Column("color", sa.String(7), nullable=True),
            sa.Column("company_name", sa.String(255), nullable=True),
            sa.Column(
                "team_id",
                sa.Integer(),
                sa.ForeignKey("teams.id", ondelete="SET NULL"),
                nullable=True,
            ),
            _timestamp_column("created_at"),
            _timestamp_column("updated_at"),
        )
        op.create_index("idx_orgs_team_id", "orgs", ["team_id"])

    if not _table_exists(conn, "org_team_mappings"):
        op.create_table(
            "org_team_mappings",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("org_identifier", sa.String(255), nullable=False),
            sa.Column("org_key", sa.String(255), nullable=False),
            sa.Column("client_name", sa.String(255), nullable=False),
            sa.Column("team_name", sa.String(100), nullable=False),
            sa.Column("color", sa.String(7), nullable=True),
            sa.Column("active", sa.Boolean(), server_default=sa.text("1"), nullable=False),
            _timestamp_column("created_at"),
        )
        op.create_index("idx_org_team_mappings_org_key", "org_team_mappings", ["org_key"])

    if not _table_exists(conn, "team_event_users"):
        op.create_table(
            "team_event_users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "team_id",
                sa.Integer(),
                sa.ForeignKey("teams.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("user_name", sa.String(255), nullable=False, unique=True),
            _timestamp_column("created_at"),
        )
        op.create_index("idx_team_event_users_team_id", "team_event_users", ["team_id"])


def downgrade() -> None:
    op.drop_table("team_event_users")
    op.drop_table("org_team_mappings")
    op.drop_table("orgs")
    op.drop_table("teams")

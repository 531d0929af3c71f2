"""Event store baseline

Revision ID: 0001_event_store
Revises:
Create Date: 2025-09-02

Creates the telemetry_events table and the indexes behind the event
filter matrix (received_at, session, user, kind, normalized org key).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_event_store"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table_name: str) -> bool:
    return sa.inspect(conn).has_table(table_name)


def _index_exists(conn, table_name: str, index_name: str) -> bool:
    inspector = sa.inspect(conn)
    if not inspector.has_table(table_name):
        return False
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


EVENT_INDEXES = {
    "idx_events_received_at": ["received_at"],
    "idx_events_session_received": ["session_id", "received_at"],
    "idx_events_user_name": ["user_name"],
    "idx_events_user_id": ["user_id"],
    "idx_events_kind_received": ["event_kind", "received_at"],
    "idx_events_org_key": ["org_identifier_key"],
}


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, "telemetry_events"):
        op.create_table(
            "telemetry_events",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("received_at", sa.DateTime(), nullable=False),
            sa.Column("timestamp", sa.DateTime(), nullable=False),
            sa.Column("event_kind", sa.String(32), nullable=False),
            sa.Column("area", sa.String(64), server_default=sa.text("''"), nullable=False),
            sa.Column("session_id", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column("user_id", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column("user_name", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column("server_id", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column("version", sa.String(64), server_default=sa.text("''"), nullable=False),
            sa.Column("tool_name", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column("company_name", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column("org_identifier", sa.String(255), server_default=sa.text("''"), nullable=False),
            sa.Column(
                "org_identifier_key", sa.String(255), server_default=sa.text("''"), nullable=False
            ),
            sa.Column("success", sa.Boolean(), server_default=sa.text("1"), nullable=False),
            sa.Column("error_message", sa.Text(), server_default=sa.text("''"), nullable=False),
            sa.Column("data", sa.Text(), server_default=sa.text("'{}'"), nullable=False),
            sa.Column(
                "created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
            ),
            sqlite_autoincrement=True,
        )

    for name, columns in EVENT_INDEXES.items():
        if not _index_exists(conn, "telemetry_events", name):
            op.create_index(name, "telemetry_events", columns)


def downgrade() -> None:
    op.drop_table("telemetry_events")

"""Telemetry event store."""

from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_viewer.db.base import Base, utcnow


class TelemetryEvent(Base):
    """
    One immutable telemetry record submitted by a producer.

    Rows are written once by ingest and only ever removed by operator
    deletes. ``org_identifier_key`` is the lowercased, trimmed org id used
    for team resolution.
    """

    __tablename__ = "telemetry_events"
    __table_args__ = (
        Index("idx_events_received_at", "received_at"),
        Index("idx_events_session_received", "session_id", "received_at"),
        Index("idx_events_user_name", "user_name"),
        Index("idx_events_user_id", "user_id"),
        Index("idx_events_kind_received", "event_kind", "received_at"),
        Index("idx_events_org_key", "org_identifier_key"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    received_at: Mapped[datetime] = mapped_column(nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    area: Mapped[str] = mapped_column(String(64), server_default=text("''"), nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    server_id: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    version: Mapped[str] = mapped_column(String(64), server_default=text("''"), nullable=False)
    tool_name: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    org_identifier: Mapped[str] = mapped_column(String(255), server_default=text("''"), nullable=False)
    org_identifier_key: Mapped[str] = mapped_column(
        String(255), server_default=text("''"), nullable=False
    )
    success: Mapped[bool] = mapped_column(Boolean, server_default=text("1"), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, server_default=text("''"), nullable=False)
    # JSON text exactly as serialized at ingest
    data: Mapped[str] = mapped_column(Text, server_default=text("'{}'"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )

"""Operators (dashboard principals) and their DB-backed sessions."""

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from telemetry_viewer.db.base import Base, utcnow


class Operator(Base):
    """
    A human (or, when ``is_producer`` is set, machine) principal.

    Usernames are case-sensitive. Password hashes never leave the service layer.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), server_default=text("'basic'"), nullable=False)
    is_producer: Mapped[bool] = mapped_column(Boolean, server_default=text("0"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )
    last_login: Mapped[datetime | None] = mapped_column(nullable=True)

    sessions: Mapped[list["AuthSession"]] = relationship(
        back_populates="operator",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class AuthSession(Base):
    """
    Login session. Only the SHA-256 of the cookie token is stored.

    The CSRF token is bound 1:1 to the session and echoed by clients in a header.
    """

    __tablename__ = "auth_sessions"
    __table_args__ = (
        Index("idx_auth_sessions_expires_at", "expires_at"),
        Index("idx_auth_sessions_operator", "operator_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    operator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    csrf_token: Mapped[str] = mapped_column(String(128), nullable=False)
    is_producer: Mapped[bool] = mapped_column(Boolean, server_default=text("0"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )

    operator: Mapped["Operator"] = relationship(back_populates="sessions")

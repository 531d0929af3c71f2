"""Teams, orgs, legacy org->team mappings and event-user links."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, LargeBinary, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from telemetry_viewer.db.base import Base, utcnow


class Team(Base):
    """
    A named group of orgs and event users.

    ``name_key`` is the lowercased name and carries the case-insensitive
    uniqueness constraint; it doubles as the team key used in filters.
    """

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    name_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    logo_data: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True, deferred=True)
    logo_mime: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )

    orgs: Mapped[list["Org"]] = relationship(back_populates="team")
    event_users: Mapped[list["TeamEventUser"]] = relationship(
        back_populates="team",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_logo(self) -> bool:
        return self.logo_mime is not None


class Org(Base):
    """A producer org identifier, optionally bound directly to a team."""

    __tablename__ = "orgs"
    __table_args__ = (Index("idx_orgs_team_id", "team_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(255), nullable=False)
    org_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    alias: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    team_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )

    team: Mapped[Optional["Team"]] = relationship(back_populates="orgs")


class OrgTeamMapping(Base):
    """
    Legacy (org, client, team) tuple from the settings screen.

    Only consulted when no ``Org`` row binds the org directly. ``position``
    keeps the submitted order so "first active match" is stable.
    """

    __tablename__ = "org_team_mappings"
    __table_args__ = (Index("idx_org_team_mappings_org_key", "org_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    org_identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    org_key: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    team_name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, server_default=text("1"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )


class TeamEventUser(Base):
    """Assignment of an observed event ``user_name`` to one team."""

    __tablename__ = "team_event_users"
    __table_args__ = (Index("idx_team_event_users_team_id", "team_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    user_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )

    team: Mapped["Team"] = relationship(back_populates="event_users")

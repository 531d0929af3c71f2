"""SQLAlchemy ORM models, re-exported so Base.metadata sees every table."""

from telemetry_viewer.db.models.auth import AuthSession, Operator
from telemetry_viewer.db.models.events import TelemetryEvent
from telemetry_viewer.db.models.teams import Org, OrgTeamMapping, Team, TeamEventUser

__all__ = [
    "AuthSession",
    "Operator",
    "Org",
    "OrgTeamMapping",
    "Team",
    "TeamEventUser",
    "TelemetryEvent",
]

"""Static route classification: auth class and minimum role per route.

Every mounted route must appear here; anything missing is denied.
"""

from dataclasses import dataclass
from enum import Enum

from telemetry_viewer.db.enums import Role


class AuthClass(str, Enum):
    PUBLIC = "public"  # session resolved if present, never required
    AUTHED = "authed"
    AUTHED_CSRF = "authed_csrf"


@dataclass(frozen=True)
class RoutePolicy:
    auth: AuthClass
    min_role: Role | None = None
    # Producer sessions may skip CSRF on this route.
    producer_csrf_exempt: bool = False


PUBLIC = RoutePolicy(AuthClass.PUBLIC)
AUTHED = RoutePolicy(AuthClass.AUTHED)
AUTHED_CSRF = RoutePolicy(AuthClass.AUTHED_CSRF)
ADVANCED_READ = RoutePolicy(AuthClass.AUTHED, Role.ADVANCED)
ADMIN_READ = RoutePolicy(AuthClass.AUTHED, Role.ADMINISTRATOR)
ADMIN_WRITE = RoutePolicy(AuthClass.AUTHED_CSRF, Role.ADMINISTRATOR)
INGEST = RoutePolicy(AuthClass.AUTHED_CSRF, producer_csrf_exempt=True)


ROUTE_POLICIES: dict[tuple[str, str], RoutePolicy] = {
    # Auth & session
    ("POST", "/login"): PUBLIC,
    ("POST", "/logout"): AUTHED_CSRF,
    ("GET", "/api/auth/status"): PUBLIC,
    ("GET", "/health"): PUBLIC,
    # Events
    ("POST", "/events"): INGEST,
    ("GET", "/api/events"): AUTHED,
    ("GET", "/api/events/export"): ADVANCED_READ,
    ("GET", "/api/events/{event_id}"): AUTHED,
    ("DELETE", "/api/events/{event_id}"): AUTHED_CSRF,
    # Bulk delete needs advanced+ unless scoped by sessionId (checked in handler).
    ("DELETE", "/api/events"): AUTHED_CSRF,
    # Aggregates
    ("GET", "/api/sessions"): AUTHED,
    ("GET", "/api/session-activity"): AUTHED,
    ("GET", "/api/event-types"): AUTHED,
    ("GET", "/api/telemetry-users"): AUTHED,
    ("GET", "/api/event-users"): AUTHED,
    ("GET", "/api/team-stats"): AUTHED,
    ("GET", "/api/daily-stats"): AUTHED,
    ("GET", "/api/tool-usage-stats"): AUTHED,
    ("GET", "/api/top-teams-today"): AUTHED,
    ("GET", "/api/top-users-today"): AUTHED,
    ("GET", "/api/database-size"): AUTHED,
    # Teams
    ("GET", "/api/teams"): AUTHED,
    ("POST", "/api/teams"): ADMIN_WRITE,
    ("GET", "/api/teams/{team_id}"): AUTHED,
    ("PUT", "/api/teams/{team_id}"): ADMIN_WRITE,
    ("DELETE", "/api/teams/{team_id}"): ADMIN_WRITE,
    ("GET", "/api/teams/{team_id}/logo"): AUTHED,
    ("POST", "/api/teams/{team_id}/event-users"): ADMIN_WRITE,
    ("DELETE", "/api/teams/{team_id}/event-users/{user_name}"): ADMIN_WRITE,
    # Orgs & legacy mappings
    ("GET", "/api/orgs"): AUTHED,
    ("POST", "/api/orgs"): ADMIN_WRITE,
    ("POST", "/api/orgs/{org_id}/move"): ADMIN_WRITE,
    ("GET", "/api/settings/org-team-mappings"): AUTHED,
    ("POST", "/api/settings/org-team-mappings"): ADMIN_WRITE,
    # Operators
    ("GET", "/api/users"): ADMIN_READ,
    ("POST", "/api/users"): ADMIN_WRITE,
    ("PUT", "/api/users/{username}/password"): ADMIN_WRITE,
    ("PUT", "/api/users/{username}/role"): ADMIN_WRITE,
    ("DELETE", "/api/users/{username}"): ADMIN_WRITE,
}


def get_route_policy(method: str, path: str) -> RoutePolicy | None:
    """Look up the policy for a matched route; HEAD shares the GET entry."""
    if method == "HEAD":
        method = "GET"
    return ROUTE_POLICIES.get((method, path))

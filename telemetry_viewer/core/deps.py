"""FastAPI dependencies for authentication, authorization, and database access."""

from dataclasses import dataclass
from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from telemetry_viewer.core.csrf import validate_csrf
from telemetry_viewer.core.errors import api_error
from telemetry_viewer.core.policies import AuthClass, get_route_policy
from telemetry_viewer.db.enums import Role, role_allows
from telemetry_viewer.db.session import ReadSessionLocal, SessionLocal
from telemetry_viewer.services import session_service

# Cookie and header names
COOKIE_NAME = "tv_session"
BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthContext:
    """Authenticated principal for the current request (copied out of the ORM)."""

    operator_id: int
    username: str
    role: Role
    session_id: int
    csrf_token: str
    is_producer: bool


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency (writer pool).

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_read_db() -> Generator[Session, None, None]:
    """Read-only database session dependency (reader pool)."""
    db = ReadSessionLocal()
    try:
        yield db
    finally:
        db.close()


def _presented_token(request: Request) -> tuple[str | None, bool]:
    """Return (token, via_bearer). The cookie wins when both are present."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token, False
    header = request.headers.get("Authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None, True
    return None, False


def resolve_auth(request: Request, db: Session) -> AuthContext | None:
    """Load the operator behind the presented session, if any and still valid."""
    token, via_bearer = _presented_token(request)
    if not token:
        return None

    found = session_service.get_active_session(db, token)
    if found is None:
        return None
    session_row, operator = found

    # Producer rights need both the session and the operator flag.
    is_producer = bool(session_row.is_producer and operator.is_producer)
    if via_bearer and not is_producer:
        return None
    if not Role.has_value(operator.role):
        return None

    return AuthContext(
        operator_id=operator.id,
        username=operator.username,
        role=Role(operator.role),
        session_id=session_row.id,
        csrf_token=session_row.csrf_token,
        is_producer=is_producer,
    )


def enforce_route_policy(
    request: Request,
    db: Session = Depends(get_read_db),
) -> AuthContext | None:
    """
    Application-wide gate applied to every route.

    Looks the matched route up in ROUTE_POLICIES, then enforces, in order:
    authentication, CSRF (non-safe methods), minimum role.

    Raises:
        HTTPException 401: Missing, unknown or expired session
        HTTPException 403: Unclassified route, CSRF mismatch or insufficient role
    """
    route = request.scope.get("route")
    policy = get_route_policy(request.method, getattr(route, "path", ""))
    if policy is None:
        raise api_error(403, "forbidden", "Route is not available")

    auth = resolve_auth(request, db)
    request.state.auth = auth
    if policy.auth == AuthClass.PUBLIC:
        return auth

    if auth is None:
        raise api_error(401, "unauthorized", "Not authenticated")

    if policy.auth == AuthClass.AUTHED_CSRF:
        exempt = policy.producer_csrf_exempt and auth.is_producer
        if not exempt and not validate_csrf(request, auth.csrf_token):
            raise api_error(403, "csrf_mismatch", "Missing or invalid CSRF token")

    if policy.min_role is not None:
        require_role(auth, policy.min_role)

    return auth


def get_current_auth(
    auth: AuthContext | None = Depends(enforce_route_policy),
) -> AuthContext:
    """Authenticated principal; 401 if the route let an anonymous request through."""
    if auth is None:
        raise api_error(401, "unauthorized", "Not authenticated")
    return auth


def get_optional_auth(
    auth: AuthContext | None = Depends(enforce_route_policy),
) -> AuthContext | None:
    return auth


def require_role(auth: AuthContext, required: Role) -> None:
    """
    Raise unless ``auth`` holds ``required`` or a higher role.

    Raises:
        HTTPException 403: Role below the requirement
    """
    if not role_allows(auth.role, required):
        raise api_error(
            403,
            "role_insufficient",
            f"Role '{auth.role.value}' not authorized for this action "
            f"(requires {required.value} or higher)",
        )

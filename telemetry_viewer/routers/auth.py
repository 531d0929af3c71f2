"""Login, logout and session status."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.csrf import clear_csrf_cookie, set_csrf_cookie
from telemetry_viewer.core.deps import (
    COOKIE_NAME,
    AuthContext,
    get_current_auth,
    get_db,
    get_optional_auth,
)
from telemetry_viewer.core.errors import api_error
from telemetry_viewer.core.rate_limit import AUTH_LIMIT, limiter
from telemetry_viewer.core.structured_logging import build_log_context
from telemetry_viewer.services import operator_service, session_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1)


def _set_session_cookie(response: Response, token: str, max_age: int) -> None:
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )


@router.post("/login")
@limiter.limit(AUTH_LIMIT)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Session = Depends(get_db),
):
    """
    Exchange credentials for a session.

    Sets the HttpOnly session cookie and the script-readable CSRF cookie;
    the CSRF token is also returned in the body.
    """
    operator = operator_service.authenticate(db, body.username, body.password)
    if operator is None:
        db.rollback()
        logger.info(
            "Login failed",
            extra=build_log_context(username=body.username, route="/login", method="POST"),
        )
        raise api_error(401, "invalid_credentials", "Invalid username or password")

    issued = session_service.create_session(db, operator)
    db.commit()

    _set_session_cookie(response, issued.token, issued.max_age)
    set_csrf_cookie(response, issued.csrf_token, issued.max_age)
    logger.info(
        "Login succeeded",
        extra=build_log_context(username=operator.username, role=operator.role, route="/login"),
    )
    return {
        "status": "ok",
        "message": "Login successful",
        "username": operator.username,
        "role": operator.role,
        "csrf_token": issued.csrf_token,
    }


@router.post("/logout")
def logout(
    response: Response,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """Invalidate the current session and clear both cookies."""
    session_service.revoke_session(db, auth.session_id)
    db.commit()

    response.delete_cookie(COOKIE_NAME, path="/")
    clear_csrf_cookie(response)
    return {"status": "ok"}


@router.get("/api/auth/status")
def auth_status(auth: AuthContext | None = Depends(get_optional_auth)):
    if auth is None:
        return {"status": "ok", "authenticated": False}
    return {
        "status": "ok",
        "authenticated": True,
        "username": auth.username,
        "role": auth.role.value,
        "csrf_token": auth.csrf_token,
    }

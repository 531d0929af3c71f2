"""CSRF utilities for session-bound double-submit tokens."""

from __future__ import annotations

from typing import Optional

from fastapi import Request, Response

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.security import tokens_match

CSRF_COOKIE_NAME = "tv_csrf"
CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def get_csrf_header(request: Request) -> Optional[str]:
    """Fetch the CSRF token echoed by the client."""
    return request.headers.get(CSRF_HEADER)


def set_csrf_cookie(response: Response, token: str, max_age: int) -> str:
    """Set CSRF cookie and return the token used."""
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=False,  # Must be readable by JS for X-CSRF-Token header.
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )
    return token


def clear_csrf_cookie(response: Response) -> None:
    response.delete_cookie(CSRF_COOKIE_NAME, path="/")


def validate_csrf(request: Request, session_csrf_token: str | None) -> bool:
    """Validate the CSRF header against the token bound to the session."""
    if request.method in SAFE_METHODS:
        return True
    return tokens_match(session_csrf_token, get_csrf_header(request))

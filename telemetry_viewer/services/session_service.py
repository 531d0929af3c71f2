"""Session service - DB-backed login sessions with bound CSRF tokens."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.security import (
    generate_csrf_token,
    generate_session_token,
    hash_token,
)
from telemetry_viewer.db.base import utcnow
from telemetry_viewer.db.models import AuthSession, Operator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """Plaintext tokens handed to the client exactly once, at login."""

    token: str
    csrf_token: str
    expires_at: datetime
    max_age: int


def session_ttl_seconds(operator: Operator) -> int:
    if operator.is_producer:
        return settings.PRODUCER_SESSION_TTL_SECONDS
    return settings.SESSION_TTL_SECONDS


def create_session(db: Session, operator: Operator) -> IssuedSession:
    """
    Issue a new session for ``operator``.

    Only the SHA-256 of the token is stored; the CSRF token is stored as-is
    because it is only meaningful alongside the secret cookie.
    """
    token = generate_session_token()
    csrf_token = generate_csrf_token()
    ttl = session_ttl_seconds(operator)
    expires_at = utcnow() + timedelta(seconds=ttl)

    db.add(
        AuthSession(
            token_hash=hash_token(token),
            operator_id=operator.id,
            csrf_token=csrf_token,
            is_producer=operator.is_producer,
            expires_at=expires_at,
        )
    )
    db.flush()
    return IssuedSession(token=token, csrf_token=csrf_token, expires_at=expires_at, max_age=ttl)


def get_active_session(db: Session, token: str) -> tuple[AuthSession, Operator] | None:
    """Return the session and its operator, or None if unknown or expired."""
    row = db.execute(
        select(AuthSession, Operator)
        .join(Operator, Operator.id == AuthSession.operator_id)
        .where(AuthSession.token_hash == hash_token(token))
    ).first()
    if row is None:
        return None
    session_row, operator = row
    if utcnow() >= session_row.expires_at:
        return None
    return session_row, operator


def revoke_session(db: Session, session_id: int) -> bool:
    result = db.execute(delete(AuthSession).where(AuthSession.id == session_id))
    return result.rowcount > 0


def revoke_operator_sessions(
    db: Session,
    operator_id: int,
    keep_session_id: int | None = None,
) -> int:
    """Revoke every session for an operator, optionally sparing the caller's own."""
    stmt = delete(AuthSession).where(AuthSession.operator_id == operator_id)
    if keep_session_id is not None:
        stmt = stmt.where(AuthSession.id != keep_session_id)
    result = db.execute(stmt)
    return result.rowcount


def purge_expired_sessions(db: Session, now: datetime | None = None) -> int:
    """Delete sessions whose ``expires_at`` has passed. Returns the count removed."""
    cutoff = now or utcnow()
    result = db.execute(delete(AuthSession).where(AuthSession.expires_at <= cutoff))
    db.commit()
    if result.rowcount:
        logger.info("Purged %d expired sessions", result.rowcount)
    return result.rowcount

"""Operator accounts: creation, authentication and role administration."""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from telemetry_viewer.core.security import (
    burn_password_check,
    hash_password,
    password_needs_rehash,
    verify_password,
)
from telemetry_viewer.db.base import utcnow
from telemetry_viewer.db.enums import ROLES_CAN_ADMINISTER, Role
from telemetry_viewer.db.models import Operator
from telemetry_viewer.services import session_service

logger = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 150


class OperatorServiceError(Exception):
    """Base exception for operator service errors."""

    pass


class OperatorNotFoundError(OperatorServiceError):
    """Operator not found."""

    pass


class DuplicateOperatorError(OperatorServiceError):
    """Username already taken."""

    pass


class InvalidOperatorError(OperatorServiceError):
    """Missing username or password, or unknown role."""

    pass


class LastAdministratorError(OperatorServiceError):
    """Change would leave no operator able to administer users."""

    pass


class SelfDeletionError(OperatorServiceError):
    """Operators cannot delete their own account."""

    pass


class GodOnlyError(OperatorServiceError):
    """Only a god may manage god accounts or grant the god role."""

    pass


def _parse_role(role: Role | str) -> Role:
    if isinstance(role, Role):
        return role
    if not Role.has_value(role):
        raise InvalidOperatorError(f"Unknown role '{role}'")
    return Role(role)


def _validate_username(username: str) -> str:
    username = (username or "").strip()
    if not username:
        raise InvalidOperatorError("Username is required")
    if len(username) > MAX_USERNAME_LENGTH:
        raise InvalidOperatorError(f"Username must be at most {MAX_USERNAME_LENGTH} characters")
    return username


def _validate_password(password: str) -> str:
    if not password:
        raise InvalidOperatorError("Password is required")
    return password


def _check_god_guard(actor_role: Role | None, *roles: Role) -> None:
    """``actor_role=None`` means a trusted local caller (CLI, bootstrap)."""
    if actor_role is None or actor_role == Role.GOD:
        return
    if Role.GOD in roles:
        raise GodOnlyError("Only a god operator may manage god accounts")


def _administrator_count(db: Session) -> int:
    return db.execute(
        select(func.count(Operator.id)).where(
            Operator.role.in_([role.value for role in ROLES_CAN_ADMINISTER])
        )
    ).scalar_one()


def _ensure_not_last_administrator(db: Session, operator: Operator) -> None:
    if Role(operator.role) in ROLES_CAN_ADMINISTER and _administrator_count(db) <= 1:
        raise LastAdministratorError(
            "At least one administrator or god operator must remain"
        )


# =============================================================================
# Queries
# =============================================================================

def get_operator(db: Session, username: str) -> Operator | None:
    return db.execute(select(Operator).where(Operator.username == username)).scalar_one_or_none()


def list_operators(db: Session) -> list[Operator]:
    return list(db.execute(select(Operator).order_by(Operator.username)).scalars().all())


def count_operators(db: Session) -> int:
    return db.execute(select(func.count(Operator.id))).scalar_one()


def _require_operator(db: Session, username: str) -> Operator:
    operator = get_operator(db, username)
    if operator is None:
        raise OperatorNotFoundError(f"User '{username}' not found")
    return operator


# =============================================================================
# Mutations
# =============================================================================

def create_operator(
    db: Session,
    username: str,
    password: str,
    role: Role | str = Role.BASIC,
    is_producer: bool = False,
    actor_role: Role | None = None,
) -> Operator:
    username = _validate_username(username)
    password = _validate_password(password)
    role = _parse_role(role)
    _check_god_guard(actor_role, role)

    if get_operator(db, username) is not None:
        raise DuplicateOperatorError(f"User '{username}' already exists")

    operator = Operator(
        username=username,
        password_hash=hash_password(password),
        role=role.value,
        is_producer=is_producer,
    )
    try:
        db.add(operator)
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateOperatorError(f"User '{username}' already exists")
    logger.info("Created operator %s (role=%s, producer=%s)", username, role.value, is_producer)
    return operator


def authenticate(db: Session, username: str, password: str) -> Operator | None:
    """
    Verify credentials; returns the operator or None.

    Unknown usernames still pay for a hash verification. Hashes made with
    outdated cost parameters are upgraded on success.
    """
    operator = get_operator(db, username)
    if operator is None:
        burn_password_check(password)
        return None
    if not verify_password(operator.password_hash, password):
        return None

    if password_needs_rehash(operator.password_hash):
        operator.password_hash = hash_password(password)
    operator.last_login = utcnow()
    db.flush()
    return operator


def set_password(
    db: Session,
    username: str,
    password: str,
    actor_role: Role | None = None,
    keep_session_id: int | None = None,
) -> Operator:
    """Change a password and revoke the operator's other sessions."""
    operator = _require_operator(db, username)
    _check_god_guard(actor_role, Role(operator.role))
    operator.password_hash = hash_password(_validate_password(password))
    revoked = session_service.revoke_operator_sessions(db, operator.id, keep_session_id=keep_session_id)
    db.flush()
    logger.info("Password changed for %s (%d sessions revoked)", username, revoked)
    return operator


def set_role(
    db: Session,
    username: str,
    role: Role | str,
    actor_role: Role | None = None,
    is_producer: bool | None = None,
) -> Operator:
    operator = _require_operator(db, username)
    new_role = _parse_role(role)
    _check_god_guard(actor_role, Role(operator.role), new_role)

    if new_role not in ROLES_CAN_ADMINISTER:
        _ensure_not_last_administrator(db, operator)
    operator.role = new_role.value
    if is_producer is not None and is_producer != operator.is_producer:
        operator.is_producer = is_producer
        revoked = session_service.revoke_operator_sessions(db, operator.id)
        logger.info("Producer flag of %s set to %s (%d sessions revoked)", username, is_producer, revoked)
    db.flush()
    logger.info("Role of %s set to %s", username, new_role.value)
    return operator


def delete_operator(
    db: Session,
    username: str,
    actor_username: str | None = None,
    actor_role: Role | None = None,
) -> None:
    operator = _require_operator(db, username)
    if actor_username is not None and operator.username == actor_username:
        raise SelfDeletionError("You cannot delete your own account")
    _check_god_guard(actor_role, Role(operator.role))
    _ensure_not_last_administrator(db, operator)

    db.delete(operator)
    db.flush()
    logger.info("Deleted operator %s", username)

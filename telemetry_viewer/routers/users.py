"""Operator administration (administrator or god only)."""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from telemetry_viewer.core.deps import AuthContext, get_current_auth, get_db, get_read_db
from telemetry_viewer.core.errors import api_error
from telemetry_viewer.db.enums import Role
from telemetry_viewer.db.models import Operator
from telemetry_viewer.services import operator_service
from telemetry_viewer.services.operator_service import (
    DuplicateOperatorError,
    GodOnlyError,
    LastAdministratorError,
    OperatorNotFoundError,
    OperatorServiceError,
)
from telemetry_viewer.utils.formatting import isoformat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class OperatorCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1)
    role: Role = Role.BASIC
    is_producer: bool = False


class PasswordUpdate(BaseModel):
    password: str = Field(..., min_length=1)


class RoleUpdate(BaseModel):
    role: Role
    is_producer: bool | None = None


def _operator_error(exc: OperatorServiceError):
    if isinstance(exc, OperatorNotFoundError):
        return api_error(404, "not_found", str(exc))
    if isinstance(exc, DuplicateOperatorError):
        return api_error(409, "conflict", str(exc))
    if isinstance(exc, LastAdministratorError):
        return api_error(409, "last_administrator", str(exc))
    if isinstance(exc, GodOnlyError):
        return api_error(403, "role_insufficient", str(exc))
    return api_error(400, "bad_request", str(exc))


def serialize_operator(operator: Operator) -> dict[str, Any]:
    """Public view of an operator. The password hash never leaves the service."""
    return {
        "username": operator.username,
        "role": operator.role,
        "is_producer": operator.is_producer,
        "created_at": isoformat(operator.created_at),
        "last_login": isoformat(operator.last_login),
    }


@router.get("")
def list_users(db: Session = Depends(get_read_db)):
    return {
        "status": "ok",
        "users": [serialize_operator(op) for op in operator_service.list_operators(db)],
    }


@router.post("", status_code=201)
def create_user(
    body: OperatorCreate,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        operator = operator_service.create_operator(
            db,
            body.username,
            body.password,
            role=body.role,
            is_producer=body.is_producer,
            actor_role=auth.role,
        )
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise _operator_error(e)

    logger.info("Operator %s created by %s", operator.username, auth.username)
    return {"status": "ok", "user": serialize_operator(operator)}


@router.put("/{username}/password")
def change_password(
    username: str,
    body: PasswordUpdate,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """Set a new password and revoke that operator's other sessions."""
    keep_session_id = auth.session_id if username == auth.username else None
    try:
        operator_service.set_password(
            db,
            username,
            body.password,
            actor_role=auth.role,
            keep_session_id=keep_session_id,
        )
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise _operator_error(e)

    logger.info("Password of %s changed by %s", username, auth.username)
    return {"status": "ok", "message": f"Password updated for {username}"}


@router.put("/{username}/role")
def change_role(
    username: str,
    body: RoleUpdate,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        operator = operator_service.set_role(
            db,
            username,
            body.role,
            actor_role=auth.role,
            is_producer=body.is_producer,
        )
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise _operator_error(e)

    logger.info("Role of %s set to %s by %s", username, body.role.value, auth.username)
    return {"status": "ok", "user": serialize_operator(operator)}


@router.delete("/{username}")
def delete_user(
    username: str,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        operator_service.delete_operator(
            db,
            username,
            actor_username=auth.username,
            actor_role=auth.role,
        )
        db.commit()
    except OperatorServiceError as e:
        db.rollback()
        raise _operator_error(e)

    logger.info("Operator %s deleted by %s", username, auth.username)
    return {"status": "ok", "message": f"User {username} deleted"}

"""Team CRUD, logos and event-user links."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.deps import AuthContext, get_current_auth, get_db, get_read_db
from telemetry_viewer.core.errors import api_error
from telemetry_viewer.db.models import Team
from telemetry_viewer.services import team_service
from telemetry_viewer.services.team_service import (
    DuplicateTeamNameError,
    EventUserLinkNotFoundError,
    InvalidColorError,
    InvalidLogoError,
    LogoNotFoundError,
    LogoTooLargeError,
    OrgNotFoundError,
    TeamNotFoundError,
    TeamServiceError,
)
from telemetry_viewer.utils.formatting import isoformat

logger = logging.getLogger(__name__)

router = APIRouter(tags=["teams"])

LOGO_CACHE_CONTROL = "private, max-age=300"


def team_error(exc: TeamServiceError):
    """Translate a team service error into the API error envelope."""
    if isinstance(exc, (TeamNotFoundError, OrgNotFoundError, LogoNotFoundError, EventUserLinkNotFoundError)):
        return api_error(404, "not_found", str(exc))
    if isinstance(exc, DuplicateTeamNameError):
        return api_error(409, "conflict", str(exc))
    if isinstance(exc, InvalidColorError):
        return api_error(400, "invalid_color", str(exc))
    if isinstance(exc, LogoTooLargeError):
        return api_error(400, "logo_too_large", str(exc))
    if isinstance(exc, InvalidLogoError):
        return api_error(400, "invalid_logo", str(exc))
    return api_error(400, "bad_request", str(exc))


def serialize_team(team: Team, org_count: int = 0, event_user_count: int = 0) -> dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "team_key": team.name_key,
        "color": team.color,
        "has_logo": team.has_logo,
        "logo_url": team_service.logo_url(team),
        "org_count": org_count,
        "event_user_count": event_user_count,
        "created_at": isoformat(team.created_at),
        "updated_at": isoformat(team.updated_at),
    }


def _serialize_team_detail(team: Team) -> dict[str, Any]:
    data = serialize_team(team, len(team.orgs), len(team.event_users))
    data["orgs"] = [
        {
            "id": org.id,
            "org_id": org.org_id,
            "alias": org.alias,
            "color": org.color,
            "company_name": org.company_name,
        }
        for org in sorted(team.orgs, key=lambda org: org.org_key)
    ]
    data["event_users"] = sorted(link.user_name for link in team.event_users)
    return data


async def raw_color_field(request: Request) -> str | None:
    """Raw ``color`` form value, keeping ``""`` (clear) distinct from absent."""
    form = await request.form()
    value = form.get("color")
    return value if isinstance(value, str) else None


def _read_logo(logo: UploadFile | None) -> bytes | None:
    """Upload bytes, reading at most one byte past the limit. Empty uploads count as absent."""
    if logo is None:
        return None
    content = logo.file.read(settings.LOGO_MAX_BYTES + 1)
    return content or None


# =============================================================================
# Teams
# =============================================================================

@router.get("/api/teams")
def list_teams(db: Session = Depends(get_read_db)):
    counts = team_service.team_member_counts(db)
    return {
        "status": "ok",
        "teams": [
            serialize_team(team, *counts.get(team.id, (0, 0)))
            for team in team_service.list_teams(db)
        ],
    }


@router.post("/api/teams", status_code=201)
def create_team(
    name: str = Form(...),
    color: str | None = Form(None),
    logo: UploadFile | None = File(None),
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        team = team_service.create_team(db, name, color=color, logo=_read_logo(logo))
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)

    logger.info("Team %s created by %s", team.id, auth.username)
    return {"status": "ok", "team": serialize_team(team)}


@router.get("/api/teams/{team_id}")
def get_team(team_id: int, db: Session = Depends(get_read_db)):
    team = team_service.get_team(db, team_id, with_members=True)
    if team is None:
        raise api_error(404, "not_found", "Team not found")
    return {"status": "ok", "team": _serialize_team_detail(team)}


@router.put("/api/teams/{team_id}")
def update_team(
    team_id: int,
    name: str | None = Form(None),
    color: str | None = Depends(raw_color_field),
    logo: UploadFile | None = File(None),
    remove_logo: bool = Form(False),
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """Partial multipart update; ``color=""`` clears the color."""
    logo_bytes = _read_logo(logo)
    if name is None and color is None and logo_bytes is None and not remove_logo:
        raise api_error(400, "bad_request", "No updates provided")

    try:
        team_service.update_team(
            db,
            team_id,
            name=name,
            color=color,
            logo=logo_bytes,
            remove_logo=remove_logo,
        )
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)

    team = team_service.get_team(db, team_id, with_members=True)
    logger.info("Team %s updated by %s", team_id, auth.username)
    return {"status": "ok", "team": _serialize_team_detail(team)}


@router.delete("/api/teams/{team_id}")
def delete_team(
    team_id: int,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        team_service.delete_team(db, team_id)
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)

    logger.info("Team %s deleted by %s", team_id, auth.username)
    return {"status": "ok", "message": f"Team {team_id} deleted"}


@router.get("/api/teams/{team_id}/logo")
def get_team_logo(team_id: int, db: Session = Depends(get_read_db)):
    try:
        content, mime = team_service.get_team_logo(db, team_id)
    except TeamServiceError as e:
        raise team_error(e)
    return Response(content=content, media_type=mime, headers={"Cache-Control": LOGO_CACHE_CONTROL})


# =============================================================================
# Event users
# =============================================================================

class EventUserLink(BaseModel):
    user_name: str = Field(..., min_length=1, max_length=255)


@router.post("/api/teams/{team_id}/event-users", status_code=201)
def add_event_user(
    team_id: int,
    body: EventUserLink,
    db: Session = Depends(get_db),
):
    """Assign an event user to the team, moving it from any previous team."""
    try:
        link = team_service.add_event_user(db, team_id, body.user_name)
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)
    return {"status": "ok", "team_id": link.team_id, "user_name": link.user_name}


@router.delete("/api/teams/{team_id}/event-users/{user_name}")
def remove_event_user(
    team_id: int,
    user_name: str,
    db: Session = Depends(get_db),
):
    try:
        team_service.remove_event_user(db, team_id, user_name)
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)
    return {"status": "ok", "message": f"'{user_name}' removed from team {team_id}"}

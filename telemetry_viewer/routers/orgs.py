"""Org registry: list, upsert and move between teams."""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import Session

from telemetry_viewer.core.deps import AuthContext, get_current_auth, get_db, get_read_db
from telemetry_viewer.db.models import Org
from telemetry_viewer.routers.teams import team_error
from telemetry_viewer.services import team_service
from telemetry_viewer.services.team_service import TeamServiceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orgs"])


class OrgUpsert(BaseModel):
    """Only keys the client actually sent are applied; explicit null clears."""

    model_config = ConfigDict(populate_by_name=True)

    org_id: str = Field(..., min_length=1, max_length=255)
    alias: str | None = Field(None, max_length=255)
    color: str | None = Field(None, max_length=7)
    team_id: int | None = None
    company_name: str | None = Field(None, max_length=255)

    @model_validator(mode="before")
    @classmethod
    def _accept_id_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "org_id" not in data and "id" in data:
            data = {**data, "org_id": data["id"]}
        return data


class OrgMove(BaseModel):
    team_id: int | None


def serialize_org(org: Org) -> dict[str, Any]:
    return {
        "id": org.id,
        "org_id": org.org_id,
        "alias": org.alias,
        "color": org.color,
        "company_name": org.company_name,
        "team_id": org.team_id,
        "team_name": org.team.name if org.team is not None else None,
    }


@router.get("/api/orgs")
def list_orgs(db: Session = Depends(get_read_db)):
    return {"status": "ok", "orgs": [serialize_org(org) for org in team_service.list_orgs(db)]}


@router.post("/api/orgs")
def upsert_org(
    body: OrgUpsert,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """Create (201) or update (200) an org by its case-insensitive id."""
    changes = body.model_dump(include=set(team_service.ORG_FIELDS) & body.model_fields_set)
    try:
        org, created = team_service.upsert_org(db, body.org_id, changes)
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)

    logger.info("Org %s %s by %s", org.org_key, "created" if created else "updated", auth.username)
    return JSONResponse(
        status_code=201 if created else 200,
        content={"status": "ok", "org": serialize_org(org)},
    )


@router.post("/api/orgs/{org_id}/move")
def move_org(
    org_id: str,
    body: OrgMove,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        org = team_service.move_org_to_team(db, org_id, body.team_id)
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)

    logger.info("Org %s moved to team %s by %s", org.org_key, body.team_id, auth.username)
    return {"status": "ok", "org": serialize_org(org)}

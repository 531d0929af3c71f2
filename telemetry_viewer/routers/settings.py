"""Legacy org -> team mappings edited from the settings screen."""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from telemetry_viewer.core.deps import AuthContext, get_current_auth, get_db, get_read_db
from telemetry_viewer.db.models import OrgTeamMapping
from telemetry_viewer.routers.teams import team_error
from telemetry_viewer.services import team_service
from telemetry_viewer.services.team_service import TeamServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


class MappingsReplace(BaseModel):
    # Rows are validated by the service so legacy camelCase keys keep working.
    mappings: list[dict[str, Any]]


def serialize_mapping(mapping: OrgTeamMapping) -> dict[str, Any]:
    return {
        "org_identifier": mapping.org_identifier,
        "client_name": mapping.client_name,
        "team_name": mapping.team_name,
        "color": mapping.color,
        "active": mapping.active,
    }


@router.get("/org-team-mappings")
def list_mappings(db: Session = Depends(get_read_db)):
    return {
        "status": "ok",
        "mappings": [serialize_mapping(mapping) for mapping in team_service.list_mappings(db)],
    }


@router.post("/org-team-mappings")
def replace_mappings(
    body: MappingsReplace,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """Replace every mapping in one transaction; nothing changes if any row is invalid."""
    try:
        mappings = team_service.replace_mappings(db, body.mappings)
        db.commit()
    except TeamServiceError as e:
        db.rollback()
        raise team_error(e)

    logger.info("Org-team mappings replaced by %s (%d rows)", auth.username, len(mappings))
    return {
        "status": "ok",
        "mappings": [serialize_mapping(mapping) for mapping in mappings],
    }

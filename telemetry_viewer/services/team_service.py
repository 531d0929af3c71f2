"""Teams, orgs, legacy org->team mappings and the org->team resolution map."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, event, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from telemetry_viewer.core.config import settings
from telemetry_viewer.db.models import Org, OrgTeamMapping, Team, TeamEventUser
from telemetry_viewer.utils.validation import (
    ALLOWED_LOGO_MIME_TYPES,
    is_valid_hex_color,
    normalize_key,
    sniff_image_mime,
)

logger = logging.getLogger(__name__)

MAX_TEAM_NAME_LENGTH = 100
ORG_FIELDS = ("alias", "color", "team_id", "company_name")


class TeamServiceError(Exception):
    """Base exception for team service errors."""

    pass


class TeamNotFoundError(TeamServiceError):
    """Team not found."""

    pass


class OrgNotFoundError(TeamServiceError):
    """Org not found."""

    pass


class DuplicateTeamNameError(TeamServiceError):
    """Team name already exists (case-insensitive)."""

    pass


class InvalidTeamNameError(TeamServiceError):
    """Team name empty or too long."""

    pass


class InvalidOrgError(TeamServiceError):
    """Org identifier missing."""

    pass


class InvalidColorError(TeamServiceError):
    """Color is not #RGB or #RRGGBB."""

    pass


class InvalidLogoError(TeamServiceError):
    """Logo is not a PNG, JPEG or WEBP image."""

    pass


class LogoTooLargeError(InvalidLogoError):
    """Logo exceeds LOGO_MAX_BYTES."""

    pass


class LogoNotFoundError(TeamServiceError):
    """Team has no logo."""

    pass


class EventUserLinkNotFoundError(TeamServiceError):
    """User name is not linked to the team."""

    pass


class InvalidMappingError(TeamServiceError):
    """Legacy mapping row is incomplete or malformed."""

    pass


# =============================================================================
# Org -> team resolution
# =============================================================================

@dataclass(frozen=True)
class TeamRef:
    """Resolved team for an org key. ``team_id`` is None for mapping-only teams."""

    team_id: int | None
    team_key: str
    team_name: str
    color: str | None


_cache_lock = threading.Lock()
_cached_map: dict[str, TeamRef] | None = None
_cached_at = 0.0
_cache_generation = 0


def invalidate_team_cache() -> None:
    global _cached_map, _cache_generation
    with _cache_lock:
        _cached_map = None
        _cache_generation += 1


def _invalidate_after_commit(db: Session) -> None:
    """Drop the cache now and again once the mutating transaction commits."""
    invalidate_team_cache()
    event.listen(db, "after_commit", lambda _session: invalidate_team_cache(), once=True)


def build_team_map(db: Session) -> dict[str, TeamRef]:
    """
    Resolve every known org key to a team.

    1. An ``Org`` row with a team binds directly.
    2. Otherwise the first active mapping (by position) names the team; the
       name is matched case-insensitively against teams and is allowed to
       name a team that has no row.
    """
    teams_by_key: dict[str, TeamRef] = {}
    teams_by_id: dict[int, TeamRef] = {}
    for team_id, name, name_key, color in db.execute(
        select(Team.id, Team.name, Team.name_key, Team.color)
    ):
        ref = TeamRef(team_id=team_id, team_key=name_key, team_name=name, color=color)
        teams_by_key[name_key] = ref
        teams_by_id[team_id] = ref

    resolved: dict[str, TeamRef] = {}
    for org_key, team_id in db.execute(
        select(Org.org_key, Org.team_id).where(Org.team_id.is_not(None))
    ):
        ref = teams_by_id.get(team_id)
        if ref is not None:
            resolved[org_key] = ref

    mappings = db.execute(
        select(OrgTeamMapping)
        .where(OrgTeamMapping.active.is_(True))
        .order_by(OrgTeamMapping.position, OrgTeamMapping.id)
    ).scalars()
    for mapping in mappings:
        if not mapping.org_key or mapping.org_key in resolved:
            continue
        team_key = normalize_key(mapping.team_name)
        if not team_key:
            continue
        resolved[mapping.org_key] = teams_by_key.get(team_key) or TeamRef(
            team_id=None,
            team_key=team_key,
            team_name=mapping.team_name.strip(),
            color=mapping.color,
        )
    return resolved


def resolve_team_map(db: Session) -> dict[str, TeamRef]:
    """Cached ``build_team_map``; entries live at most TEAM_CACHE_TTL_SECONDS."""
    global _cached_map, _cached_at
    with _cache_lock:
        if _cached_map is not None and time.monotonic() - _cached_at < settings.TEAM_CACHE_TTL_SECONDS:
            return _cached_map
        generation = _cache_generation

    team_map = build_team_map(db)
    with _cache_lock:
        # An invalidation during the build means the map may predate a commit.
        if generation == _cache_generation:
            _cached_map = team_map
            _cached_at = time.monotonic()
    return team_map


def resolve_org(db: Session, org_identifier: str | None) -> TeamRef | None:
    return resolve_team_map(db).get(normalize_key(org_identifier))


def org_keys_for_team(db: Session, team_key: str) -> list[str]:
    """Org keys currently resolving to ``team_key`` (possibly empty)."""
    wanted = normalize_key(team_key)
    return sorted(org_key for org_key, ref in resolve_team_map(db).items() if ref.team_key == wanted)


# =============================================================================
# Validation helpers
# =============================================================================

def _validate_color(color: str | None) -> str | None:
    if color is None:
        return None
    color = color.strip()
    if not color:
        return None
    if not is_valid_hex_color(color):
        raise InvalidColorError(f"Invalid color '{color}' (expected #RGB or #RRGGBB)")
    return color


def _validate_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidTeamNameError("Team name is required")
    if len(name) > MAX_TEAM_NAME_LENGTH:
        raise InvalidTeamNameError(f"Team name must be at most {MAX_TEAM_NAME_LENGTH} characters")
    return name


def validate_logo(content: bytes) -> str:
    """Return the sniffed MIME type, or raise if the logo is unacceptable."""
    if len(content) > settings.LOGO_MAX_BYTES:
        raise LogoTooLargeError(f"Logo exceeds {settings.LOGO_MAX_BYTES} bytes")
    mime = sniff_image_mime(content)
    if mime not in ALLOWED_LOGO_MIME_TYPES:
        raise InvalidLogoError("Logo must be a PNG, JPEG or WEBP image")
    return mime


def _require_team(db: Session, team_id: int) -> Team:
    team = db.get(Team, team_id)
    if team is None:
        raise TeamNotFoundError(f"Team {team_id} not found")
    return team


def _ensure_name_available(db: Session, name_key: str, exclude_id: int | None = None) -> None:
    query = select(Team.id).where(Team.name_key == name_key)
    if exclude_id is not None:
        query = query.where(Team.id != exclude_id)
    if db.execute(query).first() is not None:
        raise DuplicateTeamNameError(f"Team '{name_key}' already exists")


def logo_url(team: Team) -> str | None:
    return f"/api/teams/{team.id}/logo" if team.has_logo else None


# =============================================================================
# Team CRUD
# =============================================================================

def list_teams(db: Session) -> list[Team]:
    """All teams, sorted case-insensitively by name."""
    return list(db.execute(select(Team).order_by(Team.name_key, Team.id)).scalars().all())


def team_member_counts(db: Session) -> dict[int, tuple[int, int]]:
    """team_id -> (org_count, event_user_count)."""
    org_counts = dict(
        db.execute(
            select(Org.team_id, func.count(Org.id)).where(Org.team_id.is_not(None)).group_by(Org.team_id)
        ).all()
    )
    user_counts = dict(
        db.execute(
            select(TeamEventUser.team_id, func.count(TeamEventUser.id)).group_by(TeamEventUser.team_id)
        ).all()
    )
    team_ids = set(org_counts) | set(user_counts)
    return {team_id: (org_counts.get(team_id, 0), user_counts.get(team_id, 0)) for team_id in team_ids}


def get_team(db: Session, team_id: int, with_members: bool = False) -> Team | None:
    query = select(Team).where(Team.id == team_id)
    if with_members:
        query = query.options(selectinload(Team.orgs), selectinload(Team.event_users))
    return db.execute(query).scalar_one_or_none()


def create_team(
    db: Session,
    name: str,
    color: str | None = None,
    logo: bytes | None = None,
) -> Team:
    name = _validate_name(name)
    name_key = normalize_key(name)
    color = _validate_color(color)
    logo_mime = validate_logo(logo) if logo is not None else None
    _ensure_name_available(db, name_key)

    team = Team(
        name=name,
        name_key=name_key,
        color=color,
        logo_data=logo,
        logo_mime=logo_mime,
    )
    try:
        db.add(team)
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateTeamNameError(f"Team '{name}' already exists")
    _invalidate_after_commit(db)
    logger.info("Created team %s (%s)", team.id, name_key)
    return team


def update_team(
    db: Session,
    team_id: int,
    name: str | None = None,
    color: str | None = None,
    logo: bytes | None = None,
    remove_logo: bool = False,
) -> Team:
    """
    Apply a partial update.

    ``color=""`` clears the color; ``None`` leaves it. Logo replacement and
    ``remove_logo`` are mutually exclusive.
    """
    if logo is not None and remove_logo:
        raise InvalidLogoError("Cannot upload a logo and remove it in the same request")
    team = _require_team(db, team_id)

    if name is not None:
        name = _validate_name(name)
        name_key = normalize_key(name)
        if name_key != team.name_key:
            _ensure_name_available(db, name_key, exclude_id=team.id)
        team.name = name
        team.name_key = name_key
    if color is not None:
        team.color = _validate_color(color)
    if logo is not None:
        team.logo_mime = validate_logo(logo)
        team.logo_data = logo
    elif remove_logo:
        team.logo_data = None
        team.logo_mime = None

    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateTeamNameError(f"Team '{name}' already exists")
    _invalidate_after_commit(db)
    logger.info("Updated team %s", team.id)
    return team


def delete_team(db: Session, team_id: int) -> None:
    """Unbind member orgs and event-user links, then delete the team. Events are untouched."""
    team = _require_team(db, team_id)
    db.execute(update(Org).where(Org.team_id == team_id).values(team_id=None))
    db.execute(delete(TeamEventUser).where(TeamEventUser.team_id == team_id))
    db.delete(team)
    db.flush()
    _invalidate_after_commit(db)
    logger.info("Deleted team %s", team_id)


def get_team_logo(db: Session, team_id: int) -> tuple[bytes, str]:
    row = db.execute(select(Team.logo_data, Team.logo_mime).where(Team.id == team_id)).first()
    if row is None:
        raise TeamNotFoundError(f"Team {team_id} not found")
    logo_data, logo_mime = row
    if not logo_data or not logo_mime:
        raise LogoNotFoundError(f"Team {team_id} has no logo")
    return logo_data, logo_mime


# =============================================================================
# Event-user links
# =============================================================================

def add_event_user(db: Session, team_id: int, user_name: str) -> TeamEventUser:
    """Link ``user_name`` to the team, moving it off any other team."""
    _require_team(db, team_id)
    user_name = (user_name or "").strip()
    if not user_name:
        raise TeamServiceError("user_name is required")

    link = db.execute(
        select(TeamEventUser).where(TeamEventUser.user_name == user_name)
    ).scalar_one_or_none()
    if link is None:
        link = TeamEventUser(team_id=team_id, user_name=user_name)
        db.add(link)
    else:
        link.team_id = team_id
    db.flush()
    return link


def remove_event_user(db: Session, team_id: int, user_name: str) -> None:
    _require_team(db, team_id)
    result = db.execute(
        delete(TeamEventUser).where(
            TeamEventUser.team_id == team_id,
            TeamEventUser.user_name == user_name,
        )
    )
    if result.rowcount == 0:
        raise EventUserLinkNotFoundError(f"'{user_name}' is not linked to team {team_id}")


def event_user_links(db: Session) -> dict[str, Team]:
    """user_name -> linked team."""
    rows = db.execute(
        select(TeamEventUser.user_name, Team).join(Team, Team.id == TeamEventUser.team_id)
    ).all()
    return {user_name: team for user_name, team in rows}


# =============================================================================
# Orgs
# =============================================================================

def list_orgs(db: Session) -> list[Org]:
    return list(
        db.execute(select(Org).options(selectinload(Org.team)).order_by(Org.org_key)).scalars().all()
    )


def get_org(db: Session, org_id: str) -> Org | None:
    return db.execute(select(Org).where(Org.org_key == normalize_key(org_id))).scalar_one_or_none()


def upsert_org(db: Session, org_id: str, changes: dict[str, Any]) -> tuple[Org, bool]:
    """
    Create or update an org keyed by its case-insensitive identifier.

    Only keys present in ``changes`` are written; an explicit None clears.
    Returns (org, created).
    """
    org_id = (org_id or "").strip()
    if not org_id:
        raise InvalidOrgError("Org id is required")

    values = {key: changes[key] for key in ORG_FIELDS if key in changes}
    if "color" in values:
        values["color"] = _validate_color(values["color"])
    if values.get("team_id") is not None:
        _require_team(db, values["team_id"])
    for key in ("alias", "company_name"):
        if isinstance(values.get(key), str):
            values[key] = values[key].strip() or None

    org = get_org(db, org_id)
    created = org is None
    if created:
        org = Org(org_id=org_id, org_key=normalize_key(org_id))
        db.add(org)
    for key, value in values.items():
        setattr(org, key, value)

    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise InvalidOrgError(f"Org '{org_id}' conflicts with an existing org")
    _invalidate_after_commit(db)
    logger.info("%s org %s", "Created" if created else "Updated", org.org_key)
    return org, created


def move_org_to_team(db: Session, org_id: str, team_id: int | None) -> Org:
    org = get_org(db, org_id)
    if org is None:
        raise OrgNotFoundError(f"Org '{org_id}' not found")
    if team_id is not None:
        _require_team(db, team_id)
    org.team_id = team_id
    db.flush()
    _invalidate_after_commit(db)
    logger.info("Moved org %s to team %s", org.org_key, team_id)
    return org


# =============================================================================
# Legacy mappings
# =============================================================================

def list_mappings(db: Session) -> list[OrgTeamMapping]:
    return list(
        db.execute(select(OrgTeamMapping).order_by(OrgTeamMapping.position, OrgTeamMapping.id))
        .scalars()
        .all()
    )


def _mapping_field(row: dict[str, Any], *names: str) -> str:
    for name in names:
        value = row.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def replace_mappings(db: Session, rows: list[dict[str, Any]]) -> list[OrgTeamMapping]:
    """Validate every row first, then swap the whole table in the caller's transaction."""
    mappings: list[OrgTeamMapping] = []
    for position, row in enumerate(rows):
        if not isinstance(row, dict):
            raise InvalidMappingError(f"Mapping {position} must be an object")
        org_identifier = _mapping_field(row, "org_identifier", "orgIdentifier")
        client_name = _mapping_field(row, "client_name", "clientName")
        team_name = _mapping_field(row, "team_name", "teamName")
        if not (org_identifier and client_name and team_name):
            raise InvalidMappingError(
                f"Mapping {position} requires org_identifier, client_name and team_name"
            )
        active = row.get("active", True)
        if not isinstance(active, bool):
            raise InvalidMappingError(f"Mapping {position}: active must be a boolean")
        color = row.get("color")
        if color is not None and not isinstance(color, str):
            raise InvalidColorError(f"Mapping {position}: color must be a string")
        mappings.append(
            OrgTeamMapping(
                position=position,
                org_identifier=org_identifier,
                org_key=normalize_key(org_identifier),
                client_name=client_name,
                team_name=team_name,
                color=_validate_color(color),
                active=active,
            )
        )

    db.execute(delete(OrgTeamMapping))
    db.add_all(mappings)
    db.flush()
    _invalidate_after_commit(db)
    logger.info("Replaced org-team mappings (%d rows)", len(mappings))
    return mappings

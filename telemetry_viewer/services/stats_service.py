"""Dashboard aggregates: team stats, daily series, top-N rankings and DB size."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.db.enums import FAILURE_EVENT_KINDS, TOOL_EVENT_KINDS, EventKind
from telemetry_viewer.db.models import Org, OrgTeamMapping, Team, TelemetryEvent
from telemetry_viewer.services import team_service
from telemetry_viewer.services.query_service import local_today, window_start
from telemetry_viewer.utils.formatting import format_bytes
from telemetry_viewer.utils.validation import normalize_key

logger = logging.getLogger(__name__)

MAX_STAT_DAYS = 365
TOP_TOOLS = 6


class StatsValidationError(Exception):
    """Invalid aggregate parameter."""

    pass


def validate_days(days: int) -> None:
    if days < 1 or days > MAX_STAT_DAYS:
        raise StatsValidationError(f"days must be between 1 and {MAX_STAT_DAYS}")


def _event_counts_by_org_key(db: Session, since: datetime | None = None) -> dict[str, int]:
    query = (
        select(TelemetryEvent.org_identifier_key, func.count(TelemetryEvent.id))
        .where(TelemetryEvent.org_identifier_key != "")
        .group_by(TelemetryEvent.org_identifier_key)
    )
    if since is not None:
        query = query.where(TelemetryEvent.received_at >= since)
    return dict(db.execute(query).all())


def _event_counts_by_team_key(
    db: Session,
    team_map: dict[str, team_service.TeamRef],
    since: datetime | None = None,
) -> dict[str, int]:
    """Fold per-org counts into teams via ``team_map``; unresolved orgs drop out."""
    totals: dict[str, int] = defaultdict(int)
    for org_key, count in _event_counts_by_org_key(db, since).items():
        ref = team_map.get(org_key)
        if ref is not None:
            totals[ref.team_key] += count
    return dict(totals)


# =============================================================================
# Team stats
# =============================================================================

@dataclass
class TeamStats:
    team_key: str
    team_name: str
    team_id: int | None = None
    color: str | None = None
    has_logo: bool = False
    event_count: int = 0
    active_count: int = 0
    inactive_count: int = 0
    orgs: list[str] = field(default_factory=list)
    clients: list[str] = field(default_factory=list)

    @property
    def total_mappings(self) -> int:
        return self.active_count + self.inactive_count

    @property
    def logo_url(self) -> str | None:
        if self.team_id is None or not self.has_logo:
            return None
        return f"/api/teams/{self.team_id}/logo"

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_id": self.team_id,
            "team_key": self.team_key,
            "team_name": self.team_name,
            "color": self.color,
            "has_logo": self.has_logo,
            "logo_url": self.logo_url,
            "event_count": self.event_count,
            "active_count": self.active_count,
            "inactive_count": self.inactive_count,
            "total_mappings": self.total_mappings,
            "orgs": self.orgs,
            "clients": self.clients,
        }


def compute_team_stats(db: Session) -> list[TeamStats]:
    """
    Per-team totals over the whole event table.

    Teams are every ``Team`` row plus team names that only exist in legacy
    mappings. Event counts come from one GROUP BY on the org key folded
    through the resolution map, so every resolved event lands in exactly
    one team.
    """
    stats: dict[str, TeamStats] = {}
    org_sets: dict[str, dict[str, str]] = defaultdict(dict)
    client_sets: dict[str, set[str]] = defaultdict(set)

    for team in db.execute(select(Team)).scalars():
        stats[team.name_key] = TeamStats(
            team_key=team.name_key,
            team_name=team.name,
            team_id=team.id,
            color=team.color,
            has_logo=team.has_logo,
        )

    team_names_by_id = {entry.team_id: key for key, entry in stats.items()}
    for org in db.execute(select(Org).where(Org.team_id.is_not(None))).scalars():
        team_key = team_names_by_id.get(org.team_id)
        if team_key is None:
            continue
        entry = stats[team_key]
        entry.active_count += 1
        org_sets[team_key].setdefault(org.org_key, org.org_id)
        label = org.alias or org.company_name
        if label:
            client_sets[team_key].add(label)

    for mapping in db.execute(select(OrgTeamMapping).order_by(OrgTeamMapping.position)).scalars():
        team_key = normalize_key(mapping.team_name)
        if not team_key:
            continue
        entry = stats.get(team_key)
        if entry is None:
            entry = stats[team_key] = TeamStats(
                team_key=team_key,
                team_name=mapping.team_name.strip(),
                color=mapping.color,
            )
        if mapping.active:
            entry.active_count += 1
        else:
            entry.inactive_count += 1
        org_sets[team_key].setdefault(mapping.org_key, mapping.org_identifier)
        client_sets[team_key].add(mapping.client_name)

    for team_key, count in _event_counts_by_team_key(db, team_service.resolve_team_map(db)).items():
        if team_key in stats:
            stats[team_key].event_count = count

    for team_key, entry in stats.items():
        entry.orgs = sorted(org_sets[team_key].values(), key=str.lower)
        entry.clients = sorted(client_sets[team_key], key=str.lower)

    return sorted(stats.values(), key=lambda entry: (entry.team_name.lower(), entry.team_key))


# =============================================================================
# Time-window aggregates
# =============================================================================

def _local_day_column():
    return func.date(TelemetryEvent.received_at, "localtime")


def _day_range(days: int) -> list[date]:
    today = local_today()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def daily_stats(db: Session, days: int = 30, by_event_type: bool = False) -> list[dict[str, Any]]:
    """One row per server-local day, oldest first, zero-filled."""
    validate_days(days)
    day = _local_day_column()
    since = window_start(days)

    if by_event_type:
        session_starts = func.sum(
            case((TelemetryEvent.event_kind == EventKind.SESSION_START.value, 1), else_=0)
        )
        tool_events = func.sum(
            case((TelemetryEvent.event_kind.in_([k.value for k in TOOL_EVENT_KINDS]), 1), else_=0)
        )
        error_events = func.sum(
            case((TelemetryEvent.event_kind.in_([k.value for k in FAILURE_EVENT_KINDS]), 1), else_=0)
        )
        rows = db.execute(
            select(day, session_starts, tool_events, error_events)
            .where(TelemetryEvent.received_at >= since)
            .group_by(day)
        ).all()
        by_day = {row[0]: row[1:] for row in rows}
        result = []
        for current in _day_range(days):
            starts, tools, errors = by_day.get(current.isoformat(), (0, 0, 0))
            result.append(
                {
                    "date": current.isoformat(),
                    "session_starts": int(starts or 0),
                    "tool_events": int(tools or 0),
                    "error_events": int(errors or 0),
                }
            )
        return result

    counts = dict(
        db.execute(
            select(day, func.count(TelemetryEvent.id))
            .where(TelemetryEvent.received_at >= since)
            .group_by(day)
        ).all()
    )
    return [
        {"date": current.isoformat(), "count": int(counts.get(current.isoformat(), 0))}
        for current in _day_range(days)
    ]


def tool_usage_stats(db: Session, days: int = 30) -> list[dict[str, Any]]:
    """Most used tools in the window with success/error split."""
    validate_days(days)
    total = func.count(TelemetryEvent.id)
    successful = func.sum(case((TelemetryEvent.success.is_(True), 1), else_=0))
    errors = func.sum(case((TelemetryEvent.success.is_(False), 1), else_=0))
    rows = db.execute(
        select(TelemetryEvent.tool_name, successful, errors)
        .where(
            TelemetryEvent.received_at >= window_start(days),
            TelemetryEvent.event_kind.in_([k.value for k in TOOL_EVENT_KINDS]),
            TelemetryEvent.tool_name != "",
        )
        .group_by(TelemetryEvent.tool_name)
        .order_by(total.desc(), TelemetryEvent.tool_name)
        .limit(TOP_TOOLS)
    ).all()
    return [
        {"tool": tool, "successful": int(ok or 0), "errors": int(failed or 0)}
        for tool, ok, failed in rows
    ]


def top_users(db: Session, limit: int = 3, days: int = 1) -> list[dict[str, Any]]:
    """Users by event count since local midnight ``days - 1`` days ago; ties by name."""
    validate_days(days)
    event_count = func.count(TelemetryEvent.id)
    rows = db.execute(
        select(TelemetryEvent.user_name, event_count)
        .where(TelemetryEvent.received_at >= window_start(days), TelemetryEvent.user_name != "")
        .group_by(TelemetryEvent.user_name)
        .order_by(event_count.desc(), TelemetryEvent.user_name)
        .limit(limit)
    ).all()
    return [{"user_name": user_name, "event_count": count} for user_name, count in rows]


def top_teams(db: Session, limit: int = 5, days: int = 1) -> list[dict[str, Any]]:
    """Teams by resolved event count in the window; ties by name."""
    validate_days(days)
    team_map = team_service.resolve_team_map(db)
    counts = _event_counts_by_team_key(db, team_map, since=window_start(days))
    if not counts:
        return []

    refs = {ref.team_key: ref for ref in team_map.values()}
    ranked = sorted(
        (refs[team_key] for team_key, count in counts.items() if count > 0),
        key=lambda ref: (-counts[ref.team_key], ref.team_name.lower()),
    )
    return [
        {
            "team_id": ref.team_id,
            "team_key": ref.team_key,
            "team_name": ref.team_name,
            "color": ref.color,
            "event_count": counts[ref.team_key],
        }
        for ref in ranked[:limit]
    ]


# =============================================================================
# Database size
# =============================================================================

def database_size() -> dict[str, Any]:
    """On-disk size of the store (main file plus WAL) against DB_MAX_SIZE."""
    path = settings.database_path
    size = 0
    for candidate in (path, path.with_name(path.name + "-wal")):
        if candidate.exists():
            size += candidate.stat().st_size

    max_size = settings.DB_MAX_SIZE
    percentage = round(size / max_size * 100, 2) if max_size > 0 else 0.0
    if percentage >= settings.DB_SIZE_CRIT_PCT:
        level = "critical"
    elif percentage >= settings.DB_SIZE_WARN_PCT:
        level = "warning"
    else:
        level = "ok"

    size_formatted = format_bytes(size)
    max_size_formatted = format_bytes(max_size)
    return {
        "size": size,
        "max_size": max_size,
        "percentage": percentage,
        "size_formatted": size_formatted,
        "max_size_formatted": max_size_formatted,
        "display_text": f"{size_formatted} / {max_size_formatted} ({percentage:.1f}%)",
        "level": level,
    }

"""Sessions, user listings and dashboard aggregates."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from telemetry_viewer.core.deps import get_read_db
from telemetry_viewer.core.errors import api_error
from telemetry_viewer.routers.events import event_filter_params
from telemetry_viewer.services import event_service, query_service, stats_service
from telemetry_viewer.services.query_service import EventFilter, QueryValidationError
from telemetry_viewer.services.stats_service import StatsValidationError
from telemetry_viewer.utils.formatting import isoformat

router = APIRouter(tags=["stats"])


def _bad_request(exc: Exception):
    code = getattr(exc, "code", "bad_request")
    return api_error(400, code, str(exc))


# =============================================================================
# Sessions & users
# =============================================================================

@router.get("/api/sessions")
def list_sessions(
    flt: EventFilter = Depends(event_filter_params),
    limit: int = Query(100),
    offset: int = Query(0),
    db: Session = Depends(get_read_db),
):
    try:
        sessions = query_service.list_sessions(db, flt, limit=limit, offset=offset)
    except QueryValidationError as e:
        raise _bad_request(e)
    return {
        "status": "ok",
        "sessions": [
            {
                "session_id": summary.session_id,
                "first_event": isoformat(summary.first_event),
                "last_event": isoformat(summary.last_event),
                "count": summary.count,
                "user_id": summary.user_id,
                "user_name": summary.user_name,
                "has_start": summary.has_start,
                "has_end": summary.has_end,
            }
            for summary in sessions
        ],
    }


@router.get("/api/session-activity")
def session_activity(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    flt: EventFilter = Depends(event_filter_params),
    limit: int = Query(query_service.MAX_ACTIVITY_LIMIT),
    db: Session = Depends(get_read_db),
):
    """Raw events of one session (or ``all`` for today) for the activity timeline."""
    try:
        events = query_service.session_activity(db, session_id, flt, limit=limit)
    except QueryValidationError as e:
        raise _bad_request(e)
    return {
        "status": "ok",
        "session_id": session_id,
        "events": [event_service.serialize_event(event) for event in events],
    }


@router.get("/api/event-types")
def event_types(
    flt: EventFilter = Depends(event_filter_params),
    db: Session = Depends(get_read_db),
):
    counts = query_service.count_event_types(db, flt)
    return {
        "status": "ok",
        "event_types": [{"event_kind": kind, "count": count} for kind, count in counts],
    }


@router.get("/api/event-users")
def event_users(db: Session = Depends(get_read_db)):
    return {
        "status": "ok",
        "users": [
            {
                "user_name": user.user_name,
                "event_count": user.event_count,
                "last_seen": isoformat(user.last_seen),
                "team_id": user.team_id,
                "team_name": user.team_name,
            }
            for user in query_service.list_event_users(db)
        ],
    }


@router.get("/api/telemetry-users")
def telemetry_users(
    limit: int = Query(100),
    offset: int = Query(0),
    db: Session = Depends(get_read_db),
):
    try:
        users = query_service.list_telemetry_users(db, limit=limit, offset=offset)
    except QueryValidationError as e:
        raise _bad_request(e)
    return {
        "status": "ok",
        "users": [
            {
                "user_id": user.user_id,
                "label": user.label,
                "event_count": user.event_count,
                "last_event": isoformat(user.last_event),
            }
            for user in users
        ],
    }


# =============================================================================
# Aggregates
# =============================================================================

@router.get("/api/team-stats")
def team_stats(db: Session = Depends(get_read_db)):
    return {
        "status": "ok",
        "teams": [entry.to_dict() for entry in stats_service.compute_team_stats(db)],
    }


@router.get("/api/daily-stats")
def daily_stats(
    days: int = Query(30),
    by_event_type: bool = Query(False, alias="byEventType"),
    db: Session = Depends(get_read_db),
):
    try:
        stats = stats_service.daily_stats(db, days=days, by_event_type=by_event_type)
    except StatsValidationError as e:
        raise _bad_request(e)
    return {"status": "ok", "days": days, "stats": stats}


@router.get("/api/tool-usage-stats")
def tool_usage_stats(days: int = Query(30), db: Session = Depends(get_read_db)):
    try:
        tools = stats_service.tool_usage_stats(db, days=days)
    except StatsValidationError as e:
        raise _bad_request(e)
    return {"status": "ok", "days": days, "tools": tools}


@router.get("/api/top-users-today")
def top_users_today(
    limit: int = Query(3, ge=1, le=query_service.MAX_PAGE_LIMIT),
    days: int = Query(1),
    db: Session = Depends(get_read_db),
):
    try:
        users = stats_service.top_users(db, limit=limit, days=days)
    except StatsValidationError as e:
        raise _bad_request(e)
    return {"status": "ok", "days": days, "users": users}


@router.get("/api/top-teams-today")
def top_teams_today(
    limit: int = Query(5, ge=1, le=query_service.MAX_PAGE_LIMIT),
    days: int = Query(1),
    db: Session = Depends(get_read_db),
):
    try:
        teams = stats_service.top_teams(db, limit=limit, days=days)
    except StatsValidationError as e:
        raise _bad_request(e)
    return {"status": "ok", "days": days, "teams": teams}


@router.get("/api/database-size")
def database_size():
    return {"status": "ok", **stats_service.database_size()}

"""Event ingest, queries, export and deletion."""

import json
import logging
from typing import Iterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.deps import AuthContext, get_current_auth, get_db, get_read_db, require_role
from telemetry_viewer.core.errors import api_error
from telemetry_viewer.core.rate_limit import INGEST_LIMIT, limiter
from telemetry_viewer.db.enums import Role
from telemetry_viewer.db.session import ReadSessionLocal
from telemetry_viewer.services import event_service, query_service
from telemetry_viewer.services.event_service import EventNotFoundError, EventValidationError
from telemetry_viewer.services.query_service import EventFilter, QueryValidationError
from telemetry_viewer.utils.formatting import isoformat

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def read_event_body(request: Request) -> bytes:
    """Raw request body, refusing anything above MAX_EVENT_BYTES before buffering it all."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.MAX_EVENT_BYTES:
        raise api_error(400, "payload_too_large", f"Event payload exceeds {settings.MAX_EVENT_BYTES} bytes")

    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > settings.MAX_EVENT_BYTES:
            raise api_error(
                400, "payload_too_large", f"Event payload exceeds {settings.MAX_EVENT_BYTES} bytes"
            )
        chunks.append(chunk)
    return b"".join(chunks)


def _split_kinds(values: list[str] | None) -> list[str]:
    kinds: list[str] = []
    for value in values or []:
        kinds.extend(part for part in value.split(",") if part.strip())
    return kinds


def event_filter_params(
    event_type: list[str] | None = Query(None, alias="eventType"),
    session_id: str | None = Query(None, alias="sessionId"),
    user_id: list[str] | None = Query(None, alias="userId"),
    search: str | None = Query(None, max_length=500),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    team: str | None = Query(None, max_length=100),
) -> EventFilter:
    """Shared filter parameters for every event read endpoint."""
    try:
        return query_service.build_event_filter(
            event_types=_split_kinds(event_type),
            session_id=session_id,
            user_ids=user_id,
            search=search,
            start_date=start_date,
            end_date=end_date,
            team=team,
        )
    except QueryValidationError as e:
        raise api_error(400, e.code, e.message)


# =============================================================================
# Ingest
# =============================================================================

@router.post("/events", status_code=201)
@limiter.limit(INGEST_LIMIT)
def ingest_event(
    request: Request,
    raw_body: bytes = Depends(read_event_body),
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """Validate, normalize and store one event."""
    try:
        payload = event_service.parse_event_body(raw_body)
        event = event_service.ingest_event(db, payload)
        db.commit()
    except EventValidationError as e:
        db.rollback()
        raise api_error(400, e.kind, e.message)

    logger.debug("Ingested event %s (%s) from %s", event.id, event.event_kind, auth.username)
    return {"status": "ok", "id": event.id, "received_at": isoformat(event.received_at)}


# =============================================================================
# Queries
# =============================================================================

@router.get("/api/events")
def list_events(
    flt: EventFilter = Depends(event_filter_params),
    limit: int = Query(query_service.DEFAULT_PAGE_LIMIT),
    offset: int = Query(0),
    order_by: str = Query("received_at", alias="orderBy"),
    order: str = Query("desc"),
    db: Session = Depends(get_read_db),
):
    try:
        page = query_service.query_events(
            db, flt, limit=limit, offset=offset, order_by=order_by, order=order
        )
    except QueryValidationError as e:
        raise api_error(400, e.code, e.message)

    return {
        "status": "ok",
        "events": [event_service.serialize_event(event) for event in page.events],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
        "has_more": page.has_more,
    }


@router.get("/api/events/export")
def export_events(flt: EventFilter = Depends(event_filter_params)):
    """Stream matching events as NDJSON, oldest first."""

    def generate() -> Iterator[str]:
        db = ReadSessionLocal()
        try:
            for event in query_service.iter_events_for_export(db, flt):
                yield json.dumps(event_service.serialize_event(event), ensure_ascii=False) + "\n"
        finally:
            db.close()

    return StreamingResponse(
        generate(),
        media_type="application/x-ndjson",
        headers={"Content-Disposition": 'attachment; filename="telemetry-events.jsonl"'},
    )


@router.get("/api/events/{event_id}")
def get_event(event_id: int, db: Session = Depends(get_read_db)):
    event = event_service.get_event(db, event_id)
    if event is None:
        raise api_error(404, "not_found", "Event not found")
    return {"status": "ok", "event": event_service.serialize_event(event)}


# =============================================================================
# Deletion
# =============================================================================

@router.delete("/api/events/{event_id}")
def delete_event(
    event_id: int,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    try:
        event_service.delete_event(db, event_id)
        db.commit()
    except EventNotFoundError:
        db.rollback()
        raise api_error(404, "not_found", "Event not found")

    logger.info("Event %s deleted by %s", event_id, auth.username)
    return {"status": "ok", "message": f"Event {event_id} deleted"}


@router.delete("/api/events")
def delete_events(
    session_id: str | None = Query(None, alias="sessionId"),
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    """
    Delete one session's events (any operator) or every event (advanced+).

    Both share this path, so the role check for the bulk case lives here.
    """
    if session_id is not None:
        session_id = session_id.strip()
        if not session_id:
            raise api_error(400, "bad_request", "sessionId must not be empty")
        deleted = event_service.delete_events_by_session(db, session_id)
        db.commit()
        logger.info("Deleted %d events of session %s by %s", deleted, session_id, auth.username)
        return {
            "status": "ok",
            "message": f"Deleted {deleted} events from session {session_id}",
            "deletedCount": deleted,
            "sessionId": session_id,
        }

    require_role(auth, Role.ADVANCED)
    deleted = event_service.delete_all_events(db)
    db.commit()
    logger.warning("All events deleted (%d) by %s", deleted, auth.username)
    return {"status": "ok", "message": f"Deleted {deleted} events", "deletedCount": deleted}

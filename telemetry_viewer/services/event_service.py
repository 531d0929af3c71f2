"""Event ingest, lookup and deletion.

Ingest accepts both the flat payload (explicit ``event_kind``) and the v2
producer payload, where the kind is derived from ``area``/``event``/``success``.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from telemetry_viewer.core.config import settings
from telemetry_viewer.db.base import utcnow
from telemetry_viewer.db.enums import FAILURE_EVENT_KINDS, EventKind
from telemetry_viewer.db.models import TelemetryEvent
from telemetry_viewer.utils.formatting import isoformat
from telemetry_viewer.utils.validation import normalize_key

logger = logging.getLogger(__name__)


class EventServiceError(Exception):
    """Base exception for event service errors."""

    pass


class EventNotFoundError(EventServiceError):
    """Event not found."""

    pass


class EventValidationError(EventServiceError):
    """Payload rejected; ``kind`` is the stable error code."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


# v2 producers send (area, event, success) instead of a kind.
_V2_TOOL_CALL_EVENTS = {"execution", "response"}
_V2_SESSION_START_EVENTS = {"session_start", "server_boot", "client_connect"}


@dataclass
class NormalizedEvent:
    event_kind: str
    timestamp: datetime
    received_at: datetime
    data_json: str
    area: str = ""
    session_id: str = ""
    user_id: str = ""
    user_name: str = ""
    server_id: str = ""
    version: str = ""
    tool_name: str = ""
    company_name: str = ""
    org_identifier: str = ""
    org_identifier_key: str = ""
    error_message: str = ""
    success: bool = True


# =============================================================================
# Payload parsing
# =============================================================================

def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-finite number {name} is not allowed")


def parse_event_body(raw: bytes) -> dict[str, Any]:
    """Enforce the payload cap and decode the JSON object."""
    if len(raw) > settings.MAX_EVENT_BYTES:
        raise EventValidationError(
            "payload_too_large",
            f"Event payload exceeds {settings.MAX_EVENT_BYTES} bytes",
        )
    try:
        payload = json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError):
        raise EventValidationError("invalid_json", "Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise EventValidationError("invalid_json", "Event payload must be a JSON object")
    return payload


def _dig(source: Any, *path: str) -> Any:
    current = source
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _clean(value: Any, field_name: str) -> str:
    """Trimmed string form of a scalar; empty stays empty (never NULL)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise EventValidationError("invalid_field", f"Field '{field_name}' must be a string")


def _first(field_name: str, *candidates: Any) -> str:
    for candidate in candidates:
        cleaned = _clean(candidate, field_name)
        if cleaned:
            return cleaned
    return ""


def _parse_timestamp(value: Any, default: datetime) -> datetime:
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise EventValidationError("invalid_timestamp", "timestamp must be an ISO-8601 string")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise EventValidationError("invalid_timestamp", f"Invalid ISO-8601 timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def derive_event_kind(payload: dict[str, Any]) -> str:
    """
    Resolve the event kind.

    An explicit ``event_kind`` (or a kind-valued ``event``) wins. Otherwise
    the v2 (area, event, success) triple is mapped; any other area is custom.
    """
    explicit = payload.get("event_kind")
    if explicit is not None:
        kind = _clean(explicit, "event_kind")
        if not EventKind.has_value(kind):
            raise EventValidationError("invalid_event_kind", f"Unknown event kind '{kind}'")
        return kind

    event_name = _clean(payload.get("event"), "event")
    if EventKind.has_value(event_name):
        return event_name

    area = _clean(payload.get("area"), "area").lower()
    if not area:
        raise EventValidationError(
            "invalid_event_kind", "event_kind is required (or area/event for v2 payloads)"
        )

    success = payload.get("success")
    if area == "tool":
        if event_name in _V2_TOOL_CALL_EVENTS:
            return EventKind.TOOL_ERROR.value if success is False else EventKind.TOOL_CALL.value
        if event_name == "validation":
            return EventKind.TOOL_ERROR.value
    elif area == "session":
        if event_name in _V2_SESSION_START_EVENTS:
            return EventKind.SESSION_START.value
        if event_name == "session_end":
            return EventKind.SESSION_END.value
    elif area == "general" and event_name == "error_occurred":
        return EventKind.ERROR.value
    return EventKind.CUSTOM.value


def normalize_event(payload: dict[str, Any], received_at: datetime | None = None) -> NormalizedEvent:
    """Validate a decoded payload and project it onto the indexed columns."""
    received_at = received_at or utcnow()
    kind = derive_event_kind(payload)
    data = payload.get("data", {})
    if data is None:
        data = {}

    try:
        data_json = json.dumps(data, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except ValueError:
        raise EventValidationError("invalid_json", "Event data must not contain NaN or Infinity")
    if len(data_json.encode("utf-8")) > settings.MAX_EVENT_DATA_BYTES:
        raise EventValidationError(
            "payload_too_large",
            f"Event data exceeds {settings.MAX_EVENT_DATA_BYTES} bytes",
        )

    user_id = _first("user_id", _dig(payload, "user", "id"), payload.get("userId"), payload.get("user_id"))
    user_name = _first(
        "user_name",
        _dig(payload, "user", "name"),
        payload.get("userName"),
        payload.get("user_name"),
        _dig(data, "userName"),
        _dig(data, "user_name"),
    ) or user_id
    org_identifier = _first(
        "org_identifier",
        payload.get("orgId"),
        payload.get("org_id"),
        payload.get("org_identifier"),
        _dig(data, "state", "org", "id"),
        _dig(data, "orgId"),
    )

    success_value = payload.get("success")
    if isinstance(success_value, bool):
        success = success_value
    elif success_value is None:
        success = EventKind(kind) not in FAILURE_EVENT_KINDS
    else:
        raise EventValidationError("invalid_field", "Field 'success' must be a boolean")

    return NormalizedEvent(
        event_kind=kind,
        timestamp=_parse_timestamp(payload.get("timestamp"), received_at),
        received_at=received_at,
        data_json=data_json,
        area=_clean(payload.get("area"), "area"),
        session_id=_first(
            "session_id",
            _dig(payload, "session", "id"),
            payload.get("sessionId"),
            payload.get("session_id"),
        ),
        user_id=user_id,
        user_name=user_name,
        server_id=_first(
            "server_id", _dig(payload, "server", "id"), payload.get("serverId"), payload.get("server_id")
        ),
        version=_first("version", _dig(payload, "server", "version"), payload.get("version")),
        tool_name=_first(
            "tool_name",
            payload.get("toolName"),
            payload.get("tool_name"),
            payload.get("tool"),
            _dig(data, "toolName"),
            _dig(data, "tool"),
            _dig(data, "error", "toolName"),
            _dig(data, "error", "tool"),
        ),
        company_name=_first(
            "company_name",
            payload.get("companyName"),
            payload.get("company_name"),
            _dig(data, "state", "org", "companyDetails", "Name"),
            _dig(data, "companyDetails", "Name"),
        ),
        org_identifier=org_identifier,
        org_identifier_key=normalize_key(org_identifier),
        error_message=_first(
            "error_message",
            payload.get("errorMessage"),
            payload.get("error_message"),
            _dig(data, "errorMessage"),
            _dig(data, "error", "message"),
        ),
        success=success,
    )


# =============================================================================
# Persistence
# =============================================================================

def insert_event(db: Session, event: NormalizedEvent) -> TelemetryEvent:
    """Single INSERT; no batching and no deduplication."""
    row = TelemetryEvent(
        received_at=event.received_at,
        timestamp=event.timestamp,
        event_kind=event.event_kind,
        area=event.area,
        session_id=event.session_id,
        user_id=event.user_id,
        user_name=event.user_name,
        server_id=event.server_id,
        version=event.version,
        tool_name=event.tool_name,
        company_name=event.company_name,
        org_identifier=event.org_identifier,
        org_identifier_key=event.org_identifier_key,
        success=event.success,
        error_message=event.error_message,
        data=event.data_json,
    )
    db.add(row)
    db.flush()
    return row


def ingest_event(db: Session, payload: dict[str, Any]) -> TelemetryEvent:
    event = normalize_event(payload)
    return insert_event(db, event)


def get_event(db: Session, event_id: int) -> TelemetryEvent | None:
    return db.get(TelemetryEvent, event_id)


def delete_event(db: Session, event_id: int) -> None:
    result = db.execute(delete(TelemetryEvent).where(TelemetryEvent.id == event_id))
    if result.rowcount == 0:
        raise EventNotFoundError(f"Event {event_id} not found")


def delete_events_by_session(db: Session, session_id: str) -> int:
    result = db.execute(delete(TelemetryEvent).where(TelemetryEvent.session_id == session_id))
    return result.rowcount


def delete_all_events(db: Session) -> int:
    result = db.execute(delete(TelemetryEvent))
    return result.rowcount


def count_events(db: Session) -> int:
    return db.execute(select(func.count(TelemetryEvent.id))).scalar_one()


def serialize_event(event: TelemetryEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "received_at": isoformat(event.received_at),
        "timestamp": isoformat(event.timestamp),
        "event_kind": event.event_kind,
        "area": event.area,
        "session_id": event.session_id,
        "user_id": event.user_id,
        "user_name": event.user_name,
        "server_id": event.server_id,
        "version": event.version,
        "tool_name": event.tool_name,
        "company_name": event.company_name,
        "org_identifier": event.org_identifier,
        "success": event.success,
        "error_message": event.error_message,
        "data": json.loads(event.data) if event.data else {},
    }

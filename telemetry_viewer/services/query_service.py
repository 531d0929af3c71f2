"""Filtered event queries, session summaries and per-user listings.

Every read reduces to an ``EventFilter`` (what rows) plus paging/ordering
(which slice). Index-backed predicates are applied first and the substring
search last.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

from sqlalchemy import Select, Text, and_, case, func, or_, select
from sqlalchemy.orm import Session

from telemetry_viewer.db.enums import EventKind
from telemetry_viewer.db.models import TelemetryEvent
from telemetry_viewer.services import team_service

logger = logging.getLogger(__name__)

NONE_SENTINEL = "__none__"
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 500
# ``total`` costs a second scan; only pay for it on small pages.
TOTAL_LIMIT_THRESHOLD = 100
MAX_SESSION_LIMIT = 1000
MAX_ACTIVITY_LIMIT = 5000
EXPORT_BATCH_SIZE = 500


class QueryValidationError(Exception):
    """Invalid filter or paging parameter."""

    def __init__(self, message: str, code: str = "bad_request"):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass
class EventFilter:
    event_kinds: list[str] = field(default_factory=list)
    session_id: str | None = None
    user_names: list[str] = field(default_factory=list)
    search: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    team_key: str | None = None

    @property
    def matches_nothing(self) -> bool:
        return NONE_SENTINEL in self.user_names


@dataclass
class EventPage:
    events: list[TelemetryEvent]
    has_more: bool
    total: int | None
    limit: int
    offset: int


# =============================================================================
# Parameter parsing
# =============================================================================

def local_midnight(day: date) -> datetime:
    """Server-local midnight of ``day`` as an aware UTC datetime."""
    return datetime.combine(day, time.min).astimezone().astimezone(timezone.utc)


def local_today() -> date:
    return datetime.now().astimezone().date()


def window_start(days: int) -> datetime:
    """Start of the ``days``-day window ending today (server-local), as UTC."""
    return local_midnight(local_today() - timedelta(days=days - 1))


def parse_datetime_param(value: str | None, name: str) -> datetime | None:
    """
    Parse an ISO-8601 query value.

    A bare date means server-local midnight. Naive datetimes are server-local;
    values with an offset are honoured.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        if len(text) == 10:
            return local_midnight(date.fromisoformat(text))
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise QueryValidationError(f"{name} must be an ISO-8601 date or datetime")
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)


def build_event_filter(
    event_types: list[str] | None = None,
    session_id: str | None = None,
    user_ids: list[str] | None = None,
    search: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    team: str | None = None,
) -> EventFilter:
    user_names = [name for name in user_ids or [] if name]
    if NONE_SENTINEL in user_names:
        # Nothing can match, so the remaining filters are not validated.
        return EventFilter(user_names=[NONE_SENTINEL])

    kinds = [kind.strip() for kind in event_types or [] if kind and kind.strip()]
    for kind in kinds:
        if not EventKind.has_value(kind):
            raise QueryValidationError(f"Unknown event type '{kind}'", code="invalid_event_kind")

    start = parse_datetime_param(start_date, "startDate")
    end = parse_datetime_param(end_date, "endDate")
    if start is not None and end is not None and end < start:
        raise QueryValidationError("endDate must not be before startDate")

    return EventFilter(
        event_kinds=sorted(set(kinds)),
        session_id=session_id.strip() if session_id and session_id.strip() else None,
        user_names=user_names,
        search=search.strip() if search and search.strip() else None,
        start=start,
        end=end,
        team_key=team.strip().lower() if team and team.strip() else None,
    )


def validate_page(limit: int, offset: int, max_limit: int = MAX_PAGE_LIMIT) -> None:
    if limit < 1 or limit > max_limit:
        raise QueryValidationError(f"limit must be between 1 and {max_limit}")
    if offset < 0:
        raise QueryValidationError("offset must be >= 0")


def _order_direction(order: str) -> str:
    order = (order or "desc").lower()
    if order not in ("asc", "desc"):
        raise QueryValidationError("order must be 'asc' or 'desc'")
    return order


# =============================================================================
# Filter composition
# =============================================================================

def _search_projection():
    separator = " "
    return func.casefold(
        TelemetryEvent.event_kind
        + separator
        + TelemetryEvent.area
        + separator
        + TelemetryEvent.tool_name
        + separator
        + TelemetryEvent.company_name
        + separator
        + TelemetryEvent.error_message
        + separator
        + TelemetryEvent.user_name
        + separator
        + func.coalesce(TelemetryEvent.data, ""),
        type_=Text,
    )


def apply_event_filter(db: Session, query: Select, flt: EventFilter) -> Select:
    """Add the filter's predicates to ``query`` (index-backed ones first, search last)."""
    if flt.event_kinds:
        query = query.where(TelemetryEvent.event_kind.in_(flt.event_kinds))
    if flt.session_id:
        query = query.where(TelemetryEvent.session_id == flt.session_id)
    if flt.start is not None:
        query = query.where(TelemetryEvent.received_at >= flt.start)
    if flt.end is not None:
        query = query.where(TelemetryEvent.received_at < flt.end)
    if flt.user_names:
        query = query.where(TelemetryEvent.user_name.in_(flt.user_names))
    if flt.team_key:
        org_keys = team_service.org_keys_for_team(db, flt.team_key)
        query = query.where(TelemetryEvent.org_identifier_key.in_(org_keys))
    if flt.search:
        query = query.where(_search_projection().contains(flt.search.casefold(), autoescape=True))
    return query


def _ordering(order: str):
    if order == "asc":
        return (TelemetryEvent.received_at.asc(), TelemetryEvent.id.asc())
    return (TelemetryEvent.received_at.desc(), TelemetryEvent.id.desc())


# =============================================================================
# Events
# =============================================================================

def query_events(
    db: Session,
    flt: EventFilter,
    limit: int = DEFAULT_PAGE_LIMIT,
    offset: int = 0,
    order_by: str = "received_at",
    order: str = "desc",
) -> EventPage:
    """One page of events plus ``has_more`` (fetched as limit+1 rows)."""
    validate_page(limit, offset)
    if order_by != "received_at":
        raise QueryValidationError("orderBy must be 'received_at'")
    order = _order_direction(order)

    if flt.matches_nothing:
        return EventPage(events=[], has_more=False, total=0, limit=limit, offset=offset)

    query = apply_event_filter(db, select(TelemetryEvent), flt)
    rows = list(
        db.execute(query.order_by(*_ordering(order)).limit(limit + 1).offset(offset)).scalars().all()
    )
    has_more = len(rows) > limit
    events = rows[:limit]

    total = None
    if limit <= TOTAL_LIMIT_THRESHOLD:
        total = count_events(db, flt)
    return EventPage(events=events, has_more=has_more, total=total, limit=limit, offset=offset)


def count_events(db: Session, flt: EventFilter) -> int:
    if flt.matches_nothing:
        return 0
    query = apply_event_filter(db, select(func.count(TelemetryEvent.id)), flt)
    return db.execute(query).scalar_one()


def iter_events_for_export(db: Session, flt: EventFilter) -> Iterator[TelemetryEvent]:
    """Yield matching events oldest first, in keyset-paginated batches."""
    if flt.matches_nothing:
        return
    last: tuple[datetime, int] | None = None
    while True:
        query = apply_event_filter(db, select(TelemetryEvent), flt)
        if last is not None:
            received_at, event_id = last
            query = query.where(
                or_(
                    TelemetryEvent.received_at > received_at,
                    and_(TelemetryEvent.received_at == received_at, TelemetryEvent.id > event_id),
                )
            )
        batch = list(
            db.execute(query.order_by(*_ordering("asc")).limit(EXPORT_BATCH_SIZE)).scalars().all()
        )
        if not batch:
            return
        yield from batch
        last = (batch[-1].received_at, batch[-1].id)
        db.expunge_all()


def count_event_types(db: Session, flt: EventFilter) -> list[tuple[str, int]]:
    """(event_kind, count), most frequent first."""
    if flt.matches_nothing:
        return []
    count = func.count(TelemetryEvent.id)
    query = apply_event_filter(
        db, select(TelemetryEvent.event_kind, count), flt
    ).group_by(TelemetryEvent.event_kind)
    rows = db.execute(query.order_by(count.desc(), TelemetryEvent.event_kind)).all()
    return [(kind, total) for kind, total in rows]


# =============================================================================
# Sessions
# =============================================================================

@dataclass
class SessionSummary:
    session_id: str
    first_event: datetime
    last_event: datetime
    count: int
    user_id: str
    user_name: str
    has_start: bool
    has_end: bool


def list_sessions(
    db: Session,
    flt: EventFilter,
    limit: int = 100,
    offset: int = 0,
) -> list[SessionSummary]:
    """Group events by session_id; most recently active sessions first."""
    validate_page(limit, offset, max_limit=MAX_SESSION_LIMIT)
    if flt.matches_nothing:
        return []

    first_event = func.min(TelemetryEvent.timestamp)
    last_event = func.max(TelemetryEvent.timestamp)
    query = (
        select(
            TelemetryEvent.session_id,
            first_event,
            last_event,
            func.count(TelemetryEvent.id),
            func.max(TelemetryEvent.user_id),
            func.max(TelemetryEvent.user_name),
            func.max(case((TelemetryEvent.event_kind == EventKind.SESSION_START.value, 1), else_=0)),
            func.max(case((TelemetryEvent.event_kind == EventKind.SESSION_END.value, 1), else_=0)),
        )
        .where(TelemetryEvent.session_id != "")
    )
    query = (
        apply_event_filter(db, query, flt)
        .group_by(TelemetryEvent.session_id)
        .order_by(last_event.desc(), TelemetryEvent.session_id)
        .limit(limit)
        .offset(offset)
    )
    return [
        SessionSummary(
            session_id=session_id,
            first_event=first,
            last_event=last,
            count=count,
            user_id=user_id or "",
            user_name=user_name or "",
            has_start=bool(has_start),
            has_end=bool(has_end),
        )
        for session_id, first, last, count, user_id, user_name, has_start, has_end in db.execute(query)
    ]


def session_activity(
    db: Session,
    session_id: str,
    flt: EventFilter | None = None,
    limit: int = MAX_ACTIVITY_LIMIT,
) -> list[TelemetryEvent]:
    """
    Raw events for one session (or ``all``) in received order.

    ``all`` without an explicit window covers the current server-local day.
    Bucketing is left to the client.
    """
    validate_page(limit, 0, max_limit=MAX_ACTIVITY_LIMIT)
    flt = flt or EventFilter()
    if flt.matches_nothing:
        return []
    if session_id == "all":
        if flt.start is None and flt.end is None:
            flt.start = local_midnight(local_today())
        flt.session_id = None
    else:
        flt.session_id = session_id

    query = apply_event_filter(db, select(TelemetryEvent), flt)
    return list(db.execute(query.order_by(*_ordering("asc")).limit(limit)).scalars().all())


# =============================================================================
# Users
# =============================================================================

@dataclass
class EventUserSummary:
    user_name: str
    event_count: int
    last_seen: datetime
    team_id: int | None = None
    team_name: str | None = None


def list_event_users(db: Session) -> list[EventUserSummary]:
    """Distinct non-empty user names with counts, last-seen time and team link."""
    last_seen = func.max(TelemetryEvent.received_at)
    event_count = func.count(TelemetryEvent.id)
    rows = db.execute(
        select(TelemetryEvent.user_name, event_count, last_seen)
        .where(TelemetryEvent.user_name != "")
        .group_by(TelemetryEvent.user_name)
        .order_by(event_count.desc(), TelemetryEvent.user_name)
    ).all()
    links = team_service.event_user_links(db)

    users = []
    for user_name, count, seen in rows:
        team = links.get(user_name)
        users.append(
            EventUserSummary(
                user_name=user_name,
                event_count=count,
                last_seen=seen,
                team_id=team.id if team else None,
                team_name=team.name if team else None,
            )
        )
    return users


@dataclass
class TelemetryUserSummary:
    user_id: str
    label: str
    event_count: int
    last_event: datetime


def list_telemetry_users(db: Session, limit: int = 100, offset: int = 0) -> list[TelemetryUserSummary]:
    """Distinct user ids, most recently active first."""
    validate_page(limit, offset, max_limit=MAX_SESSION_LIMIT)
    last_event = func.max(TelemetryEvent.received_at)
    rows = db.execute(
        select(
            TelemetryEvent.user_id,
            func.max(TelemetryEvent.user_name),
            func.count(TelemetryEvent.id),
            last_event,
        )
        .where(TelemetryEvent.user_id != "")
        .group_by(TelemetryEvent.user_id)
        .order_by(last_event.desc(), TelemetryEvent.user_id)
        .limit(limit)
        .offset(offset)
    ).all()
    return [
        TelemetryUserSummary(
            user_id=user_id,
            label=user_name or user_id,
            event_count=count,
            last_event=last,
        )
        for user_id, user_name, count, last in rows
    ]

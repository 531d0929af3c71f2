"""Tests for event listing, filtering, export and deletion."""
import json
from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from telemetry_viewer.db.enums import Role
from telemetry_viewer.services import query_service
from telemetry_viewer.services.query_service import QueryValidationError

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# User filter & sentinel
# =============================================================================

@pytest.mark.asyncio
async def test_none_sentinel_returns_nothing(basic_client: AsyncClient):
    for name in ("alice", "bob", "alice"):
        response = await basic_client.post("/events", json={"event_kind": "custom", "user_name": name})
        assert response.status_code == 201

    response = await basic_client.get("/api/events", params={"userId": "__none__"})
    assert response.status_code == 200
    data = response.json()
    assert data["events"] == []
    assert data["has_more"] is False

    response = await basic_client.get("/api/events", params={"userId": "alice"})
    events = response.json()["events"]
    assert len(events) == 2
    assert {event["user_name"] for event in events} == {"alice"}


@pytest.mark.asyncio
async def test_none_user_skips_other_filter_validation(basic_client: AsyncClient, seed_event):
    seed_event(user_name="alice")

    response = await basic_client.get(
        "/api/events",
        params={"userId": "__none__", "eventType": "bogus", "startDate": "not-a-date"},
    )

    assert response.status_code == 200
    assert response.json()["events"] == []
    assert response.json()["has_more"] is False


@pytest.mark.asyncio
async def test_multiple_user_values_are_ored(basic_client: AsyncClient, seed_event):
    seed_event(user_name="alice")
    seed_event(user_name="bob")
    seed_event(user_name="carol")

    response = await basic_client.get("/api/events", params=[("userId", "alice"), ("userId", "carol")])

    assert sorted(event["user_name"] for event in response.json()["events"]) == ["alice", "carol"]


# =============================================================================
# Pagination
# =============================================================================

@pytest.mark.asyncio
async def test_pagination_contract(basic_client: AsyncClient, seed_event):
    for i in range(51):
        seed_event(received_at=BASE + timedelta(seconds=i), tool_name=f"tool-{i}")

    first = await basic_client.get("/api/events", params={"limit": 50, "order": "desc"})
    data = first.json()
    assert len(data["events"]) == 50
    assert data["has_more"] is True
    assert data["total"] == 51
    assert data["events"][0]["tool_name"] == "tool-50"
    received = [event["received_at"] for event in data["events"]]
    assert received == sorted(received, reverse=True)

    second = await basic_client.get("/api/events", params={"limit": 50, "offset": 50, "order": "desc"})
    data = second.json()
    assert len(data["events"]) == 1
    assert data["has_more"] is False
    assert data["events"][0]["tool_name"] == "tool-0"


@pytest.mark.asyncio
async def test_ascending_order(basic_client: AsyncClient, seed_event):
    seed_event(received_at=BASE, tool_name="older")
    seed_event(received_at=BASE + timedelta(minutes=1), tool_name="newer")

    response = await basic_client.get("/api/events", params={"order": "asc"})

    assert [event["tool_name"] for event in response.json()["events"]] == ["older", "newer"]


@pytest.mark.asyncio
@pytest.mark.parametrize("limit,status", [(0, 400), (1, 200), (500, 200), (501, 400)])
async def test_limit_bounds(basic_client: AsyncClient, limit, status):
    response = await basic_client.get("/api/events", params={"limit": limit})

    assert response.status_code == status


@pytest.mark.asyncio
async def test_large_pages_skip_total(basic_client: AsyncClient, seed_event):
    seed_event()

    response = await basic_client.get("/api/events", params={"limit": 200})

    assert response.json()["total"] is None
    assert len(response.json()["events"]) == 1


@pytest.mark.asyncio
async def test_negative_offset(basic_client: AsyncClient):
    response = await basic_client.get("/api/events", params={"offset": -1})

    assert response.status_code == 400


# =============================================================================
# Filters
# =============================================================================

@pytest.mark.asyncio
async def test_time_range_is_half_open(basic_client: AsyncClient, seed_event):
    seed_event(received_at=BASE - timedelta(seconds=1), tool_name="before")
    seed_event(received_at=BASE, tool_name="start")
    seed_event(received_at=BASE + timedelta(hours=1), tool_name="end")

    response = await basic_client.get(
        "/api/events",
        params={
            "startDate": "2026-03-01T12:00:00+00:00",
            "endDate": "2026-03-01T13:00:00+00:00",
        },
    )

    assert [event["tool_name"] for event in response.json()["events"]] == ["start"]


@pytest.mark.asyncio
async def test_end_before_start_is_rejected(basic_client: AsyncClient):
    response = await basic_client.get(
        "/api/events", params={"startDate": "2026-03-02", "endDate": "2026-03-01"}
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_event_type_filter(basic_client: AsyncClient):
    response = await basic_client.get("/api/events", params={"eventType": "tool_call,nope"})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_event_kind"


@pytest.mark.asyncio
async def test_event_type_filter_accepts_comma_list(basic_client: AsyncClient, seed_event):
    seed_event(event_kind="tool_call")
    seed_event(event_kind="error")
    seed_event(event_kind="custom")

    response = await basic_client.get("/api/events", params={"eventType": "tool_call,error"})

    assert sorted(event["event_kind"] for event in response.json()["events"]) == ["error", "tool_call"]


@pytest.mark.asyncio
async def test_session_filter(basic_client: AsyncClient, seed_event):
    seed_event(session_id="s-1")
    seed_event(session_id="s-2")

    response = await basic_client.get("/api/events", params={"sessionId": "s-2"})

    assert [event["session_id"] for event in response.json()["events"]] == ["s-2"]


@pytest.mark.asyncio
async def test_search_is_case_insensitive_and_covers_data(basic_client: AsyncClient, seed_event):
    seed_event(tool_name="Deploy")
    seed_event(tool_name="lint", data={"message": "DEPLOYMENT skipped"})
    seed_event(tool_name="format")

    response = await basic_client.get("/api/events", params={"search": "deploy"})

    assert sorted(event["tool_name"] for event in response.json()["events"]) == ["Deploy", "lint"]


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(basic_client: AsyncClient, seed_event):
    seed_event(error_message="100% failed")
    seed_event(error_message="100 failed")

    response = await basic_client.get("/api/events", params={"search": "100%"})

    assert [event["error_message"] for event in response.json()["events"]] == ["100% failed"]


@pytest.mark.asyncio
async def test_search_folds_non_ascii_case(basic_client: AsyncClient, seed_event):
    seed_event(tool_name="ÉTAT-sync")
    seed_event(tool_name="lint", data={"customer": "Straße Werke"})
    seed_event(tool_name="etat-report")

    accented = await basic_client.get("/api/events", params={"search": "état"})
    folded = await basic_client.get("/api/events", params={"search": "STRASSE"})

    assert [event["tool_name"] for event in accented.json()["events"]] == ["ÉTAT-sync"]
    assert [event["tool_name"] for event in folded.json()["events"]] == ["lint"]


def test_date_only_bound_is_local_midnight():
    parsed = query_service.parse_datetime_param("2026-03-01", "startDate")

    assert parsed == query_service.local_midnight(date(2026, 3, 1))
    assert parsed.tzinfo == timezone.utc


def test_invalid_date_param():
    with pytest.raises(QueryValidationError):
        query_service.parse_datetime_param("March 1st", "startDate")


# =============================================================================
# Single event, export, deletion
# =============================================================================

@pytest.mark.asyncio
async def test_get_missing_event(basic_client: AsyncClient):
    response = await basic_client.get("/api/events/999999")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_export_streams_ndjson_oldest_first(make_client, seed_event):
    for i in range(3):
        seed_event(received_at=BASE + timedelta(seconds=i), tool_name=f"tool-{i}", user_name="alice")
    seed_event(received_at=BASE, user_name="bob")
    c = await make_client(Role.ADVANCED, username="analyst")

    response = await c.get("/api/events/export", params={"userId": "alice"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    lines = [json.loads(line) for line in response.text.splitlines() if line]
    assert [line["tool_name"] for line in lines] == ["tool-0", "tool-1", "tool-2"]


@pytest.mark.asyncio
async def test_delete_single_event(basic_client: AsyncClient, seed_event):
    event = seed_event()

    response = await basic_client.delete(f"/api/events/{event.id}")
    assert response.status_code == 200

    assert (await basic_client.get(f"/api/events/{event.id}")).status_code == 404


@pytest.mark.asyncio
async def test_delete_by_empty_session_id(basic_client: AsyncClient):
    response = await basic_client.delete("/api/events", params={"sessionId": "  "})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_session_listing_groups_events(basic_client: AsyncClient, seed_event):
    seed_event(received_at=BASE, timestamp="2026-03-01T12:00:00Z", event_kind="session_start",
               session_id="s-1", user_name="alice")
    seed_event(received_at=BASE, timestamp="2026-03-01T12:05:00Z", session_id="s-1", user_name="alice")
    seed_event(received_at=BASE, timestamp="2026-03-01T13:00:00Z", session_id="s-2", user_name="bob")
    seed_event(received_at=BASE, session_id="")

    response = await basic_client.get("/api/sessions")

    sessions = response.json()["sessions"]
    assert [s["session_id"] for s in sessions] == ["s-2", "s-1"]
    first = sessions[1]
    assert first["count"] == 2
    assert first["user_name"] == "alice"
    assert first["has_start"] is True
    assert first["has_end"] is False

    filtered = await basic_client.get("/api/sessions", params={"userId": "__none__"})
    assert filtered.json()["sessions"] == []


@pytest.mark.asyncio
async def test_session_activity_returns_raw_events(basic_client: AsyncClient, seed_event):
    seed_event(received_at=BASE + timedelta(minutes=5), session_id="s-1", tool_name="b")
    seed_event(received_at=BASE, session_id="s-1", tool_name="a")
    seed_event(received_at=BASE, session_id="s-2", tool_name="other")

    response = await basic_client.get("/api/session-activity", params={"sessionId": "s-1"})

    assert response.status_code == 200
    assert [event["tool_name"] for event in response.json()["events"]] == ["a", "b"]


@pytest.mark.asyncio
async def test_session_activity_requires_session_id(basic_client: AsyncClient):
    response = await basic_client.get("/api/session-activity")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_event_types_counts(basic_client: AsyncClient, seed_event):
    seed_event(event_kind="tool_call")
    seed_event(event_kind="tool_call")
    seed_event(event_kind="error")

    response = await basic_client.get("/api/event-types")

    assert response.json()["event_types"] == [
        {"event_kind": "tool_call", "count": 2},
        {"event_kind": "error", "count": 1},
    ]


@pytest.mark.asyncio
async def test_telemetry_users(basic_client: AsyncClient, seed_event):
    seed_event(received_at=BASE, user_id="u-1", user_name="Alice")
    seed_event(received_at=BASE + timedelta(minutes=1), user_id="u-2")

    response = await basic_client.get("/api/telemetry-users")

    users = response.json()["users"]
    assert [(u["user_id"], u["label"]) for u in users] == [("u-2", "u-2"), ("u-1", "Alice")]

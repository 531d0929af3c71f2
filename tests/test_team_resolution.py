"""Tests for org -> team resolution, the team filter and cache invalidation."""
import pytest
from httpx import AsyncClient

from telemetry_viewer.core.config import settings
from telemetry_viewer.db.session import SessionLocal
from telemetry_viewer.services import team_service


def _team_entry(response, name):
    for entry in response.json()["teams"]:
        if entry["team_name"] == name:
            return entry
    raise AssertionError(f"team {name!r} missing from team-stats")


@pytest.mark.asyncio
async def test_team_stats_follow_org_moves(god_client: AsyncClient):
    created = await god_client.post("/api/teams", data={"name": "T1", "color": "#112233"})
    assert created.status_code == 201
    team_id = created.json()["team"]["id"]

    org = await god_client.post("/api/orgs", json={"org_id": "00Dxx", "team_id": team_id})
    assert org.status_code == 201

    ingest = await god_client.post(
        "/events",
        json={"event_kind": "tool_call", "data": {"state": {"org": {"id": "00Dxx"}}}},
    )
    assert ingest.status_code == 201

    stats = await god_client.get("/api/team-stats")
    entry = _team_entry(stats, "T1")
    assert entry["event_count"] == 1
    assert entry["color"] == "#112233"

    moved = await god_client.post("/api/orgs/00Dxx/move", json={"team_id": None})
    assert moved.status_code == 200
    assert moved.json()["org"]["team_id"] is None

    stats = await god_client.get("/api/team-stats")
    assert _team_entry(stats, "T1")["event_count"] == 0


def test_org_binding_wins_over_mapping(db):
    direct = team_service.create_team(db, "Direct")
    team_service.create_team(db, "Legacy")
    team_service.upsert_org(db, "ORG-1", {"team_id": direct.id})
    team_service.replace_mappings(
        db,
        [{"org_identifier": "org-1", "client_name": "Acme", "team_name": "Legacy"}],
    )
    db.commit()

    ref = team_service.resolve_org(db, " Org-1 ")

    assert ref is not None
    assert ref.team_name == "Direct"


def test_first_active_mapping_wins(db):
    team_service.replace_mappings(
        db,
        [
            {"org_identifier": "org-2", "client_name": "Acme", "team_name": "Dormant", "active": False},
            {"org_identifier": "ORG-2", "client_name": "Acme", "team_name": "Red"},
            {"org_identifier": "org-2", "client_name": "Acme", "team_name": "Blue"},
        ],
    )
    db.commit()

    ref = team_service.resolve_org(db, "org-2")

    assert ref.team_key == "red"
    assert ref.team_id is None


def test_mapping_team_name_matches_team_case_insensitively(db):
    team = team_service.create_team(db, "Platform")
    team_service.replace_mappings(
        db,
        [{"orgIdentifier": "org-3", "clientName": "Initech", "teamName": "PLATFORM"}],
    )
    db.commit()

    ref = team_service.resolve_org(db, "org-3")

    assert ref.team_id == team.id
    assert ref.team_name == "Platform"


def test_unresolved_org(db):
    assert team_service.resolve_org(db, "nobody") is None


def test_cache_is_invalidated_on_commit(db, monkeypatch):
    monkeypatch.setattr(settings, "TEAM_CACHE_TTL_SECONDS", 3600)
    team = team_service.create_team(db, "Ops")
    db.commit()
    assert team_service.resolve_org(db, "org-4") is None

    team_service.upsert_org(db, "org-4", {"team_id": team.id})
    db.commit()

    assert team_service.resolve_org(db, "org-4").team_id == team.id


def test_map_built_across_a_commit_is_not_cached(db, monkeypatch):
    monkeypatch.setattr(settings, "TEAM_CACHE_TTL_SECONDS", 3600)
    team = team_service.create_team(db, "T1")
    team_service.upsert_org(db, "00Dxx", {"team_id": team.id})
    db.commit()

    original_build = team_service.build_team_map

    def build_then_commit_move(session):
        built = original_build(session)
        # Another writer commits after this snapshot was taken.
        with SessionLocal() as writer:
            team_service.move_org_to_team(writer, "00Dxx", None)
            writer.commit()
        return built

    monkeypatch.setattr(team_service, "build_team_map", build_then_commit_move)
    stale = team_service.resolve_team_map(db)
    assert stale["00dxx"].team_id == team.id

    monkeypatch.setattr(team_service, "build_team_map", original_build)
    assert "00dxx" not in team_service.resolve_team_map(db)


@pytest.mark.asyncio
async def test_team_filter_expands_to_org_keys(basic_client: AsyncClient, db, seed_event):
    team = team_service.create_team(db, "Search")
    team_service.upsert_org(db, "Org-A", {"team_id": team.id})
    team_service.replace_mappings(
        db,
        [{"org_identifier": "org-b", "client_name": "Beta", "team_name": "search"}],
    )
    db.commit()
    seed_event(org_id="ORG-A", tool_name="a")
    seed_event(org_id="org-b", tool_name="b")
    seed_event(org_id="org-c", tool_name="c")

    response = await basic_client.get("/api/events", params={"team": "SEARCH"})

    assert sorted(event["tool_name"] for event in response.json()["events"]) == ["a", "b"]


@pytest.mark.asyncio
async def test_team_filter_with_no_orgs_matches_nothing(basic_client: AsyncClient, db, seed_event):
    team_service.create_team(db, "Empty")
    db.commit()
    seed_event(org_id="org-z")

    response = await basic_client.get("/api/events", params={"team": "empty"})

    assert response.json()["events"] == []

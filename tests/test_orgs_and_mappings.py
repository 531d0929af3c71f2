"""Tests for the org registry and legacy org-team mappings."""
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_upsert_org_is_idempotent(god_client: AsyncClient):
    created = await god_client.post("/api/orgs", json={"org_id": "00DAbc", "alias": "Acme"})
    assert created.status_code == 201

    again = await god_client.post("/api/orgs", json={"org_id": "00dabc", "alias": "Acme"})
    assert again.status_code == 200

    orgs = (await god_client.get("/api/orgs")).json()["orgs"]
    assert len(orgs) == 1
    assert orgs[0]["org_id"] == "00DAbc"
    assert orgs[0]["alias"] == "Acme"


@pytest.mark.asyncio
async def test_upsert_only_touches_sent_fields(god_client: AsyncClient):
    await god_client.post(
        "/api/orgs", json={"org_id": "org-1", "alias": "Acme", "color": "#fff", "company_name": "Acme Inc"}
    )

    await god_client.post("/api/orgs", json={"id": "org-1", "color": None})

    org = (await god_client.get("/api/orgs")).json()["orgs"][0]
    assert org["alias"] == "Acme"
    assert org["company_name"] == "Acme Inc"
    assert org["color"] is None


@pytest.mark.asyncio
async def test_upsert_org_validates_color_and_team(god_client: AsyncClient):
    bad_color = await god_client.post("/api/orgs", json={"org_id": "org-2", "color": "#12"})
    assert bad_color.status_code == 400
    assert bad_color.json()["code"] == "invalid_color"

    missing_team = await god_client.post("/api/orgs", json={"org_id": "org-2", "team_id": 4242})
    assert missing_team.status_code == 404


@pytest.mark.asyncio
async def test_move_org(god_client: AsyncClient):
    team_id = (await god_client.post("/api/teams", data={"name": "Dest"})).json()["team"]["id"]
    await god_client.post("/api/orgs", json={"org_id": "org-3"})

    moved = await god_client.post("/api/orgs/ORG-3/move", json={"team_id": team_id})

    assert moved.status_code == 200
    assert moved.json()["org"]["team_id"] == team_id
    assert moved.json()["org"]["team_name"] == "Dest"


@pytest.mark.asyncio
async def test_move_unknown_org(god_client: AsyncClient):
    response = await god_client.post("/api/orgs/missing/move", json={"team_id": None})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_move_requires_team_id_key(god_client: AsyncClient):
    await god_client.post("/api/orgs", json={"org_id": "org-4"})

    response = await god_client.post("/api/orgs/org-4/move", json={})

    assert response.status_code == 400


# =============================================================================
# Legacy mappings
# =============================================================================

MAPPINGS = [
    {"org_identifier": "org-a", "client_name": "Acme", "team_name": "Red", "color": "#ff0000", "active": True},
    {"orgIdentifier": "org-b", "clientName": "Beta", "teamName": "Blue", "active": False},
]


@pytest.mark.asyncio
async def test_replace_and_list_mappings(god_client: AsyncClient):
    response = await god_client.post("/api/settings/org-team-mappings", json={"mappings": MAPPINGS})
    assert response.status_code == 200

    listed = (await god_client.get("/api/settings/org-team-mappings")).json()["mappings"]
    assert listed == [
        {"org_identifier": "org-a", "client_name": "Acme", "team_name": "Red", "color": "#ff0000", "active": True},
        {"org_identifier": "org-b", "client_name": "Beta", "team_name": "Blue", "color": None, "active": False},
    ]


@pytest.mark.asyncio
async def test_replace_with_empty_list_clears(god_client: AsyncClient):
    await god_client.post("/api/settings/org-team-mappings", json={"mappings": MAPPINGS})

    response = await god_client.post("/api/settings/org-team-mappings", json={"mappings": []})

    assert response.json()["mappings"] == []
    assert (await god_client.get("/api/settings/org-team-mappings")).json()["mappings"] == []


@pytest.mark.asyncio
async def test_invalid_row_leaves_mappings_untouched(god_client: AsyncClient):
    await god_client.post("/api/settings/org-team-mappings", json={"mappings": MAPPINGS})

    response = await god_client.post(
        "/api/settings/org-team-mappings",
        json={"mappings": [{"org_identifier": "org-c", "client_name": "Gamma"}]},
    )

    assert response.status_code == 400
    listed = (await god_client.get("/api/settings/org-team-mappings")).json()["mappings"]
    assert len(listed) == 2


@pytest.mark.asyncio
async def test_mapping_color_is_validated(god_client: AsyncClient):
    response = await god_client.post(
        "/api/settings/org-team-mappings",
        json={"mappings": [{"org_identifier": "o", "client_name": "c", "team_name": "t", "color": "blue"}]},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_color"


@pytest.mark.asyncio
async def test_team_stats_include_mapping_only_teams(god_client: AsyncClient, seed_event):
    await god_client.post("/api/settings/org-team-mappings", json={"mappings": MAPPINGS})
    seed_event(org_id="org-a")
    seed_event(org_id="org-b")

    teams = {t["team_name"]: t for t in (await god_client.get("/api/team-stats")).json()["teams"]}

    assert teams["Red"]["team_id"] is None
    assert teams["Red"]["event_count"] == 1
    assert teams["Red"]["active_count"] == 1
    assert teams["Red"]["clients"] == ["Acme"]
    assert teams["Blue"]["event_count"] == 0
    assert teams["Blue"]["inactive_count"] == 1
    assert teams["Blue"]["total_mappings"] == 1

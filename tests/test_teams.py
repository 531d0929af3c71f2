"""Tests for team CRUD, logos and event-user links."""
import io

import pytest
from httpx import AsyncClient
from PIL import Image

from telemetry_viewer.core.config import settings
from telemetry_viewer.services import team_service


def _image_bytes(fmt: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(17, 34, 51)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.mark.asyncio
async def test_create_and_list_teams(god_client: AsyncClient):
    response = await god_client.post("/api/teams", data={"name": "zeta", "color": "#abc"})
    assert response.status_code == 201
    team = response.json()["team"]
    assert team["name"] == "zeta"
    assert team["team_key"] == "zeta"
    assert team["color"] == "#abc"
    assert team["has_logo"] is False
    assert team["logo_url"] is None

    await god_client.post("/api/teams", data={"name": "Alpha"})

    listing = await god_client.get("/api/teams")
    assert [t["name"] for t in listing.json()["teams"]] == ["Alpha", "zeta"]


@pytest.mark.asyncio
async def test_duplicate_name_is_case_insensitive(god_client: AsyncClient):
    await god_client.post("/api/teams", data={"name": "Platform"})

    response = await god_client.post("/api/teams", data={"name": "PLATFORM"})

    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


@pytest.mark.asyncio
@pytest.mark.parametrize("color", ["112233", "#12345", "#ggg", "red", "#1122334"])
async def test_invalid_color_is_rejected(god_client: AsyncClient, color):
    response = await god_client.post("/api/teams", data={"name": "Colors", "color": color})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_color"


@pytest.mark.asyncio
async def test_logo_upload_and_serving(god_client: AsyncClient):
    logo = _image_bytes("PNG")

    created = await god_client.post(
        "/api/teams",
        data={"name": "Logos"},
        files={"logo": ("logo.png", logo, "image/png")},
    )
    assert created.status_code == 201
    team = created.json()["team"]
    assert team["has_logo"] is True
    assert team["logo_url"] == f"/api/teams/{team['id']}/logo"

    served = await god_client.get(team["logo_url"])
    assert served.status_code == 200
    assert served.content == logo
    assert served.headers["content-type"] == "image/png"
    assert served.headers["cache-control"] == "private, max-age=300"


@pytest.mark.asyncio
async def test_logo_mime_is_sniffed_not_declared(god_client: AsyncClient):
    response = await god_client.post(
        "/api/teams",
        data={"name": "Sneaky"},
        files={"logo": ("logo.png", b"<svg xmlns='http://www.w3.org/2000/svg'/>", "image/png")},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_logo"


@pytest.mark.asyncio
async def test_jpeg_logo_declared_as_png_is_stored_as_jpeg(god_client: AsyncClient):
    created = await god_client.post(
        "/api/teams",
        data={"name": "Jpeg"},
        files={"logo": ("logo.png", _image_bytes("JPEG"), "image/png")},
    )

    served = await god_client.get(created.json()["team"]["logo_url"])
    assert served.headers["content-type"] == "image/jpeg"


@pytest.mark.asyncio
async def test_logo_size_limit_is_inclusive(god_client: AsyncClient, monkeypatch):
    logo = _image_bytes("PNG")
    monkeypatch.setattr(settings, "LOGO_MAX_BYTES", len(logo))

    exact = await god_client.post(
        "/api/teams", data={"name": "Exact"}, files={"logo": ("a.png", logo, "image/png")}
    )
    assert exact.status_code == 201

    too_big = await god_client.post(
        "/api/teams", data={"name": "TooBig"}, files={"logo": ("b.png", logo + b"\0", "image/png")}
    )
    assert too_big.status_code == 400
    assert too_big.json()["code"] == "logo_too_large"


@pytest.mark.asyncio
async def test_missing_logo_is_404(god_client: AsyncClient):
    created = await god_client.post("/api/teams", data={"name": "Plain"})

    response = await god_client.get(f"/api/teams/{created.json()['team']['id']}/logo")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_team(god_client: AsyncClient):
    created = await god_client.post(
        "/api/teams",
        data={"name": "Before", "color": "#000000"},
        files={"logo": ("a.png", _image_bytes(), "image/png")},
    )
    team_id = created.json()["team"]["id"]

    renamed = await god_client.put(f"/api/teams/{team_id}", data={"name": "After", "color": ""})
    assert renamed.status_code == 200
    team = renamed.json()["team"]
    assert team["name"] == "After"
    assert team["color"] is None
    assert team["has_logo"] is True

    cleared = await god_client.put(f"/api/teams/{team_id}", data={"remove_logo": "true"})
    assert cleared.json()["team"]["has_logo"] is False


@pytest.mark.asyncio
async def test_update_without_fields(god_client: AsyncClient):
    created = await god_client.post("/api/teams", data={"name": "Idle"})

    response = await god_client.put(f"/api/teams/{created.json()['team']['id']}", data={})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_rename_onto_existing_name(god_client: AsyncClient):
    await god_client.post("/api/teams", data={"name": "Taken"})
    other = await god_client.post("/api/teams", data={"name": "Other"})

    response = await god_client.put(f"/api/teams/{other.json()['team']['id']}", data={"name": "taken"})

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_team_unbinds_orgs(god_client: AsyncClient, db, seed_event):
    created = await god_client.post("/api/teams", data={"name": "Doomed"})
    team_id = created.json()["team"]["id"]
    await god_client.post("/api/orgs", json={"org_id": "org-9", "team_id": team_id})
    await god_client.post(f"/api/teams/{team_id}/event-users", json={"user_name": "alice"})
    seed_event(org_id="org-9")

    response = await god_client.delete(f"/api/teams/{team_id}")
    assert response.status_code == 200

    orgs = (await god_client.get("/api/orgs")).json()["orgs"]
    assert [(o["org_id"], o["team_id"]) for o in orgs] == [("org-9", None)]
    assert (await god_client.get(f"/api/teams/{team_id}")).status_code == 404
    assert len((await god_client.get("/api/events")).json()["events"]) == 1
    db.rollback()
    assert team_service.event_user_links(db) == {}


@pytest.mark.asyncio
async def test_team_detail_lists_members(god_client: AsyncClient):
    created = await god_client.post("/api/teams", data={"name": "Members"})
    team_id = created.json()["team"]["id"]
    await god_client.post("/api/orgs", json={"org_id": "B-org", "team_id": team_id})
    await god_client.post("/api/orgs", json={"org_id": "a-org", "team_id": team_id})
    await god_client.post(f"/api/teams/{team_id}/event-users", json={"user_name": "bob"})

    detail = (await god_client.get(f"/api/teams/{team_id}")).json()["team"]

    assert [org["org_id"] for org in detail["orgs"]] == ["a-org", "B-org"]
    assert detail["event_users"] == ["bob"]
    assert detail["org_count"] == 2
    assert detail["event_user_count"] == 1


@pytest.mark.asyncio
async def test_event_user_moves_between_teams(god_client: AsyncClient):
    first = (await god_client.post("/api/teams", data={"name": "First"})).json()["team"]["id"]
    second = (await god_client.post("/api/teams", data={"name": "Second"})).json()["team"]["id"]

    assert (await god_client.post(f"/api/teams/{first}/event-users", json={"user_name": "eve"})).status_code == 201
    moved = await god_client.post(f"/api/teams/{second}/event-users", json={"user_name": "eve"})
    assert moved.json()["team_id"] == second

    assert (await god_client.get(f"/api/teams/{first}")).json()["team"]["event_users"] == []

    removed = await god_client.delete(f"/api/teams/{second}/event-users/eve")
    assert removed.status_code == 200
    again = await god_client.delete(f"/api/teams/{second}/event-users/eve")
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_event_users_listing_shows_team(god_client: AsyncClient, seed_event):
    team_id = (await god_client.post("/api/teams", data={"name": "Crew"})).json()["team"]["id"]
    await god_client.post(f"/api/teams/{team_id}/event-users", json={"user_name": "alice"})
    seed_event(user_name="alice")
    seed_event(user_name="alice")
    seed_event(user_name="bob")

    users = (await god_client.get("/api/event-users")).json()["users"]

    assert [(u["user_name"], u["event_count"], u["team_name"]) for u in users] == [
        ("alice", 2, "Crew"),
        ("bob", 1, None),
    ]

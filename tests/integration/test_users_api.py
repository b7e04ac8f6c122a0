"""User registration, stats and aggregate API tests."""

from __future__ import annotations

import pytest
from conftest import auth_headers
from httpx import AsyncClient

PLAYER_HEADERS = auth_headers("player-1", "player_one")
OTHER_HEADERS = auth_headers("player-2", "player_two")


async def _register(client: AsyncClient, headers: dict, username: str, email: str):
    return await client.post("/api/v1/users", json={"username": username, "email": email}, headers=headers)


async def _award(client: AsyncClient, dm_headers: dict, count: int = 5, rollup: bool = False) -> tuple[dict, dict]:
    template = (await client.post(
        "/api/v1/achievements",
        json={
            "name": "Dragon Slayer",
            "description": "Slay a dragon",
            "base_points": 10,
            "upgrades": [{"name": "Veteran", "description": "x", "required_count": 5, "points": 20}],
        },
        headers=dm_headers,
    )).json()
    campaign = (await client.post(
        "/api/v1/campaigns", json={"name": "Campaign", "description": "x"}, headers=dm_headers,
    )).json()
    session = (await client.post(
        f"/api/v1/campaigns/{campaign['id']}/sessions",
        json={"session_date": "2026-10-20T19:00:00Z"},
        headers=dm_headers,
    )).json()
    response = await client.post(
        f"/api/v1/sessions/{session['id']}/awards",
        json={"player_id": "player-1", "achievement_id": template["id"], "count": count, "rollup": rollup},
        headers=dm_headers,
    )
    assert response.status_code == 201
    return template, response.json()


class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_and_me(self, client: AsyncClient):
        response = await _register(client, PLAYER_HEADERS, "Player_One", "p1@example.com")
        assert response.status_code == 201
        data = response.json()
        assert data["uid"] == "player-1"
        assert data["display_name"] == "Player_One"
        assert data["total_global_points"] == 0

        response = await client.get("/api/v1/users/me", headers=PLAYER_HEADERS)
        assert response.json()["username"] == "Player_One"

    @pytest.mark.asyncio
    async def test_me_before_registration(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me", headers=PLAYER_HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_duplicate_username_case_insensitive(self, client: AsyncClient):
        await _register(client, PLAYER_HEADERS, "Player_One", "p1@example.com")
        response = await _register(client, OTHER_HEADERS, "player_one", "p2@example.com")
        assert response.status_code == 409
        assert response.json()["resource"] == "username"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, client: AsyncClient):
        await _register(client, PLAYER_HEADERS, "one", "same@example.com")
        response = await _register(client, OTHER_HEADERS, "two", "SAME@example.com")
        assert response.status_code == 409
        assert response.json()["resource"] == "email"

    @pytest.mark.asyncio
    async def test_registering_twice(self, client: AsyncClient):
        await _register(client, PLAYER_HEADERS, "one", "one@example.com")
        response = await _register(client, PLAYER_HEADERS, "again", "again@example.com")
        assert response.status_code == 409
        assert response.json()["resource"] == "user"

    @pytest.mark.asyncio
    async def test_malformed_email(self, client: AsyncClient):
        response = await _register(client, PLAYER_HEADERS, "one", "not-an-email")
        assert response.status_code == 422
        assert response.json()["field"] == "email"


class TestAggregatesAPI:

    @pytest.mark.asyncio
    async def test_recompute_and_read(self, client: AsyncClient, dm_headers):
        await _register(client, PLAYER_HEADERS, "one", "one@example.com")
        template, _ = await _award(client, dm_headers)

        response = await client.post(
            f"/api/v1/users/player-1/achievements/{template['id']}/recompute", headers=dm_headers,
        )
        assert response.status_code == 200
        assert response.json()["total_points"] == 30

        response = await client.get("/api/v1/users/player-1/achievements", headers=dm_headers)
        assert response.json()["total"] == 1

        response = await client.get(f"/api/v1/users/player-1/achievements/{template['id']}", headers=dm_headers)
        assert response.json()["current_level"] == 1

        response = await client.get("/api/v1/users/player-1/history", headers=dm_headers)
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_unearned_achievement_is_404(self, client: AsyncClient, dm_headers):
        response = await client.get("/api/v1/users/player-1/achievements/missing", headers=dm_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, dm_headers):
        await _register(client, PLAYER_HEADERS, "one", "one@example.com")
        await _award(client, dm_headers, rollup=True)

        response = await client.get("/api/v1/users/player-1/stats", headers=PLAYER_HEADERS)
        data = response.json()
        assert data["total_points"] == 30
        assert data["unique_achievements"] == 1
        assert data["sessions_played"] == 1
        assert data["total_global_points"] == 30

    @pytest.mark.asyncio
    async def test_recalculate_requires_admin(self, client: AsyncClient, dm_headers, admin_headers):
        await _register(client, PLAYER_HEADERS, "one", "one@example.com")
        await _award(client, dm_headers)

        response = await client.post("/api/v1/users/player-1/recalculate", headers=dm_headers)
        assert response.status_code == 403

        response = await client.post("/api/v1/users/player-1/recalculate", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["aggregates_rebuilt"] == 1
        assert data["total_global_points"] == 30
        assert data["total_global_achievements"] == 1

    @pytest.mark.asyncio
    async def test_reconcile(self, client: AsyncClient, dm_headers):
        await _register(client, PLAYER_HEADERS, "one", "one@example.com")
        await _award(client, dm_headers, rollup=True)

        response = await client.post("/api/v1/users/player-1/reconcile", headers=dm_headers)
        assert response.status_code == 200
        assert response.json()["total_global_points"] == 30

    @pytest.mark.asyncio
    async def test_reconcile_unknown_user(self, client: AsyncClient, dm_headers):
        response = await client.post("/api/v1/users/nobody/reconcile", headers=dm_headers)
        assert response.status_code == 404

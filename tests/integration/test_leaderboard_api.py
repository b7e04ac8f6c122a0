"""Leaderboard and audit API tests."""

from __future__ import annotations

import pytest
from conftest import auth_headers
from httpx import AsyncClient

USERS = {
    "u-low": 10,
    "u-high": 30,
    "u-mid": 20,
}


async def _populate(client: AsyncClient, dm_headers: dict) -> None:
    """Register three users and give each a flat-points award rolled into their aggregate."""
    campaign = (await client.post(
        "/api/v1/campaigns", json={"name": "Campaign", "description": "x"}, headers=dm_headers,
    )).json()
    session = (await client.post(
        f"/api/v1/campaigns/{campaign['id']}/sessions",
        json={"session_date": "2026-10-20T19:00:00Z"},
        headers=dm_headers,
    )).json()

    for uid, points in USERS.items():
        await client.post(
            "/api/v1/users",
            json={"username": uid, "email": f"{uid}@example.com"},
            headers=auth_headers(uid),
        )
        template = (await client.post(
            "/api/v1/achievements",
            json={"name": f"Flat {points}", "description": "x", "base_points": points},
            headers=dm_headers,
        )).json()
        await client.post(
            f"/api/v1/sessions/{session['id']}/awards",
            json={"player_id": uid, "achievement_id": template["id"], "rollup": True},
            headers=dm_headers,
        )


class TestLeaderboardAPI:

    @pytest.mark.asyncio
    async def test_refresh_all_then_read(self, client: AsyncClient, dm_headers, admin_headers):
        await _populate(client, dm_headers)

        response = await client.post("/api/v1/leaderboard/all-time/refresh-all", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["succeeded"] == 3

        response = await client.get("/api/v1/leaderboard/all-time", headers=dm_headers)
        data = response.json()
        assert [e["total_points"] for e in data["entries"]] == [30, 20, 10]
        assert [e["rank"] for e in data["entries"]] == [1, 2, 3]

        response = await client.get("/api/v1/leaderboard/all-time", params={"limit": 1}, headers=dm_headers)
        assert [e["user_id"] for e in response.json()["entries"]] == ["u-high"]

    @pytest.mark.asyncio
    async def test_refresh_all_requires_admin(self, client: AsyncClient, dm_headers):
        response = await client.post("/api/v1/leaderboard/all-time/refresh-all", headers=dm_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_refresh_own_entry(self, client: AsyncClient, dm_headers):
        await _populate(client, dm_headers)
        response = await client.post("/api/v1/leaderboard/weekly/refresh", headers=auth_headers("u-mid"))
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "u-mid"
        assert data["rank"] == 1
        assert data["total_points"] == 20

    @pytest.mark.asyncio
    async def test_rank_stats_and_compare(self, client: AsyncClient, dm_headers, admin_headers):
        await _populate(client, dm_headers)
        await client.post("/api/v1/leaderboard/all-time/refresh-all", headers=admin_headers)

        response = await client.get("/api/v1/leaderboard/all-time/rank/u-mid", headers=dm_headers)
        assert response.json()["entry"]["rank"] == 2

        response = await client.get("/api/v1/leaderboard/all-time/rank/nobody", headers=dm_headers)
        assert response.json()["entry"] is None

        response = await client.get("/api/v1/leaderboard/all-time/stats", headers=dm_headers)
        assert response.json()["highest_points"] == 30

        response = await client.get(
            "/api/v1/leaderboard/all-time/compare",
            params={"user_a": "u-mid", "user_b": "u-low"},
            headers=dm_headers,
        )
        assert response.json()["comparison"]["points_difference"] == 10

    @pytest.mark.asyncio
    async def test_snapshots(self, client: AsyncClient, dm_headers, admin_headers):
        await _populate(client, dm_headers)
        await client.post("/api/v1/leaderboard/all-time/refresh-all", headers=admin_headers)

        response = await client.post("/api/v1/leaderboard/all-time/snapshots", headers=dm_headers)
        assert response.status_code == 403

        response = await client.post("/api/v1/leaderboard/all-time/snapshots", headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["entry_count"] == 3

        response = await client.get("/api/v1/leaderboard/all-time/snapshots", headers=dm_headers)
        data = response.json()
        assert data["total"] == 1
        assert [e["user_id"] for e in data["snapshots"][0]["entries"]] == ["u-high", "u-mid", "u-low"]

    @pytest.mark.asyncio
    async def test_unknown_period_is_422(self, client: AsyncClient, dm_headers):
        response = await client.get("/api/v1/leaderboard/yearly", headers=dm_headers)
        assert response.status_code == 422
        assert response.json()["field"] == "period"


class TestAuditAPI:

    @pytest.mark.asyncio
    async def test_audit_requires_admin(self, client: AsyncClient, dm_headers):
        response = await client.get("/api/v1/audit", headers=dm_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_audit_lists_actions(self, client: AsyncClient, dm_headers, admin_headers):
        await client.post("/api/v1/campaigns", json={"name": "Campaign", "description": "x"}, headers=dm_headers)

        response = await client.get(
            "/api/v1/audit", params={"action": "create_campaign"}, headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        entry = data["entries"][0]
        assert entry["user_id"] == "dm-uid"
        assert entry["resource_type"] == "campaign"
        assert entry["new_value"]["name"] == "Campaign"

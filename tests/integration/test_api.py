"""Read API integration tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from credo.badges.catalog import BADGE_SEED_DATA
from credo.badges.ledger import award_badge
from credo.credibility.account_service import create_account
from credo.db.models import UserStatistics

pytestmark = pytest.mark.asyncio


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_ready(self, client):
        response = await client.get("/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["catalog_version"] == 1
        assert body["checks"] == {"database": "ok", "redis": "disabled"}

    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestBadgeEndpoints:
    async def test_list_badges(self, client):
        response = await client.get("/api/v1/badges")
        assert response.status_code == 200
        body = response.json()
        assert body["catalog_version"] == 1
        assert len(body["badges"]) == len(BADGE_SEED_DATA)

    async def test_badge_detail(self, client, db_session, redis):
        await award_badge(db_session, redis, "u1", "prophet")
        response = await client.get("/api/v1/badges/prophet")
        assert response.status_code == 200
        assert response.json()["total_earned"] == 1

    async def test_unknown_badge(self, client):
        response = await client.get("/api/v1/badges/no_such_badge")
        assert response.status_code == 404

    async def test_user_badges(self, client, db_session, redis):
        await award_badge(db_session, redis, "u1", "gladiator", progress_value=15)
        response = await client.get("/api/v1/users/u1/badges")
        assert response.status_code == 200
        body = response.json()
        assert body["total_earned"] == 1
        assert body["total_available"] == len(BADGE_SEED_DATA)
        earned = [b for b in body["badges"] if b["is_earned"]]
        assert [b["id"] for b in earned] == ["gladiator"]
        assert earned[0]["progress_value"] == 15

    async def test_badge_progress(self, client, db_session, redis):
        db_session.add(UserStatistics(
            user_id="u1",
            alliance_quests_completed=10,
            battle_quests_won=30,
            updated_at=datetime.now(timezone.utc),
        ))
        await db_session.commit()
        await award_badge(db_session, redis, "u1", "gladiator")

        response = await client.get("/api/v1/users/u1/badges/progress")
        assert response.status_code == 200
        progress = {p["badge_id"]: p for p in response.json()["progress"]}
        assert "gladiator" not in progress
        assert progress["alliance_master"]["current"] == 10
        assert progress["alliance_master"]["percentage"] == 40.0
        assert "high_roller" not in progress

    async def test_progress_without_statistics(self, client):
        response = await client.get("/api/v1/users/new-user/badges/progress")
        assert response.status_code == 200
        assert all(p["current"] == 0 for p in response.json()["progress"])


class TestCredibilityEndpoint:
    async def test_missing_account_is_404(self, client):
        response = await client.get("/api/v1/users/ghost/credibility")
        assert response.status_code == 404

    async def test_credibility(self, client, db_session):
        await create_account(db_session, "u1", 4)
        response = await client.get("/api/v1/users/u1/credibility")
        assert response.status_code == 200
        body = response.json()
        assert body["credibility"] == 0
        assert body["frequency"] == 4
        assert body["weekly_allocation"] == 16
        assert body["next_goal_gain"] == 4
        assert body["projected_outcome"] == {"bonus": 0, "penalty": -8, "net": -8}

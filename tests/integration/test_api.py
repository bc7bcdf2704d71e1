"""HTTP surface: predictions, streaks, achievements and credits."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


def _as(user) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


async def _create_poll(client: AsyncClient, clock, **overrides) -> dict:
    body = {
        "question": "Will the Fed cut rates?",
        "category": "macro",
        "deadline": (clock.now() + timedelta(hours=6)).isoformat(),
        **overrides,
    }
    response = await client.post("/api/v1/internal/polls", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestPredictionsApi:
    async def test_vote_resolve_and_get_paid(self, client, clock, make_user):
        user = await make_user()
        poll = await _create_poll(client, clock)

        response = await client.post(
            f"/api/v1/predictions/polls/{poll['id']}/vote", json={"choice": "YES"}, headers=_as(user),
        )
        assert response.status_code == 201
        assert response.json()["choice"] == "YES"

        active = (await client.get("/api/v1/predictions/polls/active", headers=_as(user))).json()
        assert active["polls"][0]["my_vote"] == "YES"
        assert active["polls"][0]["yes_count"] == 1

        response = await client.post(
            f"/api/v1/internal/polls/{poll['id']}/resolve",
            json={"correct_answer": "YES", "source": "FOMC statement"},
        )
        assert response.status_code == 200
        assert response.json()["credits_paid"] == 2

        again = await client.post(
            f"/api/v1/internal/polls/{poll['id']}/resolve", json={"correct_answer": "YES"},
        )
        assert again.json()["already_resolved"] is True

        balance = (await client.get("/api/v1/credits/balance", headers=_as(user))).json()
        assert balance == {"balance": 2, "lifetime_earned": 2, "lifetime_spent": 0}

        history = (await client.get("/api/v1/credits/history", headers=_as(user))).json()
        assert history["total"] == 1
        assert history["entries"][0]["reason"] == "prediction_correct"

        stats = (await client.get("/api/v1/predictions/stats/me", headers=_as(user))).json()
        assert stats["correct_votes"] == 1
        assert stats["accuracy_rate"] == 100.0

        resolved = (await client.get("/api/v1/predictions/polls/resolved", headers=_as(user))).json()
        assert resolved["polls"][0]["my_is_correct"] is True

    async def test_double_vote_is_conflict(self, client, clock, make_user):
        user = await make_user()
        poll = await _create_poll(client, clock)
        url = f"/api/v1/predictions/polls/{poll['id']}/vote"

        await client.post(url, json={"choice": "NO"}, headers=_as(user))
        response = await client.post(url, json={"choice": "YES"}, headers=_as(user))
        assert response.status_code == 409
        assert response.json()["code"] == "already_voted"

    async def test_vote_after_deadline(self, client, clock, make_user):
        user = await make_user()
        poll = await _create_poll(client, clock, deadline=(clock.now() + timedelta(minutes=1)).isoformat())
        clock.advance(minutes=2)
        response = await client.post(
            f"/api/v1/predictions/polls/{poll['id']}/vote", json={"choice": "YES"}, headers=_as(user),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "poll_closed"

    async def test_unknown_poll(self, client, make_user):
        user = await make_user()
        response = await client.post(
            "/api/v1/predictions/polls/999/vote", json={"choice": "YES"}, headers=_as(user),
        )
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_unknown_caller(self, client, clock):
        poll = await _create_poll(client, clock)
        headers = {"X-User-Id": "424242"}
        vote = await client.post(
            f"/api/v1/predictions/polls/{poll['id']}/vote", json={"choice": "YES"}, headers=headers,
        )
        assert vote.status_code == 404
        assert vote.json() == {"detail": "User not found", "code": "not_found"}

        check_in = await client.post("/api/v1/streak/check-in", headers=headers)
        assert check_in.status_code == 404

    async def test_invalid_choice(self, client, clock, make_user):
        user = await make_user()
        poll = await _create_poll(client, clock)
        response = await client.post(
            f"/api/v1/predictions/polls/{poll['id']}/vote", json={"choice": "MAYBE"}, headers=_as(user),
        )
        assert response.status_code == 422

    async def test_missing_caller(self, client):
        response = await client.get("/api/v1/predictions/polls/active")
        assert response.status_code == 401

    async def test_naive_deadline_rejected(self, client, clock):
        response = await client.post("/api/v1/internal/polls", json={
            "question": "?", "category": "macro",
            "deadline": clock.now().replace(tzinfo=None).isoformat(),
        })
        assert response.status_code == 422

    async def test_leaderboard(self, client, make_user):
        user = await make_user()
        response = await client.get("/api/v1/predictions/leaderboard", headers=_as(user))
        assert response.status_code == 200
        data = response.json()
        assert data["entries"] == []
        assert data["me"]["votes_to_qualify"] == 5

        bad = await client.get("/api/v1/predictions/leaderboard?window=daily", headers=_as(user))
        assert bad.status_code == 400

    async def test_yesterday_review(self, client, make_user):
        user = await make_user()
        response = await client.get("/api/v1/predictions/polls/yesterday", headers=_as(user))
        assert response.status_code == 200
        assert response.json()["summary"]["total"] == 0


class TestStreakApi:
    async def test_check_in_flow(self, client, make_user):
        user = await make_user()
        first = (await client.post("/api/v1/streak/check-in", headers=_as(user))).json()
        assert first["updated"] is True
        assert first["streak"]["current_streak"] == 1
        assert first["streak"]["message"]["is_milestone"] is False

        second = (await client.post("/api/v1/streak/check-in", headers=_as(user))).json()
        assert second["updated"] is False

        current = (await client.get("/api/v1/streak", headers=_as(user))).json()
        assert current["current_streak"] == 1
        assert current["freeze_count"] == 0

    async def test_freeze_needs_credits(self, client, make_user):
        user = await make_user()
        response = await client.post("/api/v1/streak/freezes", headers=_as(user))
        assert response.status_code == 402
        assert response.json()["code"] == "insufficient_credits"

    async def test_recovery_quote_and_unavailable(self, client, clock, make_user):
        user = await make_user()
        await client.post("/api/v1/streak/check-in", headers=_as(user))

        quote = (await client.get("/api/v1/streak/recovery", headers=_as(user))).json()
        assert quote["can_recover"] is False

        response = await client.post("/api/v1/streak/recovery", headers=_as(user))
        assert response.status_code == 422
        assert response.json()["code"] == "recovery_unavailable"

        clock.advance(days=2)
        quote = (await client.get("/api/v1/streak/recovery", headers=_as(user))).json()
        assert quote == {"days_missed": 1, "can_recover": True, "cost": 3, "previous_streak": 1}


class TestAchievementsApi:
    async def test_check_and_list(self, client, make_user):
        user = await make_user()
        await client.post("/api/v1/streak/check-in", headers=_as(user))

        response = await client.post(
            "/api/v1/achievements/check", json={"has_posted": True}, headers=_as(user),
        )
        assert response.status_code == 200
        assert response.json() == {"newly_unlocked": ["first_visit", "first_post"], "credits_awarded": 8}

        again = (await client.post("/api/v1/achievements/check", headers=_as(user))).json()
        assert again["newly_unlocked"] == []

        listing = (await client.get("/api/v1/achievements", headers=_as(user))).json()
        assert listing["unlocked"] == 2
        assert listing["total"] == 10

        balance = (await client.get("/api/v1/credits/balance", headers=_as(user))).json()
        assert balance["balance"] == 8

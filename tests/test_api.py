"""
Tests for the feed API.

The app runs against the in-memory store from conftest; lifespan is not
executed by the ASGI transport, so no Supabase connection is made.
"""

import pytest


async def open_session(client, autoload=True, viewer_id="viewer-1"):
    response = await client.post(
        "/api/feed/sessions",
        json={"viewer_id": viewer_id, "autoload": autoload},
    )
    assert response.status_code == 201
    return response.json()


class TestHealth:
    """Tests for health endpoints."""

    async def test_health(self, async_client):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "feed-api"}

    async def test_detailed_health(self, async_client):
        response = await async_client.get("/health/detailed")
        data = response.json()

        assert data["status"] == "healthy"
        assert data["checks"]["store"]["status"] == "connected"
        assert data["checks"]["sessions"] == {"sessions": 0, "expired": 0}

    async def test_detailed_health_degraded(self, async_client, seeded_store):
        seeded_store.fail_lists["feed_posts"] = ConnectionError("refused")

        data = (await async_client.get("/health/detailed")).json()

        assert data["status"] == "degraded"
        assert data["checks"]["store"]["status"] == "error"

    async def test_ready_and_live(self, async_client):
        assert (await async_client.get("/ready")).json() == {"status": "ready"}
        assert (await async_client.get("/live")).json() == {"status": "alive"}

    async def test_request_id_header(self, async_client):
        response = await async_client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestSessions:
    """Tests for the feed session lifecycle."""

    async def test_create_with_autoload(self, async_client):
        data = await open_session(async_client)

        assert data["session_id"].startswith("sess_")
        assert data["status"] == "ready"
        assert len(data["items"]) == 16
        assert data["items"][0]["id"] == "p00"
        assert data["has_more"] is True
        assert data["swipes_remaining"] == 100

    async def test_create_without_autoload(self, async_client):
        data = await open_session(async_client, autoload=False)

        assert data["status"] == "idle"
        assert data["items"] == []

        response = await async_client.post(f"/api/feed/{data['session_id']}/load")
        assert response.json()["status"] == "ready"

    async def test_unknown_session(self, async_client):
        response = await async_client.get("/api/feed/sess_0000")
        assert response.status_code == 404

    async def test_load_twice_conflicts(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.post(f"/api/feed/{session_id}/load")

        assert response.status_code == 409
        assert response.json()["error"] == "FeedStateError"

    async def test_more_and_refresh(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        more = (await async_client.post(f"/api/feed/{session_id}/more")).json()
        assert more["added"] == 13
        assert len(more["items"]) == 29

        refreshed = (await async_client.post(f"/api/feed/{session_id}/refresh")).json()
        assert len(refreshed["items"]) == 16

    async def test_close_session(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.delete(f"/api/feed/{session_id}")
        assert response.json() == {"closed": True, "session_id": session_id}

        assert (await async_client.get(f"/api/feed/{session_id}")).status_code == 404
        assert (await async_client.delete(f"/api/feed/{session_id}")).status_code == 404


class TestFailures:
    """Tests for error translation and retry."""

    async def test_unavailable_then_retry(self, async_client, seeded_store):
        session_id = (await open_session(async_client, autoload=False))["session_id"]
        for collection in ("feed_posts", "admin_content", "profiles"):
            seeded_store.fail_lists[collection] = ConnectionError("down")

        response = await async_client.post(f"/api/feed/{session_id}/load")
        assert response.status_code == 503

        notifications = (await async_client.get(f"/api/feed/{session_id}/notifications")).json()
        assert [n["kind"] for n in notifications["notifications"]] == ["error"]
        drained = (await async_client.get(f"/api/feed/{session_id}/notifications")).json()
        assert drained["notifications"] == []

        seeded_store.fail_lists.clear()
        response = await async_client.post(f"/api/feed/{session_id}/retry")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_failed_autoload_keeps_retryable_session(self, async_client, app, seeded_store):
        for collection in ("feed_posts", "admin_content", "profiles"):
            seeded_store.fail_lists[collection] = ConnectionError("down")

        data = await open_session(async_client)

        assert data["status"] == "error"
        assert data["items"] == []
        assert data["error"]
        assert app.state.sessions.session_ids() == [data["session_id"]]

        seeded_store.fail_lists.clear()
        response = await async_client.post(f"/api/feed/{data['session_id']}/retry")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert len(response.json()["items"]) == 16

        await async_client.delete(f"/api/feed/{data['session_id']}")
        assert len(app.state.sessions) == 0


class TestInteractionsAndMutations:
    """Tests for interactions, mutations and preferences."""

    async def test_record_interaction(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.post(
            f"/api/feed/{session_id}/interactions",
            json={"item_id": "p00", "kind": "like"},
        )

        data = response.json()
        assert data["accepted"] is True
        assert data["behavior"]["engagement_pattern"] == "high"
        assert data["behavior"]["preferred_content_kinds"] == ["image"]

    async def test_like_post(self, async_client, seeded_store):
        session_id = (await open_session(async_client))["session_id"]

        data = (await async_client.post(
            f"/api/feed/{session_id}/mutations",
            json={"kind": "like", "item_id": "p00"},
        )).json()

        assert data["applied"] is True
        assert data["mutation"]["source_kind"] == "post"
        snapshot = (await async_client.get(f"/api/feed/{session_id}")).json()
        assert snapshot["items"][0]["like_count"] == 1
        assert snapshot["items"][0]["liked"] is True

    async def test_pass_profile(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        data = (await async_client.post(
            f"/api/feed/{session_id}/mutations",
            json={"kind": "pass", "item_id": "u0"},
        )).json()

        assert data["swipes_remaining"] == 99
        snapshot = (await async_client.get(f"/api/feed/{session_id}")).json()
        assert "u0" not in [item["id"] for item in snapshot["items"]]

    async def test_share_unknown_item(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.post(
            f"/api/feed/{session_id}/mutations",
            json={"kind": "share", "item_id": "nope"},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "ItemNotFoundError"

    async def test_invalid_mutation_kind(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.post(
            f"/api/feed/{session_id}/mutations",
            json={"kind": "repost", "item_id": "p00"},
        )
        assert response.status_code == 422

    async def test_update_preferences(self, async_client, seeded_store):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.post(
            f"/api/feed/{session_id}/preferences",
            json={"diversity_preference": 0.8},
        )

        assert response.json()["status"] == "ready"
        collection, record, on_conflict = seeded_store.upserts[-1]
        assert collection == "user_feed_preferences"
        assert record["diversity_preference"] == 0.8
        assert record["user_id"] == "viewer-1"
        assert on_conflict == "user_id"


class TestQuota:
    """Tests for the daily swipe limit over HTTP."""

    @pytest.fixture
    def app(self, seeded_store, clock):
        from api.app import create_app
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing(
            feed_realtime_enabled=False,
            feed_retry_base_delay_seconds=0,
            feed_daily_swipe_limit=0,
        )
        return create_app(settings=settings, store=seeded_store, clock=clock)

    async def test_swipe_over_limit(self, async_client):
        session_id = (await open_session(async_client))["session_id"]

        response = await async_client.post(
            f"/api/feed/{session_id}/mutations",
            json={"kind": "pass", "item_id": "u0"},
        )

        assert response.status_code == 429
        assert response.json()["error"] == "QuotaExceededError"

"""
Unit tests for the feed session manager.
"""

import pytest


@pytest.fixture
def manager(clock):
    from services.session_manager import FeedSessionManager
    return FeedSessionManager(ttl_seconds=60, clock=clock)


class TestSessions:
    """Tests for session registry behavior."""

    def test_add_and_get(self, manager, build_controller, store):
        controller = build_controller(store)

        session_id = manager.add(controller)

        assert session_id.startswith("sess_")
        assert manager.get(session_id) is controller
        assert len(manager) == 1

    def test_unknown_session(self, manager):
        assert manager.get("sess_missing") is None

    def test_access_extends_ttl(self, manager, build_controller, store, clock):
        session_id = manager.add(build_controller(store))

        clock.advance(50)
        assert manager.get(session_id) is not None
        clock.advance(50)
        assert manager.get(session_id) is not None

    async def test_expired_sessions_are_closed(self, manager, build_controller, store, clock):
        session_id = manager.add(build_controller(store))
        kept = manager.add(build_controller(store, viewer_id="viewer-2"))

        clock.advance(30)
        manager.get(kept)
        clock.advance(31)

        assert manager.get(session_id) is None
        assert manager.get_stats() == {"sessions": 2, "expired": 1}
        assert await manager.clear_expired() == 1
        assert manager.session_ids() == [kept]

    async def test_close_session(self, manager, build_controller, store):
        session_id = manager.add(build_controller(store), session_id="sess_fixed")

        assert await manager.close_session(session_id) is True
        assert await manager.close_session(session_id) is False

    async def test_close_all(self, manager, build_controller, store):
        manager.add(build_controller(store))
        manager.add(build_controller(store))

        await manager.close_all()

        assert len(manager) == 0


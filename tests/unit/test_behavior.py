"""
Unit tests for the behavior tracker.
"""

import pytest


@pytest.fixture
def tracker(clock):
    from feed.behavior import BehaviorTracker
    return BehaviorTracker(clock=clock)


def event(kind, item_id="p1"):
    from feed.models import InteractionEvent
    return InteractionEvent(item_id=item_id, kind=kind)


class TestRecordInteraction:
    """Tests for folding interactions into the profile."""

    def test_neutral_defaults(self, tracker, clock):
        profile = tracker.get_profile()
        assert profile.avg_scroll_interval_ms == 1000.0
        assert profile.engagement_pattern.value == "medium"
        assert profile.preferred_content_kinds == set()
        assert profile.last_active_at == clock.now

    def test_views_update_scroll_interval(self, tracker, clock):
        clock.advance(2)
        tracker.record_interaction(event("view"))
        clock.advance(2)
        profile = tracker.record_interaction(event("view"))

        # 4 seconds since window start over 2 views
        assert profile.avg_scroll_interval_ms == pytest.approx(2000.0)
        assert tracker.posts_viewed == 2

    def test_high_engagement(self, tracker):
        for _ in range(3):
            tracker.record_interaction(event("view"))
        profile = tracker.record_interaction(event("like"), content_kind="image")
        # 1/3 > 0.3
        assert profile.engagement_pattern.value == "high"

    def test_low_engagement(self, tracker):
        for _ in range(11):
            tracker.record_interaction(event("view"))
        profile = tracker.record_interaction(event("share"))
        # 1/11 < 0.1
        assert profile.engagement_pattern.value == "low"

    def test_medium_engagement(self, tracker):
        for _ in range(5):
            tracker.record_interaction(event("view"))
        profile = tracker.record_interaction(event("comment"))
        assert profile.engagement_pattern.value == "medium"

    def test_engagement_without_views(self, tracker):
        profile = tracker.record_interaction(event("like"))
        assert profile.engagement_pattern.value == "high"

    def test_engaged_kind_becomes_preferred(self, tracker):
        tracker.record_interaction(event("like"), content_kind="video")
        assert tracker.get_profile().preferred_content_kinds == {"video"}

    def test_skip_only_refreshes_activity(self, tracker, clock):
        clock.advance(30)
        profile = tracker.record_interaction(event("skip"))
        assert profile.last_active_at == clock.now
        assert tracker.posts_viewed == 0
        assert tracker.engagements == 0


class TestWindow:
    """Tests for the rolling 5-minute window."""

    def test_window_resets_after_five_minutes(self, tracker, clock):
        tracker.record_interaction(event("view"))
        tracker.record_interaction(event("like"), content_kind="image")

        clock.advance(301)
        tracker.get_profile()

        assert tracker.posts_viewed == 0
        assert tracker.engagements == 0
        assert tracker.get_profile().preferred_content_kinds == set()

    def test_window_kept_within_five_minutes(self, tracker, clock):
        tracker.record_interaction(event("view"))
        clock.advance(299)
        tracker.get_profile()
        assert tracker.posts_viewed == 1


class TestRefreshInterval:
    """Tests for the recommended refresh interval."""

    @pytest.mark.parametrize("idle_seconds,expected", [
        (0, 15_000),
        (59, 15_000),
        (61, 30_000),
        (299, 30_000),
        (301, 60_000),
        (3600, 60_000),
    ])
    def test_interval_by_recency(self, tracker, clock, idle_seconds, expected):
        tracker.record_interaction(event("view"))
        clock.advance(idle_seconds)
        assert tracker.get_recommended_refresh_interval_ms() == expected

    def test_recently_active(self, tracker, clock):
        tracker.record_interaction(event("view"))
        clock.advance(3)
        assert tracker.is_recently_active(5) is True
        clock.advance(3)
        assert tracker.is_recently_active(5) is False

"""
Viewer behavior tracking.

Maintains a rolling window of views and engagements for one feed session
and derives:
- average scroll interval (ms between viewed items)
- engagement pattern (high / medium / low)
- preferred content kinds (kinds the viewer engaged with)
- the recommended refresh interval, the single source of polling cadence

The window resets every 5 minutes so a single burst of activity cannot
skew the profile permanently. The reset is evaluated lazily against the
injected clock, so no timer task is needed.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from config.constants import DEFAULT_BEHAVIOR_CONFIG, BehaviorConfig
from core.logging import get_logger
from core.utils import utc_now
from feed.models import (
    EngagementPattern,
    InteractionEvent,
    InteractionKind,
    UserBehaviorProfile,
)


logger = get_logger(__name__)

ENGAGEMENT_KINDS = frozenset({
    InteractionKind.LIKE,
    InteractionKind.SHARE,
    InteractionKind.COMMENT,
})


class BehaviorTracker:
    """Rolling engagement profile of a single viewer session."""

    def __init__(
        self,
        config: BehaviorConfig = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or DEFAULT_BEHAVIOR_CONFIG
        self._clock = clock
        now = clock()
        self._profile = UserBehaviorProfile(
            avg_scroll_interval_ms=self.config.DEFAULT_SCROLL_INTERVAL_MS,
            last_active_at=now,
        )
        self._window_start = now
        self._posts_viewed = 0
        self._engagements = 0

    # =========================================================
    # Window management
    # =========================================================

    def reset_window(self) -> None:
        """Zero the rolling counters and forget content-kind preferences."""
        self._window_start = self._clock()
        self._posts_viewed = 0
        self._engagements = 0
        self._profile.preferred_content_kinds = set()

    def _maybe_reset_window(self, now: datetime) -> None:
        if (now - self._window_start).total_seconds() >= self.config.WINDOW_SECONDS:
            logger.debug(
                "Behavior window reset",
                posts_viewed=self._posts_viewed,
                engagements=self._engagements,
            )
            self.reset_window()

    # =========================================================
    # Recording
    # =========================================================

    def record_interaction(
        self,
        event: InteractionEvent,
        content_kind: Optional[str] = None,
    ) -> UserBehaviorProfile:
        """
        Fold one interaction into the profile.

        Args:
            event: The interaction
            content_kind: Content kind of the item interacted with, if known

        Returns:
            The updated profile
        """
        now = self._clock()
        self._maybe_reset_window(now)
        profile = self._profile

        if event.kind == InteractionKind.VIEW:
            self._posts_viewed += 1
            elapsed_ms = (now - self._window_start).total_seconds() * 1000.0
            profile.avg_scroll_interval_ms = elapsed_ms / self._posts_viewed
        elif event.kind in ENGAGEMENT_KINDS:
            self._engagements += 1
            rate = self._engagements / max(self._posts_viewed, 1)
            profile.engagement_pattern = self._classify(rate)
            if content_kind:
                profile.preferred_content_kinds.add(content_kind)

        profile.last_active_at = now
        return profile

    def _classify(self, rate: float) -> EngagementPattern:
        if rate > self.config.HIGH_ENGAGEMENT_RATE:
            return EngagementPattern.HIGH
        if rate < self.config.LOW_ENGAGEMENT_RATE:
            return EngagementPattern.LOW
        return EngagementPattern.MEDIUM

    # =========================================================
    # Queries
    # =========================================================

    def get_profile(self) -> UserBehaviorProfile:
        """Current profile (window reset applied first)."""
        self._maybe_reset_window(self._clock())
        return self._profile

    def get_recommended_refresh_interval_ms(self) -> int:
        """Advisory polling cadence based on how recently the viewer was active."""
        cfg = self.config
        idle = self._clock() - self._profile.last_active_at
        if idle < timedelta(seconds=cfg.VERY_ACTIVE_WITHIN_SECONDS):
            return cfg.VERY_ACTIVE_REFRESH_MS
        if idle < timedelta(seconds=cfg.ACTIVE_WITHIN_SECONDS):
            return cfg.ACTIVE_REFRESH_MS
        return cfg.IDLE_REFRESH_MS

    def is_recently_active(self, within_seconds: float) -> bool:
        idle = self._clock() - self._profile.last_active_at
        return idle.total_seconds() < within_seconds

    @property
    def posts_viewed(self) -> int:
        return self._posts_viewed

    @property
    def engagements(self) -> int:
        return self._engagements

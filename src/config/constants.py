"""
Application constants and algorithm configuration.

These are values that don't change based on environment but may need
to be tuned or referenced across the codebase. Environment-dependent
knobs (TTLs, timeouts, limits) live in config.settings instead.
"""

from dataclasses import dataclass, field
from typing import Dict


# =============================================================================
# Content Scoring
# =============================================================================

@dataclass(frozen=True)
class ScoringConfig:
    """Weights and multipliers of the multi-factor content score."""

    # engagement = min(cap, likes*L + comments*C + shares*S + views*V)
    LIKE_WEIGHT: float = 1.0
    COMMENT_WEIGHT: float = 3.0
    SHARE_WEIGHT: float = 5.0
    VIEW_WEIGHT: float = 0.1
    ENGAGEMENT_CAP: float = 100.0

    # freshness = max(0, FRESHNESS_MAX - age_days)
    FRESHNESS_MAX: float = 100.0

    # diversity: unpreferred content kinds are boosted
    DIVERSITY_NOVEL: float = 100.0
    DIVERSITY_FAMILIAR: float = 50.0

    # personalization
    PERSONALIZED_BASE: float = 50.0
    PERSONALIZED_BOOST: float = 0.3

    # final blend
    FINAL_WEIGHTS: Dict[str, float] = field(default_factory=lambda: {
        "engagement": 0.3,
        "freshness": 0.4,
        "diversity": 0.2,
        "personalized": 0.1,
    })


DEFAULT_SCORING_CONFIG = ScoringConfig()


# =============================================================================
# Behavior Tracking
# =============================================================================

@dataclass(frozen=True)
class BehaviorConfig:
    """Thresholds for engagement classification and adaptive cadence."""

    HIGH_ENGAGEMENT_RATE: float = 0.3
    LOW_ENGAGEMENT_RATE: float = 0.1

    # Rolling window reset period
    WINDOW_SECONDS: float = 300.0

    # Neutral default before any views are recorded
    DEFAULT_SCROLL_INTERVAL_MS: float = 1000.0

    # Recommended refresh interval by recency of activity
    VERY_ACTIVE_WITHIN_SECONDS: float = 60.0
    ACTIVE_WITHIN_SECONDS: float = 300.0
    VERY_ACTIVE_REFRESH_MS: int = 15_000
    ACTIVE_REFRESH_MS: int = 30_000
    IDLE_REFRESH_MS: int = 60_000


DEFAULT_BEHAVIOR_CONFIG = BehaviorConfig()


# =============================================================================
# Content Mixing
# =============================================================================

@dataclass(frozen=True)
class MixerConfig:
    """Injection cadence and quality floor for secondary content."""

    INJECTION_INTERVALS: Dict[str, int] = field(default_factory=lambda: {
        "high": 4,
        "medium": 6,
        "low": 8,
    })

    # Secondary items must score strictly above this to be injected
    QUALITY_FLOOR: float = 30.0

    # Secondary sources fetch ceil(page_size * ratio) items per page
    SECONDARY_PAGE_RATIO: float = 0.3


DEFAULT_MIXER_CONFIG = MixerConfig()


# =============================================================================
# Realtime
# =============================================================================

@dataclass(frozen=True)
class RealtimeConfig:
    """Resubscription backoff for dropped realtime channels."""

    RESUBSCRIBE_BASE_DELAY_SECONDS: float = 1.0
    RESUBSCRIBE_MAX_DELAY_SECONDS: float = 30.0


DEFAULT_REALTIME_CONFIG = RealtimeConfig()


# =============================================================================
# Notification copy
# =============================================================================

NEW_CONTENT_MESSAGE = "New content available. Pull to refresh."
FEED_UNAVAILABLE_MESSAGE = "Unable to load feed. Please check your connection and try again."
LIKE_FAILED_MESSAGE = "Could not like the post. Please try again."
SHARE_FAILED_MESSAGE = "Could not share the post. Please try again."
SWIPE_FAILED_MESSAGE = "Failed to record your swipe. Please try again."

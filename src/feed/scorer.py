"""
Multi-factor content scorer.

Score formula (all components in [0, 100]):

    engagement   = min(100, likes*1 + comments*3 + shares*5 + views*0.1)
    freshness    = max(0, 100 - age_days)
    diversity    = 100 if the item's content kind is NOT preferred, else 50
    personalized = 50 (+ engagement*0.3 if pattern=high,
                       + freshness*0.3  if pattern=low)

    final = engagement*0.3 + freshness*0.4 + diversity*0.2 + personalized*0.1

The scorer is a pure function of (item, now, behavior): no hidden state,
no randomness. Items past the freshness horizon stay rankable with a
low weight; they are never excluded.
"""

from datetime import datetime
from typing import List, Sequence, Tuple

from config.constants import DEFAULT_SCORING_CONFIG, ScoringConfig
from feed.models import ContentScore, EngagementPattern, FeedItem, UserBehaviorProfile


SECONDS_PER_DAY = 86_400.0


class ContentScorer:
    """Deterministic relevance scorer for feed items."""

    def __init__(self, config: ScoringConfig = None):
        self.config = config or DEFAULT_SCORING_CONFIG

    def engagement_score(self, item: FeedItem) -> float:
        cfg = self.config
        raw = (
            item.like_count * cfg.LIKE_WEIGHT
            + item.comment_count * cfg.COMMENT_WEIGHT
            + item.share_count * cfg.SHARE_WEIGHT
            + item.view_count * cfg.VIEW_WEIGHT
        )
        return min(cfg.ENGAGEMENT_CAP, max(0.0, raw))

    def freshness_score(self, item: FeedItem, now: datetime) -> float:
        # Future timestamps (clock skew) count as brand new
        age_days = max(0.0, (now - item.created_at).total_seconds() / SECONDS_PER_DAY)
        return max(0.0, self.config.FRESHNESS_MAX - age_days)

    def diversity_score(self, item: FeedItem, behavior: UserBehaviorProfile) -> float:
        if item.content_kind in behavior.preferred_content_kinds:
            return self.config.DIVERSITY_FAMILIAR
        return self.config.DIVERSITY_NOVEL

    def personalized_score(
        self,
        engagement: float,
        freshness: float,
        behavior: UserBehaviorProfile,
    ) -> float:
        cfg = self.config
        score = cfg.PERSONALIZED_BASE
        if behavior.engagement_pattern == EngagementPattern.HIGH:
            score += engagement * cfg.PERSONALIZED_BOOST
        elif behavior.engagement_pattern == EngagementPattern.LOW:
            score += freshness * cfg.PERSONALIZED_BOOST
        return score

    def score(
        self,
        item: FeedItem,
        now: datetime,
        behavior: UserBehaviorProfile,
    ) -> ContentScore:
        """
        Score a single item.

        Args:
            item: Feed item to score
            now: Reference time for freshness
            behavior: Current viewer behavior profile

        Returns:
            ContentScore with every component and the weighted final score
        """
        weights = self.config.FINAL_WEIGHTS
        engagement = self.engagement_score(item)
        freshness = self.freshness_score(item, now)
        diversity = self.diversity_score(item, behavior)
        personalized = self.personalized_score(engagement, freshness, behavior)

        final = (
            engagement * weights["engagement"]
            + freshness * weights["freshness"]
            + diversity * weights["diversity"]
            + personalized * weights["personalized"]
        )

        return ContentScore(
            item_id=item.id,
            engagement_score=engagement,
            freshness_score=freshness,
            diversity_score=diversity,
            personalized_score=personalized,
            final_score=final,
        )

    def rank(
        self,
        items: Sequence[FeedItem],
        now: datetime,
        behavior: UserBehaviorProfile,
    ) -> List[Tuple[FeedItem, ContentScore]]:
        """
        Rank items into a total order.

        Sorted by final score (desc), then created_at (desc), then feed_key
        so equal items always come out in the same order.
        """
        scored = [(item, self.score(item, now, behavior)) for item in items]
        scored.sort(key=lambda pair: pair[0].feed_key)
        scored.sort(
            key=lambda pair: (pair[1].final_score, pair[0].created_at),
            reverse=True,
        )
        return scored

    def rank_items(
        self,
        items: Sequence[FeedItem],
        now: datetime,
        behavior: UserBehaviorProfile,
    ) -> List[FeedItem]:
        """Same as rank() without the scores."""
        return [item for item, _ in self.rank(items, now, behavior)]

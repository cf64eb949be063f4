"""
Content mixer: splices secondary content into the ranked primary stream.

Algorithm:
1. Arrange the secondary stream round-robin across owners, so one creator
   cannot monopolize injected slots (owners in first-appearance order,
   each owner's items in input order). Only items above the quality floor
   use up an owner's turn.
2. Walk the primary stream; after every k-th primary item take the next
   secondary candidate:
   - inject it if its final score is above the quality floor
   - otherwise discard it; the next candidate gets the next slot
   k is 4 for high engagement, 8 for low, 6 otherwise.
3. When primary runs out, append the remaining qualifying secondary
   items in rotation order. When secondary runs out, the rest of primary
   follows unchanged.

Low-quality background content is never forced into the stream to fill
a slot, and primary ordering is never changed.
"""

from collections import OrderedDict, deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Sequence

from config.constants import DEFAULT_MIXER_CONFIG, MixerConfig
from core.logging import get_logger
from feed.models import EngagementPattern, FeedItem, UserBehaviorProfile
from feed.scorer import ContentScorer


logger = get_logger(__name__)


def rotate_by_owner(
    items: Sequence[FeedItem],
    qualifies: Optional[Callable[[FeedItem], bool]] = None,
) -> List[FeedItem]:
    """
    Interleave items round-robin across distinct owner_ids.

    Owners A, A, B, C, A come out as A1, B1, C1, A2, A3.

    With ``qualifies``, only qualifying items use up an owner's turn: items
    failing it are emitted ahead of their owner's next qualifying item.
    """
    queues: "OrderedDict[str, Deque[FeedItem]]" = OrderedDict()
    for item in items:
        queues.setdefault(item.owner_id, deque()).append(item)

    rotated: List[FeedItem] = []
    while queues:
        for owner in list(queues.keys()):
            queue = queues[owner]
            while queue:
                item = queue.popleft()
                rotated.append(item)
                if qualifies is None or qualifies(item):
                    break
            if not queue:
                del queues[owner]
    return rotated


class ContentMixer:
    """Interleaves a ranked primary stream with a secondary stream."""

    def __init__(self, scorer: ContentScorer = None, config: MixerConfig = None):
        self.scorer = scorer or ContentScorer()
        self.config = config or DEFAULT_MIXER_CONFIG

    def injection_interval(self, behavior: UserBehaviorProfile) -> int:
        pattern = EngagementPattern(behavior.engagement_pattern)
        return self.config.INJECTION_INTERVALS[pattern.value]

    def _qualifies(
        self,
        item: FeedItem,
        now: datetime,
        behavior: UserBehaviorProfile,
    ) -> bool:
        score = self.scorer.score(item, now, behavior)
        if score.final_score > self.config.QUALITY_FLOOR:
            return True
        logger.debug(
            "Secondary item below quality floor",
            item_key=item.feed_key,
            final_score=round(score.final_score, 2),
        )
        return False

    def mix(
        self,
        primary: Sequence[FeedItem],
        secondary: Sequence[FeedItem],
        behavior: UserBehaviorProfile,
        now: datetime,
    ) -> List[FeedItem]:
        """
        Build one interleaved sequence.

        Args:
            primary: Ranked primary items (order is preserved)
            secondary: Ranked secondary items (promoted content, profiles)
            behavior: Viewer behavior (drives cadence and scoring)
            now: Reference time for scoring

        Returns:
            Mixed list of feed items
        """
        interval = self.injection_interval(behavior)
        quality: Dict[str, bool] = {
            item.feed_key: self._qualifies(item, now, behavior) for item in secondary
        }
        candidates = deque(rotate_by_owner(secondary, lambda item: quality[item.feed_key]))
        result: List[FeedItem] = []
        injected = 0
        discarded = 0

        for position, item in enumerate(primary, start=1):
            result.append(item)
            if position % interval != 0 or not candidates:
                continue
            candidate = candidates.popleft()
            if quality[candidate.feed_key]:
                result.append(candidate)
                injected += 1
            else:
                discarded += 1

        for candidate in candidates:
            if quality[candidate.feed_key]:
                result.append(candidate)
                injected += 1
            else:
                discarded += 1

        logger.debug(
            "Feed mixed",
            primary=len(primary),
            secondary=len(secondary),
            injected=injected,
            discarded=discarded,
            interval=interval,
        )
        return result

"""
Feed engine.

Ranks, mixes and delivers a personalized feed of posts, promoted content
and discovery profiles for one scrolling viewer.

Components (leaf first):
- ContentScorer:        item + now + behavior -> multi-factor score
- BehaviorTracker:      rolling engagement profile and refresh cadence
- ContentMixer:         weaves secondary content into the ranked posts
- FeedCache:            TTL page cache with single-flight fetches
- FeedSource:           one adapter per remote collection
- MutationCoordinator:  optimistic like / share / swipe with rollback
- RealtimeInvalidator:  change notifications -> prompt or silent refresh
- FeedController:       orchestration and state machine
"""

from feed.behavior import BehaviorTracker
from feed.cache import FeedCache
from feed.controller import FeedController
from feed.errors import (
    FeedError,
    FeedStateError,
    ItemNotFoundError,
    MutationError,
    PageLoadError,
    QuotaExceededError,
    SourceFetchError,
    SubscriptionError,
)
from feed.factory import create_feed_controller
from feed.mixer import ContentMixer
from feed.models import (
    ContentKind,
    ContentScore,
    DiscoveryProfile,
    FeedItem,
    FeedStatus,
    InteractionEvent,
    MutationKind,
    Post,
    PromotedContent,
    UserBehaviorProfile,
)
from feed.mutations import MutationCoordinator, SwipeQuota
from feed.realtime import RealtimeInvalidator
from feed.scorer import ContentScorer
from feed.sources import FeedSource, FeedSourceSet

__all__ = [
    "BehaviorTracker",
    "ContentKind",
    "ContentMixer",
    "ContentScore",
    "ContentScorer",
    "DiscoveryProfile",
    "FeedCache",
    "FeedController",
    "FeedError",
    "FeedItem",
    "FeedSource",
    "FeedSourceSet",
    "FeedStateError",
    "FeedStatus",
    "InteractionEvent",
    "ItemNotFoundError",
    "MutationCoordinator",
    "MutationError",
    "MutationKind",
    "PageLoadError",
    "Post",
    "PromotedContent",
    "QuotaExceededError",
    "RealtimeInvalidator",
    "SourceFetchError",
    "SubscriptionError",
    "SwipeQuota",
    "UserBehaviorProfile",
    "create_feed_controller",
]

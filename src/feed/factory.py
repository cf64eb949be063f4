"""
Feed controller factory.

Wires sources, cache, notifier and quota for one viewer from Settings.
The viewer's swipe usage for today and their blocked-owner list are
fetched once here; the session keeps them in memory afterwards.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from config.settings import Settings
from core.logging import get_logger
from core.utils import utc_now
from feed.cache import FeedCache
from feed.controller import FeedController
from feed.mutations import SwipeQuota
from feed.notifications import Notifier, QueueNotifier
from feed.sources import FeedSource, FeedSourceSet, default_source_definitions
from feed.store import EQ, GT, QueryFilter, RemoteStore


logger = get_logger(__name__)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


async def count_swipes_today(
    store: RemoteStore,
    viewer_id: str,
    collection: str,
    limit: int,
    now: datetime,
) -> int:
    """Number of swipes the viewer made since midnight UTC (capped at ``limit``)."""
    if limit <= 0:
        return 0
    result = await store.list_records(
        collection,
        filters=[
            QueryFilter("user_id", EQ, viewer_id),
            QueryFilter("created_at", GT, (start_of_day(now) - timedelta(microseconds=1)).isoformat()),
        ],
        limit=limit,
    )
    return len(result.items)


async def fetch_blocked_owner_ids(
    store: RemoteStore,
    viewer_id: str,
    collection: str,
    limit: int = 1000,
) -> List[str]:
    result = await store.list_records(
        collection,
        filters=[QueryFilter("user_id", EQ, viewer_id)],
        limit=limit,
    )
    return [str(row["blocked_user_id"]) for row in result.items if row.get("blocked_user_id")]


def build_source_set(
    viewer_id: str,
    store: RemoteStore,
    cache: FeedCache,
    settings: Settings,
) -> FeedSourceSet:
    definitions = default_source_definitions(
        viewer_id,
        posts_collection=settings.feed_posts_collection,
        promoted_collection=settings.feed_promoted_collection,
        profiles_collection=settings.feed_profiles_collection,
    )
    return FeedSourceSet({
        kind: FeedSource(
            definition,
            store,
            cache=cache,
            timeout_seconds=settings.feed_source_timeout_seconds,
        )
        for kind, definition in definitions.items()
    })


async def create_feed_controller(
    viewer_id: str,
    store: RemoteStore,
    settings: Settings,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FeedController:
    """
    Build a fully wired FeedController for one viewer.

    Args:
        viewer_id: The viewing user
        store: Remote store (SupabaseStore in production)
        settings: Application settings (feed tunables, collection names)
        notifier: Notification sink (defaults to a QueueNotifier)
        clock: Time source

    Returns:
        FeedController in the ``idle`` state
    """
    cache = FeedCache(
        ttl_seconds=settings.feed_cache_ttl_seconds,
        fetch_attempts=settings.feed_source_fetch_attempts,
        retry_base_delay=settings.feed_retry_base_delay_seconds,
        clock=clock,
    )
    sources = build_source_set(viewer_id, store, cache, settings)

    used = await count_swipes_today(
        store,
        viewer_id,
        settings.feed_swipes_collection,
        settings.feed_daily_swipe_limit,
        clock(),
    )
    blocked = await fetch_blocked_owner_ids(store, viewer_id, settings.feed_blocks_collection)

    logger.info(
        "Feed controller created",
        viewer_id=viewer_id,
        swipes_used=used,
        blocked_owners=len(blocked),
    )
    return FeedController(
        viewer_id,
        sources,
        cache,
        store,
        notifier or QueueNotifier(),
        quota=SwipeQuota(limit=settings.feed_daily_swipe_limit, used=used),
        blocked_owner_ids=blocked,
        page_size=settings.feed_page_size,
        page_load_attempts=settings.feed_page_load_attempts,
        retry_base_delay=settings.feed_retry_base_delay_seconds,
        interaction_quiet_seconds=settings.feed_interaction_quiet_seconds,
        realtime_enabled=settings.feed_realtime_enabled,
        realtime_debounce_seconds=settings.feed_realtime_debounce_seconds,
        preferences_collection=settings.feed_preferences_collection,
        interactions_collection=settings.feed_interactions_collection,
        swipes_collection=settings.feed_swipes_collection,
        clock=clock,
    )

"""
Feed controller: orchestration and state machine of one feed session.

States:

    idle --load--> loading --> ready
    ready --load_more--> loading_more --> ready
    ready --refresh--> refreshing --> ready
    any load that fails every attempt --> error --retry--> loading/refreshing

Operations are serialized through an asyncio.Lock. A refresh bumps the
session generation before waiting for the lock, so whatever operation is
in flight discards its result when it completes and the refresh runs
right after it.

Data flow per page:
    FeedSourceSet (3 sources in parallel, each through FeedCache)
      -> ContentScorer ranks the primary and the secondary stream
      -> ContentMixer interleaves them
      -> FeedState (dedup against the seen set and swipe exclusions)
"""

import asyncio
import math
from datetime import datetime
from typing import Any, Awaitable, Callable, Collection, Dict, List, Optional

from config.constants import (
    DEFAULT_MIXER_CONFIG,
    FEED_UNAVAILABLE_MESSAGE,
    NEW_CONTENT_MESSAGE,
    MixerConfig,
)
from core.logging import LoggerMixin
from core.utils import coerce_count, utc_now
from feed.behavior import BehaviorTracker
from feed.cache import FeedCache
from feed.errors import FeedStateError, ItemNotFoundError, PageLoadError
from feed.mixer import ContentMixer
from feed.models import (
    ContentKind,
    FeedItem,
    FeedStatus,
    InteractionEvent,
    InteractionKind,
    MutationKind,
    NotificationKind,
    PendingMutation,
)
from feed.mutations import MutationCoordinator, SwipeQuota
from feed.notifications import Notifier
from feed.realtime import RealtimeInvalidator
from feed.scorer import ContentScorer
from feed.sources import FeedSourceSet, SourceBatch, SourceRequest
from feed.state import FeedState
from feed.store import RemoteStore


SECONDARY_KINDS = (ContentKind.PROMOTED, ContentKind.PROFILE)

_COUNTER_COLUMNS = ("view_count", "like_count", "share_count", "comment_count")

_INTERACTION_FOR_MUTATION = {
    MutationKind.LIKE: InteractionKind.LIKE,
    MutationKind.SHARE: InteractionKind.SHARE,
    MutationKind.PASS: InteractionKind.SKIP,
}


class _Superseded(Exception):
    """A refresh started while this operation was in flight."""


class FeedController(LoggerMixin):
    """Public surface of the feed engine for one viewer."""

    def __init__(
        self,
        viewer_id: str,
        sources: FeedSourceSet,
        cache: FeedCache,
        store: RemoteStore,
        notifier: Notifier,
        scorer: Optional[ContentScorer] = None,
        tracker: Optional[BehaviorTracker] = None,
        mixer_config: Optional[MixerConfig] = None,
        quota: Optional[SwipeQuota] = None,
        blocked_owner_ids: Collection[str] = (),
        excluded_profile_ids: Collection[str] = (),
        page_size: int = 10,
        page_load_attempts: int = 3,
        retry_base_delay: float = 1.0,
        interaction_quiet_seconds: float = 5.0,
        realtime_enabled: bool = True,
        realtime_debounce_seconds: float = 2.0,
        preferences_collection: str = "user_feed_preferences",
        interactions_collection: str = "user_interactions",
        swipes_collection: str = "swipes",
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.viewer_id = viewer_id
        self.sources = sources
        self.cache = cache
        self.store = store
        self.notifier = notifier
        self.scorer = scorer or ContentScorer()
        self.tracker = tracker or BehaviorTracker(clock=clock)
        self.mixer_config = mixer_config or DEFAULT_MIXER_CONFIG
        self.mixer = ContentMixer(self.scorer, self.mixer_config)

        self.state = FeedState(
            viewer_id=viewer_id,
            blocked_owner_ids=set(blocked_owner_ids),
            excluded_profile_ids=set(excluded_profile_ids),
        )
        self.mutations = MutationCoordinator(
            store,
            self.state,
            notifier,
            collections={kind: sources.definition(kind).collection for kind in sources.sources},
            quota=quota,
            interactions_collection=interactions_collection,
            swipes_collection=swipes_collection,
            clock=clock,
        )

        self.page_size = page_size
        self.page_load_attempts = max(1, page_load_attempts)
        self.retry_base_delay = retry_base_delay
        self.interaction_quiet_seconds = interaction_quiet_seconds
        self.realtime_enabled = realtime_enabled
        self.realtime_debounce_seconds = realtime_debounce_seconds
        self.preferences_collection = preferences_collection

        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._failed_operation: Optional[str] = None
        self._last_interaction_at: Optional[datetime] = None
        self.realtime: Optional[RealtimeInvalidator] = None
        self._poller: Optional["asyncio.Task[None]"] = None

    # =========================================================
    # State
    # =========================================================

    @property
    def status(self) -> FeedStatus:
        return self.state.status

    @property
    def items(self) -> List[FeedItem]:
        return list(self.state.items)

    def _set_status(self, status: FeedStatus) -> None:
        if status != self.state.status:
            self.logger.debug("Feed state", previous=self.state.status.value, current=status.value)
        self.state.status = status

    @property
    def secondary_limit(self) -> int:
        return max(1, math.ceil(self.page_size * self.mixer_config.SECONDARY_PAGE_RATIO))

    def is_mid_interaction(self) -> bool:
        """Pending mutations, or an interaction within the quiet period."""
        if self.mutations.has_pending:
            return True
        if self._last_interaction_at is None:
            return False
        idle = (self._clock() - self._last_interaction_at).total_seconds()
        return idle < self.interaction_quiet_seconds

    # =========================================================
    # Loading
    # =========================================================

    async def load(self) -> List[FeedItem]:
        """
        Load the first page from every source.

        Raises:
            FeedStateError: If the feed was already loaded
            PageLoadError: If every attempt failed (state becomes ``error``)
        """
        if self.state.status != FeedStatus.IDLE:
            raise FeedStateError(f"Cannot load from state '{self.state.status.value}'")
        self._set_status(FeedStatus.LOADING)
        async with self._lock:
            return await self._run_first_page("load")

    async def load_more(self) -> List[FeedItem]:
        """
        Append the next page. No-op (returns []) while busy, before the
        first load, or once every source is exhausted.
        """
        if self._lock.locked() or self.state.status != FeedStatus.READY:
            return []
        if self.state.all_exhausted(self.sources.sources):
            return []

        async with self._lock:
            if self.state.status != FeedStatus.READY:
                return []
            self._set_status(FeedStatus.LOADING_MORE)
            return await self._run_next_page()

    async def refresh(self) -> List[FeedItem]:
        """
        Reload page one from scratch.

        Invalidates the cache and resets cursors and the seen set. Swipe
        exclusions survive. Supersedes any operation in flight.
        """
        if self.state.status == FeedStatus.IDLE:
            raise FeedStateError("Cannot refresh before the feed is loaded")
        self.state.bump_generation()
        self.cache.invalidate_all()
        async with self._lock:
            self._set_status(FeedStatus.REFRESHING)
            return await self._run_first_page("refresh")

    async def retry(self) -> List[FeedItem]:
        """Explicit user retry after the feed landed in ``error``."""
        if self.state.status != FeedStatus.ERROR:
            raise FeedStateError(f"Nothing to retry in state '{self.state.status.value}'")
        async with self._lock:
            if self._failed_operation == "load_more" and self.state.items:
                self._set_status(FeedStatus.LOADING_MORE)
                return await self._run_next_page()
            self._set_status(FeedStatus.REFRESHING if self.state.items else FeedStatus.LOADING)
            return await self._run_first_page(self._failed_operation or "load")

    async def _run_first_page(self, operation: str) -> List[FeedItem]:
        generation = self.state.generation
        try:
            batch = await self._fetch_with_retry(first_page=True, generation=generation)
        except _Superseded:
            return list(self.state.items)
        except PageLoadError:
            self._fail(operation)
            raise

        mixed = self._mix(batch)
        self.state.reset_pagination()
        for kind, page in batch.pages.items():
            self.state.record_page(kind, page)
        self.state.replace(self.mutations.rebase(mixed))
        self.state.pages_loaded = 1
        self._succeed()
        self.logger.info(
            "Feed page loaded",
            operation=operation,
            items=len(self.state.items),
            failed_sources=[kind.value for kind in batch.failures],
        )
        return list(self.state.items)

    async def _run_next_page(self) -> List[FeedItem]:
        generation = self.state.generation
        try:
            batch = await self._fetch_with_retry(first_page=False, generation=generation)
        except _Superseded:
            return []
        except PageLoadError:
            self._fail("load_more")
            raise

        mixed = self._mix(batch)
        for kind, page in batch.pages.items():
            self.state.record_page(kind, page)
        added = self.state.append(mixed)
        self.state.pages_loaded += 1
        self._succeed()
        self.logger.info(
            "Feed page appended",
            added=len(added),
            total=len(self.state.items),
            page=self.state.pages_loaded,
        )
        return added

    def _succeed(self) -> None:
        self._failed_operation = None
        self.state.last_error = None
        self._set_status(FeedStatus.READY)

    def _fail(self, operation: str) -> None:
        self._failed_operation = operation
        self.state.last_error = FEED_UNAVAILABLE_MESSAGE
        self._set_status(FeedStatus.ERROR)
        self.notifier.notify(FEED_UNAVAILABLE_MESSAGE, NotificationKind.ERROR)

    async def _fetch_with_retry(self, first_page: bool, generation: int) -> SourceBatch:
        last_error: Optional[PageLoadError] = None
        for attempt in range(1, self.page_load_attempts + 1):
            try:
                batch = await self._fetch(first_page)
            except PageLoadError as e:
                last_error = e
                self.logger.warning(
                    "Page load failed",
                    attempt=attempt,
                    max_attempts=self.page_load_attempts,
                    error=str(e),
                )
                if attempt < self.page_load_attempts:
                    await self._sleep(self.retry_base_delay * (2 ** (attempt - 1)))
            else:
                if generation != self.state.generation:
                    self.logger.info("Discarding superseded page", generation=generation)
                    raise _Superseded()
                return batch
            if generation != self.state.generation:
                raise _Superseded()
        raise last_error

    async def _fetch(self, first_page: bool) -> SourceBatch:
        requests: Dict[ContentKind, SourceRequest] = {}
        for kind in self.sources.sources:
            if not first_page and kind in self.state.exhausted:
                continue
            requests[kind] = SourceRequest(
                cursor=None if first_page else self.state.cursors.get(kind),
                limit=self.page_size if kind == ContentKind.POST else self.secondary_limit,
                exclude_ids=(
                    set(self.state.excluded_profile_ids) if kind == ContentKind.PROFILE else ()
                ),
            )
        return await self.sources.fetch_all(
            requests,
            exclude_owner_ids=set(self.state.blocked_owner_ids),
        )

    def _mix(self, batch: SourceBatch) -> List[FeedItem]:
        # Cached pages are shared; the session only mutates its own copies
        now = self._clock()
        behavior = self.tracker.get_profile()
        primary = [item.model_copy(deep=True) for item in batch.items(ContentKind.POST)]
        secondary = [
            item.model_copy(deep=True)
            for kind in SECONDARY_KINDS
            for item in batch.items(kind)
        ]
        return self.mixer.mix(
            self.scorer.rank_items(primary, now, behavior),
            self.scorer.rank_items(secondary, now, behavior),
            behavior,
            now,
        )

    # =========================================================
    # Interactions & mutations
    # =========================================================

    def record_interaction(self, event: InteractionEvent) -> None:
        """Forward an interaction to the behavior tracker. Never raises."""
        try:
            item = self.state.find(event.item_id)
            self.tracker.record_interaction(event, item.content_kind if item else None)
            self._last_interaction_at = self._clock()
        except Exception as e:
            self.logger.warning("Failed to record interaction", item_id=event.item_id, error=str(e))

    def apply_mutation(
        self,
        kind: MutationKind,
        item_id: str,
        super_like: bool = False,
        source_kind: Optional[ContentKind] = None,
    ) -> Optional[PendingMutation]:
        """
        Apply an optimistic like / share / pass.

        like and pass on a discovery profile are swipes; like and share on
        posts and promoted content update counters.

        Raises:
            QuotaExceededError: Daily swipe limit reached
            ItemNotFoundError: Target is not in the visible feed
        """
        kind = MutationKind(kind)
        profile = None
        if source_kind in (None, ContentKind.PROFILE):
            profile = self.state.find(item_id, kinds=[ContentKind.PROFILE])

        if kind == MutationKind.PASS or (profile is not None and kind == MutationKind.LIKE):
            mutation = self.mutations.apply_swipe(
                item_id,
                liked=kind == MutationKind.LIKE,
                is_super_like=super_like,
            )
        elif kind == MutationKind.LIKE:
            mutation = self.mutations.apply_like(item_id)
        elif profile is None:
            mutation = self.mutations.apply_share(item_id)
        else:
            raise ItemNotFoundError(item_id)

        self.record_interaction(
            InteractionEvent(
                item_id=item_id,
                kind=_INTERACTION_FOR_MUTATION[kind],
                occurred_at=self._clock(),
            )
        )
        return mutation

    def apply_remote_update(self, kind: ContentKind, record: Dict[str, Any]) -> bool:
        """Patch the counters of a visible item from a change notification."""
        record_id = record.get("id")
        if record_id is None:
            return False
        index = self.state.index_of(f"{ContentKind(kind).value}:{record_id}")
        if index is None:
            return False

        item = self.state.items[index]
        changed = False
        for column in _COUNTER_COLUMNS:
            if column in record:
                setattr(item, column, coerce_count(record[column]))
                changed = True
        if changed:
            self.mutations.rebase([item])
        return changed

    async def update_preferences(self, preferences: Dict[str, Any]) -> List[FeedItem]:
        """Persist the viewer's feed preferences and refresh the feed."""
        record = dict(preferences)
        record["user_id"] = self.viewer_id
        record["updated_at"] = self._clock().isoformat()
        await self.store.upsert(self.preferences_collection, record, on_conflict="user_id")
        self.logger.info("Feed preferences updated", fields=sorted(preferences))
        return await self.refresh()

    # =========================================================
    # Realtime & polling
    # =========================================================

    def prompt_new_content(self) -> None:
        self.notifier.notify(NEW_CONTENT_MESSAGE, NotificationKind.NEW_CONTENT)

    async def _silent_refresh(self) -> None:
        if self.state.status in (FeedStatus.IDLE, FeedStatus.LOADING):
            return
        try:
            await self.refresh()
        except PageLoadError as e:
            self.logger.info("Silent refresh failed", error=str(e))

    async def start(self) -> None:
        """Start realtime invalidation and the adaptive poller."""
        if self.realtime_enabled and self.realtime is None:
            self.realtime = RealtimeInvalidator(
                self.store,
                self.sources,
                on_prompt=self.prompt_new_content,
                on_refresh=self._silent_refresh,
                on_patch=self.apply_remote_update,
                is_mid_interaction=self.is_mid_interaction,
                debounce_seconds=self.realtime_debounce_seconds,
            )
            await self.realtime.start()
        if self._poller is None:
            self._poller = asyncio.ensure_future(self._poll_loop())

    async def close(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            await asyncio.gather(self._poller, return_exceptions=True)
            self._poller = None
        if self.realtime is not None:
            await self.realtime.stop()
            self.realtime = None
        await self.mutations.close()
        self.logger.info("Feed session closed", viewer_id=self.viewer_id)

    @property
    def is_live(self) -> bool:
        return self.realtime is not None and self.realtime.is_live

    async def _poll_loop(self) -> None:
        while True:
            interval_ms = self.tracker.get_recommended_refresh_interval_ms()
            await self._sleep(interval_ms / 1000.0)
            if self.is_live or self.state.status != FeedStatus.READY:
                continue
            try:
                await self.check_for_new_content()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning("New content check failed", error=str(e))

    async def check_for_new_content(self) -> bool:
        """Fetch page one of posts (bypassing the cache) and prompt if newer posts exist."""
        source = self.sources.sources.get(ContentKind.POST)
        if source is None:
            return False
        page = await source.fetch_page(
            None,
            self.page_size,
            exclude_owner_ids=set(self.state.blocked_owner_ids),
            use_cache=False,
        )
        visible = [item.created_at for item in self.state.items if item.source_kind == ContentKind.POST]
        newest = max(visible) if visible else None
        fresh = [
            item for item in page.items
            if item.feed_key not in self.state.seen_keys
            and (newest is None or item.created_at > newest)
        ]
        if fresh:
            self.logger.info("New posts detected by poller", count=len(fresh))
            self.prompt_new_content()
            return True
        return False

    # =========================================================
    # Introspection
    # =========================================================

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the session."""
        return {
            "status": self.state.status.value,
            "items": [item.model_dump(mode="json") for item in self.state.items],
            "has_more": not self.state.all_exhausted(self.sources.sources),
            "behavior": self.tracker.get_profile().model_dump(mode="json"),
            "pending_mutations": len(self.mutations.pending),
            "swipes_remaining": self.mutations.quota.remaining,
            "refresh_interval_ms": self.tracker.get_recommended_refresh_interval_ms(),
            "is_live": self.is_live,
            "error": self.state.last_error,
        }

"""
Optimistic mutations: like, share and profile swipes.

Every mutation follows the same protocol:
1. Apply the effect to the in-memory feed and record a PendingMutation.
2. Fire the remote write as a background task.
3. On success mark it committed and forget it.
4. On failure revert the exact effect, notify the viewer and forget it.

Swipes additionally maintain the session exclusion set (a swiped profile
never reappears, across pages and refreshes) and the daily swipe quota,
which is checked synchronously before anything else happens.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from config.constants import (
    LIKE_FAILED_MESSAGE,
    SHARE_FAILED_MESSAGE,
    SWIPE_FAILED_MESSAGE,
)
from core.logging import LoggerMixin
from core.utils import utc_now
from feed.errors import ItemNotFoundError, MutationError, QuotaExceededError
from feed.models import (
    ContentKind,
    FeedItem,
    MutationKind,
    NotificationKind,
    PendingMutation,
)
from feed.notifications import Notifier
from feed.state import FeedState
from feed.store import RemoteStore


CONTENT_KINDS = (ContentKind.POST, ContentKind.PROMOTED)

_COUNTER_FIELDS = {
    MutationKind.LIKE: "like_count",
    MutationKind.SHARE: "share_count",
}

_FAILURE_MESSAGES = {
    MutationKind.LIKE: LIKE_FAILED_MESSAGE,
    MutationKind.SHARE: SHARE_FAILED_MESSAGE,
    MutationKind.PASS: SWIPE_FAILED_MESSAGE,
}


class SwipeQuota:
    """Daily swipe allowance, seeded once per session with today's usage."""

    def __init__(self, limit: int = 100, used: int = 0):
        self.limit = limit
        self.used = max(0, used)

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def consume(self) -> None:
        if self.used >= self.limit:
            raise QuotaExceededError(self.limit, self.used)
        self.used += 1

    def release(self) -> None:
        self.used = max(0, self.used - 1)


class MutationCoordinator(LoggerMixin):
    """Applies optimistic mutations and reconciles them with the store."""

    def __init__(
        self,
        store: RemoteStore,
        state: FeedState,
        notifier: Notifier,
        collections: Dict[ContentKind, str],
        quota: Optional[SwipeQuota] = None,
        interactions_collection: str = "user_interactions",
        swipes_collection: str = "swipes",
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._state = state
        self._notifier = notifier
        self._collections = dict(collections)
        self.quota = quota or SwipeQuota()
        self._interactions_collection = interactions_collection
        self._swipes_collection = swipes_collection
        self._clock = clock
        self._pending: List[PendingMutation] = []
        self._tasks: Set["asyncio.Task[None]"] = set()

    # =========================================================
    # Public operations
    # =========================================================

    def apply_like(self, item_id: str) -> Optional[PendingMutation]:
        """Like a post or promoted item. Liking a liked item is a no-op."""
        item = self._require_content(item_id)
        if item.liked:
            self.logger.debug("Item already liked", item_key=item.feed_key)
            return None
        return self._apply_counter(item, MutationKind.LIKE)

    def apply_share(self, item_id: str) -> PendingMutation:
        """Share a post or promoted item. Shares are repeatable."""
        item = self._require_content(item_id)
        return self._apply_counter(item, MutationKind.SHARE)

    def apply_swipe(
        self,
        profile_id: str,
        liked: bool,
        is_super_like: bool = False,
    ) -> PendingMutation:
        """
        Swipe on a discovery profile.

        The profile leaves the visible feed immediately and joins the
        session exclusion set.

        Raises:
            QuotaExceededError: Daily limit reached (nothing is sent)
            ItemNotFoundError: Profile is not in the visible feed
        """
        self.quota.consume()
        item = self._state.find(profile_id, kinds=[ContentKind.PROFILE])
        if item is None:
            self.quota.release()
            raise ItemNotFoundError(profile_id)

        position = self._state.remove(item.feed_key)
        self._state.excluded_profile_ids.add(profile_id)
        item.passed = not liked
        item.liked = liked

        mutation = PendingMutation(
            item_id=profile_id,
            kind=MutationKind.LIKE if liked else MutationKind.PASS,
            applied_at=self._clock(),
            source_kind=ContentKind.PROFILE,
            position=position,
            is_super_like=is_super_like,
        )
        record = {
            "user_id": self._state.viewer_id,
            "target_user_id": profile_id,
            "liked": liked,
            "is_super_like": is_super_like,
        }

        async def write() -> None:
            await self._store.insert(self._swipes_collection, record)

        self._schedule(mutation, write, removed_item=item)
        self.logger.info(
            "Swipe applied",
            profile_id=profile_id,
            liked=liked,
            super_like=is_super_like,
            quota_remaining=self.quota.remaining,
        )
        return mutation

    @property
    def pending(self) -> List[PendingMutation]:
        return list(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    async def settle(self) -> None:
        """Wait until every background write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.settle()

    def rebase(self, items: Sequence[FeedItem]) -> List[FeedItem]:
        """
        Re-apply uncommitted optimistic effects to freshly fetched items.

        A counter effect is re-applied only if the fresh copy does not
        already reflect it (fresh count not above the pre-mutation count).
        Profiles with a pending swipe are dropped.
        """
        result = list(items)
        for mutation in self._pending:
            if mutation.committed:
                continue
            if mutation.source_kind == ContentKind.PROFILE:
                result = [item for item in result if item.feed_key != mutation.feed_key]
                continue
            field = _COUNTER_FIELDS[mutation.kind]
            for item in result:
                if item.feed_key != mutation.feed_key:
                    continue
                if mutation.kind == MutationKind.LIKE:
                    item.liked = True
                fresh_count = getattr(item, field)
                if mutation.previous_count is not None and fresh_count > mutation.previous_count:
                    mutation.effect_applied = False
                else:
                    setattr(item, field, fresh_count + 1)
                    mutation.effect_applied = True
        return result

    # =========================================================
    # Internals
    # =========================================================

    def _require_content(self, item_id: str) -> FeedItem:
        item = self._state.find(item_id, kinds=CONTENT_KINDS)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def _apply_counter(self, item: FeedItem, kind: MutationKind) -> PendingMutation:
        field = _COUNTER_FIELDS[kind]
        previous = getattr(item, field)
        setattr(item, field, previous + 1)
        if kind == MutationKind.LIKE:
            item.liked = True

        mutation = PendingMutation(
            item_id=item.id,
            kind=kind,
            applied_at=self._clock(),
            source_kind=item.source_kind,
            previous_count=previous,
        )
        collection = self._collections[item.source_kind]
        interaction = {
            "user_id": self._state.viewer_id,
            "post_id": item.id,
            "interaction_type": kind.value,
            "metadata": {"source_kind": item.source_kind.value},
        }

        async def write() -> None:
            await self._store.insert(self._interactions_collection, interaction)
            await self._store.update(collection, item.id, {field: previous + 1})

        self._schedule(mutation, write)
        self.logger.debug("Optimistic mutation applied", kind=kind.value, item_key=item.feed_key)
        return mutation

    def _schedule(
        self,
        mutation: PendingMutation,
        write: Callable[[], Awaitable[None]],
        removed_item: Optional[FeedItem] = None,
    ) -> None:
        self._pending.append(mutation)
        task = asyncio.ensure_future(self._commit(mutation, write, removed_item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _commit(
        self,
        mutation: PendingMutation,
        write: Callable[[], Awaitable[None]],
        removed_item: Optional[FeedItem],
    ) -> None:
        try:
            await write()
        except asyncio.CancelledError:
            self._forget(mutation)
            raise
        except Exception as e:
            error = MutationError(mutation.item_id, mutation.kind.value, e)
            self.logger.warning(
                "Mutation failed, rolling back",
                kind=mutation.kind.value,
                item_key=mutation.feed_key,
                error=str(error.cause),
            )
            self._rollback(mutation, removed_item)
            message = (
                SWIPE_FAILED_MESSAGE
                if mutation.source_kind == ContentKind.PROFILE
                else _FAILURE_MESSAGES[mutation.kind]
            )
            self._notifier.notify(message, NotificationKind.ERROR)
        else:
            mutation.committed = True
        self._forget(mutation)

    def _forget(self, mutation: PendingMutation) -> None:
        self._pending = [m for m in self._pending if m is not mutation]

    def _rollback(self, mutation: PendingMutation, removed_item: Optional[FeedItem]) -> None:
        if mutation.source_kind == ContentKind.PROFILE:
            self._state.excluded_profile_ids.discard(mutation.item_id)
            self.quota.release()
            if removed_item is not None:
                removed_item.liked = False
                removed_item.passed = False
                self._state.insert(
                    mutation.position if mutation.position is not None else 0,
                    removed_item,
                )
            return

        field = _COUNTER_FIELDS[mutation.kind]
        for item in self._state.items:
            if item.feed_key != mutation.feed_key:
                continue
            if mutation.kind == MutationKind.LIKE:
                item.liked = False
            if mutation.effect_applied:
                setattr(item, field, max(0, getattr(item, field) - 1))

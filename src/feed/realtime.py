"""
Realtime invalidation.

Subscribes to change notifications of every source collection and turns
them into one of four actions:

    post     INSERT                        -> prompt ("new content available")
    post     UPDATE                        -> patch counters of the visible item
    promoted INSERT/UPDATE becoming active -> silent refresh
    profile  INSERT                        -> prompt
    anything else                          -> ignored

A silent refresh degrades to a prompt while the viewer is mid-interaction.
Prompts and refreshes are debounced: the first one in a quiet period fires
immediately, later ones inside the window are coalesced into a single
trailing action (a refresh wins over a prompt).

Dropped channels are resubscribed silently with capped exponential
backoff; ``is_live`` is True only while every channel is subscribed.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from pydantic import ValidationError

from config.constants import DEFAULT_REALTIME_CONFIG, RealtimeConfig
from core.logging import LoggerMixin
from feed.errors import SubscriptionError
from feed.models import ChangeEvent, ChangeType, ContentKind
from feed.sources import FeedSourceSet
from feed.store import RemoteStore, Unsubscribe


class RealtimeAction(str, Enum):
    IGNORE = "ignore"
    PATCH = "patch"
    PROMPT = "prompt"
    REFRESH = "refresh"


def parse_change_event(collection: str, payload: Mapping[str, Any]) -> ChangeEvent:
    """Build a ChangeEvent from a raw store payload."""
    return ChangeEvent(
        collection=collection,
        event_type=ChangeType(str(payload.get("type", "")).upper()),
        record=dict(payload.get("record") or {}),
        old_record=dict(payload.get("old_record") or {}),
    )


class RealtimeInvalidator(LoggerMixin):
    """Maps change notifications to prompts, refreshes and in-place patches."""

    def __init__(
        self,
        store: RemoteStore,
        sources: FeedSourceSet,
        on_prompt: Callable[[], None],
        on_refresh: Callable[[], Awaitable[None]],
        on_patch: Callable[[ContentKind, Dict[str, Any]], None],
        is_mid_interaction: Callable[[], bool] = lambda: False,
        debounce_seconds: float = 2.0,
        config: RealtimeConfig = None,
    ):
        self._store = store
        self._sources = sources
        self._on_prompt = on_prompt
        self._on_refresh = on_refresh
        self._on_patch = on_patch
        self._is_mid_interaction = is_mid_interaction
        self._debounce = debounce_seconds
        self.config = config or DEFAULT_REALTIME_CONFIG

        self._unsubscribers: Dict[ContentKind, Unsubscribe] = {}
        self._live: Set[ContentKind] = set()
        self._resubscribing: Dict[ContentKind, "asyncio.Task[None]"] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._running = False

        self._last_fired_at: Optional[float] = None
        self._trailing: Optional["asyncio.Task[None]"] = None
        self._trailing_action: Optional[RealtimeAction] = None

    # =========================================================
    # Lifecycle
    # =========================================================

    async def start(self) -> None:
        """Subscribe to every source collection. Failed channels retry in the background."""
        if self._running:
            return
        self._running = True
        for kind in self._sources.sources:
            try:
                await self._subscribe(kind)
            except Exception as e:
                self._handle_channel_error(kind, e)

    async def stop(self) -> None:
        self._running = False
        pending = list(self._resubscribing.values()) + list(self._tasks)
        if self._trailing is not None:
            pending.append(self._trailing)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._resubscribing.clear()
        self._trailing = None
        self._trailing_action = None

        for kind, unsubscribe in list(self._unsubscribers.items()):
            try:
                await unsubscribe()
            except Exception as e:
                self.logger.warning("Unsubscribe failed", source=kind.value, error=str(e))
        self._unsubscribers.clear()
        self._live.clear()

    @property
    def is_live(self) -> bool:
        return self._running and bool(self._sources.sources) and self._live >= set(self._sources.sources)

    async def _subscribe(self, kind: ContentKind) -> None:
        collection = self._sources.definition(kind).collection
        try:
            unsubscribe = await self._store.subscribe(
                collection,
                on_event=lambda payload, kind=kind: self.handle_payload(kind, payload),
                on_error=lambda error, kind=kind: self._handle_channel_error(kind, error),
            )
        except Exception as e:
            raise SubscriptionError(collection, e) from e
        self._unsubscribers[kind] = unsubscribe
        self._live.add(kind)
        self.logger.info("Realtime channel subscribed", source=kind.value, collection=collection)

    # =========================================================
    # Resubscription
    # =========================================================

    def _handle_channel_error(self, kind: ContentKind, error: BaseException) -> None:
        self._live.discard(kind)
        if not self._running or kind in self._resubscribing:
            return
        self.logger.warning("Realtime channel dropped", source=kind.value, error=str(error))
        task = asyncio.ensure_future(self._resubscribe(kind))
        self._resubscribing[kind] = task
        task.add_done_callback(lambda _, kind=kind: self._resubscribing.pop(kind, None))

    async def _resubscribe(self, kind: ContentKind) -> None:
        cfg = self.config
        attempt = 0
        while self._running:
            delay = min(
                cfg.RESUBSCRIBE_MAX_DELAY_SECONDS,
                cfg.RESUBSCRIBE_BASE_DELAY_SECONDS * (2 ** attempt),
            )
            attempt += 1
            await asyncio.sleep(delay)

            stale = self._unsubscribers.pop(kind, None)
            if stale is not None:
                try:
                    await stale()
                except Exception as e:
                    self.logger.debug("Stale channel cleanup failed", source=kind.value, error=str(e))
            try:
                await self._subscribe(kind)
                return
            except SubscriptionError as e:
                self.logger.warning(
                    "Resubscribe failed",
                    source=kind.value,
                    attempt=attempt,
                    error=str(e.cause),
                )

    # =========================================================
    # Event policy
    # =========================================================

    def classify(self, kind: ContentKind, event: ChangeEvent) -> RealtimeAction:
        if kind == ContentKind.POST:
            if event.event_type == ChangeType.INSERT:
                return RealtimeAction.PROMPT
            if event.event_type == ChangeType.UPDATE:
                return RealtimeAction.PATCH
            return RealtimeAction.IGNORE

        if kind == ContentKind.PROMOTED:
            if event.event_type not in (ChangeType.INSERT, ChangeType.UPDATE):
                return RealtimeAction.IGNORE
            definition = self._sources.definition(kind)
            active_now = definition.is_active(event.record)
            active_before = bool(event.old_record) and definition.is_active(event.old_record)
            if active_now and not active_before:
                return RealtimeAction.REFRESH
            return RealtimeAction.IGNORE

        if kind == ContentKind.PROFILE and event.event_type == ChangeType.INSERT:
            return RealtimeAction.PROMPT
        return RealtimeAction.IGNORE

    def handle_payload(self, kind: ContentKind, payload: Mapping[str, Any]) -> RealtimeAction:
        """Entry point for store callbacks. Malformed payloads are ignored."""
        collection = self._sources.definition(kind).collection
        try:
            event = parse_change_event(collection, payload)
        except (ValueError, TypeError, ValidationError) as e:
            self.logger.warning("Ignoring malformed change event", source=kind.value, error=str(e))
            return RealtimeAction.IGNORE
        return self.handle_event(kind, event)

    def handle_event(self, kind: ContentKind, event: ChangeEvent) -> RealtimeAction:
        action = self.classify(kind, event)
        self.logger.debug(
            "Change event",
            source=kind.value,
            event_type=event.event_type.value,
            action=action.value,
        )
        if action == RealtimeAction.PATCH:
            self._on_patch(kind, event.record)
        elif action in (RealtimeAction.PROMPT, RealtimeAction.REFRESH):
            self._request(action)
        return action

    # =========================================================
    # Debounce
    # =========================================================

    def _request(self, action: RealtimeAction) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()

        if self._trailing is not None:
            if action == RealtimeAction.REFRESH:
                self._trailing_action = RealtimeAction.REFRESH
            return

        elapsed = None if self._last_fired_at is None else now - self._last_fired_at
        if elapsed is None or elapsed >= self._debounce:
            self._fire(action)
            return

        self._trailing_action = action
        self._trailing = asyncio.ensure_future(self._fire_later(self._debounce - elapsed))

    async def _fire_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        action = self._trailing_action
        self._trailing = None
        self._trailing_action = None
        if action is not None:
            self._fire(action)

    def _fire(self, action: RealtimeAction) -> None:
        self._last_fired_at = asyncio.get_running_loop().time()
        if action == RealtimeAction.REFRESH and self._is_mid_interaction():
            self.logger.info("Viewer mid-interaction, prompting instead of refreshing")
            action = RealtimeAction.PROMPT

        if action == RealtimeAction.PROMPT:
            self._on_prompt()
            return

        task = asyncio.ensure_future(self._run_refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_refresh(self) -> None:
        try:
            await self._on_refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning("Realtime refresh failed", error=str(e))

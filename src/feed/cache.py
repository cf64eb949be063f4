"""
Time-bounded cache of fetched source pages.

- Entries expire ``ttl_seconds`` after they were stored; reading an expired
  entry is a miss (and evicts it).
- Concurrent requests for the same key share one in-flight fetch.
- Transient fetch failures are retried with exponential backoff before
  the error reaches the caller.
- ``invalidate_all()`` drops entries and in-flight fetches and bumps a
  generation number so fetches started before the invalidation never
  repopulate the cache.

Keys combine source kind, cursor and a hash of the active filters, so
distinct queries never collide.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from core.logging import LoggerMixin
from core.utils import stable_hash, utc_now
from feed.models import Page


@dataclass
class CacheEntry:
    key: str
    value: Page
    expires_at: datetime


def make_cache_key(kind: str, cursor: Optional[str], filters: Any = None) -> str:
    """Build a cache key from source kind, cursor and active filters."""
    return f"{kind}:{cursor or '-'}:{stable_hash(filters)}"


class FeedCache(LoggerMixin):
    """Keyed TTL cache with single-flight fetches and retry/backoff."""

    def __init__(
        self,
        ttl_seconds: float = 180.0,
        fetch_attempts: int = 2,
        retry_base_delay: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._fetch_attempts = max(1, fetch_attempts)
        self._retry_base_delay = retry_base_delay
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, "asyncio.Future[Page]"] = {}
        self._generation = 0
        self._hits = 0
        self._misses = 0

    # =========================================================
    # Plain get/put
    # =========================================================

    def get(self, key: str) -> Optional[Page]:
        """Return the cached page, or None on a miss or expired entry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def put(self, key: str, page: Page) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            value=page,
            expires_at=self._clock() + self._ttl,
        )

    def invalidate_all(self) -> None:
        """Clear every entry and forget in-flight fetches."""
        dropped = len(self._entries)
        self._entries.clear()
        self._inflight.clear()
        self._generation += 1
        self.logger.info("Feed cache invalidated", entries=dropped, generation=self._generation)

    # =========================================================
    # Single-flight fetch
    # =========================================================

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Page]],
    ) -> Page:
        """
        Return the cached page for ``key`` or fetch it exactly once.

        Late callers for a key that is already being fetched await the
        same future instead of issuing another request.

        Raises:
            The fetcher's last exception once every attempt has failed
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        inflight = self._inflight.get(key)
        if inflight is not None:
            self.logger.debug("Joining in-flight fetch", key=key)
            return await asyncio.shield(inflight)

        task = asyncio.ensure_future(self._fetch(key, fetcher, self._generation))
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Future[Page]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Page]],
        generation: int,
    ) -> Page:
        attempt = 0
        while True:
            attempt += 1
            try:
                page = await fetcher()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= self._fetch_attempts:
                    raise
                delay = self._retry_base_delay * (2 ** (attempt - 1))
                self.logger.warning(
                    "Transient fetch failure, retrying",
                    key=key,
                    attempt=attempt,
                    delay_s=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
                continue

            if generation == self._generation:
                self.put(key, page)
            return page

    # =========================================================
    # Diagnostics
    # =========================================================

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "generation": self._generation,
            "ttl_seconds": self._ttl.total_seconds(),
        }

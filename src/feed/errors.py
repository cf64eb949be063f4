"""
Error taxonomy of the feed engine.

Every error raised by the feed package derives from FeedError so callers
(the API layer, background tasks) can catch the family in one place.
"""

from typing import Optional, Sequence


class FeedError(Exception):
    """Base class for feed engine errors."""
    pass


class SourceFetchError(FeedError):
    """One source failed or timed out. Recovered locally by serving the others."""

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"Source '{source}' failed{detail}")


class PageLoadError(FeedError):
    """Every requested source failed. Retryable."""

    def __init__(self, failures: Sequence[SourceFetchError] = ()):
        self.failures = list(failures)
        sources = ", ".join(f.source for f in self.failures) or "none"
        super().__init__(f"All feed sources failed ({sources})")


class MutationError(FeedError):
    """A remote write failed after the optimistic update was applied."""

    def __init__(self, item_id: str, kind: str, cause: Optional[BaseException] = None):
        self.item_id = item_id
        self.kind = kind
        self.cause = cause
        super().__init__(f"Mutation '{kind}' on {item_id} failed")


class QuotaExceededError(FeedError):
    """Local policy rejection, e.g. the daily swipe limit."""

    def __init__(self, limit: int, used: int):
        self.limit = limit
        self.used = used
        super().__init__(f"Daily swipe limit reached ({used}/{limit})")


class SubscriptionError(FeedError):
    """A realtime channel could not be established or dropped."""

    def __init__(self, collection: str, cause: Optional[BaseException] = None):
        self.collection = collection
        self.cause = cause
        super().__init__(f"Realtime subscription to '{collection}' failed")


class FeedStateError(FeedError):
    """An operation is not valid in the controller's current state."""
    pass


class ItemNotFoundError(FeedError):
    """A mutation targeted an item that is not in the visible feed."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item {item_id} is not in the feed")

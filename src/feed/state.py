"""
Per-session feed state.

Holds everything the controller mutates between operations:
- items: the visible, mixed feed
- seen_keys: feed keys already shown (dedup across pages; reset on refresh)
- excluded_profile_ids: profiles swiped this session (never reset)
- blocked_owner_ids: owners the viewer has blocked
- cursors / exhausted: pagination position per source
- generation: bumped whenever a refresh supersedes in-flight work
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from feed.models import ContentKind, FeedItem, FeedStatus, Page


@dataclass
class FeedState:
    """Mutable state of one feed session."""
    viewer_id: str
    status: FeedStatus = FeedStatus.IDLE
    items: List[FeedItem] = field(default_factory=list)
    seen_keys: Set[str] = field(default_factory=set)
    excluded_profile_ids: Set[str] = field(default_factory=set)
    blocked_owner_ids: Set[str] = field(default_factory=set)
    cursors: Dict[ContentKind, Optional[str]] = field(default_factory=dict)
    exhausted: Set[ContentKind] = field(default_factory=set)
    generation: int = 0
    pages_loaded: int = 0
    last_error: Optional[str] = None

    # =========================================================
    # Pagination
    # =========================================================

    def reset_pagination(self) -> None:
        """Forget cursors and the seen set. Swipe exclusions survive."""
        self.cursors.clear()
        self.exhausted.clear()
        self.seen_keys.clear()
        self.pages_loaded = 0

    def record_page(self, kind: ContentKind, page: Page) -> None:
        self.cursors[kind] = page.cursor
        if page.cursor is None:
            self.exhausted.add(kind)
        else:
            self.exhausted.discard(kind)

    def all_exhausted(self, kinds: Iterable[ContentKind]) -> bool:
        return all(kind in self.exhausted for kind in kinds)

    def bump_generation(self) -> int:
        self.generation += 1
        return self.generation

    # =========================================================
    # Items
    # =========================================================

    def unseen(self, items: Iterable[FeedItem]) -> List[FeedItem]:
        """Filter out already-shown and excluded items, keeping order."""
        fresh: List[FeedItem] = []
        keys = set()
        for item in items:
            key = item.feed_key
            if key in self.seen_keys or key in keys:
                continue
            if item.source_kind == ContentKind.PROFILE and item.id in self.excluded_profile_ids:
                continue
            if item.owner_id and item.owner_id in self.blocked_owner_ids:
                continue
            keys.add(key)
            fresh.append(item)
        return fresh

    def append(self, items: Iterable[FeedItem]) -> List[FeedItem]:
        """Append unseen items; returns what was actually added."""
        added = self.unseen(items)
        self.items.extend(added)
        self.seen_keys.update(item.feed_key for item in added)
        return added

    def replace(self, items: Iterable[FeedItem]) -> List[FeedItem]:
        self.items = []
        self.seen_keys = set()
        return self.append(items)

    def index_of(self, feed_key: str) -> Optional[int]:
        for index, item in enumerate(self.items):
            if item.feed_key == feed_key:
                return index
        return None

    def find(self, item_id: str, kinds: Optional[Iterable[ContentKind]] = None) -> Optional[FeedItem]:
        """First visible item with this id, optionally restricted to some kinds."""
        allowed = set(kinds) if kinds is not None else None
        for item in self.items:
            if item.id == item_id and (allowed is None or item.source_kind in allowed):
                return item
        return None

    def remove(self, feed_key: str) -> Optional[int]:
        """Remove an item; returns the index it occupied."""
        index = self.index_of(feed_key)
        if index is not None:
            del self.items[index]
        return index

    def insert(self, index: int, item: FeedItem) -> None:
        if self.index_of(item.feed_key) is not None:
            return
        self.items.insert(min(max(index, 0), len(self.items)), item)
        self.seen_keys.add(item.feed_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "viewer_id": self.viewer_id,
            "status": self.status.value,
            "item_count": len(self.items),
            "pages_loaded": self.pages_loaded,
            "exhausted": sorted(kind.value for kind in self.exhausted),
            "excluded_profiles": len(self.excluded_profile_ids),
            "generation": self.generation,
            "last_error": self.last_error,
        }

"""
Feed sources: one adapter per remote collection.

Three collections back the feed:
- post:     social posts (primary stream)
- promoted: promotable/sponsored content (secondary stream)
- profile:  discovery-candidate profiles (secondary stream)

Each source turns raw records into typed feed items, pushes exclusions
(already-swiped profiles, blocked owners) to the server and re-applies
them locally, and enforces its own timeout. FeedSourceSet fans the
sources out in parallel; a failing source contributes zero items and the
page is served from the survivors. Only when every requested source
fails does the fetch as a whole fail.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from core.logging import LoggerMixin, get_logger
from core.utils import coerce_count, first_or_none, parse_timestamp, safe_get
from feed.cache import FeedCache, make_cache_key
from feed.errors import PageLoadError, SourceFetchError
from feed.models import (
    ContentKind,
    DiscoveryProfile,
    FeedItem,
    Page,
    Post,
    PromotedContent,
)
from feed.store import EQ, NEQ, NOT_IN, NOT_NULL, OrderBy, QueryFilter, RemoteStore


logger = get_logger(__name__)


# =============================================================================
# Record -> item mappers
# =============================================================================

_VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".webm")


def sniff_content_type(content_type: Optional[str], url: Optional[str]) -> str:
    """Fill in a missing/opaque MIME type from the file extension."""
    if content_type and content_type != "application/octet-stream":
        return content_type
    lowered = (url or "").lower()
    if any(ext in lowered for ext in _VIDEO_EXTENSIONS):
        return "video/mp4"
    return "image/jpeg"


def post_from_record(record: Mapping[str, Any]) -> Post:
    return Post(
        id=str(record["id"]),
        created_at=parse_timestamp(record.get("created_at")),
        owner_id=str(record.get("user_id") or ""),
        view_count=coerce_count(record.get("view_count")),
        like_count=coerce_count(record.get("like_count")),
        share_count=coerce_count(record.get("share_count")),
        comment_count=coerce_count(record.get("comment_count")),
        is_promoted=bool(record.get("is_promoted", False)),
        caption=record.get("content") or "",
        author_name=safe_get(record, "profiles", "display_name", default=""),
        media_urls=list(record.get("media_urls") or []),
        media_types=list(record.get("media_types") or []),
    )


def promoted_from_record(record: Mapping[str, Any]) -> PromotedContent:
    file_url = record.get("file_url") or ""
    return PromotedContent(
        id=str(record["id"]),
        created_at=parse_timestamp(record.get("created_at")),
        owner_id=str(record.get("admin_id") or ""),
        view_count=coerce_count(record.get("view_count")),
        like_count=coerce_count(record.get("like_count")),
        share_count=coerce_count(record.get("share_count")),
        comment_count=coerce_count(record.get("comment_count")),
        is_promoted=bool(record.get("is_promoted", True)),
        title=record.get("title") or "",
        description=record.get("description") or "",
        file_url=file_url,
        content_type=sniff_content_type(record.get("content_type"), file_url),
        category=record.get("category"),
        promotion_priority=float(record.get("promotion_priority") or 0.0),
    )


def profile_from_record(record: Mapping[str, Any]) -> DiscoveryProfile:
    # Recency of activity is what keeps a swipe candidate fresh
    seen_at = parse_timestamp(record.get("last_active")) or parse_timestamp(record.get("created_at"))
    images = record.get("profile_images") or []
    return DiscoveryProfile(
        id=str(record["id"]),
        created_at=seen_at,
        owner_id=str(record["id"]),
        display_name=record.get("display_name") or "",
        age=record.get("age"),
        bio=record.get("bio"),
        location=record.get("location"),
        profile_image_url=record.get("profile_image_url") or first_or_none(images),
        interests=list(record.get("interests") or []),
        photo_verified=bool(record.get("photo_verified", False)),
    )


# =============================================================================
# Source definitions
# =============================================================================

@dataclass(frozen=True)
class SourceDefinition:
    """Where and how one source is queried."""
    kind: ContentKind
    collection: str
    mapper: Callable[[Mapping[str, Any]], FeedItem]
    filters: Sequence[QueryFilter] = ()
    order_by: Sequence[OrderBy] = ()
    owner_column: str = "user_id"

    def is_active(self, record: Mapping[str, Any]) -> bool:
        """True if the record satisfies the source's base filters."""
        return all(f.matches(dict(record)) for f in self.filters)


def default_source_definitions(
    viewer_id: str,
    posts_collection: str = "feed_posts",
    promoted_collection: str = "admin_content",
    profiles_collection: str = "profiles",
) -> Dict[ContentKind, SourceDefinition]:
    """The three standard sources for one viewer."""
    return {
        ContentKind.POST: SourceDefinition(
            kind=ContentKind.POST,
            collection=posts_collection,
            mapper=post_from_record,
            filters=(
                QueryFilter("is_draft", EQ, False),
                QueryFilter("published_at", NOT_NULL),
            ),
            order_by=(OrderBy("created_at"),),
            owner_column="user_id",
        ),
        ContentKind.PROMOTED: SourceDefinition(
            kind=ContentKind.PROMOTED,
            collection=promoted_collection,
            mapper=promoted_from_record,
            filters=(
                QueryFilter("status", EQ, "published"),
                QueryFilter("approval_status", EQ, "approved"),
            ),
            order_by=(OrderBy("promotion_priority"), OrderBy("created_at")),
            owner_column="admin_id",
        ),
        ContentKind.PROFILE: SourceDefinition(
            kind=ContentKind.PROFILE,
            collection=profiles_collection,
            mapper=profile_from_record,
            filters=(
                QueryFilter("id", NEQ, viewer_id),
                QueryFilter("is_blocked", EQ, False),
                QueryFilter("profile_image_url", NOT_NULL),
            ),
            order_by=(OrderBy("last_active"),),
            owner_column="id",
        ),
    }


# =============================================================================
# Single source
# =============================================================================

class FeedSource(LoggerMixin):
    """Paged, cached, time-bounded access to one collection."""

    def __init__(
        self,
        definition: SourceDefinition,
        store: RemoteStore,
        cache: Optional[FeedCache] = None,
        timeout_seconds: float = 10.0,
    ):
        self.definition = definition
        self._store = store
        self._cache = cache
        self._timeout = timeout_seconds

    @property
    def kind(self) -> ContentKind:
        return self.definition.kind

    def query_filters(
        self,
        exclude_ids: Collection[str] = (),
        exclude_owner_ids: Collection[str] = (),
    ) -> List[QueryFilter]:
        filters = list(self.definition.filters)
        if exclude_ids:
            filters.append(QueryFilter("id", NOT_IN, tuple(sorted(exclude_ids))))
        if exclude_owner_ids:
            filters.append(
                QueryFilter(self.definition.owner_column, NOT_IN, tuple(sorted(exclude_owner_ids)))
            )
        return filters

    async def fetch_page(
        self,
        cursor: Optional[str],
        limit: int,
        exclude_ids: Collection[str] = (),
        exclude_owner_ids: Collection[str] = (),
        use_cache: bool = True,
    ) -> Page:
        """
        Fetch one page of this source.

        Args:
            cursor: Opaque cursor from the previous page (None for page one)
            limit: Page size requested from the store
            exclude_ids: Item ids that must not be returned
            exclude_owner_ids: Owners whose items must not be returned
            use_cache: Go through the FeedCache (single flight + TTL)

        Returns:
            Page of mapped items; cursor is None when the source is exhausted
        """
        filters = self.query_filters(exclude_ids, exclude_owner_ids)

        async def fetch() -> Page:
            result = await asyncio.wait_for(
                self._store.list_records(
                    self.definition.collection,
                    filters=filters,
                    order_by=self.definition.order_by,
                    cursor=cursor,
                    limit=limit,
                ),
                timeout=self._timeout,
            )
            items = self._map_records(result.items, set(exclude_ids), set(exclude_owner_ids))
            # A short page means the source is exhausted
            next_cursor = result.next_cursor if len(result.items) >= limit else None
            return Page(items=items, cursor=next_cursor)

        if not use_cache or self._cache is None:
            return await fetch()

        key = make_cache_key(
            self.kind.value,
            cursor,
            {"filters": [f.to_dict() for f in filters], "limit": limit},
        )
        return await self._cache.get_or_fetch(key, fetch)

    def _map_records(
        self,
        records: Sequence[Mapping[str, Any]],
        exclude_ids: set,
        exclude_owner_ids: set,
    ) -> List[FeedItem]:
        items: List[FeedItem] = []
        seen_keys = set()
        dropped = 0
        for record in records:
            try:
                item = self.definition.mapper(record)
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                dropped += 1
                self.logger.warning(
                    "Dropping unmappable record",
                    source=self.kind.value,
                    record_id=record.get("id") if hasattr(record, "get") else None,
                    error=str(e),
                )
                continue
            if item.id in exclude_ids or item.owner_id in exclude_owner_ids:
                continue
            if item.feed_key in seen_keys:
                continue
            seen_keys.add(item.feed_key)
            items.append(item)
        return items


# =============================================================================
# Parallel fan-out
# =============================================================================

@dataclass
class SourceRequest:
    cursor: Optional[str]
    limit: int
    exclude_ids: Collection[str] = ()


@dataclass
class SourceBatch:
    """Outcome of one parallel fetch across sources."""
    pages: Dict[ContentKind, Page] = field(default_factory=dict)
    failures: Dict[ContentKind, SourceFetchError] = field(default_factory=dict)

    def items(self, kind: ContentKind) -> List[FeedItem]:
        page = self.pages.get(kind)
        return list(page.items) if page else []


class FeedSourceSet(LoggerMixin):
    """The three sources of a feed session, fetched in parallel."""

    def __init__(self, sources: Mapping[ContentKind, FeedSource]):
        self.sources: Dict[ContentKind, FeedSource] = dict(sources)

    def definition(self, kind: ContentKind) -> SourceDefinition:
        return self.sources[kind].definition

    def kind_for_collection(self, collection: str) -> Optional[ContentKind]:
        for kind, source in self.sources.items():
            if source.definition.collection == collection:
                return kind
        return None

    async def fetch_all(
        self,
        requests: Mapping[ContentKind, SourceRequest],
        exclude_owner_ids: Collection[str] = (),
        use_cache: bool = True,
    ) -> SourceBatch:
        """
        Fetch the requested sources concurrently.

        Raises:
            PageLoadError: If every requested source failed
        """
        kinds = [kind for kind in requests if kind in self.sources]
        if not kinds:
            return SourceBatch()

        results = await asyncio.gather(
            *(
                self.sources[kind].fetch_page(
                    requests[kind].cursor,
                    requests[kind].limit,
                    exclude_ids=requests[kind].exclude_ids,
                    exclude_owner_ids=exclude_owner_ids,
                    use_cache=use_cache,
                )
                for kind in kinds
            ),
            return_exceptions=True,
        )

        batch = SourceBatch()
        for kind, result in zip(kinds, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failure = SourceFetchError(kind.value, result)
                batch.failures[kind] = failure
                self.logger.warning(
                    "Source fetch failed",
                    source=kind.value,
                    error=repr(result),
                    error_type=type(result).__name__,
                )
            else:
                batch.pages[kind] = result

        if not batch.pages:
            raise PageLoadError(list(batch.failures.values()))

        self.logger.debug(
            "Sources fetched",
            counts={kind.value: len(page.items) for kind, page in batch.pages.items()},
            failed=[kind.value for kind in batch.failures],
        )
        return batch

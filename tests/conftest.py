"""
Pytest configuration and shared fixtures for the feed engine tests.
"""
import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))

from feed.store import ListResult, OrderBy, QueryFilter, matches_all  # noqa: E402


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Fakes
# ============================================================================

class FakeClock:
    """Controllable clock; call it to read the time."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeRemoteStore:
    """
    In-memory RemoteStore with failure injection.

    - ``fail_lists[collection] = exc`` makes list_records raise
    - ``delays[collection] = seconds`` delays list_records
    - ``fail_writes[collection] = exc`` makes insert/update raise
    - ``emit()`` / ``drop()`` drive subscribed handlers
    """

    def __init__(self):
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_lists: Dict[str, BaseException] = {}
        self.fail_writes: Dict[str, BaseException] = {}
        self.fail_subscribes: Dict[str, BaseException] = {}
        self.delays: Dict[str, float] = {}
        self.list_calls: List[Dict[str, Any]] = []
        self.inserts: List[tuple] = []
        self.updates: List[tuple] = []
        self.upserts: List[tuple] = []
        self.subscriptions: Dict[str, List[tuple]] = {}
        self.unsubscribed: List[str] = []

    def add(self, collection: str, *records: Dict[str, Any]) -> None:
        self.collections.setdefault(collection, []).extend(records)

    # RemoteStore -----------------------------------------------------------

    async def list_records(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: Sequence[OrderBy] = (),
        cursor: Optional[str] = None,
        limit: int = 10,
    ) -> ListResult:
        self.list_calls.append({
            "collection": collection,
            "filters": list(filters),
            "cursor": cursor,
            "limit": limit,
        })
        if collection in self.delays:
            await asyncio.sleep(self.delays[collection])
        if collection in self.fail_lists:
            raise self.fail_lists[collection]

        rows = [dict(r) for r in self.collections.get(collection, []) if matches_all(filters, r)]
        for order in reversed(list(order_by)):
            rows.sort(
                key=lambda r, column=order.column: (
                    (0, "") if r.get(column) is None else (1, r.get(column))
                ),
                reverse=order.descending,
            )
        offset = int(cursor) if cursor else 0
        page = rows[offset:offset + limit]
        next_cursor = str(offset + len(page)) if len(page) >= limit else None
        return ListResult(items=page, next_cursor=next_cursor)

    async def insert(self, collection: str, record: Dict[str, Any]) -> str:
        await asyncio.sleep(0)
        if collection in self.fail_writes:
            raise self.fail_writes[collection]
        self.inserts.append((collection, dict(record)))
        return f"{collection}-{len(self.inserts)}"

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        if collection in self.fail_writes:
            raise self.fail_writes[collection]
        self.updates.append((collection, record_id, dict(patch)))

    async def upsert(
        self,
        collection: str,
        record: Dict[str, Any],
        on_conflict: Optional[str] = None,
    ) -> None:
        self.upserts.append((collection, dict(record), on_conflict))

    async def subscribe(self, collection, on_event, on_error, filter=None):
        if collection in self.fail_subscribes:
            raise self.fail_subscribes[collection]
        handlers = (on_event, on_error)
        self.subscriptions.setdefault(collection, []).append(handlers)

        async def unsubscribe() -> None:
            self.unsubscribed.append(collection)
            if handlers in self.subscriptions.get(collection, []):
                self.subscriptions[collection].remove(handlers)

        return unsubscribe

    # Test drivers ----------------------------------------------------------

    def emit(
        self,
        collection: str,
        event_type: str,
        record: Dict[str, Any],
        old_record: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = {"type": event_type, "record": record, "old_record": old_record or {}}
        for on_event, _ in list(self.subscriptions.get(collection, [])):
            on_event(payload)

    def drop(self, collection: str, error: Optional[BaseException] = None) -> None:
        for _, on_error in list(self.subscriptions.get(collection, [])):
            on_error(error or ConnectionError("channel closed"))


class RecordingNotifier:
    """Notifier that keeps every notification."""

    def __init__(self):
        self.messages: List[tuple] = []

    def notify(self, message, kind="info") -> None:
        self.messages.append((message, getattr(kind, "value", kind)))

    def kinds(self) -> List[str]:
        return [kind for _, kind in self.messages]


async def no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

def iso(dt: datetime) -> str:
    return dt.isoformat()


def post_record(post_id: str, age_hours: float = 1.0, user_id: str = "author-1", **fields) -> Dict[str, Any]:
    created = NOW - timedelta(hours=age_hours)
    record = {
        "id": post_id,
        "user_id": user_id,
        "content": f"Post {post_id}",
        "created_at": iso(created),
        "published_at": iso(created),
        "is_draft": False,
        "like_count": 0,
        "comment_count": 0,
        "share_count": 0,
        "view_count": 0,
        "media_types": ["image/jpeg"],
        "media_urls": [f"https://cdn.example.com/{post_id}.jpg"],
    }
    record.update(fields)
    return record


def promoted_record(content_id: str, age_hours: float = 1.0, admin_id: str = "admin-1", **fields) -> Dict[str, Any]:
    record = {
        "id": content_id,
        "admin_id": admin_id,
        "title": f"Promo {content_id}",
        "description": "",
        "file_url": f"https://cdn.example.com/{content_id}.jpg",
        "content_type": "image/jpeg",
        "status": "published",
        "approval_status": "approved",
        "promotion_priority": 1,
        "created_at": iso(NOW - timedelta(hours=age_hours)),
        "like_count": 0,
        "share_count": 0,
        "view_count": 0,
    }
    record.update(fields)
    return record


def profile_record(profile_id: str, age_hours: float = 1.0, **fields) -> Dict[str, Any]:
    record = {
        "id": profile_id,
        "display_name": f"User {profile_id}",
        "age": 28,
        "profile_image_url": f"https://cdn.example.com/{profile_id}.jpg",
        "is_blocked": False,
        "last_active": iso(NOW - timedelta(hours=age_hours)),
        "created_at": iso(NOW - timedelta(days=30)),
    }
    record.update(fields)
    return record


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def seeded_store(store: FakeRemoteStore) -> FakeRemoteStore:
    """Store with 25 posts, 4 promotions and 5 discovery profiles."""
    store.add("feed_posts", *[
        post_record(f"p{i:02d}", age_hours=i + 1, user_id=f"author-{i % 5}")
        for i in range(25)
    ])
    store.add("admin_content", *[promoted_record(f"ad{i}", age_hours=i + 1) for i in range(4)])
    store.add("profiles", *[profile_record(f"u{i}", age_hours=i + 1) for i in range(5)])
    return store


@pytest.fixture
def make_post():
    """Factory for Post items."""
    from feed.models import Post

    def _make(post_id: str = "p1", age_days: float = 0.0, owner_id: str = "author-1", **fields):
        return Post(
            id=post_id,
            created_at=NOW - timedelta(days=age_days),
            owner_id=owner_id,
            media_types=fields.pop("media_types", ["image/jpeg"]),
            **fields,
        )
    return _make


@pytest.fixture
def make_promoted():
    """Factory for PromotedContent items."""
    from feed.models import PromotedContent

    def _make(content_id: str = "ad1", age_days: float = 0.0, owner_id: str = "admin-1", **fields):
        return PromotedContent(
            id=content_id,
            created_at=NOW - timedelta(days=age_days),
            owner_id=owner_id,
            content_type=fields.pop("content_type", "image/jpeg"),
            **fields,
        )
    return _make


@pytest.fixture
def make_profile():
    """Factory for DiscoveryProfile items."""
    from feed.models import DiscoveryProfile

    def _make(profile_id: str = "u1", age_days: float = 0.0, **fields):
        return DiscoveryProfile(
            id=profile_id,
            created_at=NOW - timedelta(days=age_days),
            owner_id=profile_id,
            **fields,
        )
    return _make


# ============================================================================
# Fixtures: Settings & Controller
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings with test credentials and realtime disabled."""
    from config.settings import get_settings_for_testing
    return get_settings_for_testing(
        feed_realtime_enabled=False,
        feed_retry_base_delay_seconds=0,
    )


@pytest.fixture
def build_controller(clock, notifier):
    """Factory for a FeedController wired to a store with the default sources."""
    from feed.cache import FeedCache
    from feed.controller import FeedController
    from feed.sources import FeedSource, FeedSourceSet, default_source_definitions

    def _build(store, viewer_id: str = "viewer-1", timeout_seconds: float = 10.0, **kwargs):
        cache = FeedCache(ttl_seconds=180, fetch_attempts=1, retry_base_delay=0, clock=clock)
        sources = FeedSourceSet({
            kind: FeedSource(definition, store, cache=cache, timeout_seconds=timeout_seconds)
            for kind, definition in default_source_definitions(viewer_id).items()
        })
        kwargs.setdefault("realtime_enabled", False)
        kwargs.setdefault("sleep", no_sleep)
        return FeedController(
            viewer_id,
            sources,
            cache,
            store,
            notifier,
            clock=clock,
            **kwargs,
        )
    return _build


# ============================================================================
# Fixtures: FastAPI Test Client
# ============================================================================

@pytest.fixture
def app(test_settings, seeded_store, clock):
    """FastAPI application backed by the in-memory store and a fixed clock."""
    from api.app import create_app
    return create_app(settings=test_settings, store=seeded_store, clock=clock)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.sessions.close_all()


# ============================================================================
# Markers auto-use
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "supabase: marks tests that require Supabase")

"""
Unit tests for feed sources.

Tests cover:
1. Record mapping (including unmappable records)
2. Paging and exhaustion
3. Exclusions pushed to the store and re-applied locally
4. Partial failure, timeouts and the all-failed case
"""

import asyncio

import pytest

from conftest import post_record, profile_record, promoted_record


@pytest.fixture
def cache(clock):
    from feed.cache import FeedCache
    return FeedCache(ttl_seconds=180, fetch_attempts=1, retry_base_delay=0, clock=clock)


@pytest.fixture
def definitions():
    from feed.sources import default_source_definitions
    return default_source_definitions("viewer-1")


@pytest.fixture
def source_set(seeded_store, cache, definitions):
    from feed.sources import FeedSource, FeedSourceSet
    return FeedSourceSet({
        kind: FeedSource(definition, seeded_store, cache=cache, timeout_seconds=0.05)
        for kind, definition in definitions.items()
    })


def post_source(store, definitions, cache=None, timeout_seconds=10.0):
    from feed.models import ContentKind
    from feed.sources import FeedSource
    return FeedSource(definitions[ContentKind.POST], store, cache=cache, timeout_seconds=timeout_seconds)


class TestMappers:
    """Tests for record -> item mapping."""

    def test_post_from_record(self):
        from feed.sources import post_from_record

        record = post_record("p1", like_count=None, profiles={"display_name": "Ana"})
        post = post_from_record(record)

        assert post.feed_key == "post:p1"
        assert post.owner_id == "author-1"
        assert post.like_count == 0
        assert post.author_name == "Ana"
        assert post.content_kind == "image"

    def test_promoted_sniffs_video(self):
        from feed.sources import promoted_from_record

        item = promoted_from_record(promoted_record(
            "ad1", content_type="application/octet-stream", file_url="https://x/clip.MP4",
        ))
        assert item.content_type == "video/mp4"
        assert item.is_promoted is True
        assert item.owner_id == "admin-1"

    def test_profile_falls_back_to_created_at(self):
        from feed.sources import profile_from_record

        record = profile_record("u1", last_active=None, profile_image_url=None, profile_images=["a.jpg", "b.jpg"])
        profile = profile_from_record(record)

        assert profile.created_at.isoformat() == record["created_at"]
        assert profile.profile_image_url == "a.jpg"
        assert profile.owner_id == "u1"

    @pytest.mark.parametrize("content_type,url,expected", [
        ("image/png", "x.mp4", "image/png"),
        (None, "https://x/a.webm", "video/mp4"),
        ("", "https://x/a.jpg", "image/jpeg"),
    ])
    def test_sniff_content_type(self, content_type, url, expected):
        from feed.sources import sniff_content_type
        assert sniff_content_type(content_type, url) == expected


class TestFetchPage:
    """Tests for a single source."""

    async def test_first_page_newest_first(self, seeded_store, definitions):
        page = await post_source(seeded_store, definitions).fetch_page(None, 10)

        assert [item.id for item in page.items] == [f"p{i:02d}" for i in range(10)]
        assert page.cursor == "10"

    async def test_short_page_exhausts(self, seeded_store, definitions):
        page = await post_source(seeded_store, definitions).fetch_page("20", 10)

        assert len(page.items) == 5
        assert page.cursor is None
        assert page.has_more is False

    async def test_drafts_and_unpublished_are_filtered(self, store, definitions):
        store.add(
            "feed_posts",
            post_record("live"),
            post_record("draft", is_draft=True),
            post_record("pending", published_at=None),
        )
        page = await post_source(store, definitions).fetch_page(None, 10)
        assert [item.id for item in page.items] == ["live"]

    async def test_unmappable_records_are_dropped(self, store, definitions):
        broken = post_record("broken", created_at="not a date")
        missing_id = post_record("x")
        del missing_id["id"]
        store.add("feed_posts", post_record("ok"), broken, missing_id)

        page = await post_source(store, definitions).fetch_page(None, 10)

        assert [item.id for item in page.items] == ["ok"]

    async def test_exclusions_are_pushed_and_applied(self, seeded_store, definitions):
        source = post_source(seeded_store, definitions)

        page = await source.fetch_page(None, 30, exclude_ids={"p01"}, exclude_owner_ids={"author-0"})

        ids = {item.id for item in page.items}
        assert "p01" not in ids
        assert all(item.owner_id != "author-0" for item in page.items)
        pushed = {(f.column, f.op) for f in seeded_store.list_calls[-1]["filters"]}
        assert ("id", "not_in") in pushed
        assert ("user_id", "not_in") in pushed

    async def test_profile_source_excludes_viewer(self, store, definitions):
        from feed.models import ContentKind
        from feed.sources import FeedSource

        store.add("profiles", profile_record("viewer-1"), profile_record("u1"))
        source = FeedSource(definitions[ContentKind.PROFILE], store)

        page = await source.fetch_page(None, 10)

        assert [item.id for item in page.items] == ["u1"]

    async def test_cached_page_is_reused(self, seeded_store, definitions, cache):
        source = post_source(seeded_store, definitions, cache=cache)

        await source.fetch_page(None, 10)
        await source.fetch_page(None, 10)
        assert len(seeded_store.list_calls) == 1

        await source.fetch_page(None, 10, use_cache=False)
        assert len(seeded_store.list_calls) == 2

    async def test_timeout(self, seeded_store, definitions):
        seeded_store.delays["feed_posts"] = 0.5
        source = post_source(seeded_store, definitions, timeout_seconds=0.01)

        with pytest.raises(asyncio.TimeoutError):
            await source.fetch_page(None, 10)


class TestSourceDefinition:
    """Tests for local evaluation of base filters."""

    def test_is_active(self, definitions):
        from feed.models import ContentKind

        promoted = definitions[ContentKind.PROMOTED]
        assert promoted.is_active(promoted_record("ad1")) is True
        assert promoted.is_active(promoted_record("ad1", status="draft")) is False

    def test_kind_for_collection(self, source_set):
        from feed.models import ContentKind

        assert source_set.kind_for_collection("admin_content") == ContentKind.PROMOTED
        assert source_set.kind_for_collection("unknown") is None


class TestFetchAll:
    """Tests for the parallel fan-out."""

    def requests(self):
        from feed.models import ContentKind
        from feed.sources import SourceRequest
        return {
            ContentKind.POST: SourceRequest(cursor=None, limit=10),
            ContentKind.PROMOTED: SourceRequest(cursor=None, limit=3),
            ContentKind.PROFILE: SourceRequest(cursor=None, limit=3),
        }

    async def test_all_sources(self, source_set):
        from feed.models import ContentKind

        batch = await source_set.fetch_all(self.requests())

        assert len(batch.items(ContentKind.POST)) == 10
        assert len(batch.items(ContentKind.PROMOTED)) == 3
        assert len(batch.items(ContentKind.PROFILE)) == 3
        assert batch.failures == {}

    async def test_failed_source_contributes_nothing(self, source_set, seeded_store):
        from feed.errors import SourceFetchError
        from feed.models import ContentKind

        seeded_store.fail_lists["admin_content"] = ConnectionError("boom")

        batch = await source_set.fetch_all(self.requests())

        assert batch.items(ContentKind.PROMOTED) == []
        assert len(batch.items(ContentKind.POST)) == 10
        assert isinstance(batch.failures[ContentKind.PROMOTED], SourceFetchError)

    async def test_timed_out_source_is_a_failure(self, source_set, seeded_store):
        from feed.models import ContentKind

        seeded_store.delays["profiles"] = 0.5

        batch = await source_set.fetch_all(self.requests())

        assert ContentKind.PROFILE in batch.failures
        assert len(batch.items(ContentKind.POST)) == 10

    async def test_all_failed_raises(self, source_set, seeded_store):
        from feed.errors import PageLoadError

        for collection in ("feed_posts", "admin_content", "profiles"):
            seeded_store.fail_lists[collection] = ConnectionError("down")

        with pytest.raises(PageLoadError) as exc_info:
            await source_set.fetch_all(self.requests())
        assert len(exc_info.value.failures) == 3

    async def test_blocked_owners_excluded_everywhere(self, source_set):
        from feed.models import ContentKind

        batch = await source_set.fetch_all(self.requests(), exclude_owner_ids={"author-1", "admin-1"})

        assert all(item.owner_id != "author-1" for item in batch.items(ContentKind.POST))
        assert batch.items(ContentKind.PROMOTED) == []

"""
CacheManager and cached-read tests.

Exercises the read-through contract (HIT / MISS / SKIP), namespace
invalidation, recovery after an outage and the key construction of the
cached article reads.
"""
import json

import pytest

from ssrblog.cache import CacheManager, CacheOrigin
from ssrblog.schemas import ArticleCreate, ArticleUpdate
from ssrblog.services import article_cache, article_service


class CountingLoader:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


# ---------------------------------------------------------------------------
# read_through
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_read_through_miss_then_hit(cache, fake_redis):
    loader = CountingLoader({"answer": 42})

    value, origin = await cache.read_through("articles:test", 60, loader)
    assert (value, origin) == ({"answer": 42}, CacheOrigin.MISS)
    assert json.loads(fake_redis.store["articles:test"]) == {"answer": 42}
    assert fake_redis.ttls["articles:test"] == 60

    value, origin = await cache.read_through("articles:test", 60, loader)
    assert (value, origin) == ({"answer": 42}, CacheOrigin.HIT)
    assert loader.calls == 1


@pytest.mark.asyncio
async def test_read_through_does_not_cache_none(cache, fake_redis):
    loader = CountingLoader(None)
    assert await cache.read_through("articles:missing", 60, loader) == (None, CacheOrigin.MISS)
    assert await cache.read_through("articles:missing", 60, loader) == (None, CacheOrigin.MISS)
    assert "articles:missing" not in fake_redis.store
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_read_through_skips_when_never_connected(offline_cache):
    loader = CountingLoader([1, 2])
    assert await offline_cache.read_through("articles:x", 60, loader) == ([1, 2], CacheOrigin.SKIP)
    assert offline_cache.available is False


@pytest.mark.asyncio
async def test_read_through_skips_during_outage_and_recovers(cache, fake_redis):
    loader = CountingLoader("fresh")
    fake_redis.fail = True

    assert await cache.read_through("articles:k", 60, loader) == ("fresh", CacheOrigin.SKIP)
    assert cache.available is False
    assert fake_redis.store == {}

    # retry_interval=0 in the fixture: the next call re-probes with PING
    fake_redis.fail = False
    assert await cache.read_through("articles:k", 60, loader) == ("fresh", CacheOrigin.MISS)
    assert cache.available is True
    assert await cache.read_through("articles:k", 60, loader) == ("fresh", CacheOrigin.HIT)


@pytest.mark.asyncio
async def test_outage_waits_for_retry_interval(fake_redis):
    manager = CacheManager("redis://test", retry_interval=3600)
    await manager.attach(fake_redis)
    fake_redis.fail = True
    await manager.get("articles:a")
    fake_redis.fail = False

    # Still inside the retry window: no caching even though Redis is back
    loader = CountingLoader("v")
    assert await manager.read_through("articles:a", 60, loader) == ("v", CacheOrigin.SKIP)
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_recovery_flushes_entries_that_missed_an_invalidation(db_session, cache, fake_redis):
    created = await article_service.create_article(
        db_session, cache, ArticleCreate(title="Old", content="C", status="published")
    )
    _, origin = await article_cache.cached_article(db_session, cache, created["id"])
    assert origin is CacheOrigin.MISS

    fake_redis.fail = True
    await article_service.update_article(db_session, cache, created["id"], ArticleUpdate(title="New"))
    fake_redis.fail = False

    article, origin = await article_cache.cached_article(db_session, cache, created["id"])
    assert origin is CacheOrigin.MISS
    assert article["title"] == "New"
    assert cache.available is True


@pytest.mark.asyncio
async def test_caching_stays_off_when_recovery_flush_fails(cache, fake_redis, monkeypatch):
    await cache.set("articles:detail:1:published", {"title": "Old"})
    fake_redis.fail = True
    await cache.invalidate_articles()
    fake_redis.fail = False

    async def broken_scan(match="*"):
        raise ConnectionError("scan interrupted")
        yield

    monkeypatch.setattr(fake_redis, "scan_iter", broken_scan)
    loader = CountingLoader({"title": "New"})
    value, origin = await cache.read_through("articles:detail:1:published", 60, loader)
    assert (value, origin) == ({"title": "New"}, CacheOrigin.SKIP)
    assert cache.available is False

    monkeypatch.undo()
    value, origin = await cache.read_through("articles:detail:1:published", 60, loader)
    assert (value, origin) == ({"title": "New"}, CacheOrigin.MISS)


@pytest.mark.asyncio
async def test_count_hit(cache, fake_redis):
    assert await cache.count_hit("ratelimit:test", 900) == 1
    assert await cache.count_hit("ratelimit:test", 900) == 2
    assert fake_redis.ttls["ratelimit:test"] == 900
    assert await cache.ttl("ratelimit:test") == 900
    fake_redis.fail = True
    assert await cache.count_hit("ratelimit:test", 900) is None


@pytest.mark.asyncio
async def test_read_through_propagates_loader_errors(cache):
    async def broken():
        raise RuntimeError("db down")

    with pytest.raises(RuntimeError):
        await cache.read_through("articles:boom", 60, broken)


@pytest.mark.asyncio
async def test_get_set_never_raise(cache, fake_redis):
    fake_redis.fail = True
    await cache.set("articles:a", {"x": 1}, ttl=5)
    assert await cache.get("articles:a") is None
    assert await cache.delete_pattern("articles:*") == 0


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_invalidate_articles_clears_only_article_namespace(cache, fake_redis):
    await cache.set("articles:list:1:10::newest", {"a": 1})
    await cache.set("articles:detail:3:published", {"b": 2})
    await cache.set("articles:tags", [])
    await cache.set("session:abc", "keep")

    await cache.invalidate_articles()

    assert set(fake_redis.store) == {"session:abc"}


@pytest.mark.asyncio
async def test_stats(cache):
    loader = CountingLoader(1)
    await cache.read_through("articles:s", 60, loader)
    await cache.read_through("articles:s", 60, loader)
    stats = cache.stats
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0
    assert stats["available"] is True


@pytest.mark.asyncio
async def test_disconnect_closes_client(cache, fake_redis):
    await cache.disconnect()
    assert fake_redis.closed is True
    assert cache.available is False


# ---------------------------------------------------------------------------
# Cached article reads
# ---------------------------------------------------------------------------

def test_keys_are_deterministic():
    assert article_cache.list_key(2, 10, "python", "popular") == "articles:list:2:10:python:popular"
    assert article_cache.detail_key(7, False) == "articles:detail:7:published"
    assert article_cache.detail_key(7, True) == "articles:detail:7:all"


@pytest.mark.asyncio
async def test_equivalent_listing_requests_share_a_key(db_session, cache, fake_redis):
    _, first = await article_cache.cached_list_published(db_session, cache, "0", "1000", None, "x")
    _, second = await article_cache.cached_list_published(db_session, cache, 1, 50, "", "newest")
    assert first is CacheOrigin.MISS
    assert second is CacheOrigin.HIT
    assert "articles:list:1:50::newest" in fake_redis.store


@pytest.mark.asyncio
async def test_cached_listing_matches_uncached(db_session, cache):
    await article_service.create_article(
        db_session, cache, ArticleCreate(title="One", content="C", status="published", tags=["t"])
    )
    fresh, origin = await article_cache.cached_list_published(db_session, cache, 1, 10, "t")
    cached, cached_origin = await article_cache.cached_list_published(db_session, cache, 1, 10, "t")
    assert (origin, cached_origin) == (CacheOrigin.MISS, CacheOrigin.HIT)
    assert json.dumps(cached, sort_keys=True) == json.dumps(fresh, sort_keys=True)


@pytest.mark.asyncio
async def test_writes_invalidate_cached_reads(db_session, cache):
    created = await article_service.create_article(
        db_session, cache, ArticleCreate(title="Before", content="C", status="published")
    )
    await article_cache.cached_list_published(db_session, cache)
    await article_cache.cached_article(db_session, cache, created["id"])
    await article_cache.cached_tag_cloud(db_session, cache)

    await article_service.update_article(
        db_session, cache, created["id"], ArticleUpdate(title="After")
    )

    listing, origin = await article_cache.cached_list_published(db_session, cache)
    detail, detail_origin = await article_cache.cached_article(db_session, cache, created["id"])
    assert origin is CacheOrigin.MISS
    assert detail_origin is CacheOrigin.MISS
    assert listing["articles"][0]["title"] == "After"
    assert detail["title"] == "After"


@pytest.mark.asyncio
async def test_hidden_article_is_not_negatively_cached(db_session, cache, fake_redis):
    created = await article_service.create_article(
        db_session, cache, ArticleCreate(title="Draft", content="C", status="draft")
    )
    article, origin = await article_cache.cached_article(db_session, cache, created["id"])
    assert article is None
    assert origin is CacheOrigin.MISS
    assert article_cache.detail_key(created["id"], False) not in fake_redis.store

    admin_view, _ = await article_cache.cached_article(db_session, cache, created["id"], True)
    assert admin_view["status"] == "draft"
    assert article_cache.detail_key(created["id"], True) in fake_redis.store

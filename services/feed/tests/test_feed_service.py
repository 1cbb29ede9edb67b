import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.feed import cache as feed_cache
from app.feed.exceptions import FeedUnavailable
from app.feed.service import FeedCacheManager, list_trending, paginate


@pytest.mark.asyncio
async def test_miss_generates_and_writes_both_tiers(redis, manager, store, seed_post, follow, make_post) -> None:
    await seed_post(make_post("p1", author_id="alice"))
    await follow("u1", "alice")

    page = await manager.get_feed("u1")

    assert page.served_from_cache is False
    assert [p.post_id for p in page.posts] == ["p1"]
    assert [p.post_id for p in await feed_cache.get_cached_feed("u1", redis)] == ["p1"]
    assert 0 < await redis.ttl("feed:u1") <= 3600
    assert store.records["u1"].version == 1


@pytest.mark.asyncio
async def test_hit_serves_cached_snapshot(redis, manager, seed_post, follow, make_post) -> None:
    await seed_post(make_post("p1", author_id="alice"))
    await follow("u1", "alice")
    await manager.get_feed("u1")
    # new post lands without an invalidation: the snapshot is still served
    await seed_post(make_post("p2", author_id="alice"))

    page = await manager.get_feed("u1")

    assert page.served_from_cache is True
    assert [p.post_id for p in page.posts] == ["p1"]


@pytest.mark.asyncio
async def test_cached_feed_never_exceeds_max_size(redis, manager, seed_post, follow, make_post) -> None:
    authors = [f"author{i}" for i in range(12)]
    for author in authors:
        for j in range(6):
            await seed_post(make_post(f"{author}-{j}", author_id=author, hours_ago=j))
    await follow("u1", *authors)

    page = await manager.get_feed("u1", page=1, page_size=20)

    assert len(await feed_cache.get_cached_feed("u1", redis)) == 50
    assert page.pagination.total == 50
    assert page.pagination.pages == 3
    assert len(page.posts) == 20


@pytest.mark.asyncio
async def test_invalidate_is_idempotent(redis, manager, seed_post, follow, make_post) -> None:
    await seed_post(make_post("p1", author_id="alice"))
    await follow("u1", "alice")
    await manager.get_feed("u1")

    await manager.invalidate("u1")
    await manager.invalidate("u1")
    await manager.invalidate("never-cached")

    assert await redis.exists("feed:u1") == 0
    page = await manager.get_feed("u1")
    assert page.served_from_cache is False


@pytest.mark.asyncio
async def test_refresh_bumps_durable_version(manager, store, seed_post, follow, make_post) -> None:
    await seed_post(make_post("p1", author_id="alice"))
    await follow("u1", "alice")

    await manager.get_feed("u1")
    await manager.refresh("u1")
    await manager.refresh("u1")

    assert store.records["u1"].version == 3


@pytest.mark.asyncio
async def test_unreadable_cache_entry_counts_as_miss(redis, manager, seed_post, follow, make_post) -> None:
    await seed_post(make_post("p1", author_id="alice"))
    await follow("u1", "alice")
    await redis.set("feed:u1", "not json")

    page = await manager.get_feed("u1")

    assert page.served_from_cache is False
    assert [p.post_id for p in page.posts] == ["p1"]


@pytest.mark.asyncio
async def test_stale_durable_copy_served_when_generation_fails(redis, manager, store, make_post, monkeypatch) -> None:
    await store.upsert("u1", [make_post("old")])

    async def broken(offset, count, client):
        raise RedisConnectionError("down")

    monkeypatch.setattr(feed_cache, "get_trending_page", broken)

    page = await manager.get_feed("u1")

    assert page.stale is True
    assert page.served_from_cache is False
    assert [p.post_id for p in page.posts] == ["old"]


@pytest.mark.asyncio
async def test_generation_failure_without_durable_copy_raises(manager, monkeypatch) -> None:
    async def broken(offset, count, client):
        raise RedisConnectionError("down")

    monkeypatch.setattr(feed_cache, "get_trending_page", broken)

    with pytest.raises(FeedUnavailable):
        await manager.get_feed("u1")


@pytest.mark.asyncio
async def test_fast_cache_write_failure_does_not_fail_request(redis, store, generator, seed_post, follow, make_post, monkeypatch) -> None:
    await seed_post(make_post("p1", author_id="alice"))
    await follow("u1", "alice")

    async def broken(user_id, posts, ttl, client):
        raise RedisConnectionError("write failed")

    monkeypatch.setattr(feed_cache, "set_cached_feed", broken)
    manager = FeedCacheManager(redis, store, generator)

    page = await manager.get_feed("u1")

    assert [p.post_id for p in page.posts] == ["p1"]
    assert store.records["u1"].version == 1


def test_paginate_past_the_end(make_post) -> None:
    posts = [make_post(f"p{i}") for i in range(5)]

    items, pagination = paginate(posts, page=3, page_size=2)
    empty, past = paginate(posts, page=4, page_size=2)

    assert [p.post_id for p in items] == ["p4"]
    assert (pagination.total, pagination.pages) == (5, 3)
    assert empty == []
    assert past.page == 4


@pytest.mark.asyncio
async def test_list_trending_pages_by_score(redis, seed_post, make_post) -> None:
    for i, score in enumerate([5.0, 50.0, 20.0]):
        await seed_post(make_post(f"t{i}", hashtags=["x"]))
        await feed_cache.add_trending(f"t{i}", score, redis)

    posts, pagination = await list_trending(redis, page=1, page_size=2)

    assert [p.post_id for p in posts] == ["t1", "t2"]
    assert pagination.total == 3
    assert pagination.pages == 2

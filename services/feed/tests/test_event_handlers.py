import json
from datetime import timedelta

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.events.handlers import FeedEventHandler, MalformedEvent
from app.feed import cache as feed_cache
from app.feed.service import FeedInvalidator
from app.social_graph import FollowSets, SocialGraphUnavailable


@pytest.fixture
def handler(redis, follow_sets, manager, now) -> FeedEventHandler:
    return FeedEventHandler(redis, follow_sets, manager, clock=lambda: now)


def post_event(event_type: str, now, **data) -> dict:
    body = {"id": "p1", "userId": "alice", **data}
    return {"eventType": event_type, "timestamp": now.isoformat(), "data": body}


@pytest.mark.asyncio
async def test_post_created_indexes_and_invalidates(redis, handler, manager, follow, now) -> None:
    await follow("u1", "alice")
    await manager.get_feed("u1")
    assert await redis.exists("feed:u1") == 1

    await handler.handle(
        "post-events",
        json.dumps(post_event("POST_CREATED", now, hashtags=["news"], createdAt=now.isoformat())),
    )

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.author_id == "alice"
    assert summary.hashtags == ["news"]
    assert await feed_cache.get_recent_author_post_ids("alice", 6, redis) == ["p1"]
    assert await redis.zscore("trending:posts", "p1") == pytest.approx(100.0)
    assert await redis.exists("feed:u1") == 0


@pytest.mark.asyncio
async def test_post_created_replay_is_idempotent(redis, handler, now) -> None:
    event = post_event("POST_CREATED", now, hashtags=["news", "news"])
    await handler.handle("post-events", event)
    await feed_cache.incr_counter("p1", "like", 7, redis)
    await feed_cache.set_trending_scores({"p1": 321.0}, redis)

    await handler.handle("post-events", event)

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.hashtags == ["news"]
    assert summary.likes_count == 7
    assert await redis.zcard("trending:posts") == 1
    assert await redis.zscore("trending:posts", "p1") == 321.0
    assert await redis.zcard("user_posts:alice") == 1


@pytest.mark.asyncio
async def test_untagged_post_is_not_trending(redis, handler, now) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now))

    assert await redis.zcard("trending:posts") == 0


@pytest.mark.asyncio
async def test_post_updated_patches_existing_summary(redis, handler, follow, manager, now) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now, content="draft"))
    await follow("u1", "alice")
    await manager.get_feed("u1")

    later = now + timedelta(minutes=5)
    await handler.handle(
        "post-events",
        {"eventType": "POST_UPDATED", "timestamp": later.isoformat(),
         "data": {"id": "p1", "userId": "alice", "content": "final", "hashtags": ["launch"]}},
    )

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.content == "final"
    assert summary.hashtags == ["launch"]
    assert summary.updated_at == later
    assert summary.created_at == now
    assert await redis.zscore("trending:posts", "p1") is not None
    assert await redis.exists("feed:u1") == 0


@pytest.mark.asyncio
async def test_post_updated_for_unknown_post_is_noop(redis, handler, now) -> None:
    await handler.handle("post-events", post_event("POST_UPDATED", now, content="x"))

    assert await redis.exists("post:p1") == 0


@pytest.mark.asyncio
async def test_post_deleted_removes_everywhere(redis, handler, manager, follow, now) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now, hashtags=["news"]))
    await handler.handle(
        "post-events",
        {"eventType": "POST_CREATED", "timestamp": now.isoformat(),
         "data": {"id": "p2", "userId": "alice", "createdAt": (now - timedelta(hours=1)).isoformat()}},
    )
    await follow("u1", "alice")
    await manager.get_feed("u1")

    await handler.handle("post-events", post_event("POST_DELETED", now))

    assert await redis.exists("post:p1") == 0
    assert await redis.zscore("user_posts:alice", "p1") is None
    assert await redis.zscore("trending:posts", "p1") is None
    assert await redis.exists("feed:u1") == 0
    page = await manager.get_feed("u1")
    assert [p.post_id for p in page.posts] == ["p2"]


@pytest.mark.asyncio
async def test_unknown_event_type_is_ignored(redis, handler, now) -> None:
    await handler.handle("post-events", post_event("POST_ARCHIVED", now))

    assert await redis.exists("post:p1") == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        b"{not json",
        b"[1, 2]",
        None,
        json.dumps({"eventType": "POST_CREATED", "timestamp": "2026-03-01T12:00:00Z", "data": {}}),
    ],
)
async def test_malformed_post_event_raises(handler, raw) -> None:
    with pytest.raises(MalformedEvent):
        await handler.handle("post-events", raw)


@pytest.mark.asyncio
async def test_interaction_delta_is_applied_once_per_event_id(redis, handler, now) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now))
    like = {"postId": "p1", "type": "like", "delta": 1, "eventId": "evt-1"}

    await handler.handle("post-interactions", like)
    await handler.handle("post-interactions", like)
    await handler.handle("post-interactions", {**like, "eventId": "evt-2"})

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.likes_count == 2


@pytest.mark.asyncio
async def test_interaction_count_sets_absolute_value(redis, handler, follow, manager, now) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now))
    await follow("u1", "alice")
    await manager.get_feed("u1")

    await handler.handle("post-interactions", {"postId": "p1", "type": "share", "count": 4})
    await handler.handle("post-interactions", {"postId": "p1", "type": "share", "count": 4})

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.shares_count == 4
    # engagement changes never invalidate feeds
    assert await redis.exists("feed:u1") == 1


@pytest.mark.asyncio
async def test_interaction_counters_clamp_at_zero(redis, handler, now) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now))

    await handler.handle("post-interactions", {"postId": "p1", "type": "comment", "delta": -3})

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.comments_count == 0


@pytest.mark.asyncio
async def test_interaction_for_unknown_post_is_noop(redis, handler) -> None:
    await handler.handle("post-interactions", {"postId": "ghost", "type": "like"})

    assert await redis.exists("post:ghost") == 0


@pytest.mark.asyncio
async def test_malformed_interaction_raises(handler) -> None:
    with pytest.raises(MalformedEvent):
        await handler.handle("post-interactions", {"postId": "p1", "type": "bookmark"})


@pytest.mark.asyncio
async def test_fanout_continues_past_failures(redis, follow_sets, manager, follow, now) -> None:
    for user in ("u1", "u2", "u3"):
        await follow(user, "alice")

    class _PartlyFailing:
        def __init__(self) -> None:
            self.invalidated: list[str] = []

        async def invalidate(self, user_id: str) -> None:
            if user_id == "u2":
                raise ConnectionError("boom")
            self.invalidated.append(user_id)

    feeds = _PartlyFailing()
    handler = FeedEventHandler(redis, follow_sets, feeds, fanout_concurrency=1, clock=lambda: now)

    count = await handler.invalidate_followers("alice")

    assert count == 2
    assert sorted(feeds.invalidated) == ["u1", "u3"]


@pytest.mark.asyncio
async def test_naive_created_at_is_read_as_utc(redis, handler, now) -> None:
    naive = now.replace(tzinfo=None).isoformat()
    await handler.handle("post-events", post_event("POST_CREATED", now, createdAt=naive))

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.created_at == now
    assert summary.created_at.tzinfo is not None
    assert await redis.zscore("user_posts:alice", "p1") == now.timestamp()


@pytest.mark.asyncio
async def test_interaction_redelivered_after_failed_write_is_counted(redis, handler, now, monkeypatch) -> None:
    await handler.handle("post-events", post_event("POST_CREATED", now))
    like = {"postId": "p1", "type": "like", "delta": 1, "eventId": "evt-1"}

    real_transaction = redis.transaction
    calls = {"n": 0}

    async def drops_first(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RedisConnectionError("connection reset")
        return await real_transaction(*args, **kwargs)

    monkeypatch.setattr(redis, "transaction", drops_first)

    with pytest.raises(RedisConnectionError):
        await handler.handle("post-interactions", like)
    await handler.handle("post-interactions", like)
    await handler.handle("post-interactions", like)

    summary = await feed_cache.get_post_summary("p1", redis)
    assert summary.likes_count == 1
    assert await redis.exists("interaction:seen:evt-1") == 1


class _UnreachableSocialGraph:
    async def get_following(self, user_id: str) -> set[str]:
        raise httpx.ConnectError("refused")

    async def get_followers(self, user_id: str) -> set[str]:
        raise httpx.ConnectError("refused")


@pytest.mark.asyncio
async def test_followers_outage_propagates_for_retry(redis, manager, now) -> None:
    await redis.set("feed:u1", "[]")
    handler = FeedEventHandler(
        redis, FollowSets(redis, _UnreachableSocialGraph()), manager, clock=lambda: now
    )

    with pytest.raises(SocialGraphUnavailable):
        await handler.handle("post-events", post_event("POST_CREATED", now))

    # nothing was invalidated, so the redelivery still has work to do
    assert await redis.exists("feed:u1") == 1
    assert await redis.exists("followers:alice") == 0


@pytest.mark.asyncio
async def test_invalidator_alone_is_enough_for_event_handling(redis, follow_sets, follow, now) -> None:
    await follow("u1", "alice")
    await redis.set("feed:u1", "[]")
    handler = FeedEventHandler(redis, follow_sets, FeedInvalidator(redis), clock=lambda: now)

    await handler.handle("post-events", post_event("POST_CREATED", now))

    assert await redis.exists("feed:u1") == 0
    assert await redis.exists("post:p1") == 1

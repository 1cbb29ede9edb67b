"""Redis cache helpers for the feed domain.

Key schema
----------
post:{post_id}            Hash        no TTL   PostSummary (camelCase fields, shared with post service)
user_posts:{author_id}    ZSET        no TTL   author's post ids, score = created_at epoch seconds
trending:posts            ZSET        no TTL   global trending set, score = trending score
following:{user_id}       Set         owner    ids the user follows (written by the social graph)
followers:{user_id}       Set         owner    ids following the user (written by the social graph)
feed:{user_id}            JSON string TTL 1 h  materialised feed (ranked PostSummary list)
interaction:seen:{id}     "1"         TTL 24 h redelivery guard for interaction deltas

Every function takes the client explicitly; none of them hold state.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis

from app.feed.schemas import PostSummary

logger = logging.getLogger(__name__)

TRENDING_KEY = "trending:posts"

COUNTER_FIELDS: dict[str, str] = {
    "like": "likesCount",
    "comment": "commentsCount",
    "share": "sharesCount",
}

_feed_adapter = TypeAdapter(list[PostSummary])


def _post_key(post_id: str) -> str:
    return f"post:{post_id}"


def _author_index_key(author_id: str) -> str:
    return f"user_posts:{author_id}"


def _following_key(user_id: str) -> str:
    return f"following:{user_id}"


def _followers_key(user_id: str) -> str:
    return f"followers:{user_id}"


def _feed_key(user_id: str) -> str:
    return f"feed:{user_id}"


def _interaction_seen_key(event_id: str) -> str:
    return f"interaction:seen:{event_id}"


# ---------------------------------------------------------------------------
# Post summaries
# ---------------------------------------------------------------------------


def summary_to_hash(summary: PostSummary) -> dict[str, str]:
    """Non-counter fields of a summary in wire format."""
    fields = {
        "id": summary.post_id,
        "userId": summary.author_id,
        "hashtags": json.dumps(summary.hashtags),
        "mentions": json.dumps(summary.mentions),
        "createdAt": summary.created_at.isoformat(),
        "mediaUrls": json.dumps(summary.media_urls),
    }
    if summary.content is not None:
        fields["content"] = summary.content
    if summary.updated_at is not None:
        fields["updatedAt"] = summary.updated_at.isoformat()
    return fields


def hash_to_summary(data: dict[str, str]) -> PostSummary | None:
    """Parse a post hash; None when the hash is empty or unreadable."""
    if not data or not data.get("id"):
        return None
    try:
        return PostSummary(
            post_id=data["id"],
            author_id=data.get("userId", ""),
            hashtags=json.loads(data.get("hashtags") or "[]"),
            mentions=json.loads(data.get("mentions") or "[]"),
            likes_count=max(0, int(data.get("likesCount") or 0)),
            comments_count=max(0, int(data.get("commentsCount") or 0)),
            shares_count=max(0, int(data.get("sharesCount") or 0)),
            created_at=datetime.fromisoformat(data["createdAt"]),
            content=data.get("content"),
            media_urls=json.loads(data.get("mediaUrls") or "[]"),
            updated_at=datetime.fromisoformat(data["updatedAt"]) if data.get("updatedAt") else None,
        )
    except (KeyError, ValueError, ValidationError) as exc:
        logger.warning("Unreadable post summary %s: %s", data.get("id"), exc)
        return None


async def get_post_summary(post_id: str, redis: Redis) -> PostSummary | None:
    return hash_to_summary(await redis.hgetall(_post_key(post_id)))


async def get_post_summaries(post_ids: list[str], redis: Redis) -> dict[str, PostSummary]:
    """Resolve many ids in one pipeline round-trip; missing ids are absent from the result."""
    if not post_ids:
        return {}
    pipeline = redis.pipeline(transaction=False)
    for pid in post_ids:
        pipeline.hgetall(_post_key(pid))
    rows = await pipeline.execute()
    resolved: dict[str, PostSummary] = {}
    for pid, row in zip(post_ids, rows):
        summary = hash_to_summary(row)
        if summary is not None:
            resolved[pid] = summary
    return resolved


async def upsert_post_summary(summary: PostSummary, redis: Redis) -> None:
    """Write descriptive fields; counters are only initialised when absent.

    Replaying a creation event therefore never resets engagement gathered since.
    """
    key = _post_key(summary.post_id)
    pipeline = redis.pipeline(transaction=True)
    pipeline.hset(key, mapping=summary_to_hash(summary))
    pipeline.hsetnx(key, "likesCount", str(summary.likes_count))
    pipeline.hsetnx(key, "commentsCount", str(summary.comments_count))
    pipeline.hsetnx(key, "sharesCount", str(summary.shares_count))
    await pipeline.execute()


async def patch_post_summary(post_id: str, fields: dict[str, str], redis: Redis) -> bool:
    """HSET `fields` only if the summary exists. Returns False for unknown posts."""
    key = _post_key(post_id)

    async def _patch(pipe) -> bool:
        if not await pipe.exists(key):
            return False
        pipe.multi()
        pipe.hset(key, mapping=fields)
        return True

    if not fields:
        return bool(await redis.exists(key))
    return await redis.transaction(_patch, key, value_from_callable=True)


async def delete_post_summary(post_id: str, redis: Redis) -> None:
    await redis.delete(_post_key(post_id))


async def set_counter(post_id: str, interaction: str, value: int, redis: Redis) -> bool:
    return await patch_post_summary(
        post_id, {COUNTER_FIELDS[interaction]: str(max(0, value))}, redis
    )


class CounterUpdate(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNKNOWN_POST = "unknown_post"


async def incr_counter(
    post_id: str,
    interaction: str,
    delta: int,
    redis: Redis,
    *,
    event_id: str | None = None,
    dedup_ttl_seconds: int = 86400,
) -> CounterUpdate:
    """Add `delta` to a counter, clamped at zero.

    With an `event_id` the redelivery guard is written in the same MULTI as
    the counter, so a delta is recorded as seen only once it has been applied.
    """
    key = _post_key(post_id)
    field = COUNTER_FIELDS[interaction]
    seen_key = _interaction_seen_key(event_id) if event_id else None
    watched = [key, seen_key] if seen_key else [key]

    async def _incr(pipe) -> CounterUpdate:
        if seen_key and await pipe.exists(seen_key):
            return CounterUpdate.DUPLICATE
        if not await pipe.exists(key):
            return CounterUpdate.UNKNOWN_POST
        current = int(await pipe.hget(key, field) or 0)
        pipe.multi()
        pipe.hset(key, field, str(max(0, current + delta)))
        if seen_key:
            pipe.set(seen_key, "1", ex=dedup_ttl_seconds)
        return CounterUpdate.APPLIED

    return await redis.transaction(_incr, *watched, value_from_callable=True)


# ---------------------------------------------------------------------------
# Per-author time index
# ---------------------------------------------------------------------------


async def add_to_author_index(
    author_id: str, post_id: str, created_at: datetime, max_size: int, redis: Redis
) -> None:
    key = _author_index_key(author_id)
    pipeline = redis.pipeline(transaction=True)
    pipeline.zadd(key, {post_id: created_at.timestamp()})
    # keep only the newest `max_size` entries
    pipeline.zremrangebyrank(key, 0, -(max_size + 1))
    await pipeline.execute()


async def remove_from_author_index(author_id: str, post_id: str, redis: Redis) -> None:
    await redis.zrem(_author_index_key(author_id), post_id)


async def get_recent_author_post_ids(author_id: str, count: int, redis: Redis) -> list[str]:
    """Newest first."""
    return await redis.zrevrange(_author_index_key(author_id), 0, count - 1)


# ---------------------------------------------------------------------------
# Trending
# ---------------------------------------------------------------------------


async def add_trending(post_id: str, score: float, redis: Redis) -> bool:
    """Insert without overwriting an existing (possibly recomputed) score."""
    return bool(await redis.zadd(TRENDING_KEY, {post_id: score}, nx=True))


async def remove_trending(post_ids: list[str], redis: Redis) -> int:
    if not post_ids:
        return 0
    return await redis.zrem(TRENDING_KEY, *post_ids)


async def get_trending_page(offset: int, count: int, redis: Redis) -> list[tuple[str, float]]:
    """(post_id, score) pairs, highest score first."""
    if count <= 0:
        return []
    return await redis.zrevrange(TRENDING_KEY, offset, offset + count - 1, withscores=True)


async def count_trending(redis: Redis) -> int:
    return await redis.zcard(TRENDING_KEY)


async def get_all_trending_ids(redis: Redis) -> list[str]:
    return await redis.zrange(TRENDING_KEY, 0, -1)


async def set_trending_scores(scores: dict[str, float], redis: Redis) -> None:
    """Rewrite scores of existing members only (XX), so a concurrent delete wins."""
    if not scores:
        return
    await redis.zadd(TRENDING_KEY, scores, xx=True)


# ---------------------------------------------------------------------------
# Social graph sets (owned by the social graph service)
# ---------------------------------------------------------------------------


async def _get_set(key: str, redis: Redis) -> set[str] | None:
    pipeline = redis.pipeline(transaction=False)
    pipeline.exists(key)
    pipeline.smembers(key)
    exists, members = await pipeline.execute()
    return set(members) if exists else None


async def get_following(user_id: str, redis: Redis) -> set[str] | None:
    """Followed ids, or None when the set has never been cached."""
    return await _get_set(_following_key(user_id), redis)


async def get_followers(user_id: str, redis: Redis) -> set[str] | None:
    return await _get_set(_followers_key(user_id), redis)


async def _cache_set(key: str, members: set[str], ttl_seconds: int, redis: Redis) -> None:
    # Redis cannot hold an empty set; an empty result simply stays uncached.
    if not members:
        return
    pipeline = redis.pipeline(transaction=True)
    pipeline.delete(key)
    pipeline.sadd(key, *members)
    pipeline.expire(key, ttl_seconds)
    await pipeline.execute()


async def cache_following(user_id: str, members: set[str], ttl_seconds: int, redis: Redis) -> None:
    await _cache_set(_following_key(user_id), members, ttl_seconds, redis)


async def cache_followers(user_id: str, members: set[str], ttl_seconds: int, redis: Redis) -> None:
    await _cache_set(_followers_key(user_id), members, ttl_seconds, redis)


# ---------------------------------------------------------------------------
# Materialised feeds
# ---------------------------------------------------------------------------


async def get_cached_feed(user_id: str, redis: Redis) -> list[PostSummary] | None:
    """Return the cached feed or None on miss (a corrupt entry counts as a miss)."""
    raw = await redis.get(_feed_key(user_id))
    if raw is None:
        return None
    try:
        return _feed_adapter.validate_json(raw)
    except ValidationError as exc:
        logger.warning("Discarding unreadable cached feed for user %s: %s", user_id, exc)
        return None


async def set_cached_feed(
    user_id: str, posts: list[PostSummary], ttl_seconds: int, redis: Redis
) -> None:
    await redis.setex(_feed_key(user_id), ttl_seconds, _feed_adapter.dump_json(posts))


async def delete_cached_feed(user_id: str, redis: Redis) -> None:
    await redis.delete(_feed_key(user_id))

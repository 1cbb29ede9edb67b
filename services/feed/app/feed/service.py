"""Feed cache manager — read / write-through / invalidate lifecycle of user feeds.

Tiers
-----
fast     Redis  feed:{user_id}   TTL 1 h   authority for "is this feed fresh"
durable  Postgres feed_records   no TTL    recovery copy, allowed to lag

A miss regenerates through FeedGenerator and writes both tiers. Invalidation
only drops the fast entry; the durable record stays as the fallback served
(flagged stale) when a later regeneration fails.

Pagination runs over whichever snapshot was read; an invalidation landing
mid-request does not change the page being returned.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from app.feed import cache as feed_cache
from app.feed.exceptions import FeedUnavailable
from app.feed.generator import FeedGenerator
from app.feed.schemas import FeedPage, FeedRecord, PostSummary
from app.feed.store import FeedRecordStore
from app.telemetry import CACHE_WRITE_ERRORS_TOTAL, FEED_GENERATION_SECONDS, FEED_REQUESTS_TOTAL
from shared.models.pagination import Pagination

logger = logging.getLogger(__name__)


def paginate(posts: list[PostSummary], page: int, page_size: int) -> tuple[list[PostSummary], Pagination]:
    offset = (page - 1) * page_size
    return posts[offset : offset + page_size], Pagination.build(page, page_size, len(posts))


class FeedInvalidator:
    """Fast-cache invalidation only. All the event consumer needs."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def invalidate(self, user_id: str) -> None:
        """Drop the fast-cache entry. Safe to repeat and safe for users with no entry."""
        await feed_cache.delete_cached_feed(user_id, self._redis)


class FeedCacheManager(FeedInvalidator):
    def __init__(
        self,
        redis: Redis,
        store: FeedRecordStore,
        generator: FeedGenerator,
        *,
        max_size: int = 50,
        ttl_seconds: int = 3600,
    ) -> None:
        super().__init__(redis)
        self._store = store
        self._generator = generator
        self._max_size = max_size
        self._ttl = ttl_seconds

    async def get_feed(self, user_id: str, page: int = 1, page_size: int = 20) -> FeedPage:
        try:
            cached = await feed_cache.get_cached_feed(user_id, self._redis)
        except (RedisError, OSError) as exc:
            logger.warning("Feed cache read failed for user %s, regenerating: %s", user_id, exc)
            cached = None

        if cached is not None:
            FEED_REQUESTS_TOTAL.labels(outcome="hit").inc()
            logger.debug("Feed served from cache for user %s", user_id)
            items, pagination = paginate(cached, page, page_size)
            return FeedPage(posts=items, pagination=pagination, served_from_cache=True)

        try:
            posts = await self._regenerate(user_id)
        except FeedUnavailable:
            record = await self._durable_copy(user_id)
            if record is None:
                raise
            FEED_REQUESTS_TOTAL.labels(outcome="stale").inc()
            logger.warning(
                "Serving durable feed v%d for user %s after failed regeneration",
                record.version,
                user_id,
            )
            items, pagination = paginate(record.posts, page, page_size)
            return FeedPage(posts=items, pagination=pagination, served_from_cache=False, stale=True)

        FEED_REQUESTS_TOTAL.labels(outcome="miss").inc()
        items, pagination = paginate(posts, page, page_size)
        return FeedPage(posts=items, pagination=pagination, served_from_cache=False)

    async def refresh(self, user_id: str) -> list[PostSummary]:
        """Regenerate regardless of cache state and write both tiers."""
        return await self._regenerate(user_id)

    async def _regenerate(self, user_id: str) -> list[PostSummary]:
        with FEED_GENERATION_SECONDS.time():
            posts = await self._generator.generate(user_id, self._max_size)
            posts = posts[: self._max_size]
            await self._write_through(user_id, posts)
        logger.info("Feed generated for user %s (%d posts)", user_id, len(posts))
        return posts

    async def _write_through(self, user_id: str, posts: list[PostSummary]) -> None:
        try:
            await feed_cache.set_cached_feed(user_id, posts, self._ttl, self._redis)
        except (RedisError, OSError) as exc:
            CACHE_WRITE_ERRORS_TOTAL.labels(tier="fast").inc()
            logger.warning("Feed cache write failed for user %s: %s", user_id, exc)
        try:
            record = await self._store.upsert(user_id, posts)
            logger.debug("Durable feed for user %s now at version %d", user_id, record.version)
        except (SQLAlchemyError, OSError) as exc:
            CACHE_WRITE_ERRORS_TOTAL.labels(tier="durable").inc()
            logger.warning("Durable feed write failed for user %s: %s", user_id, exc)

    async def _durable_copy(self, user_id: str) -> FeedRecord | None:
        try:
            return await self._store.get(user_id)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Durable feed read failed for user %s: %s", user_id, exc)
            return None


async def list_trending(redis: Redis, page: int = 1, page_size: int = 20) -> tuple[list[PostSummary], Pagination]:
    """One page of the global trending set, resolved to summaries.

    `total` counts set members, including stale ones whose summary is gone and
    which are therefore dropped from the page.
    """
    try:
        entries = await feed_cache.get_trending_page((page - 1) * page_size, page_size, redis)
        total = await feed_cache.count_trending(redis)
        summaries = await feed_cache.get_post_summaries([pid for pid, _ in entries], redis)
    except (RedisError, OSError) as exc:
        logger.warning("Trending read failed: %s", exc)
        raise FeedUnavailable() from exc

    posts = [
        summaries[pid].model_copy(update={"score": score})
        for pid, score in entries
        if pid in summaries
    ]
    return posts, Pagination.build(page, page_size, total)

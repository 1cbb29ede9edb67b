from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer

from app.feed import cache as feed_cache
from app.feed.generator import FeedGenerator
from app.feed.schemas import FeedRecord, PostSummary
from app.feed.service import FeedCacheManager
from app.social_graph import FollowSets

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryFeedStore:
    """Durable-tier double with the same contract as FeedRecordStore."""

    def __init__(self) -> None:
        self.records: dict[str, FeedRecord] = {}
        self.fail_reads = False

    async def upsert(self, user_id: str, posts: list[PostSummary]) -> FeedRecord:
        previous = self.records.get(user_id)
        record = FeedRecord(
            user_id=user_id,
            posts=list(posts),
            last_updated=FIXED_NOW,
            version=previous.version + 1 if previous else 1,
        )
        self.records[user_id] = record
        return record

    async def get(self, user_id: str) -> FeedRecord | None:
        if self.fail_reads:
            raise OSError("durable store unreachable")
        return self.records.get(user_id)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest_asyncio.fixture
async def redis() -> AsyncGenerator[FakeAsyncRedis, None]:
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def store() -> InMemoryFeedStore:
    return InMemoryFeedStore()


@pytest.fixture
def follow_sets(redis) -> FollowSets:
    return FollowSets(redis)


@pytest.fixture
def generator(redis, follow_sets) -> FeedGenerator:
    return FeedGenerator(redis, follow_sets, clock=lambda: FIXED_NOW)


@pytest.fixture
def manager(redis, store, generator) -> FeedCacheManager:
    return FeedCacheManager(redis, store, generator, max_size=50, ttl_seconds=3600)


@pytest.fixture
def make_post() -> Callable[..., PostSummary]:
    def _make(
        post_id: str,
        author_id: str = "author-1",
        hours_ago: float = 0,
        likes: int = 0,
        comments: int = 0,
        shares: int = 0,
        hashtags: list[str] | None = None,
    ) -> PostSummary:
        return PostSummary(
            post_id=post_id,
            author_id=author_id,
            hashtags=hashtags or [],
            likes_count=likes,
            comments_count=comments,
            shares_count=shares,
            created_at=FIXED_NOW - timedelta(hours=hours_ago),
        )

    return _make


@pytest.fixture
def seed_post(redis):
    """Store a summary and index it under its author, as POST_CREATED would."""

    async def _seed(summary: PostSummary) -> PostSummary:
        await feed_cache.upsert_post_summary(summary, redis)
        await feed_cache.add_to_author_index(
            summary.author_id, summary.post_id, summary.created_at, 500, redis
        )
        return summary

    return _seed


@pytest.fixture
def follow(redis):
    async def _follow(user_id: str, *author_ids: str) -> None:
        for author_id in author_ids:
            await redis.sadd(f"following:{user_id}", author_id)
            await redis.sadd(f"followers:{author_id}", user_id)

    return _follow

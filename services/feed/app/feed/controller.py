"""Feed controller — orchestration layer between router and service."""

from redis.asyncio import Redis

from app.exceptions import ServiceUnavailable
from app.feed import service
from app.feed.exceptions import FeedUnavailable
from app.feed.schemas import FeedResponse, RefreshResponse, TrendingResponse
from app.feed.service import FeedCacheManager


async def get_feed(
    user_id: str,
    manager: FeedCacheManager,
    page: int = 1,
    limit: int = 20,
) -> FeedResponse:
    try:
        result = await manager.get_feed(user_id, page=page, page_size=limit)
    except FeedUnavailable:
        raise ServiceUnavailable()
    return FeedResponse(
        posts=result.posts,
        pagination=result.pagination,
        cached=result.served_from_cache,
        stale=result.stale,
    )


async def get_trending(redis: Redis, page: int = 1, limit: int = 20) -> TrendingResponse:
    try:
        posts, pagination = await service.list_trending(redis, page=page, page_size=limit)
    except FeedUnavailable:
        raise ServiceUnavailable()
    return TrendingResponse(posts=posts, pagination=pagination)


async def refresh_feed(user_id: str, manager: FeedCacheManager) -> RefreshResponse:
    try:
        await manager.refresh(user_id)
    except FeedUnavailable:
        raise ServiceUnavailable()
    return RefreshResponse(message="Feed refreshed successfully")

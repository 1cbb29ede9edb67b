from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis

from app.dependencies import get_current_user, get_feed_manager, get_redis
from app.feed import controller
from app.feed.schemas import FeedResponse, RefreshResponse, TrendingResponse
from app.feed.service import FeedCacheManager

router = APIRouter(tags=["Feed"])


@router.get(
    "/",
    response_model=FeedResponse,
    summary="Personalised feed",
    description=(
        "Ranked feed of the calling user, paginated over a cached snapshot of at most 50 posts. "
        "Score = recency (100 − age in hours, floored at 0) + likes×3 + comments×5 + shares×10. "
        "Users without a follow set receive the trending feed. "
        "`cached=true` when served from the 1 h fast cache; `stale=true` when regeneration "
        "failed and the last durable copy was served. "
        "Requires the `X-User-ID` header (set by the gateway)."
    ),
)
async def get_feed(
    page: int = Query(1, ge=1, description="1-indexed page number."),
    limit: int = Query(20, ge=1, le=50, description="Page size."),
    user_id: str = Depends(get_current_user),
    manager: FeedCacheManager = Depends(get_feed_manager),
) -> FeedResponse:
    return await controller.get_feed(user_id, manager, page=page, limit=limit)


@router.get(
    "/trending",
    response_model=TrendingResponse,
    summary="Trending posts",
    description=(
        "Global trending set, highest score first. Scores are rewritten every 15 minutes "
        "from current engagement. No identity required."
    ),
)
async def get_trending(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    redis: Redis = Depends(get_redis),
) -> TrendingResponse:
    return await controller.get_trending(redis, page=page, limit=limit)


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    summary="Force feed regeneration",
    description=(
        "Regenerates the caller's feed regardless of cache state and writes it to both "
        "the fast cache and the durable store. Requires the `X-User-ID` header."
    ),
)
async def refresh_feed(
    user_id: str = Depends(get_current_user),
    manager: FeedCacheManager = Depends(get_feed_manager),
) -> RefreshResponse:
    return await controller.refresh_feed(user_id, manager)

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.database import close_db, init_db
from app.dependencies import get_settings
from app.feed.generator import FeedGenerator
from app.feed.router import router as feed_router
from app.feed.scoring import RankingWeights
from app.feed.service import FeedCacheManager
from app.feed.store import FeedRecordStore
from app.log_config import configure_logging
from app.social_graph import FollowSets, SocialGraphClient
from shared.database.redis_client import get_redis_client
from shared.middleware.error_handler import error_envelope_middleware, http_exception_handler
from shared.middleware.request_id import request_id_middleware

logger = logging.getLogger(__name__)

# Swagger tag groups displayed in the OpenAPI docs sidebar
_OPENAPI_TAGS = [
    {
        "name": "Feed",
        "description": (
            "Personalised ranked feed (cached 1 h per user), global trending posts, "
            "and forced feed regeneration. Read/trigger only: feed content changes "
            "through post and interaction events."
        ),
    },
    {
        "name": "Health",
        "description": "Liveness check.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # Unreachable Redis or Postgres at boot is fatal; later outages degrade.
    redis_client = get_redis_client(settings.redis_url)
    await redis_client.ping()
    session_factory = init_db(settings.feed_database_url)
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))

    social_client = None
    if settings.social_graph_url:
        social_client = SocialGraphClient(
            settings.social_graph_url, timeout=settings.social_graph_timeout_seconds
        )
    follow_sets = FollowSets(redis_client, social_client, ttl_seconds=settings.follow_set_ttl_seconds)
    generator = FeedGenerator(
        redis_client,
        follow_sets,
        posts_per_author=settings.author_recent_posts,
        weights=RankingWeights.from_settings(settings),
    )
    app.state.redis = redis_client
    app.state.feed_manager = FeedCacheManager(
        redis_client,
        FeedRecordStore(session_factory),
        generator,
        max_size=settings.feed_max_size,
        ttl_seconds=settings.feed_cache_ttl_seconds,
    )
    logger.info("Feed service ready (env=%s)", settings.env_name)

    yield

    logger.info("Feed service shutting down")
    if social_client is not None:
        await social_client.aclose()
    await redis_client.aclose()
    await close_db()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="Shareup Feed Service",
        description=(
            "Personalised feed generation and caching engine. Ranks posts from followed "
            "authors, caches each user's feed in Redis with a durable Postgres copy, and "
            "keeps caches and the trending set current from post lifecycle events."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=_OPENAPI_TAGS,
        lifespan=lifespan,
    )

    # CORS must be registered first (runs last in middleware stack)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    app.middleware("http")(error_envelope_middleware)
    app.middleware("http")(request_id_middleware)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.include_router(feed_router)
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        """Lightweight liveness check. Does not touch Redis or the database."""
        return {"status": "healthy", "service": "feed-service"}

    return app


app = create_app()

"""
ARQ worker — scheduled feed maintenance.

Runs as a SEPARATE process from the FastAPI API server and the event consumer.
Hosts the trending recalculation cron job; request traffic and the job only
ever touch independent Redis keys, so neither blocks the other.

Start:  arq app.worker.WorkerSettings

A tick either runs to completion or fails, logs, and leaves the retry to the
next tick. ARQ's signal handling stops scheduling on SIGINT/SIGTERM and the
shutdown hook closes the Redis client.
"""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from app.config import Settings
from app.feed.scoring import RankingWeights
from app.log_config import configure_logging
from app.trending.job import TrendingRecalculationJob
from shared.database.redis_client import get_redis_client

logger = logging.getLogger("feed.worker")


async def startup(ctx: dict[str, Any]) -> None:
    """Called once when the worker process starts."""
    settings = Settings()
    configure_logging(settings.log_level)
    redis = get_redis_client(settings.redis_url)
    await redis.ping()
    ctx["redis"] = redis
    ctx["trending_job"] = TrendingRecalculationJob(
        redis,
        lookback_hours=settings.trending_lookback_hours,
        evict_stale=settings.trending_evict_stale,
        weights=RankingWeights.from_settings(settings),
    )
    logger.info(
        "Worker started — trending recalculation every %d min",
        settings.trending_interval_minutes,
    )


async def shutdown(ctx: dict[str, Any]) -> None:
    """Called once when the worker process stops."""
    logger.info("Worker shutting down")
    redis = ctx.get("redis")
    if redis is not None:
        await redis.aclose()


async def recalculate_trending(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron task: rescore the trending set. Never raises."""
    job: TrendingRecalculationJob = ctx["trending_job"]
    result = await job.run()
    if result is None:
        return {"status": "failed"}
    return {"status": "ok", **asdict(result)}


def cron_minutes(interval_minutes: int) -> set[int]:
    """Minutes past the hour for an interval; intervals of an hour or more run hourly."""
    if interval_minutes <= 0 or interval_minutes >= 60:
        return {0}
    return set(range(0, 60, interval_minutes))


def _redis_settings() -> RedisSettings:
    """Parse redis_url from Settings into ARQ RedisSettings."""
    parsed = urlparse(Settings().redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
    )


class WorkerSettings:
    """ARQ reads this class to configure the worker process."""
    functions = [recalculate_trending]
    cron_jobs = [
        cron(
            recalculate_trending,
            minute=cron_minutes(Settings().trending_interval_minutes),
            run_at_startup=True,
            unique=True,
        )
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    # A tick is a handful of pipelined Redis round-trips
    job_timeout = 300
    max_tries = 1
    queue_name = "feed:tasks"

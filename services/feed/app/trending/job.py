"""Trending recalculation — rewrites trending:posts scores from current counters.

For each member whose summary exists and whose created_at is within the
lookback window, score = recency + engagement (same formula as feed ranking,
as_of = now). Members that are out of the window or whose summary is gone are
skipped and left as they are, unless stale eviction is switched on.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from redis.asyncio import Redis

from app.feed import cache as feed_cache
from app.feed.scoring import DEFAULT_RANKING_WEIGHTS, RankingWeights, age_hours, score_post
from app.telemetry import TRENDING_POSTS_RESCORED, TRENDING_RUNS_TOTAL

logger = logging.getLogger(__name__)

_BATCH_SIZE = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrendingRunResult:
    updated: int = 0
    skipped: int = 0
    evicted: int = 0


class TrendingRecalculationJob:
    def __init__(
        self,
        redis: Redis,
        *,
        lookback_hours: float = 24,
        evict_stale: bool = False,
        weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._redis = redis
        self._lookback_hours = lookback_hours
        self._evict_stale = evict_stale
        self._weights = weights
        self._clock = clock

    async def run_once(self) -> TrendingRunResult:
        """One full pass over the trending set. Store errors propagate."""
        now = self._clock()
        result = TrendingRunResult()
        member_ids = await feed_cache.get_all_trending_ids(self._redis)

        for start in range(0, len(member_ids), _BATCH_SIZE):
            batch = member_ids[start : start + _BATCH_SIZE]
            summaries = await feed_cache.get_post_summaries(batch, self._redis)
            scores: dict[str, float] = {}
            stale: list[str] = []
            for pid in batch:
                summary = summaries.get(pid)
                if summary is None or age_hours(summary.created_at, now) > self._lookback_hours:
                    stale.append(pid)
                    continue
                scores[pid] = score_post(summary, now, self._weights)

            await feed_cache.set_trending_scores(scores, self._redis)
            result.updated += len(scores)
            result.skipped += len(stale)
            if self._evict_stale and stale:
                result.evicted += await feed_cache.remove_trending(stale, self._redis)

        return result

    async def run(self) -> TrendingRunResult | None:
        """Scheduler entry point: failures are logged and the next tick retries."""
        try:
            result = await self.run_once()
        except Exception:
            TRENDING_RUNS_TOTAL.labels(outcome="error").inc()
            logger.exception("Error updating trending posts")
            return None
        TRENDING_RUNS_TOTAL.labels(outcome="ok").inc()
        TRENDING_POSTS_RESCORED.inc(result.updated)
        logger.info(
            "Trending posts updated: rescored=%d skipped=%d evicted=%d",
            result.updated,
            result.skipped,
            result.evicted,
        )
        return result

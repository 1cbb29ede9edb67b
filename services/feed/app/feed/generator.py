"""Feed generation — candidate collection, dedup, ranking, truncation.

Personalised path
-----------------
following:{user}  ->  user_posts:{author} (N newest each)  ->  post:{id}
  -> dedup by post_id -> rank(as_of=now) -> first `limit`

Fallback path (no follow set, or candidate collection failed as a whole)
------------------------------------------------------------------------
trending:posts top `limit` -> post:{id}; ids whose summary is gone are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from redis.asyncio import Redis

from app.feed import cache as feed_cache
from app.feed.exceptions import FeedUnavailable
from app.feed.schemas import PostSummary
from app.feed.scoring import DEFAULT_RANKING_WEIGHTS, RankingWeights, rank
from app.social_graph import FollowSets

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CandidateCollectionFailed(Exception):
    """Every followed author's timeline lookup failed."""


class FeedGenerator:
    def __init__(
        self,
        redis: Redis,
        follow_sets: FollowSets,
        *,
        posts_per_author: int = 6,
        weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._redis = redis
        self._follow_sets = follow_sets
        self._posts_per_author = posts_per_author
        self._weights = weights
        self._clock = clock

    async def generate(self, user_id: str, limit: int) -> list[PostSummary]:
        """Ranked feed of at most `limit` posts for `user_id`.

        Raises FeedUnavailable only when the trending fallback is needed and
        fails too.
        """
        try:
            following = await self._follow_sets.following(user_id)
        except Exception:
            logger.exception("Follow set lookup failed for user %s, serving trending", user_id)
            return await self.trending_fallback(limit)

        if not following:
            logger.info("No follow set for user %s, serving trending", user_id)
            return await self.trending_fallback(limit)

        try:
            candidates = await self._collect_candidates(user_id, following)
        except Exception:
            logger.exception("Candidate collection failed for user %s, serving trending", user_id)
            return await self.trending_fallback(limit)

        ranked = rank(candidates, as_of=self._clock(), weights=self._weights)
        return ranked[:limit]

    async def _collect_candidates(self, user_id: str, following: set[str]) -> list[PostSummary]:
        authors = sorted(following)
        results = await asyncio.gather(
            *(
                feed_cache.get_recent_author_post_ids(author, self._posts_per_author, self._redis)
                for author in authors
            ),
            return_exceptions=True,
        )

        post_ids: dict[str, None] = {}
        failed = 0
        for author, result in zip(authors, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.warning("Timeline lookup for author %s failed, omitting: %s", author, result)
                continue
            for pid in result:
                post_ids.setdefault(pid, None)

        if failed and failed == len(authors):
            raise CandidateCollectionFailed(f"all {failed} author lookups failed for {user_id}")

        # dict keys are already unique; resolution keeps one summary per post_id
        resolved = await feed_cache.get_post_summaries(list(post_ids), self._redis)
        return list(resolved.values())

    async def trending_fallback(self, limit: int) -> list[PostSummary]:
        """Top trending posts, `score` set to the trending score."""
        try:
            entries = await feed_cache.get_trending_page(0, limit, self._redis)
            summaries = await feed_cache.get_post_summaries([pid for pid, _ in entries], self._redis)
        except Exception as exc:
            logger.exception("Trending fallback failed")
            raise FeedUnavailable() from exc

        posts: list[PostSummary] = []
        for pid, score in entries:
            summary = summaries.get(pid)
            if summary is None:
                continue
            posts.append(summary.model_copy(update={"score": score}))
        return posts

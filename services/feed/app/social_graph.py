"""Optional HTTP lookup against the social graph service.

The social graph normally publishes `following:{id}` / `followers:{id}` sets
into the shared Redis. When one of those sets has never been cached and
SOCIAL_GRAPH_URL is configured, the feed service asks the owner directly and
caches the answer. Expected response shape: ``{"items": ["<user_id>", ...]}``.
"""

from __future__ import annotations

import logging

import httpx
from redis.asyncio import Redis

from app.feed import cache as feed_cache

logger = logging.getLogger(__name__)


class SocialGraphClient:
    def __init__(self, base_url: str, timeout: float = 2.0) -> None:
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch(self, path: str) -> set[str]:
        resp = await self._client.get(path)
        resp.raise_for_status()
        items = resp.json().get("items", [])
        return {str(item["id"]) if isinstance(item, dict) else str(item) for item in items}

    async def get_following(self, user_id: str) -> set[str]:
        return await self._fetch(f"/users/{user_id}/following")

    async def get_followers(self, user_id: str) -> set[str]:
        return await self._fetch(f"/users/{user_id}/followers")


class SocialGraphUnavailable(Exception):
    """The social graph could not answer an uncached follow-set lookup."""


class FollowSets:
    """Follow/follower lookup: Redis first, then the social graph service if configured.

    An empty result means "nothing known" whether the user follows nobody or
    the set was never cached and no client is configured. A failed
    following lookup reads as empty (the feed falls back to trending); a
    failed followers lookup raises SocialGraphUnavailable.
    """

    def __init__(
        self,
        redis: Redis,
        client: SocialGraphClient | None = None,
        ttl_seconds: int = 3600,
    ) -> None:
        self._redis = redis
        self._client = client
        self._ttl = ttl_seconds

    async def following(self, user_id: str) -> set[str]:
        cached = await feed_cache.get_following(user_id, self._redis)
        if cached is not None:
            return cached
        if self._client is None:
            return set()
        try:
            members = await self._client.get_following(user_id)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning("Following lookup for %s failed: %s", user_id, exc)
            return set()
        await feed_cache.cache_following(user_id, members, self._ttl, self._redis)
        return members

    async def followers(self, user_id: str) -> set[str]:
        cached = await feed_cache.get_followers(user_id, self._redis)
        if cached is not None:
            return cached
        if self._client is None:
            return set()
        try:
            members = await self._client.get_followers(user_id)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise SocialGraphUnavailable(f"followers of {user_id}: {exc}") from exc
        await feed_cache.cache_followers(user_id, members, self._ttl, self._redis)
        return members

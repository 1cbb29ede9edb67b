from typing import Any

import redis.asyncio as redis


def get_redis_client(redis_url: str, **kwargs: Any) -> redis.Redis:
    """Build an async client that decodes responses to ``str``.

    Every feed key stores text (JSON blobs, ISO timestamps, integer counters),
    so callers never deal with ``bytes``.
    """
    kwargs.setdefault("health_check_interval", 30)
    return redis.from_url(redis_url, decode_responses=True, **kwargs)

"""Prometheus metrics shared by the API, the event consumer and the trending worker.

The API exposes them at /metrics; the background processes only record them.
"""
from prometheus_client import Counter, Histogram

FEED_REQUESTS_TOTAL = Counter(
    "feed_requests_total",
    "Feed reads by outcome",
    ["outcome"],  # 'hit', 'miss', 'stale'
)

FEED_GENERATION_SECONDS = Histogram(
    "feed_generation_seconds",
    "Time spent generating and writing through one feed",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

CACHE_WRITE_ERRORS_TOTAL = Counter(
    "feed_cache_write_errors_total",
    "Failed write-throughs per tier",
    ["tier"],  # 'fast' or 'durable'
)

EVENTS_PROCESSED_TOTAL = Counter(
    "feed_events_processed_total",
    "Consumed events by type and outcome",
    ["event_type", "outcome"],  # outcome: 'ok', 'dropped', 'error'
)

FANOUT_INVALIDATIONS_TOTAL = Counter(
    "feed_fanout_invalidations_total",
    "Follower feed invalidations issued by the event consumer",
    ["outcome"],  # 'ok' or 'error'
)

TRENDING_RUNS_TOTAL = Counter(
    "trending_recalculation_runs_total",
    "Trending recalculation ticks by outcome",
    ["outcome"],  # 'ok' or 'error'
)

TRENDING_POSTS_RESCORED = Counter(
    "trending_posts_rescored_total",
    "Trending members whose score was rewritten",
)

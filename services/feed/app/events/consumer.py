"""
Feed event consumer — Kafka consumer process.

Consumes the post lifecycle topic and the interaction topic in the
`feed-service-group` consumer group, one message at a time, and applies each
through FeedEventHandler.

Per-message outcome:
  handled               commit
  malformed payload     log, commit (dropped, never retried)
  Redis/socket failure  rewind to the same offset, back off, retry
  social graph outage   (same)
  anything else         log with traceback, commit (dropped)

Start:  python -m app.events.consumer
"""
from __future__ import annotations

import asyncio
import logging

from aiokafka.errors import KafkaError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.config import Settings
from app.events.bus import EventMessage, KafkaEventBus
from app.events.handlers import FeedEventHandler, MalformedEvent
from app.feed.scoring import RankingWeights
from app.feed.service import FeedInvalidator
from app.log_config import configure_logging
from app.social_graph import FollowSets, SocialGraphClient, SocialGraphUnavailable
from app.telemetry import EVENTS_PROCESSED_TOTAL
from shared.database.redis_client import get_redis_client

logger = logging.getLogger("feed.consumer")

RETRY_BACKOFF_SECONDS = 2.0


async def process_message(
    message: EventMessage,
    handler: FeedEventHandler,
    bus: KafkaEventBus,
    retry_backoff_seconds: float = RETRY_BACKOFF_SECONDS,
) -> bool:
    """Handle one message. Returns False when it was rewound for a retry."""
    try:
        await handler.handle(message.topic, message.value)
    except MalformedEvent as exc:
        EVENTS_PROCESSED_TOTAL.labels(event_type="unknown", outcome="dropped").inc()
        logger.warning(
            "Dropping malformed event %s[%d]@%d: %s",
            message.topic, message.partition, message.offset, exc,
        )
    except (RedisError, OSError, SocialGraphUnavailable) as exc:
        logger.warning(
            "Transient failure on %s[%d]@%d, retrying in %.1fs: %s",
            message.topic, message.partition, message.offset, retry_backoff_seconds, exc,
        )
        bus.rewind(message)
        await asyncio.sleep(retry_backoff_seconds)
        return False
    except Exception:
        EVENTS_PROCESSED_TOTAL.labels(event_type="unknown", outcome="error").inc()
        logger.exception(
            "Dropping event %s[%d]@%d after unexpected error",
            message.topic, message.partition, message.offset,
        )

    try:
        await bus.commit(message)
    except KafkaError as exc:
        # Uncommitted messages are redelivered; handlers are idempotent.
        logger.warning("Offset commit failed for %s[%d]@%d: %s", message.topic, message.partition, message.offset, exc)
    return True


def build_handler(
    settings: Settings,
    redis: Redis,
    social_client: SocialGraphClient | None = None,
) -> FeedEventHandler:
    """Event handling needs Redis (and optionally the social graph) only."""
    follow_sets = FollowSets(redis, social_client, ttl_seconds=settings.follow_set_ttl_seconds)
    return FeedEventHandler(
        redis,
        follow_sets,
        FeedInvalidator(redis),
        post_topic=settings.kafka_topic_post_events,
        interaction_topic=settings.kafka_topic_interactions,
        author_index_max_size=settings.author_index_max_size,
        fanout_concurrency=settings.fanout_concurrency,
        dedup_ttl_seconds=settings.interaction_dedup_ttl_seconds,
        weights=RankingWeights.from_settings(settings),
    )


async def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    redis = get_redis_client(settings.redis_url)
    await redis.ping()
    social_client = None
    if settings.social_graph_url:
        social_client = SocialGraphClient(
            settings.social_graph_url, timeout=settings.social_graph_timeout_seconds
        )
    handler = build_handler(settings, redis, social_client)

    bus = KafkaEventBus(
        settings.kafka_bootstrap_servers,
        [settings.kafka_topic_post_events, settings.kafka_topic_interactions],
        settings.kafka_consumer_group,
    )
    await bus.start()
    try:
        async for message in bus.messages():
            await process_message(message, handler, bus)
    finally:
        logger.info("Feed event consumer shutting down")
        await bus.stop()
        if social_client is not None:
            await social_client.aclose()
        await redis.aclose()


if __name__ == "__main__":
    asyncio.run(main())

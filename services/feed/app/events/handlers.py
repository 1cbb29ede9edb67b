"""
Post lifecycle and interaction event handling.

  POST_CREATED   upsert post:{id} (counters only if absent), index under the
                 author, add to trending when tagged, invalidate followers
  POST_UPDATED   patch changed fields of an existing summary, invalidate followers
  POST_DELETED   drop summary, author index entry and trending member,
                 invalidate followers
  interaction    set or adjust one counter; no invalidation (the trending job
                 picks engagement up on its next tick)

Every transition is idempotent so Kafka redelivery never double-counts:
upserts, removals and absolute counter writes are naturally repeatable, and
counter deltas carrying an event id are applied once per id. Updates, deletes
and interactions for a post this service has never seen are no-ops, since
events from different partitions can arrive out of order.

Payloads that fail to decode or validate raise MalformedEvent; the consumer
logs and drops those. Redis failures propagate so the consumer can retry.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from redis.asyncio import Redis

from app.feed import cache as feed_cache
from app.feed.schemas import PostSummary
from app.feed.scoring import DEFAULT_RANKING_WEIGHTS, RankingWeights, as_utc, score_recency
from app.feed.service import FeedInvalidator
from app.social_graph import FollowSets
from app.telemetry import EVENTS_PROCESSED_TOTAL, FANOUT_INVALIDATIONS_TOTAL
from shared.events.schemas import InteractionEvent, PostEventType, PostLifecycleEvent

logger = logging.getLogger(__name__)


class MalformedEvent(ValueError):
    """Payload cannot be decoded or does not match the event schema."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_payload(raw: bytes | str | dict | None) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if raw is None:
        raise MalformedEvent("empty payload")
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEvent(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedEvent("payload is not a JSON object")
    return payload


class FeedEventHandler:
    def __init__(
        self,
        redis: Redis,
        follow_sets: FollowSets,
        feeds: FeedInvalidator,
        *,
        post_topic: str = "post-events",
        interaction_topic: str = "post-interactions",
        author_index_max_size: int = 500,
        fanout_concurrency: int = 100,
        dedup_ttl_seconds: int = 86400,
        weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._redis = redis
        self._follow_sets = follow_sets
        self._feeds = feeds
        self._post_topic = post_topic
        self._interaction_topic = interaction_topic
        self._author_index_max_size = author_index_max_size
        self._fanout_concurrency = fanout_concurrency
        self._dedup_ttl = dedup_ttl_seconds
        self._weights = weights
        self._clock = clock

    async def handle(self, topic: str, raw: bytes | str | dict | None) -> None:
        """Route one message by topic. Raises MalformedEvent for undecodable input."""
        payload = decode_payload(raw)
        if topic == self._post_topic:
            await self.handle_post_event(payload)
        elif topic == self._interaction_topic:
            await self.handle_interaction(payload)
        else:
            logger.warning("Ignoring message from unexpected topic %s", topic)

    # ------------------------------------------------------------------
    # Post lifecycle
    # ------------------------------------------------------------------

    async def handle_post_event(self, payload: dict[str, Any]) -> None:
        event_type = payload.get("eventType", payload.get("event_type"))
        if not isinstance(event_type, str) or event_type not in PostEventType.__members__:
            logger.warning("Unknown event type: %s", event_type)
            EVENTS_PROCESSED_TOTAL.labels(event_type="unknown", outcome="dropped").inc()
            return
        try:
            event = PostLifecycleEvent.model_validate(payload)
        except ValidationError as exc:
            raise MalformedEvent(f"{event_type}: {exc.error_count()} validation errors") from exc

        if event.event_type is PostEventType.POST_CREATED:
            await self.on_post_created(event)
        elif event.event_type is PostEventType.POST_UPDATED:
            await self.on_post_updated(event)
        else:
            await self.on_post_deleted(event)
        EVENTS_PROCESSED_TOTAL.labels(event_type=event.event_type.value, outcome="ok").inc()

    async def on_post_created(self, event: PostLifecycleEvent) -> None:
        data = event.data
        created_at = as_utc(data.created_at or event.timestamp)
        summary = PostSummary(
            post_id=data.post_id,
            author_id=data.author_id,
            hashtags=data.hashtags or [],
            mentions=data.mentions or [],
            created_at=created_at,
            content=data.content,
            media_urls=data.media_urls or [],
        )
        await feed_cache.upsert_post_summary(summary, self._redis)
        await feed_cache.add_to_author_index(
            data.author_id, data.post_id, created_at, self._author_index_max_size, self._redis
        )
        if summary.hashtags:
            # no engagement yet, so the trending score is recency alone
            initial = score_recency(created_at, self._clock(), self._weights)
            await feed_cache.add_trending(data.post_id, initial, self._redis)

        invalidated = await self.invalidate_followers(data.author_id)
        logger.info(
            "Post created event processed: post=%s author=%s followers_invalidated=%d",
            data.post_id,
            data.author_id,
            invalidated,
        )

    async def on_post_updated(self, event: PostLifecycleEvent) -> None:
        data = event.data
        fields: dict[str, str] = {"updatedAt": event.timestamp.isoformat()}
        if data.hashtags is not None:
            fields["hashtags"] = json.dumps(list(dict.fromkeys(data.hashtags)))
        if data.mentions is not None:
            fields["mentions"] = json.dumps(list(dict.fromkeys(data.mentions)))
        if data.content is not None:
            fields["content"] = data.content
        if data.media_urls is not None:
            fields["mediaUrls"] = json.dumps(data.media_urls)

        if not await feed_cache.patch_post_summary(data.post_id, fields, self._redis):
            logger.debug("Update for unknown post %s ignored", data.post_id)
            return

        if data.hashtags:
            summary = await feed_cache.get_post_summary(data.post_id, self._redis)
            if summary is not None:
                initial = score_recency(summary.created_at, self._clock(), self._weights)
                await feed_cache.add_trending(data.post_id, initial, self._redis)

        invalidated = await self.invalidate_followers(data.author_id)
        logger.info(
            "Post updated event processed: post=%s followers_invalidated=%d",
            data.post_id,
            invalidated,
        )

    async def on_post_deleted(self, event: PostLifecycleEvent) -> None:
        data = event.data
        await feed_cache.delete_post_summary(data.post_id, self._redis)
        await feed_cache.remove_from_author_index(data.author_id, data.post_id, self._redis)
        await feed_cache.remove_trending([data.post_id], self._redis)
        invalidated = await self.invalidate_followers(data.author_id)
        logger.info(
            "Post deleted event processed: post=%s followers_invalidated=%d",
            data.post_id,
            invalidated,
        )

    async def invalidate_followers(self, author_id: str) -> int:
        """Drop every follower's cached feed; one failure never stops the rest.

        Returns the number of successful invalidations.
        """
        followers = await self._follow_sets.followers(author_id)
        if not followers:
            return 0
        semaphore = asyncio.Semaphore(self._fanout_concurrency)

        async def _invalidate(follower_id: str) -> bool:
            async with semaphore:
                try:
                    await self._feeds.invalidate(follower_id)
                except Exception as exc:
                    FANOUT_INVALIDATIONS_TOTAL.labels(outcome="error").inc()
                    logger.warning("Feed invalidation failed for follower %s: %s", follower_id, exc)
                    return False
            FANOUT_INVALIDATIONS_TOTAL.labels(outcome="ok").inc()
            return True

        results = await asyncio.gather(*(_invalidate(fid) for fid in followers))
        return sum(results)

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    async def handle_interaction(self, payload: dict[str, Any]) -> None:
        try:
            event = InteractionEvent.model_validate(payload)
        except ValidationError as exc:
            raise MalformedEvent(f"interaction: {exc.error_count()} validation errors") from exc

        interaction = event.type.value
        if event.count is not None:
            applied = await feed_cache.set_counter(event.post_id, interaction, event.count, self._redis)
        else:
            update = await feed_cache.incr_counter(
                event.post_id,
                interaction,
                event.delta,
                self._redis,
                event_id=event.event_id,
                dedup_ttl_seconds=self._dedup_ttl,
            )
            if update is feed_cache.CounterUpdate.DUPLICATE:
                logger.debug("Duplicate interaction %s ignored", event.event_id)
                EVENTS_PROCESSED_TOTAL.labels(event_type="INTERACTION", outcome="dropped").inc()
                return
            applied = update is feed_cache.CounterUpdate.APPLIED

        if not applied:
            logger.debug("Interaction for unknown post %s ignored", event.post_id)
        EVENTS_PROCESSED_TOTAL.labels(event_type="INTERACTION", outcome="ok").inc()

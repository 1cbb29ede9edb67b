"""
Kafka event bus adapter (consumer side).

Offsets are committed manually after an event has been handled, so delivery
is at-least-once: a crash between handling and commit replays the event, and
every handler is written to tolerate that. Values are passed through as raw
bytes; decoding happens in the handler so a malformed payload can be logged
and dropped instead of breaking the fetch loop.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from aiokafka import AIOKafkaConsumer, TopicPartition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventMessage:
    topic: str
    partition: int
    offset: int
    value: bytes | None


class KafkaEventBus:
    def __init__(self, bootstrap_servers: str, topics: list[str], group_id: str) -> None:
        self.topics = topics
        self._consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )

    async def start(self) -> None:
        await self._consumer.start()
        logger.info("Kafka consumer listening on %s", ", ".join(self.topics))

    async def stop(self) -> None:
        await self._consumer.stop()

    async def messages(self) -> AsyncIterator[EventMessage]:
        async for record in self._consumer:
            yield EventMessage(
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                value=record.value,
            )

    async def commit(self, message: EventMessage) -> None:
        """Mark `message` (and everything before it on its partition) as consumed."""
        tp = TopicPartition(message.topic, message.partition)
        await self._consumer.commit({tp: message.offset + 1})

    def rewind(self, message: EventMessage) -> None:
        """Redeliver `message` on the next fetch (used after a transient failure)."""
        self._consumer.seek(TopicPartition(message.topic, message.partition), message.offset)

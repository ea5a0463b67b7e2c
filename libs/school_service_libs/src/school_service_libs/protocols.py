"""
Shared protocol definitions for school_service_libs.

The relay core only talks to its collaborators (broker, processed-id store,
dead-letter store) through these narrow interfaces.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol

from aiokafka import ConsumerRecord, TopicPartition
from school_common.events.envelope import EventEnvelope

if TYPE_CHECKING:
    from school_service_libs.dead_letter_models import DeadLetterRecord
    from school_service_libs.kafka_client import BatchPublishOutcome, PublishOutcome

__all__ = [
    "RedisClientProtocol",
    "EventPublisherProtocol",
    "DeadLetterStoreProtocol",
    "BrokerConsumerProtocol",
]


class RedisClientProtocol(Protocol):
    """Protocol for the Redis operations used by idempotency and dead-letter storage."""

    async def set_if_not_exists(
        self,
        key: str,
        value: Any,
        ttl_seconds: int | None = None,
    ) -> bool:
        """
        Atomic SET if NOT EXISTS.

        Returns:
            True if key was set (first writer), False if key already exists
        """
        ...

    async def set_and_index_if_not_exists(
        self, key: str, value: str, index_key: str, member: str
    ) -> bool:
        """
        Atomically SET ``key`` and RPUSH ``member`` onto ``index_key`` unless key exists.

        Returns:
            True if both writes were applied, False if key already exists
        """
        ...

    async def get(self, key: str) -> str | None:
        ...

    async def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        ...

    async def delete_key(self, key: str) -> int:
        """Delete a key. Returns number of keys deleted (0 or 1)."""
        ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        ...

    async def lrem(self, key: str, count: int, value: str) -> int:
        ...

    async def ping(self) -> bool:
        ...


class EventPublisherProtocol(Protocol):
    """Protocol for publishing envelopes to the broker."""

    async def publish(self, channel: str, envelope: EventEnvelope) -> PublishOutcome:
        """
        Publish one envelope and wait for the broker's durable acknowledgement.

        Raises:
            TransportError: If the broker could not accept the envelope.
        """
        ...

    async def publish_batch(
        self, channel: str, envelopes: Sequence[EventEnvelope]
    ) -> BatchPublishOutcome:
        """Publish envelopes independently, reporting acceptance per index."""
        ...

    async def publish_raw(
        self, channel: str, value: bytes, key: str | None = None
    ) -> PublishOutcome:
        """Publish an already encoded message (used for quarantine mirroring)."""
        ...


class DeadLetterStoreProtocol(Protocol):
    """Append-only store of dead-letter records."""

    async def append(self, record: DeadLetterRecord) -> bool:
        """Write a record. Returns False if one already exists for the same id (first wins)."""
        ...

    async def get(self, consumer_group: str, envelope_id: str) -> DeadLetterRecord | None:
        ...

    async def list_records(self, consumer_group: str, limit: int = 100) -> list[DeadLetterRecord]:
        ...

    async def remove(self, consumer_group: str, envelope_id: str) -> bool:
        """Remove a record after it has been replayed."""
        ...


class BrokerConsumerProtocol(Protocol):
    """The slice of AIOKafkaConsumer the dispatcher relies on (manual commits only)."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def getmany(
        self, *partitions: TopicPartition, timeout_ms: int = 0, max_records: int | None = None
    ) -> dict[TopicPartition, list[ConsumerRecord]]:
        ...

    async def commit(self, offsets: dict[TopicPartition, int] | None = None) -> None:
        ...

    def pause(self, *partitions: TopicPartition) -> None:
        """Stop fetching from ``partitions`` without giving up their assignment."""
        ...

    def resume(self, *partitions: TopicPartition) -> None:
        ...

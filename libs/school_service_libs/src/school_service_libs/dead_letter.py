"""
Dead-letter routing for messages that exhausted their retries or could not be decoded.

Records are stored per consumer group in Redis (append-only, first write wins)
and optionally mirrored to the ``{channel}.DLQ`` topic for operators who tail
the broker. Replay is an explicit administrative action: the stored envelope is
republished to its original channel with the same id and the record removed.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

from school_common.event_enums import dead_letter_channel
from school_common.events.envelope import EventEnvelope

from .dead_letter_models import DeadLetterRecord
from .envelope_codec import salvage_event_id
from .error_handling import raise_resource_not_found, raise_validation_error
from .kafka_client import PublishOutcome
from .logging_utils import create_service_logger
from .metrics import RelayMetrics
from .protocols import DeadLetterStoreProtocol, EventPublisherProtocol, RedisClientProtocol

logger = create_service_logger("dead-letter")

DLQ_SCHEMA_VERSION = 1


class RedisDeadLetterStore(DeadLetterStoreProtocol):
    """
    Keys:
        {prefix}:{group}:record:{envelope_id}  JSON DeadLetterRecord
        {prefix}:{group}:index                 list of envelope ids, oldest first
    """

    def __init__(self, redis_client: RedisClientProtocol, key_prefix: str = "school:dead_letter"):
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    def _record_key(self, consumer_group: str, envelope_id: str) -> str:
        return f"{self.key_prefix}:{consumer_group}:record:{envelope_id}"

    def _index_key(self, consumer_group: str) -> str:
        return f"{self.key_prefix}:{consumer_group}:index"

    async def append(self, record: DeadLetterRecord) -> bool:
        # Record and index entry land together so a listed id always resolves
        return await self.redis_client.set_and_index_if_not_exists(
            self._record_key(record.consumer_group, record.envelope_id),
            record.to_json(),
            self._index_key(record.consumer_group),
            record.envelope_id,
        )

    async def get(self, consumer_group: str, envelope_id: str) -> DeadLetterRecord | None:
        raw = await self.redis_client.get(self._record_key(consumer_group, envelope_id))
        return DeadLetterRecord.from_json(raw) if raw is not None else None

    async def list_records(self, consumer_group: str, limit: int = 100) -> list[DeadLetterRecord]:
        if limit <= 0:
            return []
        envelope_ids = await self.redis_client.lrange(self._index_key(consumer_group), 0, limit - 1)
        records = []
        for envelope_id in envelope_ids:
            record = await self.get(consumer_group, envelope_id)
            if record is not None:
                records.append(record)
        return records

    async def remove(self, consumer_group: str, envelope_id: str) -> bool:
        deleted = await self.redis_client.delete_key(self._record_key(consumer_group, envelope_id))
        await self.redis_client.lrem(self._index_key(consumer_group), 0, envelope_id)
        return deleted > 0


class DeadLetterRouter:
    def __init__(
        self,
        store: DeadLetterStoreProtocol,
        publisher: EventPublisherProtocol | None = None,
        *,
        service_name: str = "event-relay",
        mirror_to_topic: bool = False,
        metrics: RelayMetrics | None = None,
    ):
        self.store = store
        self.publisher = publisher
        self.service_name = service_name
        self.mirror_to_topic = mirror_to_topic and publisher is not None
        self.metrics = metrics

    async def quarantine(
        self,
        envelope: EventEnvelope,
        channel: str,
        reason: str,
        attempt_count: int,
        consumer_group: str,
    ) -> DeadLetterRecord:
        """Quarantine a decoded envelope whose handler exhausted its attempts."""
        record = DeadLetterRecord(
            envelope_id=envelope.event_id,
            original_channel=channel,
            consumer_group=consumer_group,
            failure_reason=reason,
            attempt_count=attempt_count,
            event_type=envelope.event_type,
            envelope=envelope,
        )
        return await self._store(record, kind="exhausted")

    async def quarantine_poison(
        self,
        raw_value: bytes | str | None,
        channel: str,
        reason: str,
        consumer_group: str,
        *,
        partition: int | None = None,
        offset: int | None = None,
        envelope: EventEnvelope | None = None,
    ) -> DeadLetterRecord:
        """
        Quarantine a message that never reached a handler.

        ``envelope`` is passed when the envelope decoded but its payload failed
        schema validation; the record is then replayable once the schema is fixed.
        """
        envelope_id = (
            envelope.event_id
            if envelope is not None
            else salvage_event_id(raw_value) or f"{channel}:{partition}:{offset}"
        )
        if isinstance(raw_value, bytes):
            raw_text: str | None = raw_value.decode("utf-8", errors="replace")
        else:
            raw_text = raw_value

        record = DeadLetterRecord(
            envelope_id=envelope_id,
            original_channel=channel,
            consumer_group=consumer_group,
            failure_reason=reason,
            attempt_count=0,
            event_type=envelope.event_type if envelope is not None else None,
            raw_value=raw_text,
            envelope=envelope,
        )
        return await self._store(record, kind="poison")

    async def _store(self, record: DeadLetterRecord, kind: str) -> DeadLetterRecord:
        created = await self.store.append(record)
        if not created:
            logger.warning(
                "Dead-letter record already exists, keeping the first one",
                consumer_group=record.consumer_group,
                envelope_id=record.envelope_id,
            )
            return record

        logger.error(
            "Message quarantined",
            kind=kind,
            channel=record.original_channel,
            consumer_group=record.consumer_group,
            envelope_id=record.envelope_id,
            attempt_count=record.attempt_count,
            reason=record.failure_reason,
        )
        if self.metrics is not None:
            self.metrics.dead_lettered.labels(
                channel=record.original_channel, group=record.consumer_group, kind=kind
            ).inc()

        if self.mirror_to_topic:
            await self._mirror(record)
        return record

    async def _mirror(self, record: DeadLetterRecord) -> None:
        """Best effort: the store write above is the record of truth."""
        assert self.publisher is not None
        dlq_topic = dead_letter_channel(record.original_channel)
        dlq_message = {
            "schema_version": DLQ_SCHEMA_VERSION,
            "failed_event_envelope": (
                record.envelope.model_dump(mode="json", by_alias=True)
                if record.envelope is not None
                else None
            ),
            "raw_value": record.raw_value,
            "dlq_reason": record.failure_reason,
            "attempt_count": record.attempt_count,
            "consumer_group": record.consumer_group,
            "timestamp": datetime.now(UTC).isoformat(),
            "service": self.service_name,
        }
        key = record.envelope.partition_key if record.envelope is not None else record.envelope_id
        try:
            await self.publisher.publish_raw(
                dlq_topic, json.dumps(dlq_message).encode("utf-8"), key=key
            )
            logger.info(
                f"Mirrored dead-letter record to {dlq_topic}", envelope_id=record.envelope_id
            )
        except Exception as e:
            logger.error(
                f"Failed to mirror dead-letter record to {dlq_topic}: {e}",
                envelope_id=record.envelope_id,
                exc_info=True,
            )

    async def replay(self, envelope_id: str, consumer_group: str) -> PublishOutcome:
        """
        Republish a quarantined envelope to its original channel, then drop the record.

        Raises:
            RelayError: RESOURCE_NOT_FOUND if no record exists, VALIDATION_ERROR if
                the record holds no decodable envelope.
            TransportError: If the broker rejects the envelope; the record is kept.
        """
        record = await self.store.get(consumer_group, envelope_id)
        if record is None:
            raise_resource_not_found(
                self.service_name,
                "replay",
                "DeadLetterRecord",
                envelope_id,
                consumer_group=consumer_group,
            )
        if record.envelope is None:
            raise_validation_error(
                self.service_name,
                "replay",
                "envelope",
                "Poison record has no decodable envelope to replay",
                envelope_id=envelope_id,
            )
        if self.publisher is None:
            raise_validation_error(
                self.service_name,
                "replay",
                "publisher",
                "Replay requires a publisher",
                envelope_id=envelope_id,
            )

        outcome = await self.publisher.publish(record.original_channel, record.envelope)
        await self.store.remove(consumer_group, envelope_id)
        logger.info(
            "Replayed dead-letter record",
            envelope_id=envelope_id,
            channel=record.original_channel,
            consumer_group=consumer_group,
            partition=outcome.partition,
            offset=outcome.offset,
        )
        return outcome

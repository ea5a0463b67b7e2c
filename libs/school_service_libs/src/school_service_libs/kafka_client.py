"""
Thin Kafka publisher using aiokafka for school platform services.

One producer per KafkaBus instance. The bus is constructed once at startup and
injected wherever events are published; concurrent publish calls share it
without extra locking.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaError
from school_common.error_enums import ErrorCode
from school_common.events.envelope import EventEnvelope

from .envelope_codec import encode_envelope
from .error_handling import (
    RelayError,
    TransportError,
    create_error_detail,
    raise_transport_error,
)
from .logging_utils import create_service_logger
from .metrics import RelayMetrics
from .protocols import EventPublisherProtocol

logger = create_service_logger("kafka-client")

KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")


@dataclass(frozen=True)
class PublishOutcome:
    accepted: bool
    partition: int | None = None
    offset: int | None = None
    error: RelayError | None = None


@dataclass(frozen=True)
class BatchPublishOutcome:
    outcomes: list[PublishOutcome] = field(default_factory=list)

    @property
    def accepted_indices(self) -> list[int]:
        return [i for i, o in enumerate(self.outcomes) if o.accepted]

    @property
    def failed_indices(self) -> list[int]:
        return [i for i, o in enumerate(self.outcomes) if not o.accepted]

    @property
    def all_accepted(self) -> bool:
        return all(o.accepted for o in self.outcomes)


def envelope_headers(envelope: EventEnvelope) -> list[tuple[str, bytes]]:
    headers = [
        ("event_id", envelope.event_id.encode("utf-8")),
        ("event_type", envelope.event_type.encode("utf-8")),
    ]
    if envelope.tenant_id:
        headers.append(("tenant_id", envelope.tenant_id.encode("utf-8")))
    if envelope.correlation_id:
        headers.append(("correlation_id", envelope.correlation_id.encode("utf-8")))
    return headers


class KafkaBus(EventPublisherProtocol):
    def __init__(
        self,
        *,
        client_id: str,
        bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS,
        publish_timeout_seconds: float = 10.0,
        producer: AIOKafkaProducer | None = None,
        metrics: RelayMetrics | None = None,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.publish_timeout_seconds = publish_timeout_seconds
        self.producer = producer or AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            acks="all",
            enable_idempotence=True,
        )
        self.metrics = metrics
        self._started = False

    async def __aenter__(self) -> KafkaBus:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> None:
        if not self._started:
            try:
                await self.producer.start()
                self._started = True
                logger.info(f"KafkaProducer '{self.client_id}' started successfully.")
            except KafkaError as e:
                logger.error(f"KafkaProducer '{self.client_id}' failed to start: {e}")
                raise_transport_error(
                    service=self.client_id,
                    operation="start",
                    channel="*",
                    message=f"Producer failed to connect to {self.bootstrap_servers}: {e}",
                )

    async def stop(self) -> None:
        try:
            # Always stop the producer, even if start() never succeeded
            await self.producer.stop()
            self._started = False
            logger.info(f"KafkaProducer '{self.client_id}' stopped.")
        except Exception as e:
            logger.error(
                f"Error stopping KafkaProducer '{self.client_id}': {e}",
                exc_info=True,
            )

    async def _ensure_started(self) -> None:
        if not self._started:
            logger.warning(f"KafkaProducer '{self.client_id}' not started. Attempting to start.")
            await self.start()

    async def _send_and_wait(
        self,
        channel: str,
        value: bytes,
        key: str | None,
        headers: list[tuple[str, bytes]],
        correlation_id: str | None = None,
    ) -> PublishOutcome:
        try:
            metadata = await asyncio.wait_for(
                self.producer.send_and_wait(
                    channel,
                    value=value,
                    key=key.encode("utf-8") if key else None,
                    headers=headers,
                ),
                timeout=self.publish_timeout_seconds,
            )
        except (KafkaError, asyncio.TimeoutError) as e:
            self._count(channel, "failed")
            raise self._transport_error(channel, e, correlation_id) from e
        self._count(channel, "accepted")
        return PublishOutcome(accepted=True, partition=metadata.partition, offset=metadata.offset)

    def _count(self, channel: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.publish_results.labels(channel=channel, outcome=outcome).inc()

    def _transport_error(
        self, channel: str, cause: BaseException, correlation_id: str | None
    ) -> TransportError:
        logger.error(
            f"Error publishing message by '{self.client_id}' to topic '{channel}': "
            f"{type(cause).__name__}: {cause}",
        )
        return TransportError(
            create_error_detail(
                ErrorCode.TRANSPORT_ERROR,
                f"Broker did not accept message: {type(cause).__name__}: {cause}",
                service=self.client_id,
                operation="publish",
                correlation_id=correlation_id,
                channel=channel,
            )
        )

    async def publish(self, channel: str, envelope: EventEnvelope) -> PublishOutcome:
        """
        Publish an envelope and wait until the broker has durably accepted it.

        Raises:
            TransportError: On connection failure or timeout. Not retried here.
        """
        await self._ensure_started()
        outcome = await self._send_and_wait(
            channel,
            encode_envelope(envelope),
            envelope.partition_key,
            envelope_headers(envelope),
            correlation_id=envelope.correlation_id,
        )
        logger.debug(
            f"Message published by '{self.client_id}' to {channel} "
            f"[partition:{outcome.partition}, offset:{outcome.offset}] "
            f"key='{envelope.partition_key}' event_id='{envelope.event_id}'",
        )
        return outcome

    async def publish_batch(
        self, channel: str, envelopes: Sequence[EventEnvelope]
    ) -> BatchPublishOutcome:
        """
        Publish envelopes independently and report acceptance per index.

        A failure of one envelope never hides the acceptance of another.
        """
        await self._ensure_started()

        # Enqueue sequentially so envelopes sharing a key keep their batch order
        pending: list[asyncio.Future | TransportError] = []
        for envelope in envelopes:
            try:
                pending.append(
                    await self.producer.send(
                        channel,
                        value=encode_envelope(envelope),
                        key=envelope.partition_key.encode("utf-8"),
                        headers=envelope_headers(envelope),
                    )
                )
            except KafkaError as e:
                pending.append(self._transport_error(channel, e, envelope.correlation_id))

        outcomes: list[PublishOutcome] = []
        for envelope, item in zip(envelopes, pending):
            if isinstance(item, TransportError):
                outcomes.append(PublishOutcome(accepted=False, error=item))
                continue
            try:
                metadata = await asyncio.wait_for(item, timeout=self.publish_timeout_seconds)
                outcomes.append(
                    PublishOutcome(
                        accepted=True, partition=metadata.partition, offset=metadata.offset
                    )
                )
            except (KafkaError, asyncio.TimeoutError) as e:
                outcomes.append(
                    PublishOutcome(
                        accepted=False,
                        error=self._transport_error(channel, e, envelope.correlation_id),
                    )
                )

        result = BatchPublishOutcome(outcomes=outcomes)
        for outcome in outcomes:
            self._count(channel, "accepted" if outcome.accepted else "failed")
        if result.failed_indices:
            logger.warning(
                f"Batch publish by '{self.client_id}' to {channel}: "
                f"{len(result.accepted_indices)} accepted, {len(result.failed_indices)} failed",
                failed_indices=result.failed_indices,
            )
        return result

    async def publish_raw(
        self, channel: str, value: bytes, key: str | None = None
    ) -> PublishOutcome:
        await self._ensure_started()
        return await self._send_and_wait(channel, value, key, headers=[])


def kafka_consumer_factory(
    *,
    bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS,
    client_id: str | None = None,
    auto_offset_reset: str = "earliest",
    max_poll_records: int = 100,
    session_timeout_ms: int = 45000,
) -> Callable[[str, str], AIOKafkaConsumer]:
    """
    Build the consumer factory handed to ConsumerDispatcher.

    Auto-commit is always disabled: offsets are committed by the dispatcher
    only once a record is settled.
    """

    def create(channel: str, group: str) -> AIOKafkaConsumer:
        return AIOKafkaConsumer(
            channel,
            bootstrap_servers=bootstrap_servers,
            client_id=client_id or group,
            group_id=group,
            auto_offset_reset=auto_offset_reset,
            enable_auto_commit=False,
            max_poll_records=max_poll_records,
            session_timeout_ms=session_timeout_ms,
        )

    return create

"""
Unit tests for the KafkaBus publisher.

The aiokafka producer is replaced by an AsyncMock; no broker is needed.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from aiokafka.errors import KafkaConnectionError, KafkaTimeoutError
from school_common.events.envelope import create_envelope

from school_service_libs.envelope_codec import decode_envelope
from school_service_libs.error_handling import TransportError
from school_service_libs.kafka_client import KafkaBus


def _metadata(partition: int, offset: int) -> SimpleNamespace:
    return SimpleNamespace(partition=partition, offset=offset)


@pytest.fixture
def producer() -> AsyncMock:
    mock = AsyncMock()
    mock.send_and_wait.return_value = _metadata(1, 10)
    return mock


@pytest.fixture
def bus(producer: AsyncMock, metrics) -> KafkaBus:
    return KafkaBus(client_id="test-publisher", producer=producer, metrics=metrics)


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_waits_for_broker_ack(self, bus: KafkaBus, producer: AsyncMock) -> None:
        envelope = create_envelope(
            "payment.processed", {"amount": 100}, tenant_id="t1", correlation_id="c1"
        )

        outcome = await bus.publish("payment.events", envelope)

        assert outcome.accepted is True
        assert (outcome.partition, outcome.offset) == (1, 10)
        producer.start.assert_awaited_once()
        call = producer.send_and_wait.await_args
        assert call.args == ("payment.events",)
        assert call.kwargs["key"] == b"t1"
        assert decode_envelope(call.kwargs["value"]) == envelope
        assert ("event_id", envelope.event_id.encode()) in call.kwargs["headers"]
        assert ("tenant_id", b"t1") in call.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_global_event_is_keyed_by_event_id(self, bus: KafkaBus, producer: AsyncMock) -> None:
        envelope = create_envelope("exam.created", {})

        await bus.publish("exam.events", envelope)

        assert producer.send_and_wait.await_args.kwargs["key"] == envelope.event_id.encode()

    @pytest.mark.asyncio
    async def test_transport_failure_raises_without_retry(
        self, bus: KafkaBus, producer: AsyncMock, metrics_registry
    ) -> None:
        producer.send_and_wait.side_effect = KafkaConnectionError()
        envelope = create_envelope("payment.failed", {}, correlation_id="c9")

        with pytest.raises(TransportError) as exc_info:
            await bus.publish("payment.events", envelope)

        assert producer.send_and_wait.await_count == 1
        assert exc_info.value.error_code == "TRANSPORT_ERROR"
        assert exc_info.value.correlation_id == "c9"
        assert exc_info.value.error_detail.details["channel"] == "payment.events"
        assert (
            metrics_registry.get_sample_value(
                "school_relay_publish_results_total",
                {"channel": "payment.events", "outcome": "failed"},
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error(self, producer: AsyncMock) -> None:
        async def never_acked(*args, **kwargs):
            await asyncio.sleep(10)

        producer.send_and_wait.side_effect = never_acked
        bus = KafkaBus(client_id="slow", producer=producer, publish_timeout_seconds=0.01)

        with pytest.raises(TransportError):
            await bus.publish("exam.events", create_envelope("exam.created", {}))

    @pytest.mark.asyncio
    async def test_start_failure_raises_transport_error(self, producer: AsyncMock) -> None:
        producer.start.side_effect = KafkaConnectionError()
        bus = KafkaBus(client_id="unreachable", producer=producer)

        with pytest.raises(TransportError):
            await bus.start()

    @pytest.mark.asyncio
    async def test_context_manager_stops_producer(self, producer: AsyncMock) -> None:
        async with KafkaBus(client_id="scoped", producer=producer):
            pass

        producer.start.assert_awaited_once()
        producer.stop.assert_awaited_once()


class TestPublishBatch:
    @pytest.mark.asyncio
    async def test_partial_failure_reports_indices(self, bus: KafkaBus, producer: AsyncMock) -> None:
        loop = asyncio.get_running_loop()
        futures = [loop.create_future() for _ in range(3)]
        futures[0].set_result(_metadata(0, 1))
        futures[1].set_exception(KafkaTimeoutError())
        futures[2].set_result(_metadata(2, 5))
        producer.send.side_effect = futures
        envelopes = [create_envelope("student.created", {}, tenant_id=f"t{i}") for i in range(3)]

        result = await bus.publish_batch("student.events", envelopes)

        assert result.accepted_indices == [0, 2]
        assert result.failed_indices == [1]
        assert result.all_accepted is False
        assert isinstance(result.outcomes[1].error, TransportError)
        assert result.outcomes[2].offset == 5

    @pytest.mark.asyncio
    async def test_enqueue_failure_does_not_hide_other_results(
        self, bus: KafkaBus, producer: AsyncMock
    ) -> None:
        loop = asyncio.get_running_loop()
        accepted = loop.create_future()
        accepted.set_result(_metadata(0, 3))
        producer.send.side_effect = [KafkaConnectionError(), accepted]
        envelopes = [create_envelope("exam.created", {}) for _ in range(2)]

        result = await bus.publish_batch("exam.events", envelopes)

        assert result.failed_indices == [0]
        assert result.accepted_indices == [1]

    @pytest.mark.asyncio
    async def test_batch_is_enqueued_in_order(self, bus: KafkaBus, producer: AsyncMock) -> None:
        loop = asyncio.get_running_loop()

        def make_future(*args, **kwargs):
            future = loop.create_future()
            future.set_result(_metadata(0, producer.send.call_count))
            return future

        producer.send.side_effect = make_future
        envelopes = [create_envelope("payment.processed", {"n": i}, tenant_id="t1") for i in range(5)]

        result = await bus.publish_batch("payment.events", envelopes)

        assert result.all_accepted
        sent = [decode_envelope(c.kwargs["value"]).payload["n"] for c in producer.send.await_args_list]
        assert sent == [0, 1, 2, 3, 4]

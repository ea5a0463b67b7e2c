from __future__ import annotations

import asyncio
import zlib
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

import pytest
from aiokafka import ConsumerRecord, TopicPartition
from prometheus_client import CollectorRegistry
from school_common.events.envelope import EventEnvelope

from school_service_libs.dead_letter import DeadLetterRouter, RedisDeadLetterStore
from school_service_libs.idempotency import IdempotencyConfig, IdempotencyGuard
from school_service_libs.metrics import RelayMetrics
from school_service_libs.retry import RetryPolicy


class MockRedisClient:
    """In-memory Redis with call capture and toggled failures."""

    def __init__(self) -> None:
        self.keys: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.set_calls: list[tuple[str, str, int | None]] = []
        self.delete_calls: list[str] = []

        self.should_fail_get = False
        self.should_fail_set = False
        self.should_fail_setex = False
        self.should_fail_delete = False
        self.fail_next_index_writes = 0
        self.fail_next_deletes = 0

    async def set_if_not_exists(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        # Yield first so racing callers interleave; the check-and-set itself stays atomic
        await asyncio.sleep(0)
        self.set_calls.append((key, value, ttl_seconds))
        if self.should_fail_set:
            raise RuntimeError("Mock Redis SET failure")
        if key in self.keys:
            return False
        self.keys[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def get(self, key: str) -> str | None:
        if self.should_fail_get:
            raise RuntimeError("Mock Redis GET failure")
        return self.keys.get(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        if self.should_fail_setex:
            raise RuntimeError("Mock Redis SETEX failure")
        self.keys[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def delete_key(self, key: str) -> int:
        self.delete_calls.append(key)
        if self.fail_next_deletes:
            self.fail_next_deletes -= 1
            raise RuntimeError("Mock Redis DELETE failure")
        if self.should_fail_delete:
            raise RuntimeError("Mock Redis DELETE failure")
        if key in self.keys:
            del self.keys[key]
            self.ttls.pop(key, None)
            return 1
        return 0

    async def set_and_index_if_not_exists(
        self, key: str, value: str, index_key: str, member: str
    ) -> bool:
        if self.fail_next_index_writes:
            # EXEC failed: neither write is applied
            self.fail_next_index_writes -= 1
            raise RuntimeError("Mock Redis EXEC failure")
        if key in self.keys:
            return False
        self.keys[key] = value
        self.ttls[key] = None
        self.lists[index_key].append(member)
        return True

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        items = self.lists.get(key, [])
        return items[start : None if stop == -1 else stop + 1]

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        removed = items.count(value)
        self.lists[key] = [item for item in items if item != value]
        return removed

    async def ping(self) -> bool:
        return True


class FakeBroker:
    """Partitioned append-only log with committed offsets per consumer group."""

    def __init__(self, partitions: int = 3) -> None:
        self.partitions = partitions
        self.logs: dict[TopicPartition, list[ConsumerRecord]] = defaultdict(list)
        self.committed: dict[tuple[str, TopicPartition], int] = {}
        self.commits: list[tuple[str, TopicPartition, int]] = []
        self.consumers: list[FakeConsumer] = []

    def partition_for(self, key: str | None) -> int:
        if key is None:
            return 0
        return zlib.crc32(key.encode("utf-8")) % self.partitions

    def produce(self, topic: str, value: bytes | None, key: str | None = None) -> ConsumerRecord:
        tp = TopicPartition(topic, self.partition_for(key))
        log = self.logs[tp]
        record = ConsumerRecord(
            topic=topic,
            partition=tp.partition,
            offset=len(log),
            timestamp=int(datetime.now(UTC).timestamp() * 1000),
            timestamp_type=1,
            key=key.encode("utf-8") if key else None,
            value=value,
            headers=[],
            checksum=None,
            serialized_key_size=len(key) if key else -1,
            serialized_value_size=len(value) if value else -1,
        )
        log.append(record)
        return record

    def publish(self, topic: str, envelope: EventEnvelope) -> ConsumerRecord:
        return self.produce(topic, envelope.to_wire(), key=envelope.partition_key)

    def committed_offset(self, group: str, tp: TopicPartition) -> int:
        return self.committed.get((group, tp), 0)

    def commit(self, group: str, offsets: dict[TopicPartition, int]) -> None:
        for tp, offset in offsets.items():
            self.committed[(group, tp)] = offset
            self.commits.append((group, tp, offset))

    def consumer(self, topic: str, group: str) -> FakeConsumer:
        consumer = FakeConsumer(self, topic, group)
        self.consumers.append(consumer)
        return consumer


class FakeConsumer:
    """Mimics AIOKafkaConsumer.getmany/commit on top of a FakeBroker."""

    def __init__(self, broker: FakeBroker, topic: str, group: str) -> None:
        self.broker = broker
        self.topic = topic
        self.group = group
        self.positions: dict[TopicPartition, int] = {}
        self.paused: set[TopicPartition] = set()
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True
        for partition in range(self.broker.partitions):
            tp = TopicPartition(self.topic, partition)
            self.positions[tp] = self.broker.committed_offset(self.group, tp)

    async def stop(self) -> None:
        self.stopped = True

    async def getmany(
        self, *partitions: TopicPartition, timeout_ms: int = 0, max_records: int | None = None
    ) -> dict[TopicPartition, list[ConsumerRecord]]:
        batches: dict[TopicPartition, list[ConsumerRecord]] = {}
        for tp, position in self.positions.items():
            if tp in self.paused:
                continue
            log = self.broker.logs.get(tp, [])
            records = log[position : position + max_records if max_records else None]
            if records:
                batches[tp] = records
                self.positions[tp] = position + len(records)
        if not batches:
            await asyncio.sleep(timeout_ms / 1000)
        return batches

    async def commit(self, offsets: dict[TopicPartition, int] | None = None) -> None:
        self.broker.commit(self.group, offsets or {})

    def pause(self, *partitions: TopicPartition) -> None:
        self.paused.update(partitions)

    def resume(self, *partitions: TopicPartition) -> None:
        self.paused.difference_update(partitions)


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


async def wait_for_condition(predicate: Any, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.005)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def mock_redis_client() -> MockRedisClient:
    return MockRedisClient()


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> RelayMetrics:
    return RelayMetrics(registry=metrics_registry)


@pytest.fixture
def guard(mock_redis_client: MockRedisClient) -> IdempotencyGuard:
    return IdempotencyGuard(mock_redis_client, IdempotencyConfig(key_prefix="test:idempotency"))


@pytest.fixture
def dead_letter_store(mock_redis_client: MockRedisClient) -> RedisDeadLetterStore:
    return RedisDeadLetterStore(mock_redis_client, key_prefix="test:dead_letter")


@pytest.fixture
def dead_letter_router(
    dead_letter_store: RedisDeadLetterStore, metrics: RelayMetrics
) -> DeadLetterRouter:
    return DeadLetterRouter(dead_letter_store, metrics=metrics)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay_seconds=0.01, max_delay_seconds=0.05)


@pytest.fixture
def wait_until() -> Any:
    return wait_for_condition


@pytest.fixture
def instant_sleep() -> Any:
    return no_sleep

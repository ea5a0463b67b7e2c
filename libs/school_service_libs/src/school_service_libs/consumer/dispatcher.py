"""
Consumer dispatcher: one subscription (channel + consumer group) pulling from the broker.

Delivery contract:
- Every topic-partition gets a lane: a long-lived task draining its own queue,
  so records of one partition are handled strictly in order while other
  partitions keep flowing. The poll loop never waits for a lane; a partition
  is paused at the broker while its lane has a backlog and resumed once the
  lane drains.
- The offset of a record is committed only after its handler succeeded, it was
  skipped as an already-processed duplicate, it has no registered handler, or
  it was dead-lettered. A crash anywhere before that means redelivery.
- Undecodable records and payloads failing their schema are dead-lettered with
  attempt_count 0 and never reach a handler.
- Handler failures are retried with capped exponential backoff; exhausting the
  attempts dead-letters the envelope.
- Idempotency store outages and claims held by another delivery are retried
  with backoff until shutdown and never consume handler attempts.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from aiokafka import ConsumerRecord, TopicPartition
from aiokafka.errors import IllegalStateError, KafkaError
from school_common.events.envelope import EventEnvelope

from ..dead_letter import DeadLetterRouter
from ..envelope_codec import decode_envelope, decode_payload
from ..error_handling import DecodeError, DuplicateClaimError, raise_transport_error
from ..idempotency import ClaimStatus, IdempotencyGuard
from ..logging_utils import bind_envelope_context, create_service_logger
from ..metrics import RelayMetrics
from ..protocols import BrokerConsumerProtocol
from ..retry import RetryPolicy, Sleep
from .handler_registry import Handler, HandlerRegistry, HandlerResult
from .middleware import MiddlewareChain
from .state import SubscriptionState, SubscriptionStateMachine

logger = create_service_logger("dispatcher")

ConsumerFactory = Callable[[str, str], BrokerConsumerProtocol]

DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0


class PartitionLane:
    """Fetched records of one topic-partition waiting for their turn."""

    def __init__(
        self,
        tp: TopicPartition,
        task_factory: Callable[[PartitionLane], Coroutine[Any, Any, None]],
    ):
        self.tp = tp
        # None wakes an idle lane at shutdown
        self.queue: asyncio.Queue[ConsumerRecord | None] = asyncio.Queue()
        self.task: asyncio.Task[None] = asyncio.create_task(
            task_factory(self), name=f"lane:{tp.topic}:{tp.partition}"
        )

    @property
    def crash(self) -> BaseException | None:
        if self.task.done() and not self.task.cancelled():
            return self.task.exception()
        return None


class ConsumerDispatcher:
    def __init__(
        self,
        *,
        channel: str,
        group: str,
        registry: HandlerRegistry,
        guard: IdempotencyGuard,
        dead_letter_router: DeadLetterRouter,
        consumer_factory: ConsumerFactory,
        retry_policy: RetryPolicy | None = None,
        middleware: MiddlewareChain | None = None,
        metrics: RelayMetrics | None = None,
        poll_timeout_ms: int = 1000,
        max_poll_records: int = 100,
        sleep: Sleep = asyncio.sleep,
    ):
        self.channel = channel
        self.group = group
        self.registry = registry
        self.guard = guard
        self.dead_letter_router = dead_letter_router
        self.retry_policy = retry_policy or RetryPolicy()
        self.middleware = middleware
        self.metrics = metrics
        self.poll_timeout_ms = poll_timeout_ms
        self.max_poll_records = max_poll_records

        self._consumer_factory = consumer_factory
        self._consumer: BrokerConsumerProtocol | None = None
        self._sleep = sleep
        self._machine = SubscriptionStateMachine()
        self._stopping = asyncio.Event()
        self._lane_crashed = asyncio.Event()
        self._lanes: dict[TopicPartition, PartitionLane] = {}
        self._busy_lanes = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._machine.state

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> asyncio.Task[None]:
        """Run the subscription as its own task."""
        if self._task is not None:
            raise RuntimeError(f"Subscription {self.channel}/{self.group} already started")
        self._task = asyncio.create_task(self.run(), name=f"relay:{self.channel}:{self.group}")
        return self._task

    async def stop(self, grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS) -> None:
        """
        Stop pulling immediately, let in-flight records finish within
        ``grace_seconds``, then cancel whatever is still running.

        Cancelled records release their claim and stay uncommitted.
        """
        self._stopping.set()
        task = self._task
        if task is None:
            self._machine.transition(SubscriptionState.STOPPED)
            return
        if task.done():
            return

        _, pending = await asyncio.wait({task}, timeout=grace_seconds)
        if pending:
            logger.warning(
                "Shutdown grace period expired, cancelling in-flight handlers",
                channel=self.channel,
                group=self.group,
                grace_seconds=grace_seconds,
            )
            task.cancel()
            await asyncio.wait({task})

    async def wait(self) -> None:
        """Wait for the subscription to end; re-raises a crash of its task."""
        task = self._task
        if task is None:
            return
        await asyncio.wait({task})
        if not task.cancelled():
            error = task.exception()
            if error is not None:
                raise error

    async def run(self) -> None:
        self._machine.transition(SubscriptionState.CONNECTING)
        self._consumer = self._consumer_factory(self.channel, self.group)
        try:
            try:
                await self._consumer.start()
            except KafkaError as e:
                raise_transport_error(
                    service=self.group,
                    operation="subscribe",
                    channel=self.channel,
                    message=f"Consumer failed to connect: {e}",
                )
            self._machine.transition(SubscriptionState.SUBSCRIBED)
            logger.info("Subscription started", channel=self.channel, group=self.group)
            await self._consume_loop()
            await self._drain_lanes()
        except asyncio.CancelledError:
            logger.info("Subscription task cancelled", channel=self.channel, group=self.group)
            raise
        finally:
            await self._cancel_lanes()
            await self._close_consumer()
            self._machine.transition(SubscriptionState.STOPPED)
            logger.info("Subscription stopped", channel=self.channel, group=self.group)

    async def _close_consumer(self) -> None:
        if self._consumer is None:
            return
        try:
            await self._consumer.stop()
        except Exception as e:
            logger.error(
                f"Error stopping consumer for {self.channel}/{self.group}: {e}", exc_info=True
            )
        finally:
            self._consumer = None

    # ------------------------------------------------------------------ polling

    async def _consume_loop(self) -> None:
        poll_failures = 0
        while not self._stopping.is_set():
            self._raise_lane_crash()
            try:
                batches = await self._poll()
                poll_failures = 0
            except KafkaError as e:
                poll_failures += 1
                logger.error(
                    f"Kafka error while polling {self.channel}: {e}",
                    group=self.group,
                    consecutive_failures=poll_failures,
                )
                await self.retry_policy.backoff(poll_failures, self._sleep)
                continue

            # Records fetched after a stop request stay uncommitted for redelivery
            if not batches or self._stopping.is_set():
                continue

            for tp, records in batches.items():
                if records:
                    self._enqueue(tp, records)

    async def _poll(self) -> dict[TopicPartition, list[ConsumerRecord]]:
        """Fetch the next batch, returning early and empty on stop or a lane crash."""
        assert self._consumer is not None
        poll = asyncio.ensure_future(
            self._consumer.getmany(
                timeout_ms=self.poll_timeout_ms, max_records=self.max_poll_records
            )
        )
        stop = asyncio.ensure_future(self._stopping.wait())
        crash = asyncio.ensure_future(self._lane_crashed.wait())
        try:
            done, _ = await asyncio.wait({poll, stop, crash}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            crash.cancel()
            if not poll.done():
                poll.cancel()
        if poll in done:
            return poll.result()
        return {}

    # ------------------------------------------------------------------ lanes

    def _enqueue(self, tp: TopicPartition, records: list[ConsumerRecord]) -> None:
        lane = self._lanes.get(tp)
        if lane is None:
            lane = PartitionLane(tp, self._run_lane)
            lane.task.add_done_callback(self._on_lane_done)
            self._lanes[tp] = lane
        for record in records:
            lane.queue.put_nowait(record)
        # No further fetches for this partition until the lane catches up
        self._set_paused(tp, paused=True)

    async def _run_lane(self, lane: PartitionLane) -> None:
        while True:
            record = await lane.queue.get()
            if record is None or self._stopping.is_set():
                return
            self._lane_busy()
            try:
                settled = await self._process_record(lane.tp, record)
            finally:
                self._lane_idle()
            if not settled:
                # Later records must not be committed past an unfinished one
                return
            if lane.queue.empty():
                self._set_paused(lane.tp, paused=False)

    def _lane_busy(self) -> None:
        self._busy_lanes += 1
        if self._machine.can_transition(SubscriptionState.DELIVERING):
            self._machine.transition(SubscriptionState.DELIVERING)

    def _lane_idle(self) -> None:
        self._busy_lanes -= 1
        if self._busy_lanes == 0 and self.state is SubscriptionState.DELIVERING:
            self._machine.transition(SubscriptionState.SUBSCRIBED)

    def _on_lane_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._lane_crashed.set()

    def _raise_lane_crash(self) -> None:
        for lane in self._lanes.values():
            error = lane.crash
            if error is not None:
                logger.error(
                    f"Partition lane crashed: {error}",
                    channel=self.channel,
                    group=self.group,
                    partition=lane.tp.partition,
                    exc_info=error,
                )
                raise error

    def _set_paused(self, tp: TopicPartition, *, paused: bool) -> None:
        if self._consumer is None:
            return
        try:
            if paused:
                self._consumer.pause(tp)
            else:
                self._consumer.resume(tp)
        except IllegalStateError:
            # Revoked by a rebalance; the new owner starts from the committed offset
            logger.debug(f"Partition {tp.topic}:{tp.partition} is no longer assigned")

    async def _drain_lanes(self) -> None:
        """Let every lane finish its current record, then surface any crash."""
        for lane in self._lanes.values():
            lane.queue.put_nowait(None)
        tasks = {lane.task for lane in self._lanes.values()}
        if tasks:
            await asyncio.wait(tasks)
        self._raise_lane_crash()

    async def _cancel_lanes(self) -> None:
        pending = {lane.task for lane in self._lanes.values() if not lane.task.done()}
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        self._lanes.clear()

    # ------------------------------------------------------------------ delivery

    async def _process_record(self, tp: TopicPartition, record: ConsumerRecord) -> bool:
        """Returns True once the record's offset has been handed to commit."""
        started = time.monotonic()

        try:
            envelope = decode_envelope(record.value)
        except DecodeError as e:
            reason = str(e)
            if not await self._until_stopped(
                lambda: self.dead_letter_router.quarantine_poison(
                    record.value,
                    self.channel,
                    reason,
                    self.group,
                    partition=tp.partition,
                    offset=record.offset,
                ),
                "dead_letter_store",
            ):
                return False
            await self._commit(tp, record)
            return True

        bind_envelope_context(
            envelope,
            channel=self.channel,
            group=self.group,
            partition=tp.partition,
            offset=record.offset,
        )

        registration = self.registry.resolve(envelope.event_type)
        if registration is None:
            logger.warning("No handler registered for event type, acknowledging as no-op")
            if self.metrics is not None:
                self.metrics.unknown_event_types.labels(
                    channel=self.channel, group=self.group, event_type=envelope.event_type
                ).inc()
            await self._commit(tp, record)
            return True

        payload: Any = envelope.payload
        if registration.payload_model is not None:
            try:
                payload = decode_payload(envelope, registration.payload_model)
            except DecodeError as e:
                reason = str(e)
                if not await self._until_stopped(
                    lambda: self.dead_letter_router.quarantine_poison(
                        record.value,
                        self.channel,
                        reason,
                        self.group,
                        partition=tp.partition,
                        offset=record.offset,
                        envelope=envelope,
                    ),
                    "dead_letter_store",
                ):
                    return False
                await self._commit(tp, record)
                return True

        if not await self._deliver(envelope, payload, registration.handler):
            return False

        await self._commit(tp, record)
        if self.metrics is not None:
            self.metrics.processing_duration.labels(channel=self.channel, group=self.group).observe(
                time.monotonic() - started
            )
        return True

    async def _deliver(self, envelope: EventEnvelope, payload: Any, handler: Handler) -> bool:
        """
        Claim, invoke and settle one envelope.

        Returns True when the record may be committed, False when shutdown
        interrupted it before it was settled.
        """
        attempt = 0
        contention = 0
        while True:
            if attempt or contention:
                if self._stopping.is_set():
                    logger.info("Shutdown requested, leaving envelope for redelivery")
                    return False

            try:
                status = await self.guard.claim(self.group, envelope.event_id, envelope.event_type)
            except DuplicateClaimError as e:
                contention += 1
                logger.warning(f"Idempotency claim failed, retrying: {e}", retry=contention)
                self._count_retry("claim_store")
                await self.retry_policy.backoff(contention, self._sleep)
                continue

            if status is ClaimStatus.COMPLETED:
                if self.metrics is not None:
                    self.metrics.duplicates_skipped.labels(
                        channel=self.channel, group=self.group
                    ).inc()
                return True

            if status is ClaimStatus.IN_FLIGHT:
                contention += 1
                self._count_retry("in_flight")
                await self.retry_policy.backoff(contention, self._sleep)
                continue

            contention = 0
            attempt += 1
            result = await self._invoke(handler, envelope, payload)

            if result.success:
                try:
                    await self.guard.confirm(self.group, envelope.event_id, envelope.event_type)
                except DuplicateClaimError as e:
                    # The lease expires on its own; a redelivery would run the handler again
                    logger.error(f"Processed envelope could not be confirmed: {e}")
                if self.metrics is not None:
                    self.metrics.messages_processed.labels(
                        channel=self.channel, group=self.group, event_type=envelope.event_type
                    ).inc()
                logger.info("Envelope processed", attempt=attempt)
                return True

            # Our own unreleased lease would read as IN_FLIGHT on the next claim
            if not await self._until_stopped(
                lambda: self.guard.release(self.group, envelope.event_id), "idempotency_store"
            ):
                return False
            if self.metrics is not None:
                self.metrics.handler_failures.labels(
                    channel=self.channel, group=self.group, event_type=envelope.event_type
                ).inc()

            if self.retry_policy.is_exhausted(attempt):
                return await self._until_stopped(
                    lambda: self.dead_letter_router.quarantine(
                        envelope,
                        self.channel,
                        result.reason or "handler failed",
                        attempt,
                        self.group,
                    ),
                    "dead_letter_store",
                )

            logger.warning(
                "Handler failed, retrying",
                attempt=attempt,
                max_attempts=self.retry_policy.max_attempts,
                reason=result.reason,
            )
            self._count_retry("handler")
            await self.retry_policy.backoff(attempt, self._sleep)

    async def _invoke(
        self, handler: Handler, envelope: EventEnvelope, payload: Any
    ) -> HandlerResult:
        if self.middleware is not None:
            handler = self.middleware.wrap(handler)
        try:
            result = await handler(envelope, payload)
        except asyncio.CancelledError:
            # Neither confirmed nor committed: the next delivery retries it
            try:
                await self.guard.release(self.group, envelope.event_id)
            except DuplicateClaimError as e:
                logger.error(f"Cancelled envelope keeps its claim until the lease expires: {e}")
            raise
        except Exception as e:
            logger.error(f"Handler raised {type(e).__name__}: {e}", exc_info=True)
            return HandlerResult.failure(f"{type(e).__name__}: {e}", error=e)
        return result if result is not None else HandlerResult.ok()

    async def _until_stopped(self, operation: Callable[[], Awaitable[Any]], cause: str) -> bool:
        """Retry a bookkeeping write until it succeeds or shutdown is requested."""
        failures = 0
        while True:
            try:
                await operation()
                return True
            except Exception as e:
                failures += 1
                logger.error(f"{cause} write failed: {e}", retry=failures, exc_info=True)
                if self._stopping.is_set():
                    return False
                self._count_retry(cause)
                await self.retry_policy.backoff(failures, self._sleep)

    async def _commit(self, tp: TopicPartition, record: ConsumerRecord) -> None:
        assert self._consumer is not None
        try:
            await self._consumer.commit({tp: record.offset + 1})
            logger.debug(f"Committed {tp.topic}:{tp.partition}:{record.offset}")
        except KafkaError as e:
            # Already settled, so a redelivery is skipped by the idempotency guard
            logger.error(
                f"Offset commit failed for {tp.topic}:{tp.partition}:{record.offset}: {e}"
            )

    def _count_retry(self, cause: str) -> None:
        if self.metrics is not None:
            self.metrics.retries.labels(channel=self.channel, group=self.group, cause=cause).inc()

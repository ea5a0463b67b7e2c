"""Kafka consumer for Notification Service.

One subscription per channel, all sharing the service's consumer group, the
idempotency guard and the dead-letter router.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from school_service_libs.consumer import (
    ConsumerFactory,
    MiddlewareChain,
    SubscriptionHandle,
    require_tenant,
    subscribe,
)
from school_service_libs.dead_letter import DeadLetterRouter
from school_service_libs.idempotency import IdempotencyGuard
from school_service_libs.logging_utils import create_service_logger
from school_service_libs.metrics import RelayMetrics
from school_service_libs.retry import RetryPolicy

if TYPE_CHECKING:
    from services.notification_service.config import NotificationSettings
    from services.notification_service.event_processor import NotificationEventProcessor

logger = create_service_logger("notification_service.kafka_consumer")


class NotificationKafkaConsumer:
    def __init__(
        self,
        settings: NotificationSettings,
        event_processor: NotificationEventProcessor,
        guard: IdempotencyGuard,
        dead_letter_router: DeadLetterRouter,
        consumer_factory: ConsumerFactory,
        relay_metrics: RelayMetrics,
    ) -> None:
        self.settings = settings
        self.event_processor = event_processor
        self.guard = guard
        self.dead_letter_router = dead_letter_router
        self.consumer_factory = consumer_factory
        self.relay_metrics = relay_metrics
        self.retry_policy = RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay_seconds=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.RETRY_MAX_DELAY_SECONDS,
        )
        self.handles: list[SubscriptionHandle] = []

    def start(self) -> None:
        """Subscribe to every configured channel. Must run inside the event loop."""
        if self.handles:
            return
        registry = self.event_processor.build_registry()
        middleware = MiddlewareChain([require_tenant])

        for channel in self.settings.SUBSCRIBED_CHANNELS:
            self.handles.append(
                subscribe(
                    channel,
                    self.settings.CONSUMER_GROUP,
                    registry,
                    guard=self.guard,
                    dead_letter_router=self.dead_letter_router,
                    consumer_factory=self.consumer_factory,
                    retry_policy=self.retry_policy,
                    middleware=middleware,
                    metrics=self.relay_metrics,
                    poll_timeout_ms=self.settings.KAFKA_POLL_TIMEOUT_MS,
                    max_poll_records=self.settings.KAFKA_MAX_POLL_RECORDS,
                )
            )
        logger.info(
            "Notification consumer subscribed",
            channels=self.settings.SUBSCRIBED_CHANNELS,
            group=self.settings.CONSUMER_GROUP,
            event_types=registry.registered_types,
        )

    async def stop(self, grace_seconds: float | None = None) -> None:
        grace = self.settings.SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        await asyncio.gather(*(handle.stop(grace) for handle in self.handles))
        logger.info("Notification consumer stopped", channels=[h.channel for h in self.handles])

    async def wait(self) -> None:
        """Wait for every subscription to end, re-raising the first crash."""
        await asyncio.gather(*(handle.wait() for handle in self.handles))

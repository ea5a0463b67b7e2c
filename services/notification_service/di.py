"""Dependency injection providers for Notification Service.

Everything lives in APP scope: the worker builds one container and resolves
the Kafka consumer from it once.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from dishka import Provider, Scope, provide
from prometheus_client import REGISTRY, CollectorRegistry
from school_service_libs.dead_letter import DeadLetterRouter, RedisDeadLetterStore
from school_service_libs.idempotency import IdempotencyConfig, IdempotencyGuard
from school_service_libs.kafka_client import KafkaBus, kafka_consumer_factory
from school_service_libs.metrics import RelayMetrics
from school_service_libs.protocols import EventPublisherProtocol, RedisClientProtocol
from school_service_libs.redis_client import RedisClient

from services.notification_service.config import NotificationSettings, settings
from services.notification_service.event_processor import NotificationEventProcessor
from services.notification_service.kafka_consumer import NotificationKafkaConsumer
from services.notification_service.metrics import NotificationMetrics
from services.notification_service.protocols import (
    ContactDirectoryProtocol,
    NotificationSenderProtocol,
    TemplateRendererProtocol,
)


class CoreProvider(Provider):
    """Core infrastructure providers with proper scoping."""

    scope = Scope.APP

    @provide
    def provide_settings(self) -> NotificationSettings:
        return settings

    @provide
    def provide_metrics_registry(self) -> CollectorRegistry:
        """Provide Prometheus metrics registry."""
        return REGISTRY

    @provide
    def provide_relay_metrics(self, registry: CollectorRegistry) -> RelayMetrics:
        return RelayMetrics(registry=registry)

    @provide
    def provide_notification_metrics(self, registry: CollectorRegistry) -> NotificationMetrics:
        return NotificationMetrics(registry=registry)

    @provide
    async def provide_redis_client(
        self, settings: NotificationSettings
    ) -> AsyncIterator[RedisClientProtocol]:
        """Provide Redis client for idempotency claims and dead-letter records."""
        client = RedisClient(
            client_id=f"{settings.SERVICE_NAME}-redis",
            redis_url=settings.REDIS_URL,
        )
        await client.start()
        yield client
        await client.stop()

    @provide
    async def provide_event_publisher(
        self, settings: NotificationSettings, metrics: RelayMetrics
    ) -> AsyncIterator[EventPublisherProtocol]:
        """Provide the Kafka publisher used for dead-letter mirroring and replay."""
        bus = KafkaBus(
            client_id=f"{settings.SERVICE_NAME}-producer",
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            publish_timeout_seconds=settings.KAFKA_PUBLISH_TIMEOUT_SECONDS,
            metrics=metrics,
        )
        await bus.start()
        yield bus
        await bus.stop()

    @provide
    def provide_idempotency_guard(
        self, settings: NotificationSettings, redis_client: RedisClientProtocol
    ) -> IdempotencyGuard:
        config = IdempotencyConfig(
            key_prefix=settings.IDEMPOTENCY_KEY_PREFIX,
            default_ttl=settings.IDEMPOTENCY_TTL_SECONDS,
            lease_ttl=settings.IDEMPOTENCY_LEASE_TTL_SECONDS,
        )
        return IdempotencyGuard(redis_client, config)

    @provide
    def provide_dead_letter_router(
        self,
        settings: NotificationSettings,
        redis_client: RedisClientProtocol,
        publisher: EventPublisherProtocol,
        metrics: RelayMetrics,
    ) -> DeadLetterRouter:
        return DeadLetterRouter(
            RedisDeadLetterStore(redis_client, key_prefix=settings.DEAD_LETTER_KEY_PREFIX),
            publisher,
            service_name=settings.SERVICE_NAME,
            mirror_to_topic=settings.DEAD_LETTER_MIRROR_TO_TOPIC,
            metrics=metrics,
        )


class ImplementationProvider(Provider):
    """Providers for sender, template and contact lookup implementations."""

    @provide(scope=Scope.APP)
    def provide_sender(self, settings: NotificationSettings) -> NotificationSenderProtocol:
        if settings.SENDER_PROVIDER == "mock":
            from services.notification_service.implementations.sender_mock_impl import (
                MockNotificationSender,
            )

            return MockNotificationSender(failure_rate=settings.MOCK_SENDER_FAILURE_RATE)

        raise ValueError(
            f"Notification sender '{settings.SENDER_PROVIDER}' is not implemented. "
            f"Available providers: 'mock'"
        )

    @provide(scope=Scope.APP)
    def provide_template_renderer(self, settings: NotificationSettings) -> TemplateRendererProtocol:
        from services.notification_service.implementations.template_renderer_impl import (
            JinjaTemplateRenderer,
        )

        return JinjaTemplateRenderer(template_path=settings.TEMPLATE_PATH)

    @provide(scope=Scope.APP)
    def provide_contact_directory(self, settings: NotificationSettings) -> ContactDirectoryProtocol:
        from services.notification_service.implementations.contact_directory_memory_impl import (
            InMemoryContactDirectory,
        )

        if settings.CONTACT_DIRECTORY_FILE:
            return InMemoryContactDirectory.from_json_file(settings.CONTACT_DIRECTORY_FILE)
        return InMemoryContactDirectory()


class ServiceProvider(Provider):
    """Service-specific providers for business logic components."""

    @provide(scope=Scope.APP)
    def provide_event_processor(
        self,
        settings: NotificationSettings,
        directory: ContactDirectoryProtocol,
        template_renderer: TemplateRendererProtocol,
        sender: NotificationSenderProtocol,
        metrics: NotificationMetrics,
        guard: IdempotencyGuard,
    ) -> NotificationEventProcessor:
        return NotificationEventProcessor(
            directory=directory,
            template_renderer=template_renderer,
            sender=sender,
            metrics=metrics,
            delivery_guard=guard,
            consumer_group=settings.CONSUMER_GROUP,
            default_email_subject=settings.DEFAULT_EMAIL_SUBJECT,
        )

    @provide(scope=Scope.APP)
    def provide_kafka_consumer(
        self,
        settings: NotificationSettings,
        event_processor: NotificationEventProcessor,
        guard: IdempotencyGuard,
        dead_letter_router: DeadLetterRouter,
        relay_metrics: RelayMetrics,
    ) -> NotificationKafkaConsumer:
        return NotificationKafkaConsumer(
            settings=settings,
            event_processor=event_processor,
            guard=guard,
            dead_letter_router=dead_letter_router,
            consumer_factory=kafka_consumer_factory(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                client_id=settings.SERVICE_NAME,
                auto_offset_reset=settings.KAFKA_AUTO_OFFSET_RESET,
                max_poll_records=settings.KAFKA_MAX_POLL_RECORDS,
                session_timeout_ms=settings.KAFKA_SESSION_TIMEOUT_MS,
            ),
            relay_metrics=relay_metrics,
        )

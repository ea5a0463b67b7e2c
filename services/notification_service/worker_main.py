"""
Notification Service Kafka Worker Main Entry Point.

Subscribes to the platform channels and sends notifications until SIGINT or
SIGTERM, then drains in-flight events within the shutdown grace period.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dishka import make_async_container
from school_service_libs.logging_utils import configure_service_logging, create_service_logger

from services.notification_service.config import settings
from services.notification_service.di import CoreProvider, ImplementationProvider, ServiceProvider
from services.notification_service.kafka_consumer import NotificationKafkaConsumer

logger = create_service_logger("notification_service.worker_main")

# Global state for graceful shutdown
should_stop = False


def setup_signal_handlers() -> None:
    """Setup signal handlers for graceful shutdown."""

    def signal_handler(signum: int, frame: object) -> None:
        global should_stop
        logger.info(f"Received signal {signum}, initiating graceful shutdown")
        should_stop = True

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main entry point."""
    configure_service_logging(
        service_name=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT.value,
        log_level=settings.LOG_LEVEL,
    )
    setup_signal_handlers()

    logger.info("Starting Notification Service Kafka Worker")

    container = make_async_container(CoreProvider(), ImplementationProvider(), ServiceProvider())
    consumer: NotificationKafkaConsumer | None = None
    subscriptions_done: asyncio.Task[None] | None = None

    try:
        consumer = await container.get(NotificationKafkaConsumer)
        consumer.start()
        subscriptions_done = asyncio.create_task(consumer.wait())

        while not should_stop and not subscriptions_done.done():
            await asyncio.sleep(0.1)

        if subscriptions_done.done():
            # A subscription only ends on its own when it crashed
            subscriptions_done.result()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if consumer is not None:
            logger.info("Stopping subscriptions...")
            await consumer.stop(settings.SHUTDOWN_GRACE_SECONDS)
        if subscriptions_done is not None and not subscriptions_done.done():
            subscriptions_done.cancel()
        await container.close()

    logger.info("Notification Service Worker shutdown completed")


if __name__ == "__main__":
    asyncio.run(main())

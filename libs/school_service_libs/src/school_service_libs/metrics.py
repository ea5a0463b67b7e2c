"""Prometheus metrics shared by every relay consumer and publisher."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from .logging_utils import create_service_logger

logger = create_service_logger("relay.metrics")


class RelayMetrics:
    """Relay metrics, registered on ``registry`` (the process default unless injected)."""

    def __init__(
        self, namespace: str = "school", registry: CollectorRegistry | None = None
    ) -> None:
        registry = registry if registry is not None else REGISTRY

        # Consumer metrics
        self.messages_processed = Counter(
            f"{namespace}_relay_messages_processed_total",
            "Messages handled successfully",
            ["channel", "group", "event_type"],
            registry=registry,
        )

        self.duplicates_skipped = Counter(
            f"{namespace}_relay_duplicates_skipped_total",
            "Redeliveries skipped by the idempotency guard",
            ["channel", "group"],
            registry=registry,
        )

        self.unknown_event_types = Counter(
            f"{namespace}_relay_unknown_event_types_total",
            "Messages acknowledged without a registered handler",
            ["channel", "group", "event_type"],
            registry=registry,
        )

        self.handler_failures = Counter(
            f"{namespace}_relay_handler_failures_total",
            "Failed handler attempts",
            ["channel", "group", "event_type"],
            registry=registry,
        )

        self.retries = Counter(
            f"{namespace}_relay_retries_total",
            "Delivery retries, by cause",
            ["channel", "group", "cause"],  # cause: handler, claim_store, in_flight
            registry=registry,
        )

        self.dead_lettered = Counter(
            f"{namespace}_relay_dead_lettered_total",
            "Messages quarantined in the dead-letter store",
            ["channel", "group", "kind"],  # kind: poison or exhausted
            registry=registry,
        )

        self.processing_duration = Histogram(
            f"{namespace}_relay_processing_duration_seconds",
            "Time from delivery to commit for one message",
            ["channel", "group"],
            registry=registry,
        )

        # Publisher metrics
        self.publish_results = Counter(
            f"{namespace}_relay_publish_results_total",
            "Publish attempts by outcome",
            ["channel", "outcome"],  # outcome: accepted or failed
            registry=registry,
        )

        logger.debug("Relay metrics registered", namespace=namespace)

"""Prometheus metrics for Notification Service."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class NotificationMetrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        registry = registry if registry is not None else REGISTRY

        self.notifications_sent = Counter(
            "notification_service_notifications_sent_total",
            "Notifications accepted by the delivery provider",
            ["provider", "channel", "template"],
            registry=registry,
        )
        self.notifications_failed = Counter(
            "notification_service_notifications_failed_total",
            "Notifications rejected by the delivery provider",
            ["provider", "channel", "template"],
            registry=registry,
        )
        self.recipients_missing = Counter(
            "notification_service_recipients_missing_total",
            "Events skipped because no recipient could be resolved",
            ["event_type"],
            registry=registry,
        )
        self.template_render_duration = Histogram(
            "notification_service_template_render_duration_seconds",
            "Template rendering duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1),
            registry=registry,
        )

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from prometheus_client import CollectorRegistry
from school_service_libs.idempotency import IdempotencyConfig, IdempotencyGuard

from services.notification_service.event_processor import NotificationEventProcessor
from services.notification_service.implementations.contact_directory_memory_impl import (
    InMemoryContactDirectory,
)
from services.notification_service.implementations.sender_mock_impl import MockNotificationSender
from services.notification_service.implementations.template_renderer_impl import (
    JinjaTemplateRenderer,
)
from services.notification_service.metrics import NotificationMetrics
from services.notification_service.protocols import (
    ApplicantInfo,
    Contact,
    ExamInfo,
    StudentContacts,
)

TENANT = "tenant-ankara"


class InMemoryRedis:
    """The Redis operations the idempotency guard uses, kept in a dict."""

    def __init__(self) -> None:
        self.keys: dict[str, str] = {}

    async def set_if_not_exists(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        if key in self.keys:
            return False
        self.keys[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.keys.get(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        self.keys[key] = value
        return True

    async def delete_key(self, key: str) -> int:
        return 1 if self.keys.pop(key, None) is not None else 0


@pytest.fixture
def redis_store() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def delivery_guard(redis_store: InMemoryRedis) -> IdempotencyGuard:
    return IdempotencyGuard(redis_store, IdempotencyConfig(key_prefix="test:idempotency"))


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def notification_metrics(metrics_registry: CollectorRegistry) -> NotificationMetrics:
    return NotificationMetrics(registry=metrics_registry)


@pytest.fixture
def directory() -> InMemoryContactDirectory:
    directory = InMemoryContactDirectory()
    directory.add_student(
        TENANT,
        StudentContacts(
            student_id="student-1",
            student_name="Ayşe Yılmaz",
            school_name="Çankaya Koleji",
            contract_no="SZL-2025-001",
            primary_parent=Contact(
                name="Mehmet Yılmaz", email="mehmet@example.com", phone="+905551112233"
            ),
        ),
        contract_id="contract-1",
    )
    directory.add_student(
        TENANT,
        StudentContacts(student_id="student-2", student_name="Can Demir", school_name="Çankaya Koleji"),
        contract_id="contract-2",
    )
    directory.add_exam(
        TENANT,
        ExamInfo(
            exam_id="exam-1",
            name="Bursluluk Sınavı",
            date=datetime(2026, 5, 17, 10, 0),
            venue="Çankaya Kampüsü",
        ),
    )
    directory.add_applicant(
        TENANT,
        ApplicantInfo(
            application_id="app-1",
            exam_name="Bursluluk Sınavı",
            candidate=Contact(name="Zeynep Kaya", email="zeynep@example.com"),
        ),
    )
    directory.add_applicant(
        TENANT,
        ApplicantInfo(
            application_id="app-2",
            exam_name="Bursluluk Sınavı",
            candidate=Contact(name="Emre Şahin", phone="+905554445566"),
        ),
    )
    return directory


@pytest.fixture
def sender() -> MockNotificationSender:
    return MockNotificationSender()


@pytest.fixture
def renderer() -> JinjaTemplateRenderer:
    return JinjaTemplateRenderer()


@pytest.fixture
def processor(
    directory: InMemoryContactDirectory,
    renderer: JinjaTemplateRenderer,
    sender: MockNotificationSender,
    notification_metrics: NotificationMetrics,
    delivery_guard: IdempotencyGuard,
) -> NotificationEventProcessor:
    return NotificationEventProcessor(
        directory=directory,
        template_renderer=renderer,
        sender=sender,
        metrics=notification_metrics,
        delivery_guard=delivery_guard,
    )

"""
Unit tests for the event envelope.

Tests creation, causal linking, the camelCase wire shape and immutability.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError
from school_common.event_enums import EventType
from school_common.events.envelope import EventEnvelope, caused_by, create_envelope
from school_common.events.student_events import EnrollmentDetails, StudentEnrolledV1


class TestCreateEnvelope:
    """Test suite for create_envelope."""

    def test_assigns_fresh_id_and_utc_timestamp(self) -> None:
        before = datetime.now(UTC)
        first = create_envelope("exam.created", {})
        second = create_envelope("exam.created", {})

        assert first.event_id != second.event_id
        assert first.timestamp >= before
        assert first.timestamp.tzinfo is not None

    def test_accepts_enum_event_type_and_model_payload(self) -> None:
        payload = StudentEnrolledV1(
            student_id="s1",
            contract_id="k1",
            enrollment=EnrollmentDetails(school_year="2025-2026", class_level=9, total_amount=1500),
        )

        envelope = create_envelope(EventType.STUDENT_ENROLLED, payload, tenant_id="t1")

        assert envelope.event_type == "student.enrolled"
        assert envelope.payload["enrollment"]["class_level"] == 9
        assert StudentEnrolledV1.model_validate(envelope.payload) == payload

    def test_unserializable_payload_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            create_envelope("payment.processed", {"amount": Decimal("1.5"), "at": object()})

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_numbers_are_rejected(self, value: float) -> None:
        with pytest.raises(ValueError, match="not JSON serializable"):
            create_envelope("exam.created", {"score": value})

    def test_non_mapping_payload_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            create_envelope("payment.processed", ["not", "a", "mapping"])  # type: ignore[arg-type]

    def test_payload_is_normalized_to_json_types(self) -> None:
        envelope = create_envelope("student.updated", {"changes": ("a", "b")})

        assert envelope.payload == {"changes": ["a", "b"]}


class TestCausedBy:
    def test_follow_up_inherits_tenant_and_correlation(self) -> None:
        parent = create_envelope("student.enrolled", {}, tenant_id="t1", correlation_id="req-1")

        child = caused_by(parent, "installment.due", {})

        assert child.tenant_id == "t1"
        assert child.correlation_id == "req-1"
        assert child.causation_id == parent.event_id
        assert child.event_id != parent.event_id

    def test_root_event_id_starts_the_correlation_chain(self) -> None:
        parent = create_envelope("exam.created", {})

        child = caused_by(parent, "notification.send", {})

        assert child.correlation_id == parent.event_id


class TestEventEnvelope:
    def test_partition_key_prefers_tenant(self) -> None:
        assert create_envelope("exam.created", {}, tenant_id="t1").partition_key == "t1"

        global_event = create_envelope("exam.created", {})
        assert global_event.partition_key == global_event.event_id

    def test_wire_round_trip_preserves_every_field(self) -> None:
        envelope = create_envelope(
            "payment.processed",
            {"amount": 100},
            tenant_id="t1",
            correlation_id="c1",
            causation_id="p1",
        )

        wire = json.loads(envelope.to_wire())

        assert wire["id"] == envelope.event_id
        assert wire["causationId"] == "p1"
        assert EventEnvelope.from_wire(envelope.to_wire()) == envelope

    def test_accepts_python_names_and_wire_names(self) -> None:
        by_alias = EventEnvelope.model_validate({"id": "e1", "type": "exam.created", "tenantId": "t1"})
        by_name = EventEnvelope(event_id="e1", event_type="exam.created", tenant_id="t1")

        assert by_alias.tenant_id == by_name.tenant_id == "t1"

    def test_envelope_is_immutable(self) -> None:
        envelope = create_envelope("exam.created", {})

        with pytest.raises(ValidationError):
            envelope.event_type = "exam.deleted"  # type: ignore[misc]

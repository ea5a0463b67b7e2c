"""Unit tests for the subscription state machine, handler registry and middleware chain."""

from __future__ import annotations

import pytest
from school_common.event_enums import EventType
from school_common.events.envelope import create_envelope
from school_common.events.payment_events import PaymentProcessedV1

from school_service_libs.consumer import (
    HandlerRegistry,
    HandlerResult,
    IllegalStateTransition,
    MiddlewareChain,
    SubscriptionState,
    SubscriptionStateMachine,
    require_tenant,
)


async def noop_handler(envelope, payload) -> None:
    return None


class TestSubscriptionStateMachine:
    def test_happy_path_transitions(self) -> None:
        machine = SubscriptionStateMachine()

        for target in (
            SubscriptionState.CONNECTING,
            SubscriptionState.SUBSCRIBED,
            SubscriptionState.DELIVERING,
            SubscriptionState.DELIVERING,
            SubscriptionState.SUBSCRIBED,
            SubscriptionState.STOPPED,
        ):
            machine.transition(target)

        assert machine.is_stopped

    @pytest.mark.parametrize(
        "state_path",
        [
            [],
            [SubscriptionState.CONNECTING],
            [SubscriptionState.CONNECTING, SubscriptionState.SUBSCRIBED],
            [
                SubscriptionState.CONNECTING,
                SubscriptionState.SUBSCRIBED,
                SubscriptionState.DELIVERING,
            ],
        ],
    )
    def test_stopped_is_reachable_from_every_state(self, state_path) -> None:
        machine = SubscriptionStateMachine()
        for target in state_path:
            machine.transition(target)

        machine.transition(SubscriptionState.STOPPED)

        assert machine.state is SubscriptionState.STOPPED

    @pytest.mark.parametrize(
        "target",
        [SubscriptionState.SUBSCRIBED, SubscriptionState.DELIVERING, SubscriptionState.IDLE],
    )
    def test_illegal_transition_from_idle_raises(self, target) -> None:
        with pytest.raises(IllegalStateTransition):
            SubscriptionStateMachine().transition(target)

    def test_stopped_is_terminal(self) -> None:
        machine = SubscriptionStateMachine()
        machine.transition(SubscriptionState.STOPPED)

        machine.transition(SubscriptionState.STOPPED)
        with pytest.raises(IllegalStateTransition):
            machine.transition(SubscriptionState.CONNECTING)


class TestHandlerRegistry:
    def test_platform_schema_is_used_by_default(self) -> None:
        registry = HandlerRegistry()
        registry.register(EventType.PAYMENT_PROCESSED, noop_handler)

        registration = registry.resolve("payment.processed")

        assert registration is not None
        assert registration.payload_model is PaymentProcessedV1

    def test_unknown_type_without_default_resolves_to_none(self) -> None:
        registry = HandlerRegistry()
        registry.register("payment.processed", noop_handler)

        assert registry.resolve("payment.refunded") is None

    def test_default_handler_receives_unregistered_types_without_schema(self) -> None:
        registry = HandlerRegistry(default_handler=noop_handler)

        registration = registry.resolve("payment.processed")

        assert registration is not None
        assert registration.handler is noop_handler
        assert registration.payload_model is None

    def test_decorator_registration_and_duplicates(self) -> None:
        registry = HandlerRegistry()

        @registry.on("custom.event")
        async def handle_custom(envelope, payload) -> None:
            return None

        assert registry.registered_types == ["custom.event"]
        assert registry.resolve("custom.event").payload_model is None
        with pytest.raises(ValueError):
            registry.register("custom.event", noop_handler)


class TestMiddlewareChain:
    @pytest.mark.asyncio
    async def test_first_failure_short_circuits(self) -> None:
        calls: list[str] = []

        async def first(envelope):
            calls.append("first")
            return HandlerResult.failure("rejected by first")

        async def second(envelope):
            calls.append("second")
            return None

        result = await MiddlewareChain([first, second]).run(create_envelope("exam.created", {}))

        assert result is not None and result.reason == "rejected by first"
        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_wrapped_handler_runs_when_chain_passes(self) -> None:
        seen: list[dict] = []

        async def handler(envelope, payload):
            seen.append(payload)
            return HandlerResult.ok()

        wrapped = MiddlewareChain().use(require_tenant).wrap(handler)
        result = await wrapped(create_envelope("student.created", {}, tenant_id="t1"), {"a": 1})

        assert result == HandlerResult.ok()
        assert seen == [{"a": 1}]

    @pytest.mark.asyncio
    async def test_require_tenant_rejects_global_envelope(self) -> None:
        result = await require_tenant(create_envelope("student.created", {}))

        assert result is not None
        assert result.success is False
        assert "tenantId" in result.reason

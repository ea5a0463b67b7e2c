"""Subscribe API: start a dispatcher for one channel and consumer group."""

from __future__ import annotations

from typing import Any

from ..dead_letter import DeadLetterRouter
from ..idempotency import IdempotencyGuard
from ..metrics import RelayMetrics
from ..retry import RetryPolicy
from .dispatcher import DEFAULT_SHUTDOWN_GRACE_SECONDS, ConsumerDispatcher, ConsumerFactory
from .handler_registry import Handler, HandlerRegistry
from .middleware import MiddlewareChain
from .state import SubscriptionState


class SubscriptionHandle:
    """Caller-side view of a running subscription."""

    def __init__(self, dispatcher: ConsumerDispatcher):
        self._dispatcher = dispatcher

    @property
    def channel(self) -> str:
        return self._dispatcher.channel

    @property
    def group(self) -> str:
        return self._dispatcher.group

    @property
    def state(self) -> SubscriptionState:
        return self._dispatcher.state

    async def stop(self, grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS) -> None:
        await self._dispatcher.stop(grace_seconds)

    async def wait(self) -> None:
        await self._dispatcher.wait()


def subscribe(
    channel: str,
    group: str,
    handler: Handler | HandlerRegistry,
    *,
    guard: IdempotencyGuard,
    dead_letter_router: DeadLetterRouter,
    consumer_factory: ConsumerFactory,
    retry_policy: RetryPolicy | None = None,
    middleware: MiddlewareChain | None = None,
    metrics: RelayMetrics | None = None,
    **dispatcher_options: Any,
) -> SubscriptionHandle:
    """
    Start consuming ``channel`` as ``group`` on a task of its own.

    ``handler`` is either a HandlerRegistry or a single callable that receives
    every envelope of the channel with its raw payload dict. Must be called
    from a running event loop.
    """
    registry = handler if isinstance(handler, HandlerRegistry) else HandlerRegistry(handler)
    dispatcher = ConsumerDispatcher(
        channel=channel,
        group=group,
        registry=registry,
        guard=guard,
        dead_letter_router=dead_letter_router,
        consumer_factory=consumer_factory,
        retry_policy=retry_policy,
        middleware=middleware,
        metrics=metrics,
        **dispatcher_options,
    )
    dispatcher.start()
    return SubscriptionHandle(dispatcher)

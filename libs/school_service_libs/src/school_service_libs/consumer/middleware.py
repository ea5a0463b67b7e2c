"""
Cross-cutting checks composed in front of a handler.

A middleware step receives the envelope and returns a failed HandlerResult to
reject it, or None to let the next step run. The first failure short-circuits
the chain and is reported as a handler failure.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from school_common.events.envelope import EventEnvelope

from .handler_registry import Handler, HandlerResult

Middleware = Callable[[EventEnvelope], Awaitable[HandlerResult | None]]


class MiddlewareChain:
    def __init__(self, steps: Sequence[Middleware] = ()) -> None:
        self._steps: list[Middleware] = list(steps)

    def use(self, step: Middleware) -> MiddlewareChain:
        self._steps.append(step)
        return self

    def __len__(self) -> int:
        return len(self._steps)

    async def run(self, envelope: EventEnvelope) -> HandlerResult | None:
        for step in self._steps:
            result = await step(envelope)
            if result is not None and not result.success:
                return result
        return None

    def wrap(self, handler: Handler) -> Handler:
        async def guarded(envelope: EventEnvelope, payload: Any) -> HandlerResult | None:
            rejection = await self.run(envelope)
            if rejection is not None:
                return rejection
            return await handler(envelope, payload)

        return guarded


async def require_tenant(envelope: EventEnvelope) -> HandlerResult | None:
    if not envelope.tenant_id:
        return HandlerResult.failure(f"Event '{envelope.event_type}' requires a tenantId")
    return None

"""
Per-event-type handler registry.

Envelope payloads travel as opaque JSON objects; the registry pairs each event
type with its handler and the payload schema the dispatcher validates against
before the handler runs.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel
from school_common.events.envelope import EventEnvelope
from school_common.events.payload_models import payload_model_for


@dataclass(frozen=True)
class HandlerResult:
    success: bool
    reason: str | None = None
    error: BaseException | None = None

    @classmethod
    def ok(cls) -> HandlerResult:
        return cls(success=True)

    @classmethod
    def failure(cls, reason: str, error: BaseException | None = None) -> HandlerResult:
        return cls(success=False, reason=reason, error=error)


# Returning None counts as success; raising counts as failure
Handler = Callable[[EventEnvelope, Any], Awaitable[HandlerResult | None]]


@dataclass(frozen=True)
class HandlerRegistration:
    handler: Handler
    payload_model: type[BaseModel] | None = None


class HandlerRegistry:
    def __init__(self, default_handler: Handler | None = None) -> None:
        self._registrations: dict[str, HandlerRegistration] = {}
        self._default = HandlerRegistration(default_handler) if default_handler else None

    def register(
        self,
        event_type: str,
        handler: Handler,
        payload_model: type[BaseModel] | None = None,
    ) -> None:
        """
        Register ``handler`` for ``event_type``.

        Without an explicit ``payload_model`` the platform schema for the event
        type is used; handlers of unknown types receive the raw payload dict.
        """
        key = event_type.value if isinstance(event_type, Enum) else event_type
        if key in self._registrations:
            raise ValueError(f"A handler is already registered for '{key}'")
        self._registrations[key] = HandlerRegistration(
            handler, payload_model or payload_model_for(key)
        )

    def on(
        self, event_type: str, payload_model: type[BaseModel] | None = None
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.register(event_type, handler, payload_model)
            return handler

        return decorator

    def resolve(self, event_type: str) -> HandlerRegistration | None:
        return self._registrations.get(event_type, self._default)

    @property
    def registered_types(self) -> list[str]:
        return sorted(self._registrations)

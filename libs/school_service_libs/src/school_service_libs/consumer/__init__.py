from .dispatcher import DEFAULT_SHUTDOWN_GRACE_SECONDS, ConsumerDispatcher, ConsumerFactory
from .handler_registry import Handler, HandlerRegistration, HandlerRegistry, HandlerResult
from .middleware import Middleware, MiddlewareChain, require_tenant
from .state import IllegalStateTransition, SubscriptionState, SubscriptionStateMachine
from .subscription import SubscriptionHandle, subscribe

__all__ = [
    "DEFAULT_SHUTDOWN_GRACE_SECONDS",
    "ConsumerDispatcher",
    "ConsumerFactory",
    "Handler",
    "HandlerRegistration",
    "HandlerRegistry",
    "HandlerResult",
    "Middleware",
    "MiddlewareChain",
    "require_tenant",
    "IllegalStateTransition",
    "SubscriptionState",
    "SubscriptionStateMachine",
    "SubscriptionHandle",
    "subscribe",
]

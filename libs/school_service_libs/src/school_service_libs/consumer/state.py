"""Lifecycle state machine of one subscription."""

from __future__ import annotations

from enum import Enum


class SubscriptionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    DELIVERING = "delivering"
    STOPPED = "stopped"


# STOPPED is reachable from every state and handled separately
_TRANSITIONS: dict[SubscriptionState, frozenset[SubscriptionState]] = {
    SubscriptionState.IDLE: frozenset({SubscriptionState.CONNECTING}),
    SubscriptionState.CONNECTING: frozenset({SubscriptionState.SUBSCRIBED}),
    SubscriptionState.SUBSCRIBED: frozenset({SubscriptionState.DELIVERING}),
    SubscriptionState.DELIVERING: frozenset(
        {SubscriptionState.DELIVERING, SubscriptionState.SUBSCRIBED}
    ),
    SubscriptionState.STOPPED: frozenset(),
}


class IllegalStateTransition(RuntimeError):
    def __init__(self, current: SubscriptionState, target: SubscriptionState):
        super().__init__(f"Illegal subscription transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


class SubscriptionStateMachine:
    def __init__(self) -> None:
        self._state = SubscriptionState.IDLE

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def is_stopped(self) -> bool:
        return self._state is SubscriptionState.STOPPED

    def can_transition(self, target: SubscriptionState) -> bool:
        if target is SubscriptionState.STOPPED:
            return True
        return target in _TRANSITIONS[self._state]

    def transition(self, target: SubscriptionState) -> None:
        """
        Raises:
            IllegalStateTransition: If ``target`` is not reachable from the current state.
        """
        if self._state is SubscriptionState.STOPPED and target is SubscriptionState.STOPPED:
            return
        if not self.can_transition(target):
            raise IllegalStateTransition(self._state, target)
        self._state = target

"""Capped exponential backoff for handler retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY_SECONDS = 0.5
DEFAULT_MAX_DELAY_SECONDS = 30.0

# base * 2**62 exceeds any delay ceiling; larger exponents overflow a float
MAX_BACKOFF_EXPONENT = 62


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempts 1..max_attempts, sleeping ``min(base * 2**(k-1), max)`` after
    failed attempt ``k``. Exhausting the attempts is the only way a handler
    failure reaches the dead-letter router.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must not be negative")

    def delay_after(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        exponent = min(attempt - 1, MAX_BACKOFF_EXPONENT)
        return min(self.base_delay_seconds * 2**exponent, self.max_delay_seconds)

    def is_exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts

    async def backoff(self, attempt: int, sleep: Sleep = asyncio.sleep) -> None:
        await sleep(self.delay_after(attempt))

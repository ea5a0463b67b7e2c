"""
Idempotency guard for event consumers.

Tracks processed envelope ids per consumer group so that redelivered messages
collapse into no-ops. A claim is a two-phase lease:

1. ``claim`` atomically writes a short-lived "processing" marker (SET NX).
   Exactly one of N racing callers wins.
2. ``confirm`` overwrites it with a "completed" marker kept for the retention
   TTL, or ``release`` deletes it after a handler failure so the next delivery
   can retry.

Unlike a fail-open cache, a store failure here is surfaced as
DuplicateClaimError: the delivery fails and is retried instead of risking a
duplicate side effect.
"""

from __future__ import annotations

import json
import time
from enum import Enum

from .error_handling import raise_duplicate_claim_error
from .logging_utils import create_service_logger
from .protocols import RedisClientProtocol

logger = create_service_logger("idempotency")

DEFAULT_TTL_SECONDS = 7 * 86400  # 7 days retention for processed ids
DEFAULT_LEASE_TTL_SECONDS = 300  # Unconfirmed claims expire after 5 minutes

IDEMPOTENCY_STATUS_PROCESSING = "processing"
IDEMPOTENCY_STATUS_COMPLETED = "completed"


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"  # Caller owns the lease and must confirm or release it
    COMPLETED = "completed"  # Already processed by this consumer group
    IN_FLIGHT = "in_flight"  # Another delivery holds an unconfirmed lease


class IdempotencyConfig:
    """Configuration class for idempotency behavior."""

    def __init__(
        self,
        key_prefix: str = "school:idempotency",
        default_ttl: int = DEFAULT_TTL_SECONDS,
        lease_ttl: int = DEFAULT_LEASE_TTL_SECONDS,
        event_type_ttls: dict[str, int] | None = None,
    ):
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl
        self.lease_ttl = lease_ttl
        self.event_type_ttls = event_type_ttls or {}

    def get_ttl_for_event_type(self, event_type: str | None) -> int:
        if event_type is None:
            return self.default_ttl
        return self.event_type_ttls.get(event_type, self.default_ttl)

    def generate_redis_key(self, group: str, event_id: str) -> str:
        """Format: {prefix}:{group}:{event_id}"""
        return f"{self.key_prefix}:{group}:{event_id}"


class IdempotencyGuard:
    """Check-and-claim of (consumer group, envelope id) pairs backed by Redis."""

    def __init__(self, redis_client: RedisClientProtocol, config: IdempotencyConfig | None = None):
        self.redis_client = redis_client
        self.config = config or IdempotencyConfig()

    async def claim(self, group: str, event_id: str, event_type: str | None = None) -> ClaimStatus:
        """
        Atomically check and claim an envelope for processing.

        Raises:
            DuplicateClaimError: If the backing store cannot be reached.
        """
        key = self.config.generate_redis_key(group, event_id)
        marker = json.dumps(
            {
                "status": IDEMPOTENCY_STATUS_PROCESSING,
                "started_at": time.time(),
                "event_type": event_type,
            }
        )
        try:
            if await self.redis_client.set_if_not_exists(
                key, marker, ttl_seconds=self.config.lease_ttl
            ):
                logger.debug("Claimed event for processing", group=group, event_id=event_id)
                return ClaimStatus.CLAIMED

            existing = await self.redis_client.get(key)
        except Exception as e:
            logger.error(
                "Idempotency store unreachable during claim",
                group=group,
                event_id=event_id,
                error=str(e),
            )
            raise_duplicate_claim_error(
                service=group,
                operation="claim",
                message=f"Idempotency store unreachable: {e}",
                event_id=event_id,
            )

        if existing is None:
            # The other lease was released or expired between SET NX and GET
            return ClaimStatus.IN_FLIGHT

        status = _marker_status(existing)
        if status is None:
            logger.error("Unreadable idempotency marker", group=group, event_id=event_id)
            raise_duplicate_claim_error(
                service=group,
                operation="claim",
                message="Unreadable idempotency marker",
                event_id=event_id,
            )
        if status == IDEMPOTENCY_STATUS_PROCESSING:
            logger.info(
                "Event is being processed by another delivery", group=group, event_id=event_id
            )
            return ClaimStatus.IN_FLIGHT

        logger.warning(
            "DUPLICATE_EVENT_DETECTED: Event already completed",
            group=group,
            event_id=event_id,
        )
        return ClaimStatus.COMPLETED

    async def should_process(
        self, group: str, event_id: str, event_type: str | None = None
    ) -> bool:
        """True only for the single caller that wins the claim."""
        return await self.claim(group, event_id, event_type) is ClaimStatus.CLAIMED

    async def confirm(self, group: str, event_id: str, event_type: str | None = None) -> None:
        """
        Mark a claimed envelope as processed for the retention TTL.

        Raises:
            DuplicateClaimError: If the backing store cannot be reached.
        """
        key = self.config.generate_redis_key(group, event_id)
        ttl_seconds = self.config.get_ttl_for_event_type(event_type)
        marker = json.dumps(
            {
                "status": IDEMPOTENCY_STATUS_COMPLETED,
                "completed_at": time.time(),
                "event_type": event_type,
            }
        )
        try:
            await self.redis_client.setex(key, ttl_seconds, marker)
        except Exception as e:
            raise_duplicate_claim_error(
                service=group,
                operation="confirm",
                message=f"Could not confirm processed event: {e}",
                event_id=event_id,
            )
        logger.debug(
            "IDEMPOTENCY_CONFIRMED", group=group, event_id=event_id, ttl_seconds=ttl_seconds
        )

    async def release(self, group: str, event_id: str) -> None:
        """
        Drop an unconfirmed claim so the next delivery can retry.

        Raises:
            DuplicateClaimError: If the backing store cannot be reached. The
                claim then stays IN_FLIGHT until released or its lease expires.
        """
        key = self.config.generate_redis_key(group, event_id)
        try:
            await self.redis_client.delete_key(key)
        except Exception as e:
            logger.error(
                "CLEANUP_FAILED: Could not release idempotency claim",
                group=group,
                event_id=event_id,
                error=str(e),
                lease_ttl=self.config.lease_ttl,
            )
            raise_duplicate_claim_error(
                service=group,
                operation="release",
                message=f"Could not release idempotency claim: {e}",
                event_id=event_id,
            )


def _marker_status(raw: str) -> str | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    status = data.get("status")
    if status not in (IDEMPOTENCY_STATUS_PROCESSING, IDEMPOTENCY_STATUS_COMPLETED):
        return None
    return str(status)

"""
School Platform Service Libraries Package.

Shared infrastructure for the platform's services: the Kafka publisher, the
consumer dispatcher, the Redis-backed idempotency guard and dead-letter router.
"""

from .dead_letter import DeadLetterRouter, RedisDeadLetterStore
from .idempotency import ClaimStatus, IdempotencyConfig, IdempotencyGuard
from .kafka_client import KafkaBus, kafka_consumer_factory
from .redis_client import RedisClient
from .retry import RetryPolicy

__all__ = [
    "KafkaBus",
    "kafka_consumer_factory",
    "RedisClient",
    "ClaimStatus",
    "IdempotencyConfig",
    "IdempotencyGuard",
    "DeadLetterRouter",
    "RedisDeadLetterStore",
    "RetryPolicy",
]

# The subscribe API lives in school_service_libs.consumer

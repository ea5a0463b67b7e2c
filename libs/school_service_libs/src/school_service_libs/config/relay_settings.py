"""Base settings shared by every service that publishes or consumes events."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from school_common.config_enums import Environment


class RelaySettings(BaseSettings):
    """
    Settings for the event relay.

    Services subclass this and set their own ``env_prefix`` in ``model_config``.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    SERVICE_NAME: str = Field(default="school-service")
    ENVIRONMENT: Environment = Field(
        default=Environment.DEVELOPMENT,
        validation_alias="ENVIRONMENT",  # Read from global ENVIRONMENT var
    )
    LOG_LEVEL: str = Field(default="INFO")

    # Kafka Configuration
    KAFKA_BOOTSTRAP_SERVERS: str = Field(default="localhost:9092")
    KAFKA_AUTO_OFFSET_RESET: str = Field(default="earliest")
    KAFKA_MAX_POLL_RECORDS: int = Field(default=100)
    KAFKA_SESSION_TIMEOUT_MS: int = Field(default=30000)
    KAFKA_POLL_TIMEOUT_MS: int = Field(default=1000)
    KAFKA_PUBLISH_TIMEOUT_SECONDS: float = Field(default=10.0)

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://localhost:6379")

    # Idempotency Configuration
    IDEMPOTENCY_KEY_PREFIX: str = Field(default="school:idempotency")
    IDEMPOTENCY_LEASE_TTL_SECONDS: int = Field(
        default=300, description="How long an unconfirmed claim blocks other deliveries."
    )
    IDEMPOTENCY_TTL_SECONDS: int = Field(
        default=7 * 86400, description="Retention of processed-id records."
    )

    # Retry / Dead-letter Configuration
    RETRY_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    RETRY_BASE_DELAY_SECONDS: float = Field(default=0.5, ge=0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=30.0, ge=0)
    DEAD_LETTER_KEY_PREFIX: str = Field(default="school:dead_letter")
    DEAD_LETTER_MIRROR_TO_TOPIC: bool = Field(
        default=True, description="Also publish quarantined envelopes to '<channel>.DLQ'."
    )

    # Shutdown
    SHUTDOWN_GRACE_SECONDS: float = Field(default=10.0, ge=0)

    def is_production(self) -> bool:
        return self.ENVIRONMENT == Environment.PRODUCTION

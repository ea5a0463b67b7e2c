"""Configuration for the dead-letter admin CLI.

Point it at the same Redis and Kafka as the service whose records it manages;
variables are prefixed with 'DEAD_LETTER_ADMIN_'.
"""

from __future__ import annotations

from dotenv import find_dotenv, load_dotenv
from pydantic_settings import SettingsConfigDict
from school_service_libs.config import RelaySettings

load_dotenv(find_dotenv(".env"))


class AdminSettings(RelaySettings):
    model_config = SettingsConfigDict(env_prefix="DEAD_LETTER_ADMIN_", extra="ignore")

    SERVICE_NAME: str = "dead-letter-admin"

"""Configuration utilities for school platform services."""

from .relay_settings import RelaySettings

__all__ = ["RelaySettings"]

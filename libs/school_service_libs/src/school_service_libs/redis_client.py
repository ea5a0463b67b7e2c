"""
Redis client wrapper for school platform services.

Provides the minimal Redis operations needed by the idempotency guard and the
dead-letter store. Follows the same lifecycle management pattern as KafkaBus.
"""

from __future__ import annotations

import os
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from school_service_libs.logging_utils import create_service_logger
from school_service_libs.protocols import RedisClientProtocol

logger = create_service_logger("redis-client")

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379")


class RedisClient(RedisClientProtocol):
    """Redis client with lifecycle management for relay bookkeeping."""

    def __init__(self, *, client_id: str, redis_url: str = REDIS_URL):
        self.redis_url = redis_url
        self.client_id = client_id
        self.client = aioredis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        self._started = False

    async def __aenter__(self) -> RedisClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> None:
        """Initialize Redis connection with health verification."""
        if not self._started:
            try:
                await self.client.ping()
                self._started = True
                logger.info(f"Redis client '{self.client_id}' connected to {self.redis_url}")
            except RedisConnectionError as e:
                logger.error(f"Redis client '{self.client_id}' failed to connect: {e}")
                raise

    async def stop(self) -> None:
        """Clean shutdown of Redis connection."""
        if self._started:
            try:
                await self.client.aclose()
                self._started = False
                logger.info(f"Redis client '{self.client_id}' disconnected")
            except Exception as e:
                logger.error(
                    f"Error stopping Redis client '{self.client_id}': {e}",
                    exc_info=True,
                )

    async def _ensure_started(self) -> None:
        if not self._started:
            logger.warning(f"Redis client '{self.client_id}' not started. Attempting to start.")
            await self.start()
            if not self._started:
                raise RuntimeError(f"Redis client '{self.client_id}' is not running.")

    async def set_if_not_exists(
        self,
        key: str,
        value: Any,
        ttl_seconds: int | None = None,
    ) -> bool:
        """
        Atomic SET if NOT EXISTS operation.

        Returns:
            True if key was set (first writer), False if key already exists
        """
        await self._ensure_started()
        try:
            result = await self.client.set(key, value, ex=ttl_seconds, nx=True)
            success = bool(result)
            logger.debug(
                f"Redis SETNX by '{self.client_id}': key='{key}' "
                f"ttl={ttl_seconds}s result={'SET' if success else 'EXISTS'}",
            )
            return success
        except RedisTimeoutError:
            logger.error(f"Timeout on Redis SETNX by '{self.client_id}' for key '{key}'")
            raise
        except Exception as e:
            logger.error(
                f"Error in Redis SETNX by '{self.client_id}' for key '{key}': {e}",
                exc_info=True,
            )
            raise

    async def set_and_index_if_not_exists(
        self, key: str, value: str, index_key: str, member: str
    ) -> bool:
        """
        SET ``key`` and RPUSH ``member`` onto ``index_key`` in one MULTI/EXEC
        transaction, unless ``key`` already exists.

        Returns:
            True if both writes were applied, False if key already exists
        """
        await self._ensure_started()
        try:
            async with self.client.pipeline(transaction=True) as pipeline:
                await pipeline.watch(key)
                if await pipeline.exists(key):
                    await pipeline.unwatch()
                    return False
                pipeline.multi()
                pipeline.set(key, value)
                pipeline.rpush(index_key, member)
                await pipeline.execute()
            logger.debug(
                f"Redis SET+RPUSH by '{self.client_id}': key='{key}' index='{index_key}'"
            )
            return True
        except WatchError:
            # Another writer created the key between WATCH and EXEC
            return False
        except Exception as e:
            logger.error(
                f"Error in Redis SET+RPUSH transaction by '{self.client_id}' for key '{key}': {e}",
                exc_info=True,
            )
            raise

    async def get(self, key: str) -> str | None:
        await self._ensure_started()
        try:
            value = await self.client.get(key)
            logger.debug(
                f"Redis GET by '{self.client_id}': key='{key}' "
                f"result={'HIT' if value is not None else 'MISS'}",
            )
            return str(value) if value is not None else None
        except Exception as e:
            logger.error(
                f"Error in Redis GET by '{self.client_id}' for key '{key}': {e}",
                exc_info=True,
            )
            raise

    async def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        await self._ensure_started()
        try:
            return bool(await self.client.setex(key, ttl_seconds, value))
        except Exception as e:
            logger.error(
                f"Error in Redis SETEX by '{self.client_id}' for key '{key}': {e}",
                exc_info=True,
            )
            raise

    async def delete_key(self, key: str) -> int:
        await self._ensure_started()
        try:
            deleted_count = await self.client.delete(key)
            logger.debug(
                f"Redis DELETE by '{self.client_id}': key='{key}' deleted={deleted_count}",
            )
            return int(deleted_count)
        except Exception as e:
            logger.error(
                f"Error deleting Redis key '{key}' by '{self.client_id}': {e}",
                exc_info=True,
            )
            raise

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        await self._ensure_started()
        try:
            return [str(v) for v in await self.client.lrange(key, start, stop)]
        except Exception as e:
            logger.error(
                f"Error in Redis LRANGE by '{self.client_id}' for key '{key}': {e}",
                exc_info=True,
            )
            raise

    async def lrem(self, key: str, count: int, value: str) -> int:
        await self._ensure_started()
        try:
            return int(await self.client.lrem(key, count, value))
        except Exception as e:
            logger.error(
                f"Error in Redis LREM by '{self.client_id}' for key '{key}': {e}",
                exc_info=True,
            )
            raise

    async def ping(self) -> bool:
        """Health check used by readiness probes."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error(f"Redis PING failed for '{self.client_id}': {e}")
            return False

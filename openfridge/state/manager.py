"""Redis-based state manager shared by the API and the kiosk runtime."""

import json
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from redis.asyncio.client import Pipeline

from openfridge.config import get_settings
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)


def encode_value(value: Any) -> Any:
    """Serialize complex objects to JSON."""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def decode_value(value: Any) -> Any:
    """Try to deserialize JSON."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


class StateManager:
    """Centralized state management using Redis."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        settings = get_settings()
        self.redis_client: redis.Redis | None = redis_client
        self.redis_url = settings.redis_url

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def _client(self) -> redis.Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> None:
        """Set a value in Redis with optional TTL."""
        client = await self._client()
        await client.set(key, encode_value(value), ex=ttl)
        logger.debug("state_set", key=key, ttl=ttl)

    async def get(self, key: str) -> Any:
        """Get a value from Redis."""
        client = await self._client()
        return decode_value(await client.get(key))

    async def exists(self, key: str) -> bool:
        """Check if a key exists."""
        client = await self._client()
        return bool(await client.exists(key))

    async def hset(self, key: str, field: str, value: Any) -> None:
        """Set a hash field."""
        client = await self._client()
        await client.hset(key, field, encode_value(value))

    async def hget(self, key: str, field: str) -> Any:
        """Get a hash field."""
        client = await self._client()
        return decode_value(await client.hget(key, field))

    async def hgetall(self, key: str) -> dict[str, Any]:
        """Get all hash fields."""
        client = await self._client()
        data = await client.hgetall(key)
        return {field: decode_value(value) for field, value in data.items()}

    async def lpush(self, key: str, *values: Any) -> None:
        """Prepend values to a list."""
        client = await self._client()
        await client.lpush(key, *(encode_value(v) for v in values))

    async def rpush(self, key: str, *values: Any) -> None:
        """Append values to a list."""
        client = await self._client()
        await client.rpush(key, *(encode_value(v) for v in values))

    async def lrange(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        """Get a slice of a list."""
        client = await self._client()
        return [decode_value(v) for v in await client.lrange(key, start, end)]

    async def transaction(
        self,
        func: Callable[[Pipeline], Awaitable[Any]],
        *watch_keys: str,
    ) -> Any:
        """
        Run an optimistic WATCH/MULTI/EXEC transaction.

        ``func`` reads through the pipeline while the keys are watched, then
        calls ``pipe.multi()`` and queues its writes. It is re-run from the
        start when a watched key changes before EXEC. Returns whatever
        ``func`` returned on the successful attempt.
        """
        client = await self._client()
        return await client.transaction(func, *watch_keys, value_from_callable=True)

    async def flush(self) -> None:
        """Delete every key in the current database."""
        client = await self._client()
        await client.flushdb()
        logger.warning("state_flushed")


# Global state manager instance
_state_manager: StateManager | None = None


async def get_state_manager() -> StateManager:
    """Get the global state manager instance."""
    global _state_manager
    if _state_manager is None:
        _state_manager = StateManager()
        await _state_manager.connect()
    return _state_manager

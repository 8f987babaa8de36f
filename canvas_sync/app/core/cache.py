"""Persistent store abstraction for canvas payloads.

Provides a pluggable key-value backend with in-memory and Redis
implementations. Values are JSON-compatible dicts.
"""

from abc import ABC, abstractmethod
import asyncio
import json
from typing import Any

from canvas_sync.app.core.logging import get_logger

logger = get_logger(__name__)


class PersistentStore(ABC):
    """Abstract base class for persistent stores.

    Implementations must never raise on a missing key.
    """

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Retrieve a value.

        Args:
            key: The store key to look up.

        Returns:
            The stored dict, or None if not found.
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: dict[str, Any]) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: The store key.
            value: JSON-compatible dict.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value. Missing keys are ignored.

        Args:
            key: The store key to remove.
        """
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""
        pass

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryStore(PersistentStore):
    """In-memory store.

    This is the default backend and the one used by tests. Data is
    lost when the process exits. Values are round-tripped through JSON
    so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, key: str, value: dict[str, Any]) -> None:
        encoded = json.dumps(value, ensure_ascii=False)
        async with self._lock:
            self._data[key] = encoded

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            return [k for k in self._data if k.startswith(prefix)]

    async def clear(self) -> None:
        """Clear all entries from the store."""
        async with self._lock:
            self._data.clear()


class RedisStore(PersistentStore):
    """Redis-based persistent store.

    This backend requires the 'redis' package to be installed.

    Example:
        >>> store = RedisStore("redis://localhost:6379/0")
        >>> await store.put("canvas:T1", {"territoryId": "T1", "pixels": []})
    """

    def __init__(self, redis_url: str, redis_client: Any | None = None) -> None:
        """Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            redis_client: Optional pre-built client (used by tests)
        """
        self._redis_url = redis_url
        self._redis = redis_client

    async def _get_client(self) -> Any:
        if self._redis is None:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def get(self, key: str) -> dict[str, Any] | None:
        client = await self._get_client()
        raw = await client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            # Invalid stored data, treat as miss
            logger.warning(f"Discarding undecodable store value for {key}")
            return None

    async def put(self, key: str, value: dict[str, Any]) -> None:
        client = await self._get_client()
        await client.set(key, json.dumps(value, ensure_ascii=False))

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(key)

    async def keys(self, prefix: str = "") -> list[str]:
        client = await self._get_client()
        found = []
        async for key in client.scan_iter(match=f"{prefix}*"):
            found.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        return found

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            # Use aclose() for proper async cleanup in redis-py 5.0+
            await self._redis.aclose()
            self._redis = None


def create_store(
    backend: str | None = None,
    redis_url: str | None = None,
) -> PersistentStore:
    """Create a persistent store for the configured backend.

    Args:
        backend: 'memory' or 'redis'. When None, uses settings.store_backend.
        redis_url: Redis connection URL. If not provided, uses settings.redis_url.

    Returns:
        A PersistentStore instance.
    """
    from canvas_sync.app.core.config import settings

    backend = (backend or settings.store_backend).lower()
    if backend == "redis":
        return RedisStore(redis_url or settings.redis_url)
    return InMemoryStore()

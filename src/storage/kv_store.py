"""
Key/value store used by the router.

Dead letters, stored records and database-queue deliveries are written
here with a TTL; topic deliveries are published on a channel. Values are
JSON documents.

RedisKeyValueStore talks to Redis through redis.asyncio;
InMemoryKeyValueStore keeps everything in process (tests, single-node
runs without REDIS_URL).
"""

import fnmatch
import json
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

import redis.asyncio as aioredis

from src.core.codecs.json_codec import json_default
from src.observability.logger import get_logger

logger = get_logger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=json_default)


class KeyValueStore(ABC):
    """Minimal async store interface."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the decoded value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a JSON-serializable value, optionally expiring after ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Keys matching a glob pattern (``dlq:edi-1:*``)."""

    @abstractmethod
    async def publish(self, channel: str, message: Any) -> int:
        """Publish a JSON message, returning the number of receivers."""

    async def close(self) -> None:
        """Release connections."""


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store with TTL support.

    The most recent published messages are kept in ``published`` as
    (channel, message) pairs so they can be inspected; older ones are
    discarded once ``max_published`` is reached.
    """

    def __init__(self, max_published: int = 1000):
        self._data: dict[str, tuple[str, float | None]] = {}
        self.published: deque[tuple[str, Any]] = deque(maxlen=max_published)

    def _expired(self, key: str) -> bool:
        _, expires_at = self._data[key]
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return True
        return False

    async def get(self, key: str) -> Any | None:
        if key not in self._data or self._expired(key):
            return None
        return json.loads(self._data[key][0])

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (_dumps(value), expires_at)

    async def delete(self, *keys: str) -> int:
        count = 0
        for key in keys:
            if key in self._data and not self._expired(key):
                del self._data[key]
                count += 1
        return count

    async def keys(self, pattern: str) -> list[str]:
        return sorted(
            key for key in list(self._data)
            if fnmatch.fnmatchcase(key, pattern) and not self._expired(key)
        )

    async def publish(self, channel: str, message: Any) -> int:
        self.published.append((channel, json.loads(_dumps(message))))
        return 0

    def ttl(self, key: str) -> float | None:
        """Seconds left before the key expires (None when it never does or is absent)."""
        if key not in self._data:
            return None
        _, expires_at = self._data[key]
        return None if expires_at is None else expires_at - time.monotonic()


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store."""

    def __init__(self, url: str = "redis://localhost:6379/0", client: aioredis.Redis | None = None):
        self.url = url
        self._redis = client or aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        if ttl_seconds:
            await self._redis.setex(key, ttl_seconds, _dumps(value))
        else:
            await self._redis.set(key, _dumps(value))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def keys(self, pattern: str) -> list[str]:
        return sorted([key async for key in self._redis.scan_iter(match=pattern)])

    async def publish(self, channel: str, message: Any) -> int:
        return await self._redis.publish(channel, _dumps(message))

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis connection closed", extra={"redis_url": self.url})


def create_store(redis_url: str | None = None) -> KeyValueStore:
    """Redis store when a URL is configured, in-memory otherwise."""
    if redis_url:
        return RedisKeyValueStore(redis_url)
    logger.warning("REDIS_URL not set, using in-memory store; dead letters will not survive restarts")
    return InMemoryKeyValueStore()

"""Key/value persistence for integration state.

The connection registry stores its whole connection list as one JSON
document under a single key. Two backends are provided:

- InMemoryStorage: process-local dict, used in development and tests.
- RedisStorage: redis.asyncio client, shared across app instances.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis
import structlog

from src.zenith.config import Settings, StorageBackend

logger = structlog.get_logger(__name__)


@runtime_checkable
class KeyValueStorage(Protocol):
    """Minimal async string store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...


class InMemoryStorage:
    """Dict-backed storage. Values are kept as serialized strings."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def ping(self) -> bool:
        return True


class RedisStorage:
    """Redis-backed storage with an optional key namespace.

    Args:
        redis_client: Connected redis.asyncio client (decode_responses=True).
        namespace: Prefix applied to every key, e.g. ``zenith:``.
    """

    def __init__(self, redis_client: aioredis.Redis, namespace: str = "zenith:") -> None:
        self._redis = redis_client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def aclose(self) -> None:
        await self._redis.aclose()


def create_storage(settings: Settings) -> KeyValueStorage:
    """Build the storage backend selected by CRM_STORAGE_BACKEND."""
    if settings.CRM_STORAGE_BACKEND == StorageBackend.redis:
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("storage.redis_selected", url=settings.REDIS_URL)
        return RedisStorage(client)

    logger.info("storage.memory_selected")
    return InMemoryStorage()

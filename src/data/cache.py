"""Redis directory store — tenant mappings and OAuth state."""

from __future__ import annotations

import redis.asyncio as aioredis

from src.core.interfaces import KeyValueStore


class RedisKeyValueStore(KeyValueStore):
    """Async Redis implementation of the directory ``KeyValueStore``.

    Expects a client created with ``decode_responses=True``.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str = "dir:") -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._redis.set(self._key(key), value, ex=ttl)

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        written = await self._redis.set(self._key(key), value, ex=ttl, nx=True)
        return bool(written)

    async def pop(self, key: str) -> str | None:
        # GETDEL: read and delete in one round trip.
        return await self._redis.getdel(self._key(key))

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

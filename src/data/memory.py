"""In-process storage backends for tests and single-process development."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from uuid_extensions import uuid7

from src.core.interfaces import KeyValueStore, NamespaceBackend
from src.core.logging import get_logger

log = get_logger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed directory store with TTL support.

    ``clock`` returns seconds; tests pass a fake to move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl: int | None) -> float | None:
        return None if ttl is None else self._clock() + ttl

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        self._data[key] = (value, self._expiry(ttl))

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl))
            return True

    async def pop(self, key: str) -> str | None:
        async with self._lock:
            value = self._live(key)
            self._data.pop(key, None)
            return value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class InMemoryNamespaceBackend(NamespaceBackend):
    """One dict per namespace; mirrors the storage platform's isolation."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, str]] = {}
        self._titles: dict[str, str] = {}

    @property
    def namespace_count(self) -> int:
        return len(self._namespaces)

    async def create_namespace(self, title: str) -> str:
        # Yield so concurrent creators genuinely interleave.
        await asyncio.sleep(0)
        namespace_id = str(uuid7())
        self._namespaces[namespace_id] = {}
        self._titles[namespace_id] = title
        log.debug("memory_namespace_created", namespace_id=namespace_id)
        return namespace_id

    async def delete_namespace(self, namespace_id: str) -> None:
        self._namespaces.pop(namespace_id, None)
        self._titles.pop(namespace_id, None)

    def _bucket(self, namespace_id: str) -> dict[str, str]:
        bucket = self._namespaces.get(namespace_id)
        if bucket is None:
            msg = f"unknown namespace: {namespace_id}"
            raise KeyError(msg)
        return bucket

    async def get(self, namespace_id: str, key: str) -> str | None:
        return self._bucket(namespace_id).get(key)

    async def put(self, namespace_id: str, key: str, value: str) -> None:
        self._bucket(namespace_id)[key] = value

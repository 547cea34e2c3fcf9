"""Bounded in-process TTL map for hot-path lookups."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Entries expire ``ttl`` seconds after insertion. Oldest is evicted when full."""

    def __init__(
        self,
        ttl: float,
        maxsize: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._maxsize = maxsize
        self._clock = clock
        self._data: dict[str, tuple[V, float]] = {}

    def get(self, key: str) -> V | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def put(self, key: str, value: V) -> None:
        if key not in self._data and len(self._data) >= self._maxsize:
            oldest = next(iter(self._data))
            del self._data[oldest]
        self._data[key] = (value, self._clock() + self._ttl)

    def pop(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

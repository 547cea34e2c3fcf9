"""Abstract base classes — storage backends must implement these interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Low-latency directory store (tenant mappings, OAuth state).

    Holds no secret values. Implementations: in-memory for tests, Redis in
    production.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Atomically write ``value`` only if ``key`` is unset. True if written."""
        ...

    @abstractmethod
    async def pop(self, key: str) -> str | None:
        """Atomically read and delete ``key``."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class NamespaceBackend(ABC):
    """External storage platform that provisions isolated per-tenant namespaces.

    Exposes no listing operation for keys or namespaces.
    """

    @abstractmethod
    async def create_namespace(self, title: str) -> str:
        """Provision a namespace and return its platform-assigned id."""
        ...

    @abstractmethod
    async def delete_namespace(self, namespace_id: str) -> None:
        ...

    @abstractmethod
    async def get(self, namespace_id: str, key: str) -> str | None:
        ...

    @abstractmethod
    async def put(self, namespace_id: str, key: str, value: str) -> None:
        ...

"""Namespace backends — the storage platforms that hold per-tenant secrets.

Two production options:

- ``RedisNamespaceBackend``: one Redis hash per namespace in a key space the
  directory never touches.
- ``CloudflareNamespaceBackend``: one real Workers KV namespace per tenant,
  provisioned through the Cloudflare REST API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import quote

import httpx
import redis.asyncio as aioredis
from uuid_extensions import uuid7

from src.core.constants import CLOUDFLARE_API_BASE
from src.core.exceptions import NamespaceCreationError
from src.core.interfaces import NamespaceBackend
from src.core.logging import get_logger

log = get_logger(__name__)

_CREATED_FIELD = "__created_at__"


class RedisNamespaceBackend(NamespaceBackend):
    """Redis hashes as isolated namespaces (``vault:ns:{id}``)."""

    def __init__(self, redis: aioredis.Redis, prefix: str = "vault:ns:") -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, namespace_id: str) -> str:
        return f"{self._prefix}{namespace_id}"

    async def create_namespace(self, title: str) -> str:
        namespace_id = str(uuid7())
        try:
            await self._redis.hset(
                self._key(namespace_id),
                mapping={_CREATED_FIELD: datetime.now(timezone.utc).isoformat()},
            )
        except aioredis.RedisError as exc:
            log.error("namespace_create_failed", backend="redis", title=title, error=str(exc))
            raise NamespaceCreationError(
                "namespace storage unavailable", {"title": title}
            ) from exc
        return namespace_id

    async def delete_namespace(self, namespace_id: str) -> None:
        await self._redis.delete(self._key(namespace_id))

    async def get(self, namespace_id: str, key: str) -> str | None:
        if key == _CREATED_FIELD:
            return None
        return await self._redis.hget(self._key(namespace_id), key)

    async def put(self, namespace_id: str, key: str, value: str) -> None:
        await self._redis.hset(self._key(namespace_id), key, value)


class CloudflareNamespaceBackend(NamespaceBackend):
    """Workers KV namespaces via the Cloudflare v4 REST API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        api_token: str,
        base_url: str = CLOUDFLARE_API_BASE,
    ) -> None:
        self._client = client
        self._base = f"{base_url}/accounts/{account_id}/storage/kv/namespaces"
        self._headers = {"Authorization": f"Bearer {api_token}"}

    def _value_url(self, namespace_id: str, key: str) -> str:
        return f"{self._base}/{namespace_id}/values/{quote(key, safe='')}"

    async def create_namespace(self, title: str) -> str:
        # Titles must be unique per account; a suffix keeps retries after a
        # half-finished attempt from colliding with the orphan.
        unique_title = f"{title}-{uuid7().hex[-8:]}"
        try:
            resp = await self._client.post(
                self._base,
                json={"title": unique_title},
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            log.error("namespace_create_failed", backend="cloudflare", error=str(exc))
            raise NamespaceCreationError(
                "storage platform unreachable", {"title": unique_title}
            ) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.status_code >= 400 or not body.get("success"):
            errors = body.get("errors") or []
            message = errors[0].get("message") if errors else f"HTTP {resp.status_code}"
            log.error("namespace_create_rejected", backend="cloudflare", status=resp.status_code)
            raise NamespaceCreationError(message, {"title": unique_title})

        namespace_id: str = body["result"]["id"]
        log.info("cloudflare_namespace_created", namespace_id=namespace_id)
        return namespace_id

    async def delete_namespace(self, namespace_id: str) -> None:
        resp = await self._client.delete(f"{self._base}/{namespace_id}", headers=self._headers)
        if resp.status_code >= 400 and resp.status_code != 404:
            log.warning("namespace_delete_failed", namespace_id=namespace_id, status=resp.status_code)

    async def get(self, namespace_id: str, key: str) -> str | None:
        resp = await self._client.get(self._value_url(namespace_id, key), headers=self._headers)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.text

    async def put(self, namespace_id: str, key: str, value: str) -> None:
        resp = await self._client.put(
            self._value_url(namespace_id, key),
            content=value.encode(),
            headers=self._headers,
        )
        resp.raise_for_status()

"""Tenant registry — the shared directory of tenant → namespace and key → tenant.

Holds mappings only, never secret values; secret keys are known only by
their hash. Every authenticated request goes through ``resolve_by_public_key``
or ``resolve_by_secret_key``, so hits are served from a short-lived
in-process cache. Entries are dropped on revocation in this process and
re-verified against the directory once their TTL lapses, which bounds how
long another process can keep serving an offboarded key.
"""

from __future__ import annotations

import hashlib
import secrets
import time
from collections.abc import Callable

from src.core.constants import (
    DIR_PUBLIC_KEY_TENANT,
    DIR_SECRET_KEY_TENANT,
    DIR_TENANT_NAMESPACE,
    DIR_TENANT_PUBLIC_KEY,
    DIR_TENANT_SECRET_KEY,
    PUBLIC_KEY_HEX_LENGTH,
    PUBLIC_KEY_PREFIX,
    SECRET_KEY_HEX_LENGTH,
    SECRET_KEY_PREFIX,
)
from src.core.exceptions import RegistryConflictError
from src.core.interfaces import KeyValueStore
from src.core.logging import get_logger
from src.core.ttl_cache import TTLCache
from src.core.types import Mode, NamespaceHandle

log = get_logger(__name__)


def generate_public_key(mode: Mode) -> str:
    """``pk_{mode}_{32 hex}`` — the mode is readable from the prefix."""
    return f"{PUBLIC_KEY_PREFIX}_{mode.value}_{secrets.token_hex(PUBLIC_KEY_HEX_LENGTH // 2)}"


def generate_secret_key(mode: Mode) -> str:
    return f"{SECRET_KEY_PREFIX}_{mode.value}_{secrets.token_hex(SECRET_KEY_HEX_LENGTH // 2)}"


def hash_secret_key(secret_key: str) -> str:
    """Hex SHA-256. The directory never sees a secret key in plaintext."""
    return hashlib.sha256(secret_key.encode()).hexdigest()


def _secret_cache_key(key_hash: str) -> str:
    return f"sk:{key_hash}"


class TenantRegistry:
    """Directory of tenant mappings over an injected ``KeyValueStore``."""

    def __init__(
        self,
        directory: KeyValueStore,
        cache_ttl: float = 300.0,
        cache_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._dir = directory
        self._key_cache: TTLCache[str] = TTLCache(cache_ttl, cache_size, clock)

    # ── Public key → tenant ──────────────────────────────────────

    async def resolve_by_public_key(self, public_key: str) -> str | None:
        """Tenant id owning ``public_key``, or None. Misses are not cached."""
        cached = self._key_cache.get(public_key)
        if cached is not None:
            return cached

        tenant_id = await self._dir.get(DIR_PUBLIC_KEY_TENANT.format(public_key=public_key))
        if tenant_id is None:
            log.warning("public_key_unknown", key_prefix=public_key[:12])
            return None

        self._key_cache.put(public_key, tenant_id)
        return tenant_id

    async def public_key_for(self, tenant_id: str, mode: Mode) -> str | None:
        return await self._dir.get(DIR_TENANT_PUBLIC_KEY.format(tenant_id=tenant_id, mode=mode.value))

    async def issue_public_key(self, tenant_id: str, mode: Mode) -> str:
        """Return the tenant's key for ``mode``, creating it on first call."""
        existing = await self.public_key_for(tenant_id, mode)
        if existing is not None:
            return existing

        candidate = generate_public_key(mode)
        # Reverse mapping first so a published key always resolves.
        await self._dir.set(DIR_PUBLIC_KEY_TENANT.format(public_key=candidate), tenant_id)
        forward = DIR_TENANT_PUBLIC_KEY.format(tenant_id=tenant_id, mode=mode.value)
        if await self._dir.set_if_absent(forward, candidate):
            log.info("public_key_issued", tenant_id=tenant_id, mode=mode.value)
            return candidate

        await self._dir.delete(DIR_PUBLIC_KEY_TENANT.format(public_key=candidate))
        winner = await self._dir.get(forward)
        assert winner is not None
        return winner

    async def revoke_public_key(self, public_key: str) -> None:
        """Offboard a key: remove both mappings and drop the cached resolution."""
        tenant_id = await self._dir.get(DIR_PUBLIC_KEY_TENANT.format(public_key=public_key))
        await self._dir.delete(DIR_PUBLIC_KEY_TENANT.format(public_key=public_key))
        self._key_cache.pop(public_key)
        if tenant_id is not None:
            mode = Mode.from_public_key(public_key)
            forward = DIR_TENANT_PUBLIC_KEY.format(tenant_id=tenant_id, mode=mode.value)
            if await self._dir.get(forward) == public_key:
                await self._dir.delete(forward)
        log.info("public_key_revoked", tenant_id=tenant_id, key_prefix=public_key[:12])

    def invalidate(self, public_key: str) -> None:
        self._key_cache.pop(public_key)

    # ── Secret key → tenant ──────────────────────────────────────

    async def rotate_secret_key(self, tenant_id: str, mode: Mode) -> str:
        """Issue a new secret key for ``mode`` and retire the previous one.

        Only the SHA-256 hash is stored. The plaintext is returned once and
        cannot be recovered afterwards.
        """
        plaintext = generate_secret_key(mode)
        key_hash = hash_secret_key(plaintext)
        await self._dir.set(DIR_SECRET_KEY_TENANT.format(key_hash=key_hash), tenant_id)

        forward = DIR_TENANT_SECRET_KEY.format(tenant_id=tenant_id, mode=mode.value)
        previous = await self._dir.get(forward)
        await self._dir.set(forward, key_hash)
        if previous is not None:
            await self._dir.delete(DIR_SECRET_KEY_TENANT.format(key_hash=previous))
            self._key_cache.pop(_secret_cache_key(previous))

        log.info("secret_key_rotated", tenant_id=tenant_id, mode=mode.value, replaced=previous is not None)
        return plaintext

    async def resolve_by_secret_key(self, secret_key: str) -> tuple[str, Mode] | None:
        """(tenant id, mode) for a presented secret key, or None."""
        try:
            mode = Mode.from_secret_key(secret_key)
        except ValueError:
            return None

        key_hash = hash_secret_key(secret_key)
        cached = self._key_cache.get(_secret_cache_key(key_hash))
        if cached is not None:
            return cached, mode

        tenant_id = await self._dir.get(DIR_SECRET_KEY_TENANT.format(key_hash=key_hash))
        if tenant_id is None:
            log.warning("secret_key_unknown", mode=mode.value)
            return None

        self._key_cache.put(_secret_cache_key(key_hash), tenant_id)
        return tenant_id, mode

    # ── Tenant → namespace handle ────────────────────────────────

    async def get_namespace_handle(self, tenant_id: str) -> NamespaceHandle | None:
        namespace_id = await self._dir.get(DIR_TENANT_NAMESPACE.format(tenant_id=tenant_id))
        if namespace_id is None:
            return None
        return NamespaceHandle(namespace_id)

    async def claim_namespace_handle(
        self, tenant_id: str, handle: NamespaceHandle
    ) -> NamespaceHandle:
        """Check-then-set: record ``handle`` unless one exists; return the winner."""
        key = DIR_TENANT_NAMESPACE.format(tenant_id=tenant_id)
        if await self._dir.set_if_absent(key, handle.namespace_id):
            return handle
        winner = await self._dir.get(key)
        assert winner is not None
        return NamespaceHandle(winner)

    async def set_namespace_handle(self, tenant_id: str, handle: NamespaceHandle) -> None:
        """Write-once. Re-setting the same handle is a no-op; a different one is a bug."""
        winner = await self.claim_namespace_handle(tenant_id, handle)
        if winner != handle:
            raise RegistryConflictError(
                "tenant already has a namespace handle",
                {"tenant_id": tenant_id},
            )

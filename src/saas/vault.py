"""Isolated credential store — one exclusively-owned namespace per tenant.

Reads and writes take a ``NamespaceHandle``; nothing here accepts a bare
tenant id for secret access. Only ``create_namespace`` consults the registry.
"""

from __future__ import annotations

from src.core.constants import NS_CREDENTIAL
from src.core.exceptions import NamespaceCreationError
from src.core.interfaces import NamespaceBackend
from src.core.logging import get_logger
from src.core.types import CredentialRecord, Mode, NamespaceHandle, Provider
from src.saas.registry import TenantRegistry

log = get_logger(__name__)


def _require_handle(handle: object) -> NamespaceHandle:
    if not isinstance(handle, NamespaceHandle):
        msg = f"expected NamespaceHandle, got {type(handle).__name__}"
        raise TypeError(msg)
    return handle


class CredentialVault:
    """Per-tenant secret storage over a ``NamespaceBackend``."""

    def __init__(self, registry: TenantRegistry, backend: NamespaceBackend) -> None:
        self._registry = registry
        self._backend = backend

    async def create_namespace(self, tenant_id: str) -> NamespaceHandle:
        """Idempotent: the existing handle is returned unchanged.

        Concurrent first calls both provision, then race a set-if-absent on
        the registry; the loser deletes its namespace and adopts the winner's.
        A failed provision raises ``NamespaceCreationError`` and records nothing.
        """
        existing = await self._registry.get_namespace_handle(tenant_id)
        if existing is not None:
            return existing

        try:
            namespace_id = await self._backend.create_namespace(f"tenant-{tenant_id}")
        except NamespaceCreationError:
            log.warning("namespace_create_retryable", tenant_id=tenant_id)
            raise

        candidate = NamespaceHandle(namespace_id)
        winner = await self._registry.claim_namespace_handle(tenant_id, candidate)
        if winner != candidate:
            await self._backend.delete_namespace(namespace_id)
            log.info("namespace_create_lost_race", tenant_id=tenant_id)
            return winner

        log.info("namespace_created", tenant_id=tenant_id)
        return candidate

    async def write(self, handle: NamespaceHandle, key: str, value: str) -> None:
        await self._backend.put(_require_handle(handle).namespace_id, key, value)

    async def read(self, handle: NamespaceHandle, key: str) -> str | None:
        return await self._backend.get(_require_handle(handle).namespace_id, key)

    # ── Credential records ───────────────────────────────────────

    async def write_credential(
        self,
        handle: NamespaceHandle,
        provider: Provider,
        mode: Mode,
        record: CredentialRecord,
    ) -> None:
        """Overwrite the whole record; there are no partial updates."""
        key = NS_CREDENTIAL.format(provider=provider.value, mode=mode.value)
        await self.write(handle, key, record.to_json())
        log.info("credential_written", provider=provider.value, mode=mode.value)

    async def read_credential(
        self,
        handle: NamespaceHandle,
        provider: Provider,
        mode: Mode,
    ) -> CredentialRecord | None:
        raw = await self.read(handle, NS_CREDENTIAL.format(provider=provider.value, mode=mode.value))
        if raw is None:
            return None
        return CredentialRecord.from_json(raw)

"""Tier/price resolver — maps a tier name to a payment-provider price id.

Configuration lives in the tenant's own namespace, one blob per mode, so a
test-mode price can never be returned for a live-mode request. Reads are
cached in-process for a short TTL; ``save_config`` replaces the blob and
drops the cached copy in the same call.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from src.core.constants import DEFAULT_TIER, NS_TIER_CONFIG
from src.core.exceptions import NotConfiguredError, TierNotFoundError, ValidationError
from src.core.logging import get_logger
from src.core.ttl_cache import TTLCache
from src.core.types import Mode, TierConfig, TierDefinition
from src.saas.registry import TenantRegistry
from src.saas.vault import CredentialVault

log = get_logger(__name__)


class TierPriceResolver:
    """Per-(tenant, mode) tier lookup over the credential vault."""

    def __init__(
        self,
        registry: TenantRegistry,
        vault: CredentialVault,
        cache_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._vault = vault
        self._cache: TTLCache[TierConfig] = TTLCache(cache_ttl, clock=clock)

    @staticmethod
    def _cache_key(tenant_id: str, mode: Mode) -> str:
        return f"{tenant_id}:{mode.value}"

    async def load_config(self, tenant_id: str, mode: Mode) -> TierConfig | None:
        """The stored config, or None if the tenant never saved one for ``mode``."""
        cache_key = self._cache_key(tenant_id, mode)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        handle = await self._registry.get_namespace_handle(tenant_id)
        if handle is None:
            return None

        raw = await self._vault.read(handle, NS_TIER_CONFIG.format(mode=mode.value))
        if raw is None:
            return None

        config = TierConfig.from_json(raw)
        self._cache.put(cache_key, config)
        return config

    async def save_config(self, tenant_id: str, mode: Mode, config: TierConfig) -> None:
        """Replace the whole config for ``mode``. Creates the namespace if needed."""
        handle = await self._vault.create_namespace(tenant_id)
        await self._vault.write(handle, NS_TIER_CONFIG.format(mode=mode.value), config.to_json())
        self._cache.pop(self._cache_key(tenant_id, mode))
        log.info(
            "tier_config_saved",
            tenant_id=tenant_id,
            mode=mode.value,
            tiers=len(config.tiers),
        )

    async def require_config(self, tenant_id: str, mode: Mode) -> TierConfig:
        config = await self.load_config(tenant_id, mode)
        if config is None or not config.tiers:
            raise NotConfiguredError(
                "Tier configuration not found. Configure your pricing tiers first.",
                {"tenant_id": tenant_id, "mode": mode.value},
            )
        return config

    async def resolve_tier(
        self, tenant_id: str, mode: Mode, tier_name: str | None = None
    ) -> TierDefinition:
        """Look up a tier by name. ``None`` means the default tier.

        An explicitly named tier that does not exist is an error; it never
        falls back to the default.
        """
        config = await self.require_config(tenant_id, mode)
        wanted = tier_name if tier_name is not None else DEFAULT_TIER
        tier = config.find(wanted)
        if tier is None:
            raise TierNotFoundError(
                f"Tier '{wanted}' not found in configuration",
                {"tenant_id": tenant_id, "mode": mode.value},
            )
        return tier

    async def resolve(self, tenant_id: str, mode: Mode, tier_name: str | None = None) -> str:
        """Price id for the named (or default) tier."""
        tier = await self.resolve_tier(tenant_id, mode, tier_name)
        if not tier.price_id:
            raise ValidationError(
                f"Tier '{tier.name}' has no price configured",
                {"tenant_id": tenant_id, "mode": mode.value},
            )
        return tier.price_id

    async def tier_for_price(
        self, tenant_id: str, mode: Mode, price_id: str
    ) -> TierDefinition | None:
        config = await self.load_config(tenant_id, mode)
        if config is None:
            return None
        return config.find_by_price(price_id)

    async def list_tiers(self, tenant_id: str, mode: Mode) -> list[TierDefinition]:
        config = await self.load_config(tenant_id, mode)
        return list(config.tiers) if config is not None else []

"""Test → live promotion — recreate a tenant's tier catalog on the live account.

Test-mode products and prices do not exist in live mode, so each priced tier
gets a new live product and price. The live tier config is written as one
blob, and the tenant receives its live publishable key and a fresh live
secret key. The test config is left untouched; later test edits do not
propagate.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from src.billing.proxy import BillingProxy
from src.billing.tiers import TierPriceResolver
from src.core.logging import get_logger
from src.core.types import Mode, TierConfig, TierDefinition
from src.saas.registry import TenantRegistry

log = get_logger(__name__)


@dataclass(frozen=True)
class PromotionResult:
    publishable_key: str
    secret_key: str = field(repr=False)
    config: TierConfig


class LivePromoter:
    """Copies the test tier config into live mode with live price ids."""

    def __init__(
        self,
        registry: TenantRegistry,
        tiers: TierPriceResolver,
        billing: BillingProxy,
    ) -> None:
        self._registry = registry
        self._tiers = tiers
        self._billing = billing

    async def promote(self, tenant_id: str) -> PromotionResult:
        """Run the promotion. Each call creates new live products and rotates the live secret key."""
        test_config = await self._tiers.require_config(tenant_id, Mode.TEST)
        auth = await self._billing.authorization_for(tenant_id, Mode.LIVE)

        live_tiers: list[TierDefinition] = []
        for tier in test_config.tiers:
            if tier.price <= 0:
                live_tiers.append(replace(tier, price_id=None))
                continue

            metadata = {"tenant_id": tenant_id, "tier": tier.name}
            if tier.limit is not None:
                metadata["limit"] = str(tier.limit)
            product_id = await self._billing.create_product(auth, tier.display_name, metadata)
            price_id = await self._billing.create_price(
                auth, product_id, tier.price, tier.billing_mode, metadata
            )
            live_tiers.append(replace(tier, price_id=price_id))
            log.info("live_tier_created", tenant_id=tenant_id, tier=tier.name, price_id=price_id)

        live_config = TierConfig(tiers=tuple(live_tiers), trial_days=test_config.trial_days)
        await self._tiers.save_config(tenant_id, Mode.LIVE, live_config)

        publishable_key = await self._registry.issue_public_key(tenant_id, Mode.LIVE)
        secret_key = await self._registry.rotate_secret_key(tenant_id, Mode.LIVE)
        log.info("tenant_promoted_to_live", tenant_id=tenant_id, tiers=len(live_tiers))
        return PromotionResult(publishable_key, secret_key, live_config)

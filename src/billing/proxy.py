"""Billing proxy — hosted checkout and portal sessions, plus catalog writes.

Each session is one user gesture and one round trip to the payment provider.
Nothing here retries; a failed session is retried by the user clicking again.
Products and prices are only created when a tier set is promoted to live.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx

from src.billing.auth import BillingAuth, resolve_authorization
from src.billing.tiers import TierPriceResolver
from src.core.constants import (
    STRIPE_API_BASE,
    STRIPE_CHECKOUT_PATH,
    STRIPE_PORTAL_PATH,
    STRIPE_PRICES_PATH,
    STRIPE_PRODUCTS_PATH,
)
from src.core.exceptions import (
    NoActiveSubscriptionError,
    NotConnectedError,
    ProviderError,
    TierNotFoundError,
)
from src.core.logging import get_logger
from src.core.types import BillingMode, Mode, Provider, TierDefinition
from src.saas.registry import TenantRegistry
from src.saas.vault import CredentialVault

log = get_logger(__name__)


class BillingProxy:
    """Stripe session creation on behalf of a tenant's connected account."""

    def __init__(
        self,
        registry: TenantRegistry,
        vault: CredentialVault,
        tiers: TierPriceResolver,
        client: httpx.AsyncClient,
        master_key_for: Callable[[Mode], str | None],
        portal_configuration_id: str | None = None,
        api_base: str = STRIPE_API_BASE,
    ) -> None:
        self._registry = registry
        self._vault = vault
        self._tiers = tiers
        self._client = client
        self._master_key_for = master_key_for
        self._portal_configuration_id = portal_configuration_id
        self._api_base = api_base.rstrip("/")

    async def authorization_for(self, tenant_id: str, mode: Mode) -> BillingAuth:
        """Load the tenant's credential and pick an auth strategy. No network I/O."""
        handle = await self._registry.get_namespace_handle(tenant_id)
        if handle is None:
            raise NotConnectedError(
                "Payment provider not connected. Please reconnect your account.",
                {"tenant_id": tenant_id, "mode": mode.value},
            )
        record = await self._vault.read_credential(handle, Provider.STRIPE, mode)
        return resolve_authorization(record, self._master_key_for(mode))

    async def _checkout_tier(
        self,
        tenant_id: str,
        mode: Mode,
        tier: str | None,
        price_id: str | None,
    ) -> TierDefinition:
        if price_id:
            found = await self._tiers.tier_for_price(tenant_id, mode, price_id)
            if found is None:
                # Still distinguish "no config at all" from "unknown price".
                await self._tiers.require_config(tenant_id, mode)
                raise TierNotFoundError(
                    f"Price '{price_id}' not found in configuration",
                    {"tenant_id": tenant_id, "mode": mode.value},
                )
            return found
        return await self._tiers.resolve_tier(tenant_id, mode, tier)

    async def create_checkout_session(
        self,
        tenant_id: str,
        mode: Mode,
        public_key: str,
        subject_id: str,
        success_url: str,
        cancel_url: str,
        tier: str | None = None,
        price_id: str | None = None,
        email: str | None = None,
    ) -> str:
        """Hosted checkout URL for one end-user buying one tier."""
        tier_def = await self._checkout_tier(tenant_id, mode, tier, price_id)
        resolved_price = price_id or await self._tiers.resolve(tenant_id, mode, tier_def.name)
        auth = await self.authorization_for(tenant_id, mode)

        form: dict[str, str] = {
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": subject_id,
            "line_items[0][price]": resolved_price,
            "line_items[0][quantity]": "1",
        }
        if email:
            form["customer_email"] = email

        metadata = {
            "user_id": subject_id,
            "tier": tier_def.name,
            "publishable_key": public_key,
        }
        if tier_def.billing_mode is BillingMode.ONE_OFF:
            form["mode"] = "payment"
            nested = "payment_intent_data"
        else:
            form["mode"] = "subscription"
            nested = "subscription_data"
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value
            form[f"{nested}[metadata][{key}]"] = value

        session = await self._post(STRIPE_CHECKOUT_PATH, form, auth, "Failed to create checkout session")
        log.info(
            "checkout_session_created",
            tenant_id=tenant_id,
            mode=mode.value,
            tier=tier_def.name,
            billing_mode=tier_def.billing_mode.value,
        )
        return str(session["url"])

    async def create_portal_session(
        self,
        tenant_id: str,
        mode: Mode,
        customer_id: str | None,
        return_url: str,
    ) -> str:
        """Hosted billing-portal URL for an end-user with a recorded customer."""
        if not customer_id:
            raise NoActiveSubscriptionError("no active subscription", {"tenant_id": tenant_id})

        auth = await self.authorization_for(tenant_id, mode)
        form = {"customer": customer_id, "return_url": return_url}
        if self._portal_configuration_id:
            form["configuration"] = self._portal_configuration_id

        session = await self._post(STRIPE_PORTAL_PATH, form, auth, "Failed to create portal session")
        log.info("portal_session_created", tenant_id=tenant_id, mode=mode.value)
        return str(session["url"])

    async def create_product(self, auth: BillingAuth, name: str, metadata: dict[str, str]) -> str:
        """Create a product on the connected account. Returns its id."""
        form = {"name": name}
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value
        product = await self._post(
            STRIPE_PRODUCTS_PATH, form, auth, "Failed to create product", expect="id"
        )
        return str(product["id"])

    async def create_price(
        self,
        auth: BillingAuth,
        product_id: str,
        unit_amount: int,
        billing_mode: BillingMode,
        metadata: dict[str, str],
        currency: str = "usd",
    ) -> str:
        """Create a price for ``product_id``. Subscription tiers bill monthly."""
        form = {
            "product": product_id,
            "unit_amount": str(unit_amount),
            "currency": currency,
        }
        if billing_mode is BillingMode.SUBSCRIPTION:
            form["recurring[interval]"] = "month"
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value
        price = await self._post(STRIPE_PRICES_PATH, form, auth, "Failed to create price", expect="id")
        return str(price["id"])

    async def _post(
        self,
        path: str,
        form: dict[str, str],
        auth: BillingAuth,
        fallback_message: str,
        expect: str = "url",
    ) -> dict[str, Any]:
        try:
            resp = await self._client.post(f"{self._api_base}{path}", data=form, headers=auth.headers())
        except httpx.HTTPError as e:
            log.error("billing_provider_unreachable", path=path, error=str(e))
            raise ProviderError(fallback_message) from e

        try:
            body: dict[str, Any] = resp.json()
        except ValueError:
            body = {}

        if resp.is_success and body.get(expect):
            return body

        error = body.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else None
        log.warning("billing_provider_rejected", path=path, status=resp.status_code)
        raise ProviderError(
            message or fallback_message,
            status_code=resp.status_code if not resp.is_success else None,
        )

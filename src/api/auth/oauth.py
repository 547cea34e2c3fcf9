"""OAuth 2.0 exchange — connects a tenant's GitHub or Stripe account.

START stores ``{provider, tenant_id, mode}`` behind a state value and sends
the browser to the provider. CALLBACK consumes the state, swaps the code for
tokens and writes them into the tenant's existing namespace.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx

from src.core.exceptions import NamespaceMissingError, NotConfiguredError, ProviderError
from src.core.logging import get_logger
from src.core.types import CredentialRecord, Mode, OAuthState, Provider
from src.saas.registry import TenantRegistry
from src.saas.vault import CredentialVault

from .providers import PROVIDERS, OAuthProviderConfig
from .state import OAuthStateStore

log = get_logger(__name__)

# (provider, mode) -> (client_id, client_secret)
ClientCredentials = Callable[[Provider, Mode], tuple[str, str]]


def build_authorize_url(
    cfg: OAuthProviderConfig,
    client_id: str,
    redirect_uri: str,
    state: str,
) -> str:
    """Build the OAuth authorization redirect URL."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "scope": cfg.scope_separator.join(cfg.scopes),
        **cfg.extra_params,
    }
    return f"{cfg.authorize_url}?{urlencode(params)}"


def _credential_from_token_response(provider: Provider, data: dict[str, Any]) -> CredentialRecord:
    """Normalize provider-specific token responses to a ``CredentialRecord``."""
    if provider is Provider.STRIPE:
        return CredentialRecord(
            access_token=data.get("access_token"),
            account_id=data.get("stripe_user_id"),
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
        )

    # GitHub
    return CredentialRecord(
        access_token=data.get("access_token"),
        refresh_token=data.get("refresh_token"),
        scope=data.get("scope"),
    )


class OAuthEngine:
    """Per-provider authorize/callback flow bound to tenant namespaces."""

    def __init__(
        self,
        registry: TenantRegistry,
        vault: CredentialVault,
        states: OAuthStateStore,
        client: httpx.AsyncClient,
        client_credentials: ClientCredentials,
        callback_base_url: str,
    ) -> None:
        self._registry = registry
        self._vault = vault
        self._states = states
        self._client = client
        self._client_credentials = client_credentials
        self._callback_base_url = callback_base_url.rstrip("/")

    def callback_url(self, provider: Provider) -> str:
        return f"{self._callback_base_url}/oauth/{provider.value}/callback"

    def _credentials(self, provider: Provider, mode: Mode) -> tuple[str, str]:
        client_id, client_secret = self._client_credentials(provider, mode)
        if not client_id:
            raise NotConfiguredError(
                f"{provider.value} OAuth is not configured for {mode.value} mode",
                {"provider": provider.value, "mode": mode.value},
            )
        return client_id, client_secret

    async def start(self, provider: Provider, tenant_id: str, mode: Mode) -> str:
        """Issue a state value and return the provider authorize URL."""
        cfg = PROVIDERS[provider]
        client_id, _ = self._credentials(provider, mode)
        state = await self._states.issue(OAuthState(provider=provider, tenant_id=tenant_id, mode=mode))
        log.info("oauth_started", provider=provider.value, tenant_id=tenant_id, mode=mode.value)
        return build_authorize_url(cfg, client_id, self.callback_url(provider), state)

    async def exchange_code(self, provider: Provider, mode: Mode, code: str) -> CredentialRecord:
        """Exchange an authorization code for tokens.

        A provider rejection raises ``ProviderError`` (400). Transport failures
        propagate as ``httpx.HTTPError`` so the caller can tell them apart.
        """
        cfg = PROVIDERS[provider]
        client_id, client_secret = self._credentials(provider, mode)

        resp = await self._client.post(
            cfg.token_url,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": self.callback_url(provider),
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        try:
            token_data: dict[str, Any] = resp.json()
        except ValueError:
            token_data = {}

        record = _credential_from_token_response(provider, token_data)
        if not resp.is_success or token_data.get("error") or not record.access_token:
            message = (
                token_data.get("error_description")
                or token_data.get("error")
                or f"{provider.value} token exchange failed"
            )
            log.warning(
                "oauth_provider_rejected",
                provider=provider.value,
                status=resp.status_code,
                error=token_data.get("error"),
            )
            raise ProviderError(str(message), status_code=400, context={"provider": provider.value})

        return record

    async def complete(self, provider: Provider, code: str, state: str) -> OAuthState:
        """Consume ``state``, exchange ``code`` and store the credential."""
        issued = await self._states.consume(state, provider)

        handle = await self._registry.get_namespace_handle(issued.tenant_id)
        if handle is None:
            log.warning("oauth_namespace_missing", provider=provider.value, tenant_id=issued.tenant_id)
            raise NamespaceMissingError(
                "Credential storage not initialized. Please restart setup.",
                {"tenant_id": issued.tenant_id},
            )

        record = await self.exchange_code(provider, issued.mode, code)
        await self._vault.write_credential(handle, provider, issued.mode, record)
        log.info(
            "oauth_completed",
            provider=provider.value,
            tenant_id=issued.tenant_id,
            mode=issued.mode.value,
        )
        return issued

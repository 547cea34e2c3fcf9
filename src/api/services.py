"""Service wiring — builds the component graph from settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings
from src.api.auth.oauth import ClientCredentials, OAuthEngine
from src.api.auth.state import OAuthStateStore
from src.billing.promote import LivePromoter
from src.billing.proxy import BillingProxy
from src.billing.tiers import TierPriceResolver
from src.core.interfaces import KeyValueStore, NamespaceBackend
from src.core.logging import get_logger
from src.core.types import Mode, Provider
from src.data.cache import RedisKeyValueStore
from src.data.memory import InMemoryKeyValueStore, InMemoryNamespaceBackend
from src.data.namespaces import CloudflareNamespaceBackend, RedisNamespaceBackend
from src.saas.identity import IdentityClient
from src.saas.registry import TenantRegistry
from src.saas.session import SessionVerifier
from src.saas.sync import SubscriptionSync
from src.saas.vault import CredentialVault

log = get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler may need, built once per process."""

    settings: Settings
    http: httpx.AsyncClient
    directory: KeyValueStore
    backend: NamespaceBackend
    registry: TenantRegistry
    vault: CredentialVault
    tiers: TierPriceResolver
    states: OAuthStateStore
    oauth: OAuthEngine
    billing: BillingProxy
    identity: IdentityClient
    promoter: LivePromoter
    sync: SubscriptionSync
    sessions: SessionVerifier
    _closers: list[Any] = field(default_factory=list, repr=False)

    async def aclose(self) -> None:
        for closer in self._closers:
            await closer()
        await self.http.aclose()
        log.info("services_closed")


def _oauth_client_credentials(settings: Settings) -> ClientCredentials:
    def lookup(provider: Provider, mode: Mode) -> tuple[str, str]:
        if provider is Provider.STRIPE:
            return settings.stripe_client_id(mode.value), settings.stripe_secret_key(mode.value)
        return settings.github_client_id, settings.github_client_secret.get_secret_value()

    return lookup


def _storage(settings: Settings, http: httpx.AsyncClient) -> tuple[KeyValueStore, NamespaceBackend, list[Any]]:
    if settings.storage_backend == "memory":
        return InMemoryKeyValueStore(), InMemoryNamespaceBackend(), []

    redis = aioredis.from_url(settings.redis_url.get_secret_value(), decode_responses=True)
    directory = RedisKeyValueStore(redis)
    closers = [redis.aclose]
    if settings.storage_backend == "cloudflare":
        backend: NamespaceBackend = CloudflareNamespaceBackend(
            http,
            account_id=settings.cloudflare_account_id,
            api_token=settings.cloudflare_api_token.get_secret_value(),
        )
    else:
        backend = RedisNamespaceBackend(redis)
    return directory, backend, closers


def build_services(
    settings: Settings,
    engine: AsyncEngine,
    http: httpx.AsyncClient | None = None,
    directory: KeyValueStore | None = None,
    backend: NamespaceBackend | None = None,
) -> Services:
    """Assemble the component graph. Storage can be injected for tests."""
    http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    closers: list[Any] = []
    if directory is None or backend is None:
        directory, backend, closers = _storage(settings, http)

    registry = TenantRegistry(directory, cache_ttl=settings.registry_cache_ttl_seconds)
    vault = CredentialVault(registry, backend)
    tiers = TierPriceResolver(registry, vault, cache_ttl=settings.tier_cache_ttl_seconds)
    states = OAuthStateStore(directory, settings.state_secret.get_secret_value())
    billing = BillingProxy(
        registry,
        vault,
        tiers,
        http,
        master_key_for=lambda mode: settings.stripe_secret_key(mode.value) or None,
        portal_configuration_id=settings.stripe_portal_config_id or None,
    )

    services = Services(
        settings=settings,
        http=http,
        directory=directory,
        backend=backend,
        registry=registry,
        vault=vault,
        tiers=tiers,
        states=states,
        oauth=OAuthEngine(
            registry,
            vault,
            states,
            http,
            client_credentials=_oauth_client_credentials(settings),
            callback_base_url=settings.api_base_url,
        ),
        billing=billing,
        promoter=LivePromoter(registry, tiers, billing),
        identity=IdentityClient(
            http,
            settings.identity_api_url,
            secret_key_for=lambda mode: settings.identity_secret_key(mode.value),
        ),
        sync=SubscriptionSync(engine),
        sessions=SessionVerifier(
            http,
            settings.identity_jwks_url,
            issuer=settings.identity_issuer,
            authorized_parties=settings.origins,
            cache_ttl=settings.jwks_cache_ttl_seconds,
        ),
        _closers=closers,
    )
    log.info("services_built", storage_backend=settings.storage_backend)
    return services

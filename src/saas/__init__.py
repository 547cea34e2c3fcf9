"""Tenant layer — registry, credential vault, end-user sync and identity lookups."""

from src.saas.identity import IdentityClient, IdentityUser
from src.saas.registry import TenantRegistry, generate_public_key
from src.saas.session import SessionVerifier
from src.saas.sync import SubscriptionSync, month_bounds
from src.saas.vault import CredentialVault

__all__ = [
    "CredentialVault",
    "IdentityClient",
    "IdentityUser",
    "SessionVerifier",
    "SubscriptionSync",
    "TenantRegistry",
    "generate_public_key",
    "month_bounds",
]

"""OAuth provider configuration for GitHub and Stripe Connect."""

from __future__ import annotations

from dataclasses import dataclass, field

from src.core.types import Provider


@dataclass(frozen=True)
class OAuthProviderConfig:
    """Immutable OAuth provider configuration."""

    name: Provider
    authorize_url: str
    token_url: str
    scopes: list[str]
    scope_separator: str = " "
    extra_params: dict[str, str] = field(default_factory=dict)


GITHUB = OAuthProviderConfig(
    name=Provider.GITHUB,
    authorize_url="https://github.com/login/oauth/authorize",
    token_url="https://github.com/login/oauth/access_token",
    scopes=["read:user", "repo"],
)

STRIPE = OAuthProviderConfig(
    name=Provider.STRIPE,
    authorize_url="https://connect.stripe.com/oauth/authorize",
    token_url="https://connect.stripe.com/oauth/token",
    scopes=["read_write"],
    extra_params={"response_type": "code"},
)

PROVIDERS: dict[Provider, OAuthProviderConfig] = {
    Provider.GITHUB: GITHUB,
    Provider.STRIPE: STRIPE,
}

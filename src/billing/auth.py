"""Payment-provider authorization strategies.

A tenant's stored credential either carries its own access token, or only a
connected account id that the platform's master key can act on behalf of.
``resolve_authorization`` picks one before any network call is made.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.core.constants import STRIPE_ACCOUNT_HEADER
from src.core.exceptions import NotConnectedError
from src.core.types import CredentialRecord


@dataclass(frozen=True)
class AccessTokenAuth:
    """Act with the tenant's own OAuth access token."""

    token: str = field(repr=False)

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@dataclass(frozen=True)
class PlatformAccountAuth:
    """Act with the platform master key on the tenant's connected account."""

    master_key: str = field(repr=False)
    account_id: str

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.master_key}",
            STRIPE_ACCOUNT_HEADER: self.account_id,
        }


BillingAuth = AccessTokenAuth | PlatformAccountAuth


def resolve_authorization(
    record: CredentialRecord | None,
    master_key: str | None,
) -> BillingAuth:
    """Prefer the tenant's access token; fall back to master key + account id."""
    if record is not None and record.access_token:
        return AccessTokenAuth(record.access_token)
    if record is not None and record.account_id and master_key:
        return PlatformAccountAuth(master_key, record.account_id)
    raise NotConnectedError("Payment provider not connected. Please reconnect your account.")

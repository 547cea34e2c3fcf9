"""Identity provider REST client — end-user lookup and public metadata."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.core.exceptions import NotConfiguredError, ProviderError
from src.core.logging import get_logger
from src.core.types import Mode

log = get_logger(__name__)


@dataclass(frozen=True)
class IdentityUser:
    user_id: str
    email: str | None = None
    public_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "IdentityUser":
        emails = data.get("email_addresses") or []
        email = emails[0].get("email_address") if emails else None
        return cls(
            user_id=str(data.get("id", "")),
            email=email,
            public_metadata=dict(data.get("public_metadata") or {}),
        )


class IdentityClient:
    """Reads users and merges public metadata through the provider's backend API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        secret_key_for: Callable[[Mode], str],
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._secret_key_for = secret_key_for

    def is_configured(self, mode: Mode) -> bool:
        return bool(self._secret_key_for(mode))

    def _headers(self, mode: Mode) -> dict[str, str]:
        key = self._secret_key_for(mode)
        if not key:
            raise NotConfiguredError(f"identity provider key missing for {mode.value} mode")
        return {"Authorization": f"Bearer {key}", "Accept": "application/json"}

    async def get_user(self, user_id: str, mode: Mode) -> IdentityUser:
        body = await self._request("GET", f"/users/{user_id}", mode, op="get_user")
        return IdentityUser.from_api(body)

    async def update_metadata(
        self, user_id: str, mode: Mode, public_metadata: dict[str, Any]
    ) -> IdentityUser:
        """Merge ``public_metadata`` into the user's existing public metadata."""
        body = await self._request(
            "PATCH",
            f"/users/{user_id}/metadata",
            mode,
            op="update_metadata",
            json={"public_metadata": public_metadata},
        )
        return IdentityUser.from_api(body)

    async def _request(
        self, method: str, path: str, mode: Mode, op: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            resp = await self._client.request(
                method, f"{self._base_url}{path}", headers=self._headers(mode), **kwargs
            )
        except httpx.HTTPError as e:
            log.error("identity_provider_unreachable", op=op, error=str(e))
            raise ProviderError(f"identity provider {op} failed") from e

        try:
            body: dict[str, Any] = resp.json()
        except ValueError:
            body = {}
        if resp.is_success:
            return body

        errors = body.get("errors") or []
        message = errors[0].get("message") if errors else f"identity provider {op} failed"
        log.warning("identity_provider_error", op=op, status=resp.status_code)
        raise ProviderError(str(message), status_code=resp.status_code)

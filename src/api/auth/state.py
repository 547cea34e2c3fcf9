"""OAuth state tokens — signed, short-lived and consumable exactly once."""

from __future__ import annotations

import json
import secrets

from itsdangerous import BadData, URLSafeTimedSerializer

from src.core.constants import DIR_OAUTH_STATE, OAUTH_STATE_TTL_SECONDS
from src.core.exceptions import InvalidStateError
from src.core.interfaces import KeyValueStore
from src.core.logging import get_logger
from src.core.types import Mode, OAuthState, Provider

log = get_logger(__name__)

_INVALID = "Invalid or expired state. Please try again."


class OAuthStateStore:
    """Issues state values and resolves them back to what they were issued for.

    The value handed to the provider is an HMAC-signed ``{provider, nonce}``;
    the record itself lives in the directory under the nonce with a TTL. A
    callback pops the record, so a replay inside the window finds nothing.
    """

    def __init__(
        self,
        directory: KeyValueStore,
        secret: str,
        ttl: int = OAUTH_STATE_TTL_SECONDS,
    ) -> None:
        self._dir = directory
        self._signer = URLSafeTimedSerializer(secret, salt="oauth-state")
        self._ttl = ttl

    async def issue(self, state: OAuthState) -> str:
        nonce = secrets.token_urlsafe(16)
        record = {
            "provider": state.provider.value,
            "tenant_id": state.tenant_id,
            "mode": state.mode.value,
        }
        await self._dir.set(DIR_OAUTH_STATE.format(nonce=nonce), json.dumps(record), ttl=self._ttl)
        return self._signer.dumps({"provider": state.provider.value, "nonce": nonce})  # type: ignore[return-value]

    async def consume(self, token: str, provider: Provider) -> OAuthState:
        """Resolve and burn ``token``. Raises ``InvalidStateError`` on any mismatch."""
        try:
            signed: dict[str, str] = self._signer.loads(token, max_age=self._ttl)
        except BadData:
            log.warning("oauth_state_bad_signature", provider=provider.value)
            raise InvalidStateError(_INVALID) from None

        raw = await self._dir.pop(DIR_OAUTH_STATE.format(nonce=signed.get("nonce", "")))
        if raw is None:
            log.warning("oauth_state_unknown_or_used", provider=provider.value)
            raise InvalidStateError(_INVALID)

        record = json.loads(raw)
        # Checked after the pop so a token presented to the wrong provider is spent.
        if record.get("provider") != provider.value or signed.get("provider") != provider.value:
            log.warning(
                "oauth_state_provider_mismatch",
                expected=record.get("provider"),
                got=provider.value,
            )
            raise InvalidStateError(_INVALID)

        return OAuthState(
            provider=provider,
            tenant_id=record["tenant_id"],
            mode=Mode(record["mode"]),
        )

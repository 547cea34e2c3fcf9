"""Dashboard sessions — identity-provider JWTs verified against the provider's JWKS.

Developers sign in with the identity provider. Its session token is an RS256
JWT whose ``sub`` is the developer's user id, which doubles as the tenant id.
Nothing here issues tokens.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
import jwt

from src.core.exceptions import ProviderError
from src.core.logging import get_logger
from src.core.ttl_cache import TTLCache

log = get_logger(__name__)

_JWKS_CACHE_KEY = "jwks"
_ALGORITHMS = ["RS256"]


class SessionVerifier:
    """Validates session JWTs: signature, expiry, issuer and (optionally) azp."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        jwks_url: str,
        issuer: str = "",
        authorized_parties: list[str] | None = None,
        leeway: int = 5,
        cache_ttl: float = 3600,
        min_refresh_interval: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._jwks_url = jwks_url
        self._issuer = issuer or None
        self._authorized_parties = authorized_parties or []
        self._leeway = leeway
        self._keys: TTLCache[dict[str, Any]] = TTLCache(ttl=cache_ttl, maxsize=1, clock=clock)
        self._min_refresh = min_refresh_interval
        self._clock = clock
        self._last_fetch: float | None = None

    async def verify_token(self, token: str) -> dict[str, Any] | None:
        """Claims if the token is valid, else None.

        Raises ProviderError when the key set cannot be fetched, so an
        identity-provider outage is not reported as a bad token.
        """
        if not self._jwks_url:
            log.warning("session_verifier_unconfigured")
            return None

        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except jwt.PyJWTError:
            log.warning("session_malformed")
            return None

        key = await self._signing_key(kid)
        if key is None:
            log.warning("session_unknown_kid", kid=kid)
            return None

        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                key,
                algorithms=_ALGORITHMS,
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["exp", "sub"], "verify_aud": False},
            )
        except jwt.PyJWTError as exc:
            log.warning("session_invalid", error=str(exc))
            return None

        azp = claims.get("azp")
        if azp and self._authorized_parties and azp not in self._authorized_parties:
            log.warning("session_unauthorized_party", azp=azp)
            return None
        return claims

    async def _signing_key(self, kid: str | None) -> Any:
        keys = self._keys.get(_JWKS_CACHE_KEY)
        if keys is None or (kid not in keys and self._may_refresh()):
            keys = await self._fetch_keys()
        return keys.get(kid) if kid else None

    def _may_refresh(self) -> bool:
        # Unknown kids refetch at most once per interval (key rotation).
        return self._last_fetch is None or self._clock() - self._last_fetch >= self._min_refresh

    async def _fetch_keys(self) -> dict[str, Any]:
        self._last_fetch = self._clock()
        try:
            resp = await self._client.get(self._jwks_url, headers={"Accept": "application/json"})
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.error("jwks_fetch_failed", error=str(exc))
            raise ProviderError("identity provider unavailable", 503) from exc

        keys: dict[str, Any] = {}
        for jwk in body.get("keys", []):
            if jwk.get("use", "sig") != "sig" or "kid" not in jwk:
                continue
            try:
                keys[jwk["kid"]] = jwt.PyJWK(jwk).key
            except jwt.PyJWTError as exc:
                log.warning("jwks_key_skipped", kid=jwk.get("kid"), error=str(exc))
        self._keys.put(_JWKS_CACHE_KEY, keys)
        log.info("jwks_refreshed", keys=len(keys))
        return keys

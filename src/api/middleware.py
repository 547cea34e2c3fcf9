"""Session authentication for tenant dashboard routes."""

from __future__ import annotations

from typing import Any

from fastapi import Cookie, HTTPException, Request, status

from src.core.logging import get_logger
from src.saas.session import SessionVerifier

log = get_logger(__name__)

SESSION_COOKIE = "__session"


def _session_verifier(request: Request) -> SessionVerifier:
    return request.app.state.services.sessions


async def get_current_session(
    request: Request,
    session_cookie: str | None = Cookie(default=None, alias=SESSION_COOKIE),
) -> dict[str, Any]:
    """Extract and verify the identity-provider session token.

    Looks at the cookie, then the Authorization header, then a ``token`` query
    parameter (browser redirects into OAuth cannot carry headers). Returns the
    claims with at least ``sub`` (the developer's user id, i.e. the tenant id).
    """
    token: str | None = session_cookie

    if not token:
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        token = request.query_params.get("token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    claims = await _session_verifier(request).verify_token(token)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    return claims


def require_tenant_match(session: dict[str, Any], tenant_id: str) -> str:
    """A session may only act on its own tenant."""
    if session.get("sub") != tenant_id:
        log.warning("session_tenant_mismatch", tenant_id=tenant_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Session does not belong to this tenant",
        )
    return tenant_id

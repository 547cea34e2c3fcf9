"""FastAPI dependency injection — shared instances for routes."""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status

from src.api.services import Services
from src.core.constants import HEADER_INTERNAL_TOKEN, HEADER_PUBLIC_KEY, HEADER_USER_EMAIL, HEADER_USER_ID
from src.core.exceptions import NotConfiguredError, UnknownTenantError
from src.core.logging import get_logger
from src.core.types import Mode

log = get_logger(__name__)


# ── Services ──────────────────────────────────────────────────────


def get_services(request: Request) -> Services:
    """Provide the process-wide service graph."""
    return request.app.state.services


# ── End-user identity ─────────────────────────────────────────────


@dataclass(frozen=True)
class EndUser:
    """Caller of an end-user route, already resolved to its tenant."""

    tenant_id: str
    public_key: str
    mode: Mode
    subject_id: str
    email: str | None = None


async def resolve_public_key(
    services: Services = Depends(get_services),
    public_key: str | None = Header(default=None, alias=HEADER_PUBLIC_KEY),
) -> tuple[str, str, Mode]:
    """(tenant_id, public_key, mode) for the presented publishable key."""
    if not public_key:
        raise UnknownTenantError("Missing publishable key")
    try:
        mode = Mode.from_public_key(public_key)
    except ValueError:
        raise UnknownTenantError("Invalid publishable key") from None

    tenant_id = await services.registry.resolve_by_public_key(public_key)
    if tenant_id is None:
        raise UnknownTenantError("Invalid publishable key")
    return tenant_id, public_key, mode


async def require_end_user(
    tenant: tuple[str, str, Mode] = Depends(resolve_public_key),
    user_id: str | None = Header(default=None, alias=HEADER_USER_ID),
    user_email: str | None = Header(default=None, alias=HEADER_USER_EMAIL),
) -> EndUser:
    """Resolve the publishable key and the verified subject id."""
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user id",
        )
    tenant_id, public_key, mode = tenant
    return EndUser(
        tenant_id=tenant_id,
        public_key=public_key,
        mode=mode,
        subject_id=user_id,
        email=user_email or None,
    )


# ── Internal callers ──────────────────────────────────────────────


async def require_internal(
    services: Services = Depends(get_services),
    token: str | None = Header(default=None, alias=HEADER_INTERNAL_TOKEN),
) -> None:
    """Guard for the webhook collaborator's entry point."""
    expected = services.settings.internal_api_token.get_secret_value()
    if not expected or not secrets.compare_digest(token or "", expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )


# ── Server-side callers ───────────────────────────────────────────


@dataclass(frozen=True)
class ServerCaller:
    """Tenant backend authenticated with a secret key."""

    tenant_id: str
    public_key: str
    mode: Mode


async def require_secret_key(
    services: Services = Depends(get_services),
    authorization: str | None = Header(default=None),
) -> ServerCaller:
    """Resolve ``Authorization: Bearer sk_...`` to the tenant and its key for that mode."""
    secret_key = authorization[7:] if authorization and authorization.startswith("Bearer ") else ""
    if not secret_key:
        raise UnknownTenantError("Missing secret key")

    resolved = await services.registry.resolve_by_secret_key(secret_key)
    if resolved is None:
        raise UnknownTenantError("Invalid secret key")

    tenant_id, mode = resolved
    public_key = await services.registry.public_key_for(tenant_id, mode)
    if public_key is None:
        raise NotConfiguredError(
            f"No {mode.value} publishable key issued",
            {"tenant_id": tenant_id},
        )
    return ServerCaller(tenant_id=tenant_id, public_key=public_key, mode=mode)

"""OAuth routes — connect a tenant's GitHub or Stripe account."""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from src.api.deps import get_services
from src.api.middleware import get_current_session, require_tenant_match
from src.api.services import Services
from src.core.logging import get_logger
from src.core.types import Mode, Provider

log = get_logger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])


def _provider(provider: str) -> Provider:
    try:
        return Provider(provider)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown provider: {provider}",
        ) from None


@router.get("/{provider}/authorize")
async def oauth_authorize(
    provider: str,
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    mode: Mode = Query(default=Mode.TEST),
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> RedirectResponse:
    """Redirect the tenant to the provider's authorization page."""
    prov = _provider(provider)
    require_tenant_match(session, tenant_id)
    url = await services.oauth.start(prov, tenant_id, mode)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    services: Services = Depends(get_services),
) -> RedirectResponse:
    """Handle the provider redirect. Rejections are 400s; outages redirect with an error flag."""
    prov = _provider(provider)
    if not code or not state:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing code or state parameter",
        )

    frontend = services.settings.frontend_url.rstrip("/")
    try:
        await services.oauth.complete(prov, code, state)
    except httpx.HTTPError as exc:
        log.error("oauth_exchange_failed", provider=prov.value, error=str(exc))
        return RedirectResponse(
            url=f"{frontend}/dashboard?{prov.value}=error",
            status_code=status.HTTP_302_FOUND,
        )

    return RedirectResponse(
        url=f"{frontend}/dashboard?{prov.value}=connected",
        status_code=status.HTTP_302_FOUND,
    )

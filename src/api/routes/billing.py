"""End-user billing routes — tier listing, checkout and customer portal."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.deps import EndUser, get_services, require_end_user, resolve_public_key
from src.api.models.schemas import (
    CheckoutRequest,
    PortalRequest,
    SessionUrlOut,
    TierListOut,
    TierOut,
)
from src.api.services import Services
from src.core.types import Mode

router = APIRouter(prefix="/api", tags=["billing"])


def _origin(request: Request, services: Services) -> str:
    """Where hosted pages send the user back to when the caller gives no URL."""
    return (request.headers.get("origin") or services.settings.frontend_url).rstrip("/")


@router.get("/tiers", response_model=TierListOut)
async def list_tiers(
    tenant: tuple[str, str, Mode] = Depends(resolve_public_key),
    services: Services = Depends(get_services),
) -> TierListOut:
    """Public pricing table for the key's tenant and mode."""
    tenant_id, _, mode = tenant
    tiers = await services.tiers.list_tiers(tenant_id, mode)
    return TierListOut(tiers=[TierOut.from_definition(t) for t in tiers])


@router.post("/create-checkout", response_model=SessionUrlOut)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user: EndUser = Depends(require_end_user),
    services: Services = Depends(get_services),
) -> SessionUrlOut:
    """Start a hosted checkout for the calling end-user."""
    origin = _origin(request, services)
    email = body.email or user.email
    if email is None and services.identity.is_configured(user.mode):
        email = (await services.identity.get_user(user.subject_id, user.mode)).email

    url = await services.billing.create_checkout_session(
        tenant_id=user.tenant_id,
        mode=user.mode,
        public_key=user.public_key,
        subject_id=user.subject_id,
        success_url=body.success_url or f"{origin}/dashboard?success=true",
        cancel_url=body.cancel_url or f"{origin}/dashboard?canceled=true",
        tier=body.tier,
        price_id=body.price_id,
        email=email,
    )
    return SessionUrlOut(url=url)


@router.post("/customer-portal", response_model=SessionUrlOut)
async def customer_portal(
    request: Request,
    body: PortalRequest | None = None,
    user: EndUser = Depends(require_end_user),
    services: Services = Depends(get_services),
) -> SessionUrlOut:
    """Open the billing portal for an end-user with a recorded customer."""
    record = await services.sync.get_record(user.tenant_id, user.public_key, user.subject_id)
    customer_id = record.customer_id if record is not None else None
    if not customer_id and services.identity.is_configured(user.mode):
        identity_user = await services.identity.get_user(user.subject_id, user.mode)
        customer_id = identity_user.public_metadata.get("stripe_customer_id")

    return_url = (body.return_url if body else None) or f"{_origin(request, services)}/dashboard"
    url = await services.billing.create_portal_session(
        tenant_id=user.tenant_id,
        mode=user.mode,
        customer_id=customer_id,
        return_url=return_url,
    )
    return SessionUrlOut(url=url)

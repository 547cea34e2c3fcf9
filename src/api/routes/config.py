"""Tenant configuration routes — tiers, keys, live promotion and data wipe."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from src.api.deps import get_services
from src.api.middleware import get_current_session, require_tenant_match
from src.api.models.schemas import (
    IssueKeyRequest,
    PromoteOut,
    PublishableKeyOut,
    SaveTiersRequest,
    SecretKeyOut,
    SuccessOut,
    TenantRequest,
    TierOut,
    WipeOut,
)
from src.api.services import Services
from src.core.exceptions import ValidationError
from src.core.types import Mode

router = APIRouter(prefix="/config", tags=["config"])


@router.post("/tiers", response_model=SuccessOut)
async def save_tiers(
    body: SaveTiersRequest,
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> SuccessOut:
    """Replace the tenant's tier configuration for one mode."""
    tenant_id = require_tenant_match(session, body.tenant_id)
    try:
        config = body.config.to_config()
    except ValueError as e:
        raise ValidationError(str(e), {"tenant_id": tenant_id}) from e

    await services.tiers.save_config(tenant_id, Mode(body.mode), config)
    return SuccessOut()


@router.post("/keys", response_model=PublishableKeyOut)
async def issue_key(
    body: IssueKeyRequest,
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> PublishableKeyOut:
    """Return the tenant's publishable key for a mode, issuing it on first call."""
    tenant_id = require_tenant_match(session, body.tenant_id)
    mode = Mode(body.mode)
    key = await services.registry.issue_public_key(tenant_id, mode)
    return PublishableKeyOut(publishable_key=key, mode=mode.value)


@router.delete("/data", response_model=WipeOut)
async def wipe_data(
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> WipeOut:
    """Delete every end-user row scoped to the tenant."""
    require_tenant_match(session, tenant_id)
    deleted = await services.sync.wipe_tenant(tenant_id)
    return WipeOut(deleted=deleted)


@router.post("/secret-key", response_model=SecretKeyOut)
async def rotate_secret_key(
    body: IssueKeyRequest,
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> SecretKeyOut:
    """Issue a new secret key for a mode. The previous one stops working."""
    tenant_id = require_tenant_match(session, body.tenant_id)
    mode = Mode(body.mode)
    secret_key = await services.registry.rotate_secret_key(tenant_id, mode)
    return SecretKeyOut(secret_key=secret_key, mode=mode.value)


@router.post("/promote", response_model=PromoteOut)
async def promote_to_live(
    body: TenantRequest,
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> PromoteOut:
    """Recreate the test tiers on the live account and hand out live keys."""
    tenant_id = require_tenant_match(session, body.tenant_id)
    result = await services.promoter.promote(tenant_id)
    return PromoteOut(
        publishable_key=result.publishable_key,
        secret_key=result.secret_key,
        tiers=[TierOut.from_definition(t) for t in result.config.tiers],
    )

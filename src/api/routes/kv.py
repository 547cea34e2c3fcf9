"""Credential namespace provisioning — tenant setup step one."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_services
from src.api.middleware import get_current_session, require_tenant_match
from src.api.models.schemas import NamespaceOut, TenantRequest
from src.api.services import Services

router = APIRouter(prefix="/kv", tags=["setup"])


@router.post("/create", response_model=NamespaceOut)
async def create_namespace(
    body: TenantRequest,
    session: dict[str, object] = Depends(get_current_session),
    services: Services = Depends(get_services),
) -> NamespaceOut:
    """Create the tenant's credential namespace, or return the existing one."""
    tenant_id = require_tenant_match(session, body.tenant_id)
    handle = await services.vault.create_namespace(tenant_id)
    return NamespaceOut(namespace_handle=handle.namespace_id)

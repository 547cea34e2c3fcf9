"""Internal entry point for the payment-provider webhook handler."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_services, require_internal
from src.api.models.schemas import StatusChangeOut, StatusChangeRequest
from src.api.services import Services

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_internal)])


@router.post("/subscription-status", response_model=StatusChangeOut)
async def subscription_status(
    body: StatusChangeRequest,
    services: Services = Depends(get_services),
) -> StatusChangeOut:
    """Overwrite an end-user's status and billing period. Last write wins."""
    updated = await services.sync.apply_status_change(
        tenant_id=body.tenant_id,
        public_key=body.public_key,
        subject_id=body.subject_id,
        new_status=body.status,
        period_end=body.period_end,
        plan=body.plan,
        customer_id=body.customer_id,
        subscription_id=body.subscription_id,
    )
    return StatusChangeOut(updated=updated)

"""Server-side customer lookups, authenticated with the tenant's secret key."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.deps import ServerCaller, get_services, require_secret_key
from src.api.models.schemas import CustomerOut
from src.api.services import Services

router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.get("/{user_id}", response_model=CustomerOut)
async def get_customer(
    user_id: str,
    caller: ServerCaller = Depends(require_secret_key),
    services: Services = Depends(get_services),
) -> CustomerOut:
    """Plan, status and usage of one end-user under the caller's key for that mode."""
    record = await services.sync.get_record(caller.tenant_id, caller.public_key, user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    return CustomerOut(
        user_id=record.subject_id,
        email=record.email,
        plan=record.plan,
        status=record.status,
        usage_count=record.usage_count,
        period_start=record.period_start,
        period_end=record.period_end,
        billing_period_end=record.billing_period_end,
        customer_id=record.customer_id,
    )

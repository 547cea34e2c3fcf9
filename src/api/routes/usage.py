"""Usage metering endpoints — per end-user counters against tier limits."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from src.api.deps import EndUser, get_services, require_end_user
from src.api.models.schemas import TrackOut, UsageOut
from src.api.services import Services
from src.core.constants import FREE_PLAN
from src.core.types import SubscriptionRecord, UsageResult

router = APIRouter(prefix="/api/usage", tags=["usage"])


async def _plan_limit(services: Services, user: EndUser, plan: str) -> int | None:
    """Limit for ``plan``; a plan missing from the config gets zero calls."""
    config = await services.tiers.load_config(user.tenant_id, user.mode)
    tier = config.find(plan) if config else None
    if tier is None:
        return 0
    return tier.limit


def _usage_out(
    user: EndUser,
    plan: str,
    usage_count: int,
    limit: int | None,
    record: SubscriptionRecord | None = None,
) -> UsageOut:
    remaining = UsageResult(True, usage_count, limit, plan).remaining
    return UsageOut(
        user_id=user.subject_id,
        plan=plan,
        usage_count=usage_count,
        limit="unlimited" if limit is None else limit,
        remaining="unlimited" if remaining is None else remaining,
        period_start=record.period_start if record else None,
        period_end=record.period_end if record else None,
        billing_period_end=record.billing_period_end if record else None,
    )


@router.get("", response_model=UsageOut)
async def get_usage(
    user: EndUser = Depends(require_end_user),
    services: Services = Depends(get_services),
) -> UsageOut:
    """Current usage and limit for the calling end-user."""
    record = await services.sync.get_record(user.tenant_id, user.public_key, user.subject_id)
    plan = record.plan if record else FREE_PLAN
    limit = await _plan_limit(services, user, plan)
    return _usage_out(user, plan, record.usage_count if record else 0, limit, record)


@router.post("/track", response_model=TrackOut)
async def track_usage(
    user: EndUser = Depends(require_end_user),
    services: Services = Depends(get_services),
) -> TrackOut | JSONResponse:
    """Count one call. Refused with 403 once the plan's limit is reached."""
    record = await services.sync.get_record(user.tenant_id, user.public_key, user.subject_id)
    if record is None:
        record = await services.sync.record_signup(
            user.tenant_id, user.public_key, user.subject_id, email=user.email
        )

    limit = await _plan_limit(services, user, record.plan)
    result = await services.sync.increment_usage(
        user.tenant_id, user.public_key, user.subject_id, limit
    )
    record = await services.sync.get_record(user.tenant_id, user.public_key, user.subject_id)
    usage = _usage_out(user, result.plan, result.usage_count, limit, record)

    if not result.allowed:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "Tier limit reached", **usage.model_dump(mode="json", by_alias=True)},
        )
    return TrackOut(usage=usage)

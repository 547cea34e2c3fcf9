"""End-user signup — binds a user to one publishable key and records the row."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import EndUser, get_services, require_end_user
from src.api.models.schemas import SignupOut, SignupRequest
from src.api.services import Services
from src.core.constants import FREE_PLAN
from src.core.exceptions import ConflictError
from src.core.logging import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["signup"])


@router.post("/signup", response_model=SignupOut)
async def signup(
    body: SignupRequest | None = None,
    user: EndUser = Depends(require_end_user),
    services: Services = Depends(get_services),
) -> SignupOut:
    """Idempotent. A user already bound to another key is rejected."""
    email = (body.email if body else None) or user.email
    bound_key: str | None = None
    identity_ready = services.identity.is_configured(user.mode)

    if identity_ready:
        identity_user = await services.identity.get_user(user.subject_id, user.mode)
        bound_key = identity_user.public_metadata.get("publishable_key")
        email = email or identity_user.email
        if bound_key and bound_key != user.public_key:
            log.warning("signup_key_conflict", tenant_id=user.tenant_id)
            raise ConflictError(
                "User already belongs to a different project",
                {"tenant_id": user.tenant_id},
            )

    config = await services.tiers.load_config(user.tenant_id, user.mode)
    record = await services.sync.record_signup(
        tenant_id=user.tenant_id,
        public_key=user.public_key,
        subject_id=user.subject_id,
        email=email,
        trial_days=config.trial_days if config else 0,
    )

    if identity_ready and not bound_key:
        await services.identity.update_metadata(
            user.subject_id,
            user.mode,
            {"publishable_key": user.public_key, "plan": FREE_PLAN},
        )

    return SignupOut(plan=record.plan, status=record.status)

"""Pydantic V2 request/response schemas for the billing API.

Wire names are camelCase; Python attributes stay snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.core.types import BillingMode, SubscriptionStatus, TierConfig, TierDefinition


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Health ────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    storage_backend: str


# ── Tenant setup ──────────────────────────────────────────────────

class TenantRequest(CamelModel):
    tenant_id: str = Field(..., min_length=1)


class NamespaceOut(CamelModel):
    namespace_handle: str


class TierIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=64)
    display_name: str | None = None
    price_id: str | None = None
    limit: int | Literal["unlimited"] | None = None
    popular: bool = False
    billing_mode: BillingMode = BillingMode.SUBSCRIPTION
    price: int = Field(default=0, ge=0)

    @field_validator("limit")
    @classmethod
    def _non_negative(cls, v: int | str | None) -> int | str | None:
        if isinstance(v, int) and v < 0:
            msg = "limit cannot be negative"
            raise ValueError(msg)
        return v

    def to_definition(self) -> TierDefinition:
        return TierDefinition(
            name=self.name,
            display_name=self.display_name or self.name,
            price_id=self.price_id or None,
            limit=None if self.limit in (None, "unlimited") else int(self.limit),
            popular=self.popular,
            billing_mode=self.billing_mode,
            price=self.price,
        )


class TierConfigIn(CamelModel):
    tiers: list[TierIn] = Field(..., min_length=1)
    trial_days: int = Field(default=0, ge=0)

    def to_config(self) -> TierConfig:
        return TierConfig(
            tiers=tuple(t.to_definition() for t in self.tiers),
            trial_days=self.trial_days,
        )


class SaveTiersRequest(CamelModel):
    tenant_id: str = Field(..., min_length=1)
    mode: Literal["test", "live"] = "test"
    config: TierConfigIn


class IssueKeyRequest(CamelModel):
    tenant_id: str = Field(..., min_length=1)
    mode: Literal["test", "live"] = "test"


class PublishableKeyOut(CamelModel):
    publishable_key: str
    mode: str


class WipeOut(CamelModel):
    deleted: int


class SuccessOut(CamelModel):
    success: bool = True


# ── End-user routes ───────────────────────────────────────────────

class TierOut(CamelModel):
    name: str
    display_name: str
    price_id: str | None
    limit: int | Literal["unlimited"]
    popular: bool
    billing_mode: BillingMode
    price: int

    @classmethod
    def from_definition(cls, tier: TierDefinition) -> "TierOut":
        return cls(
            name=tier.name,
            display_name=tier.display_name,
            price_id=tier.price_id,
            limit="unlimited" if tier.limit is None else tier.limit,
            popular=tier.popular,
            billing_mode=tier.billing_mode,
            price=tier.price,
        )


class TierListOut(CamelModel):
    tiers: list[TierOut] = Field(default_factory=list)


class SignupRequest(CamelModel):
    email: str | None = None


class SignupOut(CamelModel):
    success: bool = True
    plan: str
    status: SubscriptionStatus


class CheckoutRequest(CamelModel):
    tier: str | None = None
    price_id: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    email: str | None = None


class PortalRequest(CamelModel):
    return_url: str | None = None


class SessionUrlOut(CamelModel):
    url: str


class UsageOut(CamelModel):
    user_id: str
    plan: str
    usage_count: int
    limit: int | Literal["unlimited"]
    remaining: int | Literal["unlimited"]
    period_start: datetime | None = None
    period_end: datetime | None = None
    billing_period_end: datetime | None = None


class TrackOut(CamelModel):
    success: bool = True
    usage: UsageOut


# ── Internal ──────────────────────────────────────────────────────

class StatusChangeRequest(CamelModel):
    tenant_id: str = Field(..., min_length=1)
    public_key: str = Field(..., min_length=1)
    subject_id: str = Field(..., min_length=1)
    status: SubscriptionStatus
    period_end: datetime | None = None
    plan: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None


class StatusChangeOut(CamelModel):
    updated: int


# ── Secret keys & promotion ───────────────────────────────────────

class SecretKeyOut(CamelModel):
    secret_key: str
    mode: str


class PromoteOut(CamelModel):
    publishable_key: str
    secret_key: str
    mode: str = "live"
    tiers: list[TierOut]


class CustomerOut(CamelModel):
    user_id: str
    email: str | None
    plan: str
    status: SubscriptionStatus
    usage_count: int
    period_start: datetime | None = None
    period_end: datetime | None = None
    billing_period_end: datetime | None = None
    customer_id: str | None = None

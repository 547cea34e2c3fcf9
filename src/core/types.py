"""System-wide shared types — the single source of truth for all data structures."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from src.core.constants import FREE_PLAN, MODE_LIVE, MODE_TEST, PROVIDER_GITHUB, PROVIDER_STRIPE


# ── Enums ────────────────────────────────────────────────────────

class Mode(str, Enum):
    TEST = MODE_TEST
    LIVE = MODE_LIVE

    @classmethod
    def from_public_key(cls, public_key: str) -> "Mode":
        """Derive the environment mode from a ``pk_test_`` / ``pk_live_`` prefix."""
        if public_key.startswith("pk_test_"):
            return cls.TEST
        if public_key.startswith("pk_live_"):
            return cls.LIVE
        msg = f"not a publishable key: {public_key[:10]}..."
        raise ValueError(msg)

    @classmethod
    def from_secret_key(cls, secret_key: str) -> "Mode":
        if secret_key.startswith("sk_test_"):
            return cls.TEST
        if secret_key.startswith("sk_live_"):
            return cls.LIVE
        msg = "not a secret key"
        raise ValueError(msg)


class Provider(str, Enum):
    GITHUB = PROVIDER_GITHUB
    STRIPE = PROVIDER_STRIPE


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    NONE = "none"


class BillingMode(str, Enum):
    SUBSCRIPTION = "subscription"
    ONE_OFF = "one_off"


# ── Storage Types ────────────────────────────────────────────────

@dataclass(frozen=True)
class NamespaceHandle:
    """Opaque reference to one tenant's isolated credential namespace.

    Only the credential vault hands these out; every secret read or write
    takes one. There is no API that accepts a bare tenant id instead.
    """

    namespace_id: str

    def __post_init__(self) -> None:
        if not self.namespace_id:
            msg = "namespace_id cannot be empty"
            raise ValueError(msg)


@dataclass(frozen=True)
class CredentialRecord:
    """Secret payload for one (tenant, provider, mode)."""

    access_token: str | None = field(default=None, repr=False)
    account_id: str | None = None
    refresh_token: str | None = field(default=None, repr=False)
    scope: str | None = None

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None})

    @classmethod
    def from_json(cls, raw: str) -> "CredentialRecord":
        data: dict[str, Any] = json.loads(raw)
        return cls(
            access_token=data.get("access_token") or None,
            account_id=data.get("account_id") or None,
            refresh_token=data.get("refresh_token") or None,
            scope=data.get("scope") or None,
        )


@dataclass(frozen=True)
class OAuthState:
    """What a state token was issued for."""

    provider: Provider
    tenant_id: str
    mode: Mode


# ── Tier Configuration ───────────────────────────────────────────

@dataclass(frozen=True)
class TierDefinition:
    """One named pricing plan."""

    name: str
    display_name: str
    price_id: str | None = None
    limit: int | None = None  # None = unlimited
    popular: bool = False
    billing_mode: BillingMode = BillingMode.SUBSCRIPTION
    price: int = 0  # display amount, minor units

    def __post_init__(self) -> None:
        if not self.name:
            msg = "tier name cannot be empty"
            raise ValueError(msg)
        if self.limit is not None and self.limit < 0:
            msg = f"tier limit cannot be negative: {self.limit}"
            raise ValueError(msg)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "price_id": self.price_id,
            "limit": self.limit,
            "popular": self.popular,
            "billing_mode": self.billing_mode.value,
            "price": self.price,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TierDefinition":
        limit = data.get("limit")
        return cls(
            name=str(data["name"]),
            display_name=str(data.get("display_name") or data["name"]),
            price_id=data.get("price_id") or None,
            limit=None if limit in (None, "unlimited") else int(limit),
            popular=bool(data.get("popular", False)),
            billing_mode=BillingMode(data.get("billing_mode") or BillingMode.SUBSCRIPTION.value),
            price=int(data.get("price") or 0),
        )


@dataclass(frozen=True)
class TierConfig:
    """Ordered tier set for one (tenant, mode). Stored and replaced as one blob."""

    tiers: tuple[TierDefinition, ...]
    trial_days: int = 0

    def __post_init__(self) -> None:
        names = [t.name.lower() for t in self.tiers]
        if len(names) != len(set(names)):
            msg = "tier names must be unique (case-insensitive)"
            raise ValueError(msg)
        if self.trial_days < 0:
            msg = f"trial_days cannot be negative: {self.trial_days}"
            raise ValueError(msg)

    def find(self, tier_name: str) -> TierDefinition | None:
        """Match by internal name first, then display name, case-insensitively."""
        wanted = tier_name.lower()
        for tier in self.tiers:
            if tier.name.lower() == wanted:
                return tier
        for tier in self.tiers:
            if tier.display_name.lower() == wanted:
                return tier
        return None

    def find_by_price(self, price_id: str) -> TierDefinition | None:
        for tier in self.tiers:
            if tier.price_id == price_id:
                return tier
        return None

    def to_json(self) -> str:
        return json.dumps({
            "tiers": [t.to_dict() for t in self.tiers],
            "trial_days": self.trial_days,
        })

    @classmethod
    def from_json(cls, raw: str) -> "TierConfig":
        data: dict[str, Any] = json.loads(raw)
        return cls(
            tiers=tuple(TierDefinition.from_dict(t) for t in data.get("tiers", [])),
            trial_days=int(data.get("trial_days") or 0),
        )


# ── Relational Records ───────────────────────────────────────────

@dataclass
class SubscriptionRecord:
    """One end-user's plan, status and usage within a tenant key."""

    tenant_id: str
    public_key: str
    subject_id: str
    email: str | None = None
    plan: str = FREE_PLAN
    status: SubscriptionStatus = SubscriptionStatus.NONE
    usage_count: int = 0
    period_start: datetime | None = None
    period_end: datetime | None = None
    billing_period_end: datetime | None = None  # provider-reported, independent of the usage window
    customer_id: str | None = None
    subscription_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None


@dataclass(frozen=True)
class UsageResult:
    """Outcome of a metered call."""

    allowed: bool
    usage_count: int
    limit: int | None
    plan: str

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(0, self.limit - self.usage_count)

"""Tests for core type definitions."""

from __future__ import annotations

import pytest

from src.core.ttl_cache import TTLCache
from src.core.types import (
    BillingMode,
    CredentialRecord,
    Mode,
    NamespaceHandle,
    TierConfig,
    TierDefinition,
    UsageResult,
)


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def sample_config() -> TierConfig:
    return TierConfig(
        tiers=(
            TierDefinition(name="free", display_name="Starter", limit=100),
            TierDefinition(name="pro", display_name="Professional", price_id="price_pro", popular=True),
            TierDefinition(
                name="lifetime",
                display_name="Lifetime",
                price_id="price_lt",
                billing_mode=BillingMode.ONE_OFF,
                price=19900,
            ),
        ),
        trial_days=7,
    )


# ── Mode ─────────────────────────────────────────────────────────

class TestMode:
    def test_from_public_key(self) -> None:
        assert Mode.from_public_key("pk_test_abc") is Mode.TEST
        assert Mode.from_public_key("pk_live_abc") is Mode.LIVE

    def test_rejects_other_prefix(self) -> None:
        with pytest.raises(ValueError, match="not a publishable key"):
            Mode.from_public_key("sk_live_abc")


# ── Storage types ────────────────────────────────────────────────

class TestNamespaceHandle:
    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError):
            NamespaceHandle("")


class TestCredentialRecord:
    def test_repr_hides_tokens(self) -> None:
        record = CredentialRecord(access_token="sk_secret", refresh_token="rt_secret", account_id="acct_1")
        text = repr(record)
        assert "sk_secret" not in text
        assert "rt_secret" not in text
        assert "acct_1" in text

    def test_json_drops_empty_fields(self) -> None:
        record = CredentialRecord(account_id="acct_1")
        assert record.to_json() == '{"account_id": "acct_1"}'
        assert CredentialRecord.from_json(record.to_json()) == record

    def test_from_json_normalizes_blank_strings(self) -> None:
        record = CredentialRecord.from_json('{"access_token": "", "account_id": "acct_1"}')
        assert record.access_token is None


# ── Tier configuration ───────────────────────────────────────────

class TestTierConfig:
    def test_duplicate_names_rejected_case_insensitive(self) -> None:
        with pytest.raises(ValueError, match="unique"):
            TierConfig(tiers=(
                TierDefinition(name="Pro", display_name="Pro"),
                TierDefinition(name="pro", display_name="Pro 2"),
            ))

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            TierDefinition(name="free", display_name="Free", limit=-1)

    def test_negative_trial_rejected(self) -> None:
        with pytest.raises(ValueError):
            TierConfig(tiers=(), trial_days=-1)

    def test_find_by_name_then_display_name(self, sample_config: TierConfig) -> None:
        assert sample_config.find("PRO") is sample_config.tiers[1]
        assert sample_config.find("professional") is sample_config.tiers[1]
        assert sample_config.find("starter") is sample_config.tiers[0]
        assert sample_config.find("enterprise") is None

    def test_find_by_price(self, sample_config: TierConfig) -> None:
        tier = sample_config.find_by_price("price_lt")
        assert tier is not None and tier.name == "lifetime"
        assert sample_config.find_by_price("price_unknown") is None

    def test_json_preserves_order_and_fields(self, sample_config: TierConfig) -> None:
        restored = TierConfig.from_json(sample_config.to_json())
        assert restored == sample_config
        assert [t.name for t in restored.tiers] == ["free", "pro", "lifetime"]

    def test_from_dict_accepts_unlimited(self) -> None:
        tier = TierDefinition.from_dict({"name": "max", "limit": "unlimited"})
        assert tier.limit is None
        assert tier.display_name == "max"
        assert tier.billing_mode is BillingMode.SUBSCRIPTION


# ── Usage ────────────────────────────────────────────────────────

class TestUsageResult:
    def test_remaining(self) -> None:
        assert UsageResult(True, 3, 10, "free").remaining == 7
        assert UsageResult(False, 12, 10, "free").remaining == 0
        assert UsageResult(True, 3, None, "pro").remaining is None


# ── TTL cache ────────────────────────────────────────────────────

class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_expires(self) -> None:
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(ttl=10, clock=clock)
        cache.put("k", "v")
        clock.now = 9.9
        assert cache.get("k") == "v"
        clock.now = 10.0
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_evicts_oldest_when_full(self) -> None:
        cache: TTLCache[int] = TTLCache(ttl=60, maxsize=2, clock=FakeClock())
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_pop(self) -> None:
        cache: TTLCache[int] = TTLCache(ttl=60, clock=FakeClock())
        cache.put("a", 1)
        cache.pop("a")
        cache.pop("missing")
        assert cache.get("a") is None

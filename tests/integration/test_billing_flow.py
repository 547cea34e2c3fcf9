"""End-to-end: tenant setup, OAuth connect, checkout, signup and metering over HTTP.

Storage is in-memory, the relational store is a SQLite file, and every
outbound provider call is answered by an ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import Settings
from src.api.main import create_app
from src.api.services import Services, build_services
from src.data.db import init_schema
from src.data.memory import InMemoryKeyValueStore, InMemoryNamespaceBackend

INTERNAL_TOKEN = "internal-token"


@dataclass
class Providers:
    """Fake GitHub, Stripe and identity endpoints."""

    jwks: dict[str, Any] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    token_endpoint_down: bool = False
    identity_user: dict[str, Any] = field(default_factory=lambda: {
        "id": "user_1",
        "email_addresses": [{"email_address": "u@example.com"}],
        "public_metadata": {},
    })

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path
        if host in ("connect.stripe.com", "github.com"):
            if self.token_endpoint_down:
                raise httpx.ConnectError("token endpoint down", request=request)
            if host == "github.com":
                return httpx.Response(200, json={"access_token": "gho_1", "scope": "repo"})
            return httpx.Response(200, json={"access_token": "sk_connected", "stripe_user_id": "acct_1"})
        if host == "api.stripe.com" and path == "/v1/checkout/sessions":
            return httpx.Response(200, json={"url": "https://checkout.stripe.test/s/1"})
        if host == "api.stripe.com" and path == "/v1/billing_portal/sessions":
            return httpx.Response(200, json={"url": "https://billing.stripe.test/p/1"})
        if host == "api.stripe.com" and path in ("/v1/products", "/v1/prices"):
            prefix = "prod" if path.endswith("products") else "price_live"
            return httpx.Response(200, json={"id": f"{prefix}_{len(self.requests)}"})
        if host == "identity.test" and path == "/.well-known/jwks.json":
            return httpx.Response(200, json=self.jwks)
        if host == "identity.test":
            return httpx.Response(200, json=self.identity_user)
        return httpx.Response(404, json={"error": {"message": f"unexpected {host}{path}"}})

    def last(self, host: str) -> httpx.Request:
        return [r for r in self.requests if r.url.host == host][-1]


@dataclass
class Harness:
    client: TestClient
    services: Services
    providers: Providers
    signer: Any

    def session(self, tenant_id: str = "t1") -> dict[str, str]:
        return {"Authorization": f"Bearer {self.signer.token(tenant_id)}"}

    def end_user(self, public_key: str, user_id: str = "user_1") -> dict[str, str]:
        return {"X-Publishable-Key": public_key, "X-User-Id": user_id}

    def setup_tenant(self, tiers: list[dict[str, Any]] | None = None) -> str:
        """Namespace, Stripe connection, tier config and a test-mode key for t1."""
        assert self.client.post("/kv/create", json={"tenantId": "t1"}, headers=self.session()).status_code == 200
        self.connect("stripe")
        resp = self.client.post(
            "/config/tiers",
            json={
                "tenantId": "t1",
                "mode": "test",
                "config": {"tiers": tiers or [
                    {"name": "free", "displayName": "Free", "limit": 2},
                    {"name": "pro", "displayName": "Pro", "priceId": "price_pro", "limit": "unlimited"},
                ]},
            },
            headers=self.session(),
        )
        assert resp.status_code == 200
        resp = self.client.post("/config/keys", json={"tenantId": "t1", "mode": "test"}, headers=self.session())
        return resp.json()["publishableKey"]

    def connect(self, provider: str, mode: str = "test") -> httpx.Response:
        resp = self.client.get(
            f"/oauth/{provider}/authorize",
            params={"tenantId": "t1", "mode": mode},
            headers=self.session(),
            follow_redirects=False,
        )
        assert resp.status_code == 302
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        return self.client.get(
            f"/oauth/{provider}/callback",
            params={"code": "code-1", "state": state},
            follow_redirects=False,
        )


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "frontend_url": "https://app.test",
        "api_base_url": "https://api.test",
        "internal_api_token": INTERNAL_TOKEN,
        "github_client_id": "gh-client",
        "github_client_secret": "gh-secret",
        "stripe_client_id_test": "ca_test",
        "stripe_secret_key_test": "sk_test_platform",
        "stripe_client_id_live": "ca_live",
        "stripe_secret_key_live": "sk_live_platform",
        "identity_jwks_url": "https://identity.test/.well-known/jwks.json",
        "identity_api_url": "https://identity.test/v1",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _harness(tmp_path: Path, signer: Any, **overrides: Any) -> Iterator[Harness]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'flow.db'}", poolclass=NullPool)
    asyncio.run(init_schema(engine))
    providers = Providers(jwks=signer.jwks)
    services = build_services(
        _settings(**overrides),
        engine,
        http=httpx.AsyncClient(transport=httpx.MockTransport(providers)),
        directory=InMemoryKeyValueStore(),
        backend=InMemoryNamespaceBackend(),
    )
    with TestClient(create_app(services)) as client:
        yield Harness(client, services, providers, signer)
    asyncio.run(engine.dispose())


@pytest.fixture()
def harness(tmp_path: Path, session_signer: Any) -> Iterator[Harness]:
    yield from _harness(tmp_path, session_signer)


@pytest.fixture()
def identity_harness(tmp_path: Path, session_signer: Any) -> Iterator[Harness]:
    yield from _harness(tmp_path, session_signer, identity_secret_key_test="sk_identity_test")


class TestTenantSetup:
    def test_namespace_requires_session(self, harness: Harness) -> None:
        assert harness.client.post("/kv/create", json={"tenantId": "t1"}).status_code == 401

    def test_namespace_other_tenant_forbidden(self, harness: Harness) -> None:
        resp = harness.client.post("/kv/create", json={"tenantId": "t2"}, headers=harness.session("t1"))
        assert resp.status_code == 403

    def test_namespace_idempotent(self, harness: Harness) -> None:
        first = harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        second = harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        assert first.json()["namespaceHandle"] == second.json()["namespaceHandle"]

    def test_key_issued_once_per_mode(self, harness: Harness) -> None:
        body = {"tenantId": "t1", "mode": "live"}
        first = harness.client.post("/config/keys", json=body, headers=harness.session()).json()
        second = harness.client.post("/config/keys", json=body, headers=harness.session()).json()
        assert first["publishableKey"].startswith("pk_live_")
        assert first == second

    def test_duplicate_tier_names_rejected(self, harness: Harness) -> None:
        harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        resp = harness.client.post(
            "/config/tiers",
            json={"tenantId": "t1", "config": {"tiers": [{"name": "Pro"}, {"name": "pro"}]}},
            headers=harness.session(),
        )
        assert resp.status_code == 400
        assert "unique" in resp.json()["error"]


class TestOAuthCallback:
    def test_stripe_connected(self, harness: Harness) -> None:
        harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        resp = harness.connect("stripe")
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.test/dashboard?stripe=connected"

    def test_github_connected(self, harness: Harness) -> None:
        harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        resp = harness.connect("github")
        assert resp.headers["location"] == "https://app.test/dashboard?github=connected"

    def test_token_endpoint_down_redirects_with_error(self, harness: Harness) -> None:
        harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        harness.providers.token_endpoint_down = True
        resp = harness.connect("stripe")
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.test/dashboard?stripe=error"

    def test_invalid_state(self, harness: Harness) -> None:
        resp = harness.client.get(
            "/oauth/stripe/callback",
            params={"code": "c", "state": "forged"},
            follow_redirects=False,
        )
        assert resp.status_code == 400
        assert resp.json()["retryable"] is False

    def test_missing_code(self, harness: Harness) -> None:
        assert harness.client.get("/oauth/github/callback", params={"state": "s"}).status_code == 400

    def test_unknown_provider(self, harness: Harness) -> None:
        resp = harness.client.get(
            "/oauth/gitlab/authorize",
            params={"tenantId": "t1"},
            headers=harness.session(),
            follow_redirects=False,
        )
        assert resp.status_code == 400

    def test_namespace_missing(self, harness: Harness) -> None:
        resp = harness.connect("stripe")
        assert resp.status_code == 400
        assert not [r for r in harness.providers.requests if r.url.host == "connect.stripe.com"]


class TestEndUserBilling:
    def test_unknown_key(self, harness: Harness) -> None:
        resp = harness.client.get("/api/tiers", headers={"X-Publishable-Key": "pk_test_" + "0" * 32})
        assert resp.status_code == 401

    def test_tiers_listed_in_order(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        tiers = harness.client.get("/api/tiers", headers={"X-Publishable-Key": pk}).json()["tiers"]
        assert [t["name"] for t in tiers] == ["free", "pro"]
        assert tiers[1]["limit"] == "unlimited"
        assert tiers[1]["priceId"] == "price_pro"

    def test_checkout_uses_connected_token(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        resp = harness.client.post(
            "/api/create-checkout",
            json={"tier": "pro", "email": "u@example.com"},
            headers=harness.end_user(pk),
        )
        assert resp.status_code == 200
        assert resp.json() == {"url": "https://checkout.stripe.test/s/1"}

        request = harness.providers.last("api.stripe.com")
        assert request.headers["Authorization"] == "Bearer sk_connected"
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form["metadata[publishable_key]"] == pk
        assert form["success_url"] == "https://app.test/dashboard?success=true"

    def test_checkout_unknown_tier(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        resp = harness.client.post("/api/create-checkout", json={"tier": "gold"}, headers=harness.end_user(pk))
        assert resp.status_code == 400

    def test_checkout_requires_user(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        resp = harness.client.post("/api/create-checkout", json={}, headers={"X-Publishable-Key": pk})
        assert resp.status_code == 401

    def test_portal_needs_customer(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        harness.client.post("/api/signup", headers=harness.end_user(pk))
        resp = harness.client.post("/api/customer-portal", json={}, headers=harness.end_user(pk))
        assert resp.status_code == 400
        assert resp.json()["error"] == "no active subscription"

        harness.client.post(
            "/internal/subscription-status",
            json={
                "tenantId": "t1",
                "publicKey": pk,
                "subjectId": "user_1",
                "status": "active",
                "customerId": "cus_1",
            },
            headers={"X-Internal-Token": INTERNAL_TOKEN},
        )
        resp = harness.client.post("/api/customer-portal", json={}, headers=harness.end_user(pk))
        assert resp.status_code == 200
        form = parse_qs(harness.providers.last("api.stripe.com").content.decode())
        assert form["customer"] == ["cus_1"]


class TestUsageMetering:
    def test_limit_enforced_then_lifted_by_upgrade(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        headers = harness.end_user(pk)

        assert harness.client.post("/api/usage/track", headers=headers).status_code == 200
        assert harness.client.post("/api/usage/track", headers=headers).status_code == 200
        refused = harness.client.post("/api/usage/track", headers=headers)
        assert refused.status_code == 403
        assert refused.json()["error"] == "Tier limit reached"
        assert refused.json()["usageCount"] == 2
        assert refused.json()["remaining"] == 0

        resp = harness.client.post(
            "/internal/subscription-status",
            json={
                "tenantId": "t1",
                "publicKey": pk,
                "subjectId": "user_1",
                "status": "active",
                "plan": "pro",
            },
            headers={"X-Internal-Token": INTERNAL_TOKEN},
        )
        assert resp.json() == {"updated": 1}

        allowed = harness.client.post("/api/usage/track", headers=headers)
        assert allowed.status_code == 200
        assert allowed.json()["usage"]["limit"] == "unlimited"
        assert allowed.json()["usage"]["usageCount"] == 3

    def test_get_usage_before_any_call(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        usage = harness.client.get("/api/usage", headers=harness.end_user(pk)).json()
        assert usage["plan"] == "free"
        assert usage["usageCount"] == 0
        assert usage["remaining"] == 2

    def test_wipe_tenant_data(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        harness.client.post("/api/usage/track", headers=harness.end_user(pk))
        resp = harness.client.delete("/config/data", params={"tenantId": "t1"}, headers=harness.session())
        assert resp.json() == {"deleted": 1}


class TestInternalGuard:
    def test_missing_token(self, harness: Harness) -> None:
        resp = harness.client.post(
            "/internal/subscription-status",
            json={"tenantId": "t1", "publicKey": "pk_test_x", "subjectId": "user_1", "status": "active"},
        )
        assert resp.status_code == 401

    def test_wrong_token(self, harness: Harness) -> None:
        resp = harness.client.post(
            "/internal/subscription-status",
            json={"tenantId": "t1", "publicKey": "pk_test_x", "subjectId": "user_1", "status": "active"},
            headers={"X-Internal-Token": "nope"},
        )
        assert resp.status_code == 401


class TestSignupWithIdentity:
    def test_binds_key_on_first_signup(self, identity_harness: Harness) -> None:
        pk = identity_harness.setup_tenant()
        resp = identity_harness.client.post("/api/signup", headers=identity_harness.end_user(pk))
        assert resp.status_code == 200
        assert resp.json()["plan"] == "free"

        patch = identity_harness.providers.last("identity.test")
        assert patch.method == "PATCH"
        assert b'"publishable_key"' in patch.content

    def test_user_bound_elsewhere_rejected(self, identity_harness: Harness) -> None:
        pk = identity_harness.setup_tenant()
        identity_harness.providers.identity_user["public_metadata"] = {
            "publishable_key": "pk_test_" + "f" * 32,
        }
        resp = identity_harness.client.post("/api/signup", headers=identity_harness.end_user(pk))
        assert resp.status_code == 400
        assert "different project" in resp.json()["error"]


class TestDashboardSession:
    def test_expired_session_rejected(self, harness: Harness) -> None:
        token = harness.signer.token("t1", expires_in=-60)
        resp = harness.client.post(
            "/kv/create", json={"tenantId": "t1"}, headers={"Authorization": f"Bearer {token}"}
        )
        assert resp.status_code == 401

    def test_session_cookie_accepted(self, harness: Harness) -> None:
        cookie = {"Cookie": f"__session={harness.signer.token('t1')}"}
        resp = harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=cookie)
        assert resp.status_code == 200


class TestModeIsolation:
    def test_test_mode_status_change_leaves_live_row(self, harness: Harness) -> None:
        test_pk = harness.setup_tenant()
        live_pk = harness.client.post(
            "/config/keys", json={"tenantId": "t1", "mode": "live"}, headers=harness.session()
        ).json()["publishableKey"]
        harness.client.post("/api/signup", headers=harness.end_user(test_pk))
        harness.client.post("/api/signup", headers=harness.end_user(live_pk))

        resp = harness.client.post(
            "/internal/subscription-status",
            json={
                "tenantId": "t1",
                "publicKey": test_pk,
                "subjectId": "user_1",
                "status": "active",
                "plan": "pro",
                "customerId": "cus_test",
            },
            headers={"X-Internal-Token": INTERNAL_TOKEN},
        )
        assert resp.json() == {"updated": 1}

        live = harness.client.get("/api/usage", headers=harness.end_user(live_pk))
        assert live.json()["plan"] == "free"
        portal = harness.client.post("/api/customer-portal", json={}, headers=harness.end_user(live_pk))
        assert portal.status_code == 400


class TestSecretKeys:
    def test_customer_lookup_with_secret_key(self, harness: Harness) -> None:
        pk = harness.setup_tenant()
        harness.client.post("/api/usage/track", headers=harness.end_user(pk))
        secret = harness.client.post(
            "/config/secret-key", json={"tenantId": "t1", "mode": "test"}, headers=harness.session()
        ).json()
        assert secret["secretKey"].startswith("sk_test_")
        assert secret["mode"] == "test"

        resp = harness.client.get(
            "/api/customers/user_1", headers={"Authorization": f"Bearer {secret['secretKey']}"}
        )
        assert resp.status_code == 200
        assert resp.json()["plan"] == "free"
        assert resp.json()["usageCount"] == 1

    def test_rotated_key_stops_working(self, harness: Harness) -> None:
        harness.setup_tenant()
        body = {"tenantId": "t1", "mode": "test"}
        old = harness.client.post("/config/secret-key", json=body, headers=harness.session()).json()["secretKey"]
        harness.client.post("/config/secret-key", json=body, headers=harness.session())

        resp = harness.client.get("/api/customers/user_1", headers={"Authorization": f"Bearer {old}"})
        assert resp.status_code == 401

    def test_unknown_customer(self, harness: Harness) -> None:
        harness.setup_tenant()
        secret = harness.client.post(
            "/config/secret-key", json={"tenantId": "t1", "mode": "test"}, headers=harness.session()
        ).json()["secretKey"]
        resp = harness.client.get("/api/customers/ghost", headers={"Authorization": f"Bearer {secret}"})
        assert resp.status_code == 404

    def test_missing_secret_key(self, harness: Harness) -> None:
        assert harness.client.get("/api/customers/user_1").status_code == 401

    def test_secret_key_requires_session(self, harness: Harness) -> None:
        resp = harness.client.post("/config/secret-key", json={"tenantId": "t1", "mode": "test"})
        assert resp.status_code == 401


class TestPromoteToLive:
    def test_promote_creates_live_catalog_and_keys(self, harness: Harness) -> None:
        harness.setup_tenant(tiers=[
            {"name": "free", "displayName": "Free", "limit": 2},
            {"name": "pro", "displayName": "Pro", "priceId": "price_pro", "limit": "unlimited", "price": 1900},
        ])
        assert harness.connect("stripe", mode="live").status_code == 302

        resp = harness.client.post("/config/promote", json={"tenantId": "t1"}, headers=harness.session())
        assert resp.status_code == 200
        body = resp.json()
        assert body["mode"] == "live"
        assert body["publishableKey"].startswith("pk_live_")
        assert body["secretKey"].startswith("sk_live_")
        assert [t["name"] for t in body["tiers"]] == ["free", "pro"]
        assert body["tiers"][1]["priceId"].startswith("price_live_")

        tiers = harness.client.get("/api/tiers", headers={"X-Publishable-Key": body["publishableKey"]})
        assert tiers.json()["tiers"][1]["priceId"] == body["tiers"][1]["priceId"]

    def test_promote_without_test_tiers(self, harness: Harness) -> None:
        harness.client.post("/kv/create", json={"tenantId": "t1"}, headers=harness.session())
        harness.connect("stripe", mode="live")
        resp = harness.client.post("/config/promote", json={"tenantId": "t1"}, headers=harness.session())
        assert resp.status_code == 400

    def test_promote_other_tenant_forbidden(self, harness: Harness) -> None:
        resp = harness.client.post("/config/promote", json={"tenantId": "t2"}, headers=harness.session("t1"))
        assert resp.status_code == 403

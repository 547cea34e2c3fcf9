"""Pytest configuration and compatibility helpers.

Storage, vault, OAuth and sync tests are coroutines marked with
``@pytest.mark.asyncio``. They build their own stores and engines inside the
test body, so no async fixtures are needed and the suite runs with or without
``pytest-asyncio`` installed.

Dashboard sessions are RS256 tokens; ``session_signer`` holds one key pair
for the whole run and serves its public half as a key set.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm


def pytest_configure(config: pytest.Config) -> None:
    """Register local markers used in the suite."""
    config.addinivalue_line("markers", "asyncio: mark test as asyncio-compatible")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run ``@pytest.mark.asyncio`` tests without external plugins.

    If pytest-asyncio (or another async plugin) is installed, this hook may be
    bypassed by that plugin depending on hook ordering. In plugin-less
    environments, this fallback executes coroutine tests via ``asyncio.run``.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    kwargs: dict[str, Any] = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        loop.close()
        # Keep a default loop available for sync tests that call
        # ``asyncio.get_event_loop()`` directly.
        asyncio.set_event_loop(asyncio.new_event_loop())
    return True


class SessionSigner:
    """Mints RS256 session tokens and serves the matching key set."""

    def __init__(self, kid: str = "test-key") -> None:
        self.kid = kid
        self._private = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    @property
    def jwks(self) -> dict[str, Any]:
        jwk = json.loads(RSAAlgorithm.to_jwk(self._private.public_key()))
        jwk.update(kid=self.kid, use="sig", alg="RS256")
        return {"keys": [jwk]}

    def token(self, sub: str = "t1", expires_in: int = 3600, **claims: Any) -> str:
        now = int(time.time())
        payload = {"sub": sub, "iat": now, "exp": now + expires_in, **claims}
        return jwt.encode(payload, self._private, algorithm="RS256", headers={"kid": self.kid})


@pytest.fixture(scope="session")
def session_signer() -> SessionSigner:
    return SessionSigner()

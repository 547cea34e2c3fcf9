"""Custom exception hierarchy for the billing core.

Every error is scoped to a single request. ``status_code`` is the HTTP status
the API layer renders; ``retryable`` tells the caller whether re-sending the
same request can succeed without anyone fixing anything first.
"""

from __future__ import annotations

from typing import Any


class DreamBaseError(Exception):
    """Base exception for all billing-core errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}


# ── Caller-correctable ───────────────────────────────────────────

class ValidationError(DreamBaseError):
    """Missing or malformed request field."""

    status_code = 400


class TierNotFoundError(ValidationError):
    """A tier name was supplied that the tenant's configuration does not define."""


class ConflictError(DreamBaseError):
    """End-user already belongs to a different tenant key."""

    status_code = 400


class UnknownTenantError(DreamBaseError):
    """Public key does not resolve to any tenant."""

    status_code = 401


# ── Setup incomplete ─────────────────────────────────────────────

class NotConfiguredError(DreamBaseError):
    """Tenant has not completed a setup step (e.g. tier configuration)."""

    status_code = 400


class NotConnectedError(DreamBaseError):
    """Tenant has no usable billing credential — must (re)authorize."""

    status_code = 400


class NamespaceMissingError(DreamBaseError):
    """Credential namespace was never created for this tenant."""

    status_code = 400


class NoActiveSubscriptionError(DreamBaseError):
    """End-user has no recorded payment-provider customer."""

    status_code = 400


# ── OAuth ────────────────────────────────────────────────────────

class InvalidStateError(DreamBaseError):
    """OAuth state token missing, expired, already used or issued for another provider."""

    status_code = 400


# ── External providers ───────────────────────────────────────────

class ProviderError(DreamBaseError):
    """External provider rejected a call. Message is the provider's, verbatim."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code or 500


class NamespaceCreationError(DreamBaseError):
    """Storage platform failed to create a namespace. Safe to retry."""

    status_code = 503
    retryable = True


# ── Programming errors ───────────────────────────────────────────

class RegistryConflictError(DreamBaseError):
    """Attempt to re-point a tenant at a different namespace handle."""

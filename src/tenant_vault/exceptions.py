"""Custom exceptions for tenant-vault.

This module contains all custom exceptions used throughout the package.
Exceptions are organized by the layer that raises them:

Identity layer (never retried, surfaced as AuthenticationFailed at login):
    - InvalidSignatureError, UnknownIssuerError, ExpiredAssertionError,
      AudienceMismatchError, ValidationUnreachableError

Binding layer (never retried):
    - NoMatchingBindingError, AmbiguousBindingError

Policy/storage layer:
    - UnknownDomainError, PermissionDeniedError, SecretNotFoundError

Session/lease layer:
    - MaxTTLExceededError, SessionRevokedError, SessionExpiredError,
      LeaseNotFoundError

Connector layer:
    - BackendUnavailableError

Critical Failures (caller must stop serving):
    - PolicyEnforcementFailure, ConfigurationError

Usage:
    from tenant_vault.exceptions import PermissionDeniedError, MaxTTLExceededError
"""

from __future__ import annotations

__all__ = [
    "AmbiguousBindingError",
    "AudienceMismatchError",
    "AuthenticationFailed",
    "BackendUnavailableError",
    "BindingError",
    "CheckAndSetError",
    "ConfigurationError",
    "CriticalSecurityFailure",
    "ExpiredAssertionError",
    "IdentityError",
    "InvalidBindingError",
    "InvalidSignatureError",
    "LeaseNotFoundError",
    "MaxTTLExceededError",
    "NoMatchingBindingError",
    "PermissionDeniedError",
    "PolicyEnforcementFailure",
    "PolicyError",
    "SecretNotFoundError",
    "SecretVersionDeletedError",
    "SessionError",
    "SessionExpiredError",
    "SessionRevokedError",
    "TenantVaultError",
    "UnknownDomainError",
    "UnknownIssuerError",
    "ValidationUnreachableError",
]

from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tenant_vault.pdp.decision import Decision


class TenantVaultError(Exception):
    """Base class for all recoverable tenant-vault errors."""


# =============================================================================
# Identity layer
# =============================================================================


class IdentityError(TenantVaultError):
    """Base for identity assertion verification failures.

    These indicate a misconfigured client or an attack and are never
    retried automatically.
    """


class InvalidSignatureError(IdentityError):
    """Assertion signature did not verify (or the review authority rejected it)."""


class UnknownIssuerError(IdentityError):
    """Assertion issuer is not trusted, or no cached key matches its key id."""


class ExpiredAssertionError(IdentityError):
    """Assertion is past its expiry time."""


class AudienceMismatchError(IdentityError):
    """Assertion audience does not include any audience the trust domain accepts."""


class ValidationUnreachableError(IdentityError):
    """Live validation authority could not be reached within the timeout."""


class AuthenticationFailed(TenantVaultError):
    """Generic login failure raised at the outer boundary.

    The specific identity or binding error is logged to the audit trail and
    chained as __cause__, but the message never says which check failed.
    """

    def __init__(self, message: str = "authentication failed") -> None:
        super().__init__(message)


# =============================================================================
# Binding layer
# =============================================================================


class BindingError(TenantVaultError):
    """Base for identity binding failures."""


class NoMatchingBindingError(BindingError):
    """No identity binding matches the verified claims."""


class AmbiguousBindingError(BindingError):
    """More than one identity binding matches the verified claims.

    This is a configuration error. It is always surfaced, never resolved by
    picking one of the candidates.

    Attributes:
        candidates: Names of the bindings that matched.
    """

    def __init__(self, message: str, *, candidates: list[str]) -> None:
        super().__init__(message)
        self.candidates = candidates


class InvalidBindingError(BindingError):
    """Identity binding is structurally invalid for its domain.

    Raised at registration time, e.g. when the subject pattern's namespace
    component differs from the domain's namespace.
    """


# =============================================================================
# Policy / storage layer
# =============================================================================


class PolicyError(TenantVaultError):
    """Base for policy resolution and enforcement errors."""


class UnknownDomainError(PolicyError):
    """Domain is not present in the registry."""

    def __init__(self, domain_id: str) -> None:
        super().__init__(f"Unknown domain: {domain_id!r}")
        self.domain_id = domain_id


class PermissionDeniedError(PolicyError):
    """Raised when a request is denied by policy.

    The message is the same whether or not the path exists, so denial
    responses cannot be used to enumerate paths. Diagnostic attributes are
    for logging only.

    Attributes:
        path: Path that was denied.
        operation: Operation that was requested.
        decision: The policy decision.
        matched_rules: Patterns of the rules that matched.
        final_rule: The pattern of the rule that determined the outcome.
    """

    def __init__(
        self,
        message: str = "permission denied",
        *,
        path: str | None = None,
        operation: str | None = None,
        decision: "Decision | None" = None,
        matched_rules: list[str] | None = None,
        final_rule: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.operation = operation
        self.decision = decision
        self.matched_rules = matched_rules or []
        self.final_rule = final_rule

    @property
    def error_data(self) -> dict[str, Any]:
        """Structured diagnostic data for logging."""
        data: dict[str, Any] = {}
        if self.path is not None:
            data["path"] = self.path
        if self.operation is not None:
            data["operation"] = self.operation
        if self.matched_rules:
            data["matched_rules"] = self.matched_rules
        if self.final_rule is not None:
            data["final_rule"] = self.final_rule
        if self.decision is not None:
            data["decision"] = self.decision.value
        return data

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        parts = [f"PermissionDeniedError({self.message!r}"]
        if self.path is not None:
            parts.append(f", path={self.path!r}")
        if self.operation is not None:
            parts.append(f", operation={self.operation!r}")
        if self.final_rule is not None:
            parts.append(f", final_rule={self.final_rule!r}")
        parts.append(")")
        return "".join(parts)

    def __str__(self) -> str:
        return self.message


class SecretNotFoundError(TenantVaultError):
    """Secret path or version does not exist, or the version was destroyed."""

    def __init__(self, path: str, version: int | None = None) -> None:
        where = f"{path} (version {version})" if version is not None else path
        super().__init__(f"No secret at {where}")
        self.path = path
        self.version = version


class SecretVersionDeletedError(SecretNotFoundError):
    """Secret version was soft-deleted and can still be undeleted.

    Attributes:
        deleted_at: When the version was soft-deleted.
    """

    def __init__(self, path: str, version: int, deleted_at: datetime) -> None:
        super().__init__(path, version)
        self.deleted_at = deleted_at


class CheckAndSetError(TenantVaultError):
    """Write was rejected because the check-and-set version did not match."""

    def __init__(self, path: str, expected: int, current: int) -> None:
        super().__init__(f"check-and-set mismatch at {path}: expected version {expected}, current is {current}")
        self.path = path
        self.expected = expected
        self.current = current


# =============================================================================
# Session / lease layer
# =============================================================================


class SessionError(TenantVaultError):
    """Base for session and lease lifetime errors."""


class MaxTTLExceededError(SessionError):
    """Renewal would push the cumulative lifetime past max_ttl."""


class SessionRevokedError(SessionError):
    """Session was explicitly revoked (or never existed)."""


class SessionExpiredError(SessionError):
    """Session is past its expiry time."""


class LeaseNotFoundError(SessionError):
    """Lease id is unknown, already revoked, or already gone."""

    def __init__(self, lease_id: str) -> None:
        super().__init__(f"Lease not found: {lease_id}")
        self.lease_id = lease_id


# =============================================================================
# Connector layer
# =============================================================================


class BackendUnavailableError(TenantVaultError):
    """Backend credential connector could not complete a call."""


# =============================================================================
# Critical Failures (security invariants cannot be maintained)
# =============================================================================


class CriticalSecurityFailure(Exception):
    """Base exception for failures that must stop request handling.

    These should not be caught and handled by request code. They signal
    that security invariants cannot be maintained.

    Attributes:
        failure_type: Category string for logging.
    """

    failure_type: str = "unknown"


class PolicyEnforcementFailure(CriticalSecurityFailure):
    """Policy enforcement mechanism has failed.

    Raised when rule evaluation hits an unexpected error. Decisions from a
    crashing evaluator cannot be trusted.
    """

    failure_type = "policy_failure"


class ConfigurationError(CriticalSecurityFailure):
    """Configuration is invalid or incomplete.

    Raised when:
    - Config file does not exist
    - Config file contains invalid JSON
    - Config file fails Pydantic validation
    - State file cannot be parsed
    """

    failure_type = "configuration_failure"

"""Lease and revocation-job records for dynamic credentials.

Lease state machine:

    ACTIVE ──renew──► ACTIVE
    ACTIVE ──expiry / revoke──► REVOKING ──backend destroy ok──► GONE

REVOKING never returns to ACTIVE. GONE leases are dropped from the store;
the state only exists so in-flight callers holding a lease object can see it.
"""

from __future__ import annotations

__all__ = [
    "Lease",
    "LeaseState",
    "RevocationJob",
    "new_lease_id",
    "principal_name",
]

import secrets
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from tenant_vault.constants import (
    DEFAULT_LEASE_MAX_TTL_SECONDS,
    DEFAULT_LEASE_TTL_SECONDS,
    LEASE_ID_PREFIX,
    PRINCIPAL_NAME_PREFIX,
)


class LeaseState(str, Enum):
    """Lifecycle state of a lease."""

    ACTIVE = "active"
    REVOKING = "revoking"
    GONE = "gone"


def new_lease_id(role: str) -> str:
    """Generate a lease id: database/creds/<role>/<32 hex>."""
    return f"{LEASE_ID_PREFIX}/{role}/{secrets.token_hex(16)}"


def principal_name(role: str, lease_id: str) -> str:
    """Derive the backend principal name from a lease id.

    Deterministic, so a retried create after a lost response targets the
    same principal and a later destroy always knows what to remove.
    """
    suffix = lease_id.rsplit("/", 1)[-1][:8]
    return f"{PRINCIPAL_NAME_PREFIX}-{role}-{suffix}"


class Lease(BaseModel):
    """Tracked lifetime of one backend credential.

    Attributes:
        lease_id: Unique id ("database/creds/<role>/<hex>").
        domain_id: Domain the credential was issued to.
        role: Backend role the principal was created under.
        credential_ref: Backend principal name (username). The password is
            never stored.
        created_at: Issue timestamp (UTC).
        expires_at: Current expiry timestamp (UTC).
        default_ttl: Initial TTL and renewal increment, seconds.
        max_ttl: Ceiling on expires_at - created_at, seconds.
        renewed_count: Number of successful renewals.
        state: Lifecycle state.
    """

    lease_id: str
    domain_id: str
    role: str
    credential_ref: str
    created_at: datetime
    expires_at: datetime
    default_ttl: int = Field(default=DEFAULT_LEASE_TTL_SECONDS, gt=0)
    max_ttl: int = Field(default=DEFAULT_LEASE_MAX_TTL_SECONDS, gt=0)
    renewed_count: int = 0
    state: LeaseState = LeaseState.ACTIVE

    model_config = ConfigDict(frozen=True)

    @property
    def lifetime(self) -> timedelta:
        return self.expires_at - self.created_at

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def can_renew(self) -> bool:
        """Check whether one more renewal stays within max_ttl."""
        return self.lifetime + timedelta(seconds=self.default_ttl) <= timedelta(seconds=self.max_ttl)


class RevocationJob(BaseModel):
    """Durable work item: destroy a backend principal.

    One job per lease id. Survives restarts, so a lease stuck in REVOKING
    keeps being retried rather than forgotten.

    Attributes:
        lease_id: Lease being revoked.
        credential_ref: Backend principal to destroy.
        attempts: Failed attempts so far.
        next_attempt_at: Earliest time the sweep may retry.
        last_error: Message of the most recent failure.
    """

    lease_id: str
    credential_ref: str
    attempts: int = 0
    next_attempt_at: datetime
    last_error: str | None = None

    model_config = ConfigDict(frozen=True)

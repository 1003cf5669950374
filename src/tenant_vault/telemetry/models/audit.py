"""Pydantic models for audit logs (auth, leases).

The 'time' field in all models is Optional[str] = None because:
- Model instances are created WITHOUT timestamps (time=None)
- ISO8601Formatter adds the timestamp during log serialization
- Logged events ALWAYS have a 'time' field in ISO 8601 format

Identifiers that could be replayed or that identify a workload (subject,
session accessor) are hashed by the loggers before writing.
"""

from __future__ import annotations

__all__ = [
    "AuthEvent",
    "LeaseEvent",
]

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AuthEvent(BaseModel):
    """One authentication/session log entry (audit/auth.jsonl).

    Login failures record the specific internal error type here, while the
    caller only ever sees a generic "authentication failed".
    """

    time: str | None = Field(
        None,
        description="ISO 8601 timestamp, added by formatter during serialization",
    )

    event_type: Literal[
        "login_succeeded",
        "login_failed",
        "session_issued",
        "session_renewed",
        "session_revoked",
    ]
    status: Literal["Success", "Failure"]
    message: str | None = None

    # --- identity ---
    issuer: str | None = None
    subject: str | None = None  # hashed
    domain_id: str | None = None
    binding_candidates: list[str] | None = None  # ambiguous bindings only

    # --- session ---
    session_accessor: str | None = None  # hashed
    policy_fingerprint: str | None = None
    expires_at: datetime | None = None
    renewed_count: int | None = None

    # --- errors / extra details ---
    error_type: str | None = None  # e.g. "AudienceMismatchError"
    error_message: str | None = None
    details: dict[str, Any] | None = None

    model_config = ConfigDict(extra="forbid")


class LeaseEvent(BaseModel):
    """One dynamic-credential lease log entry (audit/leases.jsonl)."""

    time: str | None = Field(
        None,
        description="ISO 8601 timestamp, added by formatter during serialization",
    )

    event_type: Literal[
        "lease_issued",
        "lease_issue_failed",
        "lease_renewed",
        "lease_revoking",
        "revocation_failed",
        "lease_revoked",
    ]
    status: Literal["Success", "Failure"]
    message: str | None = None

    lease_id: str | None = None
    domain_id: str | None = None
    role: str | None = None
    credential_ref: str | None = None  # backend principal name, never the password
    expires_at: datetime | None = None
    renewed_count: int | None = None

    # --- revocation retries ---
    attempts: int | None = None
    next_attempt_at: datetime | None = None
    trigger: Literal["explicit", "expiry", "offboarding", "issue_failure", "recovery"] | None = None

    error_type: str | None = None
    error_message: str | None = None

    model_config = ConfigDict(extra="forbid")

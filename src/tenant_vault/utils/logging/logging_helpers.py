"""Sanitization helpers for audit and system logs."""

from __future__ import annotations

__all__ = [
    "hash_sensitive_id",
    "redact_secret_data",
    "serialize_audit_event",
]

import hashlib
from typing import Any

from pydantic import BaseModel


def serialize_audit_event(event: BaseModel) -> dict[str, Any]:
    """Serialize a Pydantic event model for audit logging.

    - Excludes the 'time' field (added by ISO8601Formatter at log time)
    - Excludes None values for cleaner logs
    - Uses JSON mode so datetimes and enums are plain strings

    Example:
        >>> serialize_audit_event(LeaseEvent(event_type="lease_issued", lease_id="...", ...))
        {"event_type": "lease_issued", "lease_id": "...", ...}
    """
    return event.model_dump(mode="json", exclude={"time"}, exclude_none=True)


def hash_sensitive_id(value: str | None, prefix_length: int = 8) -> str:
    """Hash a sensitive ID for logging while preserving some identifiability.

    The hash is deterministic, so the same input always produces the same
    output and log lines can still be correlated.

    Args:
        value: The sensitive ID to hash (e.g., subject, session accessor).
        prefix_length: Number of hex characters to keep (default: 8).

    Returns:
        str: Hashed value in format "sha256:<prefix>" (e.g., "sha256:a1b2c3d4").
    """
    if not value:
        return "sha256:empty"

    hash_hex = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"sha256:{hash_hex[:prefix_length]}"


def redact_secret_data(data: dict[str, Any]) -> dict[str, str]:
    """Replace every secret value with a placeholder, keeping the keys.

    Secret payloads never reach a log; only their shape does.
    """
    return {key: "[REDACTED]" for key in data}

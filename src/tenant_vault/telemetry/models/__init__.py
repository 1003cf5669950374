"""Pydantic models for all audit log event types."""

from tenant_vault.telemetry.models.audit import AuthEvent, LeaseEvent

__all__ = [
    "AuthEvent",
    "LeaseEvent",
]

"""Telemetry domain: audit logs and system events.

Structure:
    audit/          Security audit logging (auth.jsonl, leases.jsonl)
    models/         Pydantic models for all audit event types
    system/         System operational logs (stderr, system.jsonl)
"""

__all__: list[str] = []

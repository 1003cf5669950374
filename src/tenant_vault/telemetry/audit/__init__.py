"""Audit logging for authentication and dynamic credential leases.

Logger patterns:
- AuthLogger: typed methods for login and session events (auth.jsonl)
- LeaseLogger: typed methods for lease transitions (leases.jsonl)
"""

from tenant_vault.telemetry.audit.auth_logger import (
    AuthLogger,
    create_auth_logger,
    get_auth_log_path,
)
from tenant_vault.telemetry.audit.lease_logger import (
    LeaseLogger,
    create_lease_logger,
    get_lease_log_path,
)

__all__ = [
    "AuthLogger",
    "LeaseLogger",
    "create_auth_logger",
    "create_lease_logger",
    "get_auth_log_path",
    "get_lease_log_path",
]

"""Lease audit logger.

Logs every dynamic-credential lease transition to audit/leases.jsonl, so
an operator can prove each backend principal was destroyed: issued,
renewed, revoking, revocation failures (with retry schedule), revoked.
"""

from __future__ import annotations

__all__ = [
    "LeaseLogger",
    "create_lease_logger",
    "get_lease_log_path",
]

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from tenant_vault.constants import APP_NAME
from tenant_vault.telemetry.models.audit import LeaseEvent
from tenant_vault.utils.logging.logger_setup import setup_jsonl_logger, setup_memory_logger
from tenant_vault.utils.logging.logging_helpers import serialize_audit_event

if TYPE_CHECKING:
    from tenant_vault.broker.lease import Lease, RevocationJob

RevocationTrigger = Literal["explicit", "expiry", "offboarding", "issue_failure", "recovery"]


def get_lease_log_path(log_dir: str | Path) -> Path:
    """Get <log_dir>/tenant-vault/audit/leases.jsonl."""
    return Path(log_dir).expanduser() / APP_NAME / "audit" / "leases.jsonl"


class LeaseLogger:
    """Audit logger for lease lifecycle events."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log_event(self, event: LeaseEvent) -> None:
        event_data = serialize_audit_event(event)
        if event.status == "Failure":
            self._logger.warning(event_data)
        else:
            self._logger.info(event_data)

    def log_issued(self, lease: "Lease") -> None:
        self._log_event(
            LeaseEvent(
                event_type="lease_issued",
                status="Success",
                lease_id=lease.lease_id,
                domain_id=lease.domain_id,
                role=lease.role,
                credential_ref=lease.credential_ref,
                expires_at=lease.expires_at,
            )
        )

    def log_issue_failed(
        self,
        *,
        domain_id: str,
        role: str,
        credential_ref: str,
        error: BaseException,
        attempts: int,
    ) -> None:
        self._log_event(
            LeaseEvent(
                event_type="lease_issue_failed",
                status="Failure",
                domain_id=domain_id,
                role=role,
                credential_ref=credential_ref,
                attempts=attempts,
                error_type=type(error).__name__,
                error_message=str(error),
                message="Backend principal could not be created; cleanup queued",
            )
        )

    def log_renewed(self, lease: "Lease") -> None:
        self._log_event(
            LeaseEvent(
                event_type="lease_renewed",
                status="Success",
                lease_id=lease.lease_id,
                domain_id=lease.domain_id,
                role=lease.role,
                expires_at=lease.expires_at,
                renewed_count=lease.renewed_count,
            )
        )

    def log_revoking(self, lease: "Lease", trigger: RevocationTrigger) -> None:
        self._log_event(
            LeaseEvent(
                event_type="lease_revoking",
                status="Success",
                lease_id=lease.lease_id,
                domain_id=lease.domain_id,
                role=lease.role,
                credential_ref=lease.credential_ref,
                trigger=trigger,
            )
        )

    def log_revocation_failed(self, job: "RevocationJob", error: Exception) -> None:
        self._log_event(
            LeaseEvent(
                event_type="revocation_failed",
                status="Failure",
                lease_id=job.lease_id,
                credential_ref=job.credential_ref,
                attempts=job.attempts,
                next_attempt_at=job.next_attempt_at,
                error_type=type(error).__name__,
                error_message=str(error),
            )
        )

    def log_revoked(self, job: "RevocationJob") -> None:
        self._log_event(
            LeaseEvent(
                event_type="lease_revoked",
                status="Success",
                lease_id=job.lease_id,
                credential_ref=job.credential_ref,
                attempts=job.attempts + 1,
                message="Backend principal destroyed",
            )
        )


def create_lease_logger(log_path: Path | None = None) -> LeaseLogger:
    """Create a lease logger.

    Args:
        log_path: Path to leases.jsonl. None creates a logger without a file.
    """
    name = f"{APP_NAME}.audit.leases"
    if log_path is None:
        return LeaseLogger(setup_memory_logger(name))
    return LeaseLogger(setup_jsonl_logger(name, log_path, log_level=logging.INFO))

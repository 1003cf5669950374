"""Authentication audit logger.

Logs authentication events to audit/auth.jsonl:
- Login success (issuer, hashed subject, bound domain, session accessor)
- Login failure with the specific internal error type
- Session lifecycle (issued, renewed, revoked)

Subjects and session accessors are hashed before writing.
"""

from __future__ import annotations

__all__ = [
    "AuthLogger",
    "create_auth_logger",
    "get_auth_log_path",
]

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from tenant_vault.constants import APP_NAME
from tenant_vault.exceptions import AmbiguousBindingError
from tenant_vault.telemetry.models.audit import AuthEvent
from tenant_vault.utils.logging.logger_setup import setup_jsonl_logger, setup_memory_logger
from tenant_vault.utils.logging.logging_helpers import hash_sensitive_id, serialize_audit_event

if TYPE_CHECKING:
    from tenant_vault.pips.auth.session import Session

SessionEventType = Literal["session_issued", "session_renewed", "session_revoked"]


def get_auth_log_path(log_dir: str | Path) -> Path:
    """Get <log_dir>/tenant-vault/audit/auth.jsonl."""
    return Path(log_dir).expanduser() / APP_NAME / "audit" / "auth.jsonl"


class AuthLogger:
    """Audit logger for authentication events.

    Usage:
        auth_logger = create_auth_logger(get_auth_log_path(config.logging.log_dir))
        auth_logger.log_login_failed(error, issuer="https://issuer")
    """

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize auth logger.

        Args:
            logger: Configured JSONL logger.
        """
        self._logger = logger

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log_event(self, event: AuthEvent) -> None:
        event_data = serialize_audit_event(event)
        if event.status == "Failure":
            self._logger.warning(event_data)
        else:
            self._logger.info(event_data)

    def log_login_succeeded(
        self,
        *,
        issuer: str,
        subject: str,
        session: "Session",
    ) -> None:
        """Log a successful login and the session it produced."""
        self._log_event(
            AuthEvent(
                event_type="login_succeeded",
                status="Success",
                issuer=issuer,
                subject=hash_sensitive_id(subject),
                domain_id=session.domain_id,
                session_accessor=hash_sensitive_id(session.accessor),
                policy_fingerprint=session.policy.fingerprint,
                expires_at=session.expires_at,
                message=f"Login bound to domain {session.domain_id}",
            )
        )

    def log_login_failed(
        self,
        error: Exception,
        *,
        issuer: str | None = None,
        subject: str | None = None,
    ) -> None:
        """Log a failed login with the specific internal error.

        Args:
            error: The identity or binding error that caused the failure.
            issuer: Unverified "iss" claim, if the token could be parsed.
            subject: Unverified "sub" claim, if the token could be parsed.
        """
        candidates = error.candidates if isinstance(error, AmbiguousBindingError) else None
        self._log_event(
            AuthEvent(
                event_type="login_failed",
                status="Failure",
                issuer=issuer,
                subject=hash_sensitive_id(subject) if subject else None,
                binding_candidates=candidates,
                error_type=type(error).__name__,
                error_message=str(error),
                message="Login rejected",
            )
        )

    def log_session_event(self, event_type: SessionEventType, session: "Session") -> None:
        """Log a session lifecycle event."""
        self._log_event(
            AuthEvent(
                event_type=event_type,
                status="Success",
                subject=hash_sensitive_id(session.subject) if session.subject else None,
                domain_id=session.domain_id,
                session_accessor=hash_sensitive_id(session.accessor),
                policy_fingerprint=session.policy.fingerprint,
                expires_at=session.expires_at,
                renewed_count=session.renewed_count,
            )
        )


def create_auth_logger(log_path: Path | None = None) -> AuthLogger:
    """Create an auth logger.

    Args:
        log_path: Path to auth.jsonl. None creates a logger without a file.

    Returns:
        AuthLogger: Configured logger for authentication events.
    """
    name = f"{APP_NAME}.audit.auth"
    if log_path is None:
        return AuthLogger(setup_memory_logger(name))
    return AuthLogger(setup_jsonl_logger(name, log_path, log_level=logging.INFO))

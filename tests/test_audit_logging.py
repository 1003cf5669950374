"""Unit tests for the audit trail.

Tests verify behavior through actual log output to temp files: lease and
auth events are written as JSONL with ISO 8601 timestamps, and secrets,
passwords and raw identities never reach the file.
"""

import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from tenant_vault.broker.broker import CredentialBroker
from tenant_vault.broker.connector import InMemoryConnector
from tenant_vault.exceptions import AudienceMismatchError
from tenant_vault.pips.auth.session import SessionIssuer
from tenant_vault.state.registry import TenantRegistry
from tenant_vault.telemetry.audit.auth_logger import create_auth_logger, get_auth_log_path
from tenant_vault.telemetry.audit.lease_logger import create_lease_logger, get_lease_log_path
from tenant_vault.telemetry.models.audit import AuthEvent, LeaseEvent
from tenant_vault.utils.logging.iso_formatter import ISO8601Formatter
from tenant_vault.utils.logging.logging_helpers import hash_sensitive_id, redact_secret_data


# ============================================================================
# Helpers
# ============================================================================


def read_log_entries(log_path: Path) -> list[dict[str, Any]]:
    """Read all JSONL entries from a log file."""
    if not log_path.exists():
        return []
    entries = []
    for line in log_path.read_text(encoding="utf-8").splitlines():
        if line.strip():
            entries.append(json.loads(line))
    return entries


async def _no_sleep(delay: float) -> None:
    return None


# ============================================================================
# Lease audit
# ============================================================================


class TestLeaseAudit:
    """Every lease transition lands in leases.jsonl."""

    @pytest.mark.asyncio
    async def test_lifecycle_written(
        self,
        tmp_path: Path,
        sessions: SessionIssuer,
        registry: TenantRegistry,
        token_for: Callable[[str], str],
        clock,
    ):
        # Arrange
        log_path = get_lease_log_path(tmp_path)
        connector = InMemoryConnector(fail_destroys=1)
        broker = CredentialBroker(
            connector,
            sessions,
            registry,
            clock=clock,
            sleep=_no_sleep,
            lease_logger=create_lease_logger(log_path),
        )
        token = token_for("alpha")

        # Act
        issued = await broker.issue(token, "alpha-app")
        await broker.renew(issued.lease.lease_id, token=token)
        await broker.revoke(issued.lease.lease_id, token=token)

        # Assert
        entries = read_log_entries(log_path)
        assert [e["event_type"] for e in entries] == [
            "lease_issued",
            "lease_renewed",
            "lease_revoking",
            "revocation_failed",
            "lease_revoked",
        ]
        assert all(e["lease_id"] == issued.lease.lease_id for e in entries)
        assert entries[2]["trigger"] == "explicit"
        assert entries[3]["level"] == "WARNING"
        assert entries[3]["attempts"] == 1
        assert "next_attempt_at" in entries[3]
        assert entries[4]["attempts"] == 2
        assert entries[0]["time"].endswith("Z")

        raw = log_path.read_text(encoding="utf-8")
        assert issued.credential.password not in raw

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_log_file_owner_only(self, tmp_path: Path):
        # Arrange
        log_path = get_lease_log_path(tmp_path)

        # Act
        create_lease_logger(log_path)

        # Assert
        assert log_path.stat().st_mode & 0o777 == 0o600
        assert log_path.parent.stat().st_mode & 0o777 == 0o700

    def test_event_rejects_unknown_fields(self):
        # Act & Assert
        with pytest.raises(ValidationError):
            LeaseEvent(event_type="lease_issued", status="Success", password="hunter2")


# ============================================================================
# Auth audit
# ============================================================================


class TestAuthAudit:
    """Login events hash identities and keep the specific error."""

    def test_login_failed_written(self, tmp_path: Path):
        # Arrange
        log_path = get_auth_log_path(tmp_path)
        auth_logger = create_auth_logger(log_path)

        # Act
        auth_logger.log_login_failed(
            AudienceMismatchError("assertion audience is not accepted"),
            issuer="https://oidc.cluster.example.com",
            subject="system:serviceaccount:alpha:app",
        )

        # Assert
        [entry] = read_log_entries(log_path)
        assert entry["event_type"] == "login_failed"
        assert entry["level"] == "WARNING"
        assert entry["error_type"] == "AudienceMismatchError"
        assert entry["subject"] == hash_sensitive_id("system:serviceaccount:alpha:app")
        assert "system:serviceaccount:alpha:app" not in log_path.read_text(encoding="utf-8")

    def test_session_events_hash_accessor(self, tmp_path: Path, alpha, resolver, clock):
        # Arrange
        log_path = get_auth_log_path(tmp_path)
        issuer = SessionIssuer(clock=clock, auth_logger=create_auth_logger(log_path))

        # Act
        session = issuer.issue(alpha, resolver.resolve("alpha"), subject="system:serviceaccount:alpha:app")

        # Assert
        [entry] = read_log_entries(log_path)
        assert entry["event_type"] == "session_issued"
        assert entry["session_accessor"] == hash_sensitive_id(session.accessor)
        raw = log_path.read_text(encoding="utf-8")
        assert session.token not in raw
        assert session.accessor not in raw

    def test_event_type_is_closed(self):
        # Act & Assert
        with pytest.raises(ValidationError):
            AuthEvent(event_type="login_maybe", status="Success")


# ============================================================================
# Helpers and formatter
# ============================================================================


class TestLoggingHelpers:
    """Hashing and redaction."""

    def test_hash_is_deterministic(self):
        assert hash_sensitive_id("abc") == hash_sensitive_id("abc")
        assert hash_sensitive_id("abc") != hash_sensitive_id("abd")
        assert hash_sensitive_id("abc").startswith("sha256:")
        assert len(hash_sensitive_id("abc")) == len("sha256:") + 8

    def test_hash_empty(self):
        assert hash_sensitive_id(None) == "sha256:empty"
        assert hash_sensitive_id("") == "sha256:empty"

    def test_redact_keeps_keys_only(self):
        assert redact_secret_data({"username": "app", "password": "s3cret"}) == {
            "username": "[REDACTED]",
            "password": "[REDACTED]",
        }


class TestISO8601Formatter:
    """JSONL rendering."""

    def _record(self, msg: Any, exc_info: Any = None) -> logging.LogRecord:
        return logging.LogRecord("test", logging.INFO, __file__, 1, msg, None, exc_info)

    def test_dict_message(self):
        # Act
        line = ISO8601Formatter().format(self._record({"event": "x", "count": 2}))

        # Assert
        entry = json.loads(line)
        assert entry["event"] == "x"
        assert entry["count"] == 2
        assert entry["level"] == "INFO"
        assert entry["time"].endswith("Z")

    def test_plain_message_wrapped(self):
        entry = json.loads(ISO8601Formatter().format(self._record("hello")))
        assert entry["message"] == "hello"

    def test_exception_included(self):
        # Arrange
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = self._record({"event": "failed"}, exc_info=sys.exc_info())

        # Act
        entry = json.loads(ISO8601Formatter().format(record))

        # Assert
        assert "RuntimeError: boom" in entry["exception"]

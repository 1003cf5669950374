"""Secret store enforcement point.

Every call presents a session token. Before touching storage the store:
1. Looks up the live session (revoked or expired sessions fail here)
2. Normalizes the path (traversal-like paths are denied)
3. Evaluates the session's bound rule set for the required operation

A denial is always the same generic PermissionDeniedError, raised before
storage is consulted, so a caller without access cannot tell whether a path
exists.

Operation mapping:
    write            create (path has no live version) or update
    read, metadata   read
    list             list
    delete, destroy  delete
    delete_metadata  delete
    undelete         update
"""

from __future__ import annotations

__all__ = [
    "SecretStore",
]

import logging
from collections.abc import Iterable
from typing import Any, NoReturn

from tenant_vault.constants import APP_NAME
from tenant_vault.exceptions import PermissionDeniedError
from tenant_vault.pdp.engine import PolicyEngine
from tenant_vault.pdp.matcher import InvalidPathError, normalize_path
from tenant_vault.pips.auth.session import Session, SessionIssuer
from tenant_vault.storage.kv import SecretMetadata, SecretRecord, VersionedKVStore, VersionMetadata
from tenant_vault.utils.logging.logging_helpers import hash_sensitive_id, redact_secret_data

_logger = logging.getLogger(f"{APP_NAME}.pep.secret_store")


class SecretStore:
    """Policy-enforcing facade over the versioned KV store.

    Usage:
        store = SecretStore(kv, sessions)
        store.write(token, "secret/alpha/app-config", {"log_level": "info"})
        store.read(token, "secret/alpha/app-config").data
    """

    def __init__(
        self,
        kv: VersionedKVStore,
        sessions: SessionIssuer,
        engine: PolicyEngine | None = None,
    ) -> None:
        self._kv = kv
        self._sessions = sessions
        self._engine = engine or PolicyEngine()

    @property
    def kv(self) -> VersionedKVStore:
        return self._kv

    def write(self, token: str, path: str, data: dict[str, Any], *, cas: int | None = None) -> VersionMetadata:
        """Write a new version of a secret.

        Raises:
            PermissionDeniedError: If neither create nor update is allowed, or
                the one required by the path's current state is not.
            CheckAndSetError: If cas does not match.
        """
        session, path = self._prepare(token, path)
        # Check before looking at storage so existence is never revealed
        if not self._engine.allows_any(session.policy, path, ("create", "update")):
            self._deny(session, path, "write")
        operation = "update" if self._kv.exists(path) else "create"
        self._check(session, path, operation)

        meta = self._kv.write(path, data, cas=cas)
        _logger.info(
            {
                "event": "secret_written",
                "message": f"Secret written: {path} (version {meta.version})",
                "domain_id": session.domain_id,
                "path": path,
                "version": meta.version,
                "keys": redact_secret_data(data),
            }
        )
        return meta

    def read(self, token: str, path: str, version: int | None = None) -> SecretRecord:
        """Read a version of a secret (default: current).

        Raises:
            PermissionDeniedError: If read is not allowed.
            SecretNotFoundError: If the path/version does not exist or was destroyed.
            SecretVersionDeletedError: If the version is soft-deleted.
        """
        session, path = self._authorize(token, path, "read")
        return self._kv.read(path, version)

    def read_metadata(self, token: str, path: str) -> SecretMetadata:
        """Read version metadata of a secret."""
        session, path = self._authorize(token, path, "read")
        return self._kv.read_metadata(path)

    def list(self, token: str, prefix: str) -> list[str]:
        """List child keys under a prefix."""
        session, prefix = self._authorize(token, prefix, "list")
        return self._kv.list(prefix)

    def delete(self, token: str, path: str, versions: Iterable[int] | None = None) -> list[int]:
        """Soft-delete versions (default: current)."""
        session, path = self._authorize(token, path, "delete")
        changed = self._kv.delete(path, versions)
        self._log_change("secret_deleted", session, path, changed)
        return changed

    def undelete(self, token: str, path: str, versions: Iterable[int]) -> list[int]:
        """Restore soft-deleted versions."""
        session, path = self._authorize(token, path, "update")
        changed = self._kv.undelete(path, versions)
        self._log_change("secret_undeleted", session, path, changed)
        return changed

    def destroy(self, token: str, path: str, versions: Iterable[int]) -> list[int]:
        """Irreversibly remove versions."""
        session, path = self._authorize(token, path, "delete")
        changed = self._kv.destroy(path, versions)
        self._log_change("secret_destroyed", session, path, changed)
        return changed

    def delete_metadata(self, token: str, path: str) -> None:
        """Remove a secret with all versions and metadata."""
        session, path = self._authorize(token, path, "delete")
        self._kv.delete_metadata(path)
        self._log_change("secret_metadata_deleted", session, path, [])

    def _prepare(self, token: str, path: str) -> tuple[Session, str]:
        session = self._sessions.lookup(token)
        try:
            normalized = normalize_path(path)
        except InvalidPathError:
            self._deny(session, path, "any")
        return session, normalized

    def _authorize(self, token: str, path: str, operation: str) -> tuple[Session, str]:
        session, normalized = self._prepare(token, path)
        self._check(session, normalized, operation)
        return session, normalized

    def _check(self, session: Session, path: str, operation: str) -> None:
        try:
            self._engine.check(session.policy, path, operation)
        except PermissionDeniedError as e:
            _logger.warning(
                {
                    "event": "secret_access_denied",
                    "message": f"Denied {operation} on {path} for domain {session.domain_id}",
                    "domain_id": session.domain_id,
                    "session": hash_sensitive_id(session.accessor),
                    **e.error_data,
                }
            )
            raise

    def _deny(self, session: Session, path: str, operation: str) -> NoReturn:
        _logger.warning(
            {
                "event": "secret_access_denied",
                "message": f"Denied {operation} on {path!r} for domain {session.domain_id}",
                "domain_id": session.domain_id,
                "session": hash_sensitive_id(session.accessor),
                "path": path,
                "operation": operation,
            }
        )
        raise PermissionDeniedError(path=path, operation=operation)

    def _log_change(self, event: str, session: Session, path: str, versions: list[int]) -> None:
        _logger.info(
            {
                "event": event,
                "message": f"{event.replace('_', ' ').capitalize()}: {path}",
                "domain_id": session.domain_id,
                "path": path,
                "versions": versions,
            }
        )

"""Tenant onboarding and offboarding.

Onboarding registers a domain and its identity bindings in one registry
change and seeds the default secrets a new tenant starts with.

Offboarding order:
1. Revoke the domain's sessions (no new reads or writes)
2. Back up the latest live version of every secret under its prefixes
3. Revoke every lease through the broker (backend principals destroyed)
4. Delete the domain's secrets
5. Remove the domain and its bindings from the registry

A failed backup stops offboarding before anything irreversible happens.
"""

from __future__ import annotations

__all__ = [
    "OffboardReport",
    "TenantAdmin",
    "default_seed_secrets",
]

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from tenant_vault.broker.broker import CredentialBroker
from tenant_vault.broker.lease import LeaseState
from tenant_vault.constants import APP_NAME, KV_MOUNT
from tenant_vault.exceptions import CheckAndSetError, SecretNotFoundError
from tenant_vault.pips.auth.session import SessionIssuer
from tenant_vault.state.models import Domain, IdentityBinding
from tenant_vault.state.registry import TenantRegistry
from tenant_vault.storage.kv import VersionedKVStore
from tenant_vault.utils.file_helpers import write_json_atomic

_logger = logging.getLogger(f"{APP_NAME}.admin")


def default_seed_secrets(domain: Domain) -> dict[str, dict[str, Any]]:
    """Default secrets for a new domain, keyed by path.

    Values are placeholders the tenant is expected to overwrite.
    """
    base = f"{KV_MOUNT}/{domain.domain_id}"
    if base not in domain.secret_path_prefixes:
        base = sorted(domain.secret_path_prefixes)[0]
    return {
        f"{base}/app-config": {
            "log_level": "info",
            "environment": "production",
            "debug": "false",
        },
        f"{base}/database/postgres": {
            "host": f"postgres.{domain.namespace}.svc.cluster.local",
            "port": "5432",
            "database": domain.domain_id,
            "ssl_mode": "require",
        },
        f"{base}/certificates/app": {
            "certificate": "",
            "private_key": "",
        },
    }


@dataclass(frozen=True)
class OffboardReport:
    """Outcome of offboarding a domain.

    Attributes:
        domain_id: Offboarded domain.
        backup_path: File holding the secret backup.
        secrets_backed_up: Number of secret paths written to the backup.
        sessions_revoked: Number of sessions revoked.
        leases: lease_id -> state after revocation. REVOKING entries are
            still being retried by the sweep.
    """

    domain_id: str
    backup_path: Path
    secrets_backed_up: int
    sessions_revoked: int
    leases: dict[str, LeaseState] = field(default_factory=dict)

    @property
    def pending_revocations(self) -> list[str]:
        return sorted(lid for lid, state in self.leases.items() if state != LeaseState.GONE)


class TenantAdmin:
    """Administrative lifecycle of tenant domains.

    Usage:
        admin = TenantAdmin(registry, kv, sessions, broker)
        admin.onboard_domain(Domain(domain_id="alpha"), [binding])
        report = await admin.offboard_domain("alpha", Path("alpha-backup.json"))
    """

    def __init__(
        self,
        registry: TenantRegistry,
        kv: VersionedKVStore,
        sessions: SessionIssuer,
        broker: CredentialBroker,
    ) -> None:
        self._registry = registry
        self._kv = kv
        self._sessions = sessions
        self._broker = broker

    def onboard_domain(
        self,
        domain: Domain,
        bindings: Iterable[IdentityBinding],
        *,
        seed_secrets: bool = True,
    ) -> list[str]:
        """Register a domain with its bindings and seed default secrets.

        Seeding never overwrites: a path that already has a version is left
        alone, so onboarding can be re-run.

        Returns:
            Paths that were seeded.

        Raises:
            ConfigurationError: If prefixes or roles clash with another domain.
            UnknownDomainError / InvalidBindingError: If a binding is invalid.
        """
        self._registry.onboard(domain, bindings)

        seeded: list[str] = []
        if seed_secrets:
            for path, data in default_seed_secrets(domain).items():
                try:
                    self._kv.write(path, data, cas=0)
                except CheckAndSetError:
                    continue
                seeded.append(path)

        _logger.info(
            {
                "event": "domain_seeded",
                "message": f"Seeded {len(seeded)} secrets for {domain.domain_id}",
                "domain_id": domain.domain_id,
                "paths": seeded,
            }
        )
        return seeded

    def backup_secrets(self, domain: Domain, backup_path: Path) -> int:
        """Write the latest live version of each of a domain's secrets to JSON.

        Paths whose current version is deleted or destroyed are skipped.

        Returns:
            Number of paths written.
        """
        secrets: dict[str, dict[str, Any]] = {}
        for prefix in sorted(domain.secret_path_prefixes):
            for path in self._kv.walk(prefix):
                try:
                    record = self._kv.read(path)
                except SecretNotFoundError:
                    continue
                secrets[path] = {"version": record.version, "data": record.data}

        write_json_atomic(
            backup_path,
            {
                "domain_id": domain.domain_id,
                "created_at": datetime.now(timezone.utc).isoformat(),
                "secrets": secrets,
            },
        )
        return len(secrets)

    async def offboard_domain(self, domain_id: str, backup_path: Path) -> OffboardReport:
        """Back up, revoke and remove a domain.

        Raises:
            UnknownDomainError: If the domain is not registered.
            OSError: If the backup could not be written (nothing destroyed).
        """
        domain = self._registry.get_domain(domain_id)

        sessions_revoked = self._sessions.revoke_domain(domain_id)
        backed_up = self.backup_secrets(domain, backup_path)
        leases = await self._broker.revoke_domain(domain_id)

        for prefix in domain.secret_path_prefixes:
            for path in list(self._kv.walk(prefix)):
                self._kv.delete_metadata(path)

        self._registry.remove_domain(domain_id)

        report = OffboardReport(
            domain_id=domain_id,
            backup_path=backup_path,
            secrets_backed_up=backed_up,
            sessions_revoked=sessions_revoked,
            leases=leases,
        )
        _logger.info(
            {
                "event": "domain_offboarded",
                "message": f"Domain offboarded: {domain_id}",
                "domain_id": domain_id,
                "backup_path": str(backup_path),
                "secrets_backed_up": backed_up,
                "sessions_revoked": sessions_revoked,
                "leases_revoked": len(leases) - len(report.pending_revocations),
                "pending_revocations": report.pending_revocations,
            }
        )
        return report

"""Application wiring: build every component from one AppConfig.

Startup order:
1. System logger file handler and console level from config.logging
2. Audit loggers (audit/auth.jsonl, audit/leases.jsonl)
3. State store, then registry, sessions and broker recover from it
4. Identity verifier (offline key sets are loaded here; a trust domain
   whose keys cannot be loaded stops startup)

Background work (lease sweep, key refresh) only runs inside running().
"""

from __future__ import annotations

__all__ = [
    "TenantVault",
    "create_app",
]

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import httpx

from tenant_vault.admin import TenantAdmin
from tenant_vault.broker.broker import CredentialBroker
from tenant_vault.broker.connector import BackendConnector
from tenant_vault.broker.sweeper import LeaseSweeper
from tenant_vault.config import AppConfig
from tenant_vault.constants import APP_NAME
from tenant_vault.pdp.resolver import PolicyResolver
from tenant_vault.pep.secret_store import SecretStore
from tenant_vault.pips.auth.session import SessionIssuer
from tenant_vault.security.auth.verifier import IdentityVerifier
from tenant_vault.service import AuthenticationService
from tenant_vault.state.registry import TenantRegistry
from tenant_vault.state.store import StateStore, default_state_path
from tenant_vault.storage.kv import VersionedKVStore
from tenant_vault.telemetry.audit.auth_logger import create_auth_logger, get_auth_log_path
from tenant_vault.telemetry.audit.lease_logger import create_lease_logger, get_lease_log_path
from tenant_vault.telemetry.system.system_logger import (
    configure_system_logger_file,
    get_system_log_path,
    get_system_logger,
    set_console_level,
)

_logger = logging.getLogger(f"{APP_NAME}.app")


@dataclass
class TenantVault:
    """Handles to the wired components.

    Attributes:
        config: Configuration the app was built from.
        store: Durable state store.
        registry: Domains and identity bindings.
        sessions: Session issuer.
        auth: Login flow (assertion -> session).
        secrets: Policy-enforcing static secret store.
        broker: Dynamic credential broker.
        sweeper: Lease expiry and revocation retry driver.
        admin: Onboarding and offboarding.
        verifier: Identity verifier (exposes the offline key caches).
    """

    config: AppConfig
    store: StateStore
    registry: TenantRegistry
    sessions: SessionIssuer
    auth: AuthenticationService
    secrets: SecretStore
    broker: CredentialBroker
    sweeper: LeaseSweeper
    admin: TenantAdmin
    verifier: IdentityVerifier

    @asynccontextmanager
    async def running(self) -> AsyncIterator["TenantVault"]:
        """Run the lease sweeper and key refresh loops for the block's duration.

        Usage:
            async with app.running():
                session = await app.auth.login(token)
        """
        sweep_task = asyncio.create_task(self.sweeper.run())
        refresh_tasks = [asyncio.create_task(cache.run_refresh_loop()) for cache in self.verifier.key_caches]
        get_system_logger().info(
            {
                "event": "background_started",
                "message": f"Lease sweeper started ({self.sweeper.interval}s), {len(refresh_tasks)} key refresh loops",
                "sweep_interval_seconds": self.sweeper.interval,
                "key_refresh_loops": len(refresh_tasks),
            }
        )
        try:
            yield self
        finally:
            self.sweeper.stop()
            for task in refresh_tasks:
                task.cancel()
            await asyncio.gather(sweep_task, *refresh_tasks, return_exceptions=True)
            _logger.debug({"event": "background_stopped", "message": "Background tasks stopped"})


async def create_app(
    config: AppConfig,
    connector: BackendConnector,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TenantVault:
    """Build the application from configuration.

    Args:
        config: Validated application configuration.
        connector: Backend connector for dynamic credentials.
        transport: Optional httpx transport for token review and key fetches.

    Returns:
        TenantVault with every component wired to the same state store.

    Raises:
        ConfigurationError: If the state file is unreadable or an offline key
            set cannot be loaded.
    """
    log_dir = config.logging.log_dir
    configure_system_logger_file(get_system_log_path(log_dir))
    set_console_level(config.logging.log_level)

    auth_logger = create_auth_logger(get_auth_log_path(log_dir))
    lease_logger = create_lease_logger(get_lease_log_path(log_dir))

    state_path = Path(config.state_path).expanduser() if config.state_path else default_state_path()
    store = StateStore(state_path)
    registry = TenantRegistry(store)
    resolver = PolicyResolver(registry)
    sessions = SessionIssuer(store, config.session, auth_logger=auth_logger)
    broker = CredentialBroker(connector, sessions, registry, store, config.lease, lease_logger=lease_logger)
    verifier = await IdentityVerifier.from_config(config.trust_domains, transport=transport)
    kv = VersionedKVStore()

    app = TenantVault(
        config=config,
        store=store,
        registry=registry,
        sessions=sessions,
        auth=AuthenticationService(verifier, registry, resolver, sessions, auth_logger=auth_logger),
        secrets=SecretStore(kv, sessions),
        broker=broker,
        sweeper=LeaseSweeper(broker, interval=config.lease.sweep_interval_seconds),
        admin=TenantAdmin(registry, kv, sessions, broker),
        verifier=verifier,
    )

    get_system_logger().info(
        {
            "event": "app_started",
            "message": f"tenant-vault ready: {len(registry.snapshot().domains)} domains, "
            f"{len(config.trust_domains)} trust domains",
            "state_path": str(state_path),
            "trust_domains": [td.issuer for td in config.trust_domains],
        }
    )
    return app

"""Tests for application wiring from configuration.

Tests cover:
- A login, secret write and lease issue through the wired app
- Sessions, domains and leases survive a restart from the same state file
- Background tasks start and stop with running()
- An offline trust domain without readable keys stops startup
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from tenant_vault.app import create_app
from tenant_vault.broker.connector import InMemoryConnector
from tenant_vault.broker.lease import LeaseState
from tenant_vault.config import AppConfig
from tenant_vault.exceptions import ConfigurationError
from tenant_vault.state.models import Domain

ISSUER = "https://oidc.cluster.example.com"
AUDIENCE = "vault"


@pytest.fixture
def app_config(tmp_path: Path, jwks: dict[str, Any]) -> AppConfig:
    return AppConfig.model_validate(
        {
            "logging": {"log_dir": str(tmp_path / "logs")},
            "state_path": str(tmp_path / "state" / "state.json"),
            "trust_domains": [
                {
                    "issuer": ISSUER,
                    "audiences": [AUDIENCE],
                    "verification": {"kind": "offline", "jwks": jwks},
                }
            ],
            "lease": {"sweep_interval_seconds": 0.05},
        }
    )


class TestCreateApp:
    """End-to-end through the wired components."""

    @pytest.mark.asyncio
    async def test_login_write_and_lease(
        self, app_config: AppConfig, alpha: Domain, binding_factory, mint: Callable[..., str], tmp_path: Path
    ) -> None:
        app = await create_app(app_config, InMemoryConnector())
        app.admin.onboard_domain(alpha, [binding_factory("alpha")])

        session = await app.auth.login(mint())
        app.secrets.write(session.token, "secret/alpha/app-config", {"log_level": "debug"})
        issued = await app.broker.issue(session.token, "alpha-app")

        assert session.domain_id == "alpha"
        assert app.secrets.read(session.token, "secret/alpha/app-config").data == {"log_level": "debug"}
        assert issued.lease.state == LeaseState.ACTIVE
        assert (tmp_path / "logs" / "tenant-vault" / "audit" / "auth.jsonl").exists()
        assert (tmp_path / "logs" / "tenant-vault" / "audit" / "leases.jsonl").exists()

    @pytest.mark.asyncio
    async def test_restart_recovers_state(
        self, app_config: AppConfig, alpha: Domain, binding_factory, mint: Callable[..., str]
    ) -> None:
        connector = InMemoryConnector()
        first = await create_app(app_config, connector)
        first.admin.onboard_domain(alpha, [binding_factory("alpha")])
        session = await first.auth.login(mint())
        lease = (await first.broker.issue(session.token, "alpha-app")).lease

        second = await create_app(app_config, connector)

        assert second.registry.get_domain("alpha").domain_id == "alpha"
        assert second.sessions.lookup(session.token).domain_id == "alpha"
        assert second.broker.get_lease(lease.lease_id).state == LeaseState.ACTIVE

    @pytest.mark.asyncio
    async def test_running_starts_and_stops_background_tasks(self, app_config: AppConfig) -> None:
        app = await create_app(app_config, InMemoryConnector())

        async def _run() -> None:
            async with app.running():
                await asyncio.sleep(0.1)

        await asyncio.wait_for(_run(), timeout=5)
        assert len(app.verifier.key_caches) == 1

    @pytest.mark.asyncio
    async def test_unreadable_keys_stop_startup(self, tmp_path: Path) -> None:
        config = AppConfig.model_validate(
            {
                "logging": {"log_dir": str(tmp_path / "logs")},
                "state_path": str(tmp_path / "state.json"),
                "trust_domains": [
                    {
                        "issuer": ISSUER,
                        "audiences": [AUDIENCE],
                        "verification": {"kind": "offline", "jwks_file": str(tmp_path / "missing.json")},
                    }
                ],
            }
        )

        with pytest.raises(ConfigurationError, match="Cannot load verification keys"):
            await create_app(config, InMemoryConnector())

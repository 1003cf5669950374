"""Tests for the durable state document.

Tests cover:
- Missing file yields an empty state
- Sections are replaced independently and survive reload
- Owner-only permissions
- Corrupt or incompatible files raise ConfigurationError
- Registry and sessions recover from the store after restart
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from tenant_vault.exceptions import ConfigurationError, SessionRevokedError
from tenant_vault.pdp.resolver import PolicyResolver
from tenant_vault.pips.auth.session import SessionIssuer
from tenant_vault.state.models import Domain
from tenant_vault.state.registry import TenantRegistry
from tenant_vault.state.store import StateStore


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "state.json"


class TestStateStore:
    """Load and update behaviour."""

    def test_missing_file_is_empty(self, state_path: Path) -> None:
        state = StateStore(state_path).load()
        assert state.domains == []
        assert state.leases == []
        assert not state_path.exists()

    def test_update_persists_section(self, state_path: Path) -> None:
        store = StateStore(state_path)
        store.update(domains=[Domain(domain_id="alpha")])

        reloaded = StateStore(state_path).load()
        assert [d.domain_id for d in reloaded.domains] == ["alpha"]
        assert reloaded.updated_at is not None

    def test_update_keeps_other_sections(self, state_path: Path) -> None:
        store = StateStore(state_path)
        store.update(domains=[Domain(domain_id="alpha")])
        store.update(domains=[Domain(domain_id="alpha")], bindings=[])
        store.update(sessions=[])
        assert [d.domain_id for d in StateStore(state_path).load().domains] == ["alpha"]

    def test_unknown_section_rejected(self, state_path: Path) -> None:
        with pytest.raises(ValueError, match="Unknown state sections"):
            StateStore(state_path).update(secrets=[])

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_owner_only(self, state_path: Path) -> None:
        StateStore(state_path).update(domains=[])
        assert state_path.stat().st_mode & 0o777 == 0o600

    def test_memory_store_never_writes(self, tmp_path: Path) -> None:
        store = StateStore(None)
        store.update(domains=[Domain(domain_id="alpha")])
        assert not store.is_durable
        assert [d.domain_id for d in store.load().domains] == ["alpha"]
        assert list(tmp_path.iterdir()) == []

    def test_corrupt_file(self, state_path: Path) -> None:
        state_path.parent.mkdir(parents=True)
        state_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            StateStore(state_path).load()

    def test_invalid_content(self, state_path: Path) -> None:
        state_path.parent.mkdir(parents=True)
        state_path.write_text(json.dumps({"domains": [{"domain_id": "NOT VALID"}]}), encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid state file"):
            StateStore(state_path).load()

    def test_unsupported_version(self, state_path: Path) -> None:
        state_path.parent.mkdir(parents=True)
        state_path.write_text(json.dumps({"version": 99}), encoding="utf-8")
        with pytest.raises(ConfigurationError, match="schema version"):
            StateStore(state_path).load()


class TestRecovery:
    """Components rebuild their state from the store after a restart."""

    def test_registry_survives_restart(self, state_path: Path, alpha: Domain, binding_factory) -> None:
        TenantRegistry(StateStore(state_path)).onboard(alpha, [binding_factory("alpha")])

        restarted = TenantRegistry(StateStore(state_path))
        snapshot = restarted.snapshot()
        assert snapshot.get_domain("alpha").database_roles == frozenset({"alpha-app"})
        assert [b.name for b in snapshot.bindings] == ["alpha-workloads"]

    def test_sessions_survive_restart(self, state_path: Path, alpha: Domain, binding_factory, clock) -> None:
        store = StateStore(state_path)
        registry = TenantRegistry(store)
        registry.onboard(alpha, [binding_factory("alpha")])
        sessions = SessionIssuer(store, clock=clock)
        live = sessions.issue(alpha, PolicyResolver(registry).resolve("alpha"))
        revoked = sessions.issue(alpha, PolicyResolver(registry).resolve("alpha"))
        sessions.revoke(revoked.token)

        restarted = SessionIssuer(StateStore(state_path), clock=clock)
        assert restarted.lookup(live.token).domain_id == "alpha"
        with pytest.raises(SessionRevokedError):
            restarted.lookup(revoked.token)

    def test_token_never_persisted(self, state_path: Path, alpha: Domain, clock) -> None:
        store = StateStore(state_path)
        registry = TenantRegistry(store)
        registry.put_domain(alpha)
        session = SessionIssuer(store, clock=clock).issue(alpha, PolicyResolver(registry).resolve("alpha"))

        raw = state_path.read_text(encoding="utf-8")
        assert session.token not in raw
        assert session.accessor in raw

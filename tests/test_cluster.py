"""Tests for cluster connection info from provisioning output."""

from __future__ import annotations

import pytest

from tenant_vault.cluster import ClusterConnection
from tenant_vault.exceptions import ConfigurationError


class TestClusterConnection:
    """Parsing and exposing the endpoint and admin token."""

    def test_from_outputs(self) -> None:
        conn = ClusterConnection.from_outputs(
            {
                "vault_public_endpoint": "https://vault.example.com:8200/",
                "vault_admin_token": "hvs.admin",
                "unrelated": "ignored",
            }
        )
        assert conn.endpoint == "https://vault.example.com:8200"
        assert conn.host == "vault.example.com"
        assert conn.as_env() == {"VAULT_ADDR": "https://vault.example.com:8200", "VAULT_TOKEN": "hvs.admin"}

    def test_token_hidden_from_repr(self) -> None:
        conn = ClusterConnection(endpoint="https://vault.example.com", admin_token="hvs.admin")
        assert "hvs.admin" not in repr(conn)

    @pytest.mark.parametrize(
        "outputs",
        [
            {},
            {"vault_public_endpoint": "https://vault.example.com"},
            {"vault_admin_token": "hvs.admin"},
            {"vault_public_endpoint": "", "vault_admin_token": "hvs.admin"},
        ],
    )
    def test_missing_outputs(self, outputs: dict) -> None:
        with pytest.raises(ConfigurationError, match="missing"):
            ClusterConnection.from_outputs(outputs)

    @pytest.mark.parametrize("endpoint", ["vault.example.com", "ftp://vault.example.com", "https://"])
    def test_invalid_endpoint(self, endpoint: str) -> None:
        with pytest.raises(ConfigurationError, match="http"):
            ClusterConnection.from_outputs({"vault_public_endpoint": endpoint, "vault_admin_token": "hvs.admin"})

"""Tests for configuration models and load/save behavior."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from tenant_vault.config import (
    AppConfig,
    LeaseConfig,
    LiveVerification,
    LoggingConfig,
    OfflineVerification,
    SessionConfig,
    TrustDomainConfig,
)
from tenant_vault.exceptions import ConfigurationError

REVIEW_URL = "https://kubernetes.default.svc/apis/authentication.k8s.io/v1/tokenreviews"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def valid_config_dict() -> dict:
    """Configuration with one live and one offline trust domain."""
    return {
        "logging": {"log_dir": "/tmp/logs"},
        "trust_domains": [
            {
                "issuer": "https://kubernetes.default.svc",
                "audiences": ["vault"],
                "verification": {"kind": "live", "review_url": REVIEW_URL, "timeout_seconds": 2},
            },
            {
                "issuer": "https://oidc.cluster.example.com",
                "audiences": ["vault"],
                "verification": {"kind": "offline", "jwks_uri": "https://oidc.cluster.example.com/jwks"},
            },
        ],
        "session": {"ttl_seconds": 600, "max_ttl_seconds": 7200},
    }


@pytest.fixture
def config_file(tmp_path: Path, valid_config_dict: dict) -> Path:
    """Write valid config to temp file and return path."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(valid_config_dict))
    return path


# ============================================================================
# Trust domains
# ============================================================================


class TestTrustDomainConfig:
    """Verification mode is a tagged variant."""

    def test_discriminates_live(self, valid_config_dict: dict):
        # Act
        config = AppConfig.model_validate(valid_config_dict)

        # Assert
        assert isinstance(config.trust_domains[0].verification, LiveVerification)
        assert config.trust_domains[0].verification.timeout_seconds == 2
        assert isinstance(config.trust_domains[1].verification, OfflineVerification)

    def test_unknown_kind_rejected(self):
        # Act & Assert
        with pytest.raises(ValidationError):
            TrustDomainConfig.model_validate(
                {"issuer": "https://x", "audiences": ["vault"], "verification": {"kind": "trust-me"}}
            )

    def test_requires_audience(self):
        # Act & Assert
        with pytest.raises(ValidationError):
            TrustDomainConfig(issuer="https://x", audiences=[], verification=LiveVerification(review_url=REVIEW_URL))

    def test_default_namespace_claim(self):
        # Act
        config = TrustDomainConfig(
            issuer="https://x", audiences=["vault"], verification=LiveVerification(review_url=REVIEW_URL)
        )

        # Assert
        assert config.namespace_claim == "kubernetes.io/namespace"

    @pytest.mark.parametrize("timeout", [0, 0.05, 31, -1])
    def test_live_timeout_bounded(self, timeout: float):
        # Act & Assert
        with pytest.raises(ValidationError):
            LiveVerification(review_url=REVIEW_URL, timeout_seconds=timeout)

    @pytest.mark.parametrize(
        "sources",
        [
            {},
            {"jwks_uri": "https://x/jwks", "jwks_file": "/etc/jwks.json"},
            {"jwks": {"keys": []}, "jwks_uri": "https://x/jwks"},
        ],
    )
    def test_offline_needs_exactly_one_source(self, sources: dict):
        # Act & Assert
        with pytest.raises(ValidationError, match="exactly one"):
            OfflineVerification(**sources)

    def test_offline_refresh_interval_minimum(self):
        # Act & Assert
        with pytest.raises(ValidationError):
            OfflineVerification(jwks_uri="https://x/jwks", refresh_interval_seconds=10)

    def test_duplicate_issuers_rejected(self, valid_config_dict: dict):
        # Arrange
        valid_config_dict["trust_domains"].append(dict(valid_config_dict["trust_domains"][0]))

        # Act & Assert
        with pytest.raises(ValidationError, match="duplicate trust domain issuers"):
            AppConfig.model_validate(valid_config_dict)

    def test_get_trust_domain(self, valid_config_dict: dict):
        # Act
        config = AppConfig.model_validate(valid_config_dict)

        # Assert
        assert config.get_trust_domain("https://oidc.cluster.example.com") is config.trust_domains[1]
        assert config.get_trust_domain("https://unknown") is None


# ============================================================================
# Lifetimes and logging
# ============================================================================


class TestLifetimes:
    """Session and lease TTL bounds."""

    def test_defaults(self):
        # Act
        session = SessionConfig()
        lease = LeaseConfig()

        # Assert
        assert (session.ttl_seconds, session.max_ttl_seconds) == (3600, 86400)
        assert (lease.default_ttl_seconds, lease.max_ttl_seconds) == (3600, 86400)
        assert lease.sweep_interval_seconds == 30.0

    def test_session_ttl_cannot_exceed_max(self):
        # Act & Assert
        with pytest.raises(ValidationError, match="cannot exceed"):
            SessionConfig(ttl_seconds=7200, max_ttl_seconds=3600)

    def test_lease_ttl_cannot_exceed_max(self):
        # Act & Assert
        with pytest.raises(ValidationError, match="cannot exceed"):
            LeaseConfig(default_ttl_seconds=500, max_ttl_seconds=300)

    @pytest.mark.parametrize("value", [0, -1])
    def test_positive_values(self, value: int):
        # Act & Assert
        with pytest.raises(ValidationError):
            LeaseConfig(sweep_interval_seconds=value)

    @pytest.mark.parametrize("invalid_level", ["WARNING", "ERROR", "debug", ""])
    def test_rejects_invalid_log_level(self, invalid_level: str):
        # Act & Assert
        with pytest.raises(ValidationError):
            LoggingConfig(log_dir="/tmp", log_level=invalid_level)


# ============================================================================
# Load / save
# ============================================================================


class TestLoadSave:
    """AppConfig file round trip and error reporting."""

    def test_load_valid_file(self, config_file: Path):
        # Act
        config = AppConfig.load_from_files(config_file)

        # Assert
        assert config.session.ttl_seconds == 600
        assert len(config.trust_domains) == 2

    def test_save_then_load(self, tmp_path: Path, valid_config_dict: dict):
        # Arrange
        path = tmp_path / "nested" / "config.json"
        original = AppConfig.model_validate(valid_config_dict)

        # Act
        original.save_to_file(path)
        loaded = AppConfig.load_from_files(path)

        # Assert
        assert loaded == original

    def test_missing_file(self, tmp_path: Path):
        # Act & Assert
        with pytest.raises(ConfigurationError, match="not found"):
            AppConfig.load_from_files(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path):
        # Arrange
        path = tmp_path / "config.json"
        path.write_text("{not json")

        # Act & Assert
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            AppConfig.load_from_files(path)

    def test_validation_error_names_issuer(self, tmp_path: Path, valid_config_dict: dict):
        # Arrange
        valid_config_dict["trust_domains"][1]["audiences"] = []
        path = tmp_path / "config.json"
        path.write_text(json.dumps(valid_config_dict))

        # Act & Assert
        with pytest.raises(ConfigurationError, match="issuer: https://oidc.cluster.example.com"):
            AppConfig.load_from_files(path)

"""Application configuration for tenant-vault.

Defines configuration models for trust domains (identity verification),
session and lease lifetimes, logging, and durable state. Config is stored
as JSON at the OS-appropriate location (via click.get_app_dir).

Example usage:
    # Load from config file
    config = AppConfig.load_from_files(config_path)

    # Save new configuration
    config.save_to_file(config_path)
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_LOG_DIR",
    "AppConfig",
    "LeaseConfig",
    "LiveVerification",
    "LoggingConfig",
    "OfflineVerification",
    "SessionConfig",
    "TrustDomainConfig",
    "VerificationMode",
    "default_config_path",
]

import json
import os
import sys
from pathlib import Path
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, Field, model_validator

from tenant_vault.constants import (
    DEFAULT_JWKS_REFRESH_INTERVAL_SECONDS,
    DEFAULT_LEASE_MAX_TTL_SECONDS,
    DEFAULT_LEASE_TTL_SECONDS,
    DEFAULT_NAMESPACE_CLAIM,
    DEFAULT_SESSION_MAX_TTL_SECONDS,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TOKEN_REVIEW_TIMEOUT_SECONDS,
    MAX_TOKEN_REVIEW_TIMEOUT_SECONDS,
    MIN_JWKS_REFRESH_INTERVAL_SECONDS,
    MIN_TOKEN_REVIEW_TIMEOUT_SECONDS,
)
from tenant_vault.exceptions import ConfigurationError
from tenant_vault.utils.file_helpers import (
    get_app_dir,
    load_validated_json,
    require_file_exists,
    set_secure_permissions,
)


# =============================================================================
# Platform-specific defaults
# =============================================================================


def _get_platform_log_dir() -> str:
    """Get platform-appropriate base log directory following OS conventions.

    Platform conventions:
        - macOS: ~/Library/Logs
        - Linux: ~/.local/state (XDG Base Directory Specification)
        - Windows: ~/AppData/Local
    """
    if sys.platform == "darwin":
        return "~/Library/Logs"
    elif sys.platform == "win32":
        return "~/AppData/Local"
    else:
        return os.environ.get("XDG_STATE_HOME", "~/.local/state")


DEFAULT_LOG_DIR = _get_platform_log_dir()


def default_config_path() -> Path:
    """Get the default config file location inside the app directory."""
    return get_app_dir() / "config.json"


# =============================================================================
# Identity verification (tagged variant per trust domain)
# =============================================================================


class LiveVerification(BaseModel):
    """Verify each assertion by calling a token-review authority.

    Attributes:
        kind: Discriminator, always "live".
        review_url: TokenReview endpoint
            (e.g. "https://kubernetes.default.svc/apis/authentication.k8s.io/v1/tokenreviews").
        timeout_seconds: Hard bound on one review call.
        reviewer_token_path: File holding the bearer token the verifier uses
            to call the review API. None sends no Authorization header.
        ca_bundle_path: CA bundle for the review endpoint. None uses system CAs.
    """

    kind: Literal["live"] = "live"
    review_url: str = Field(min_length=1)
    timeout_seconds: float = Field(
        default=DEFAULT_TOKEN_REVIEW_TIMEOUT_SECONDS,
        ge=MIN_TOKEN_REVIEW_TIMEOUT_SECONDS,
        le=MAX_TOKEN_REVIEW_TIMEOUT_SECONDS,
    )
    reviewer_token_path: str | None = None
    ca_bundle_path: str | None = None


class OfflineVerification(BaseModel):
    """Verify signatures against locally cached public keys.

    Exactly one key source must be given. Keys are loaded at configuration
    time and refreshed on refresh_interval_seconds only.

    Attributes:
        kind: Discriminator, always "offline".
        jwks_uri: URL to fetch the key set from.
        jwks: Inline key set ({"keys": [...]}) pre-imported by an operator.
        jwks_file: Path to a key set file.
        refresh_interval_seconds: Refresh cadence for jwks_uri sources.
    """

    kind: Literal["offline"] = "offline"
    jwks_uri: str | None = None
    jwks: dict[str, Any] | None = None
    jwks_file: str | None = None
    refresh_interval_seconds: int = Field(
        default=DEFAULT_JWKS_REFRESH_INTERVAL_SECONDS,
        ge=MIN_JWKS_REFRESH_INTERVAL_SECONDS,
    )

    @model_validator(mode="after")
    def exactly_one_source(self) -> Self:
        sources = [s for s in (self.jwks_uri, self.jwks, self.jwks_file) if s is not None]
        if len(sources) != 1:
            raise ValueError("exactly one of jwks_uri, jwks or jwks_file must be set")
        return self


VerificationMode = Annotated[LiveVerification | OfflineVerification, Field(discriminator="kind")]


class TrustDomainConfig(BaseModel):
    """A federated-identity issuer the service accepts assertions from.

    Attributes:
        issuer: Expected "iss" claim.
        audiences: Audiences accepted from this issuer.
        namespace_claim: Claim carrying the workload namespace.
        verification: Live or offline verification settings.
    """

    issuer: str = Field(min_length=1)
    audiences: list[str] = Field(min_length=1)
    namespace_claim: str = DEFAULT_NAMESPACE_CLAIM
    verification: VerificationMode


# =============================================================================
# Lifetimes
# =============================================================================


class SessionConfig(BaseModel):
    """Session lifetime settings.

    Attributes:
        ttl_seconds: Initial lifetime and renewal increment.
        max_ttl_seconds: Ceiling on cumulative lifetime.
        renewable: Whether sessions may be renewed at all.
    """

    ttl_seconds: int = Field(default=DEFAULT_SESSION_TTL_SECONDS, gt=0)
    max_ttl_seconds: int = Field(default=DEFAULT_SESSION_MAX_TTL_SECONDS, gt=0)
    renewable: bool = True

    @model_validator(mode="after")
    def ttl_within_max(self) -> Self:
        if self.ttl_seconds > self.max_ttl_seconds:
            raise ValueError("ttl_seconds cannot exceed max_ttl_seconds")
        return self


class LeaseConfig(BaseModel):
    """Dynamic credential lease settings.

    Attributes:
        default_ttl_seconds: Initial lease lifetime and renewal increment.
        max_ttl_seconds: Ceiling on cumulative lease lifetime.
        sweep_interval_seconds: How often the background sweep runs.
    """

    default_ttl_seconds: int = Field(default=DEFAULT_LEASE_TTL_SECONDS, gt=0)
    max_ttl_seconds: int = Field(default=DEFAULT_LEASE_MAX_TTL_SECONDS, gt=0)
    sweep_interval_seconds: float = Field(default=DEFAULT_SWEEP_INTERVAL_SECONDS, gt=0)

    @model_validator(mode="after")
    def ttl_within_max(self) -> Self:
        if self.default_ttl_seconds > self.max_ttl_seconds:
            raise ValueError("default_ttl_seconds cannot exceed max_ttl_seconds")
        return self


# =============================================================================
# Logging
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    Logs are stored under <log_dir>/tenant-vault/:
        <log_dir>/
        └── tenant-vault/
            ├── system/
            │   └── system.jsonl      # WARNING and above
            └── audit/                # Always enabled
                ├── auth.jsonl
                └── leases.jsonl

    Attributes:
        log_dir: Base directory for logs.
        log_level: Console level for the system logger.
    """

    log_dir: str = Field(default=DEFAULT_LOG_DIR, min_length=1)
    log_level: Literal["DEBUG", "INFO"] = "INFO"


# =============================================================================
# Application
# =============================================================================


class AppConfig(BaseModel):
    """Main application configuration for tenant-vault.

    Attributes:
        trust_domains: Accepted identity issuers. Issuers must be unique.
        session: Session lifetime settings.
        lease: Dynamic credential lease settings.
        logging: Log locations and level.
        state_path: State document location. None uses the app directory.
    """

    trust_domains: list[TrustDomainConfig] = Field(default_factory=list)
    session: SessionConfig = Field(default_factory=SessionConfig)
    lease: LeaseConfig = Field(default_factory=LeaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state_path: str | None = None

    @model_validator(mode="after")
    def unique_issuers(self) -> Self:
        issuers = [td.issuer for td in self.trust_domains]
        duplicates = sorted({i for i in issuers if issuers.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate trust domain issuers: {duplicates}")
        return self

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file.

        Creates parent directories if they don't exist.
        Sets secure permissions (0o700) on the config directory.

        Args:
            config_path: Path where the config JSON file should be saved.
        """
        config_path.parent.mkdir(parents=True, exist_ok=True)
        set_secure_permissions(config_path.parent, is_directory=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

        set_secure_permissions(config_path)

    @classmethod
    def load_from_files(cls, config_path: Path) -> "AppConfig":
        """Load configuration from JSON file.

        Args:
            config_path: Path to the config JSON file.

        Returns:
            AppConfig instance with loaded configuration.

        Raises:
            ConfigurationError: If the file is missing, not JSON, or fails
                validation.
        """
        try:
            require_file_exists(config_path, file_type="configuration")
            return load_validated_json(
                config_path,
                cls,
                file_type="config",
                recovery_hint="Fix the listed fields and restart.",
                encoding="utf-8",
            )
        except (FileNotFoundError, ValueError) as e:
            raise ConfigurationError(str(e)) from e

    def get_trust_domain(self, issuer: str) -> TrustDomainConfig | None:
        """Find the trust domain for an issuer."""
        for td in self.trust_domains:
            if td.issuer == issuer:
                return td
        return None

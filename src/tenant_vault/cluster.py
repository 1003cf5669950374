"""Connection info for a provisioned secrets cluster.

The provisioning API reports a public endpoint and an admin token. This
module turns that output into the environment the cluster's clients expect.
The admin token never appears in repr or logs.
"""

from __future__ import annotations

__all__ = [
    "ClusterConnection",
]

from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tenant_vault.exceptions import ConfigurationError

# Keys in the provisioning API's output mapping
_ENDPOINT_KEY = "vault_public_endpoint"
_TOKEN_KEY = "vault_admin_token"


class ClusterConnection(BaseModel):
    """Endpoint and admin credential of a provisioned cluster.

    Attributes:
        endpoint: Public https endpoint, e.g. "https://vault.example.com:8200".
        admin_token: Admin token (hidden from repr).
    """

    endpoint: str = Field(min_length=1)
    admin_token: str = Field(min_length=1, repr=False)

    model_config = ConfigDict(frozen=True)

    @field_validator("endpoint", mode="after")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme not in ("https", "http") or not parts.hostname:
            raise ValueError(f"Cluster endpoint must be an http(s) URL: {v!r}")
        return v.rstrip("/")

    @classmethod
    def from_outputs(cls, outputs: dict[str, Any]) -> "ClusterConnection":
        """Build from the provisioning API's output mapping.

        Raises:
            ConfigurationError: If the endpoint or token is missing or invalid.
        """
        endpoint = outputs.get(_ENDPOINT_KEY)
        token = outputs.get(_TOKEN_KEY)
        if not endpoint or not token:
            raise ConfigurationError(
                f"Provisioning output is missing {_ENDPOINT_KEY!r} or {_TOKEN_KEY!r}"
            )
        try:
            return cls(endpoint=endpoint, admin_token=token)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid cluster connection info: {e.errors()[0]['msg']}") from e

    @property
    def host(self) -> str:
        """Hostname of the endpoint, without scheme or port."""
        return urlsplit(self.endpoint).hostname or ""

    def as_env(self) -> dict[str, str]:
        """Environment variables for cluster clients."""
        return {"VAULT_ADDR": self.endpoint, "VAULT_TOKEN": self.admin_token}

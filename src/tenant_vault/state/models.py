"""Tenant registry records: domains and identity bindings.

A Domain is a tenant boundary with its own secret prefixes, dynamic
credential roles and extra capability rules. An IdentityBinding ties a
federated-identity trust domain (issuer + audiences + subject pattern) to
exactly one Domain.
"""

from __future__ import annotations

__all__ = [
    "Domain",
    "IdentityBinding",
]

import re
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tenant_vault.constants import KV_MOUNT
from tenant_vault.pdp.matcher import normalize_path
from tenant_vault.pdp.policy import CapabilityRule

# DNS-1123 label, the same shape Kubernetes requires for namespaces
_LABEL_PATTERN = r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$"


class Domain(BaseModel):
    """A named tenant boundary.

    Attributes:
        domain_id: Unique identifier (DNS-1123 label, e.g. "alpha").
        description: Human-readable description.
        namespace: Workload namespace the domain's identities live in.
            Defaults to domain_id.
        secret_path_prefixes: KV prefixes this domain may touch.
            Defaults to {"secret/<domain_id>"}.
        database_roles: Dynamic credential roles this domain may request.
        policy_rule_set: Extra capability rules, in order.
    """

    domain_id: str = Field(pattern=_LABEL_PATTERN)
    description: str = ""
    namespace: str = Field(default="", pattern=r"^$|" + _LABEL_PATTERN)
    secret_path_prefixes: frozenset[str] = frozenset()
    database_roles: frozenset[str] = frozenset()
    policy_rule_set: tuple[CapabilityRule, ...] = ()

    model_config = ConfigDict(frozen=True)

    @field_validator("secret_path_prefixes", mode="after")
    @classmethod
    def normalize_prefixes(cls, v: frozenset[str]) -> frozenset[str]:
        """Normalize prefixes; wildcards are added by the resolver, not here."""
        normalized = set()
        for prefix in v:
            if "*" in prefix:
                raise ValueError(f"Secret prefixes cannot contain wildcards: {prefix!r}")
            normalized.add(normalize_path(prefix))
        return frozenset(normalized)

    @field_validator("database_roles", mode="after")
    @classmethod
    def validate_roles(cls, v: frozenset[str]) -> frozenset[str]:
        for role in v:
            if not re.match(r"^[A-Za-z0-9_-]+$", role):
                raise ValueError(f"Invalid database role name: {role!r}")
        return v

    @model_validator(mode="after")
    def apply_defaults(self) -> Self:
        """Fill in namespace and default secret prefix from domain_id."""
        # Model is frozen, use object.__setattr__
        if not self.namespace:
            object.__setattr__(self, "namespace", self.domain_id)
        if not self.secret_path_prefixes:
            object.__setattr__(self, "secret_path_prefixes", frozenset({f"{KV_MOUNT}/{self.domain_id}"}))
        return self

    def owns_path(self, path: str) -> bool:
        """Check whether a normalized path lies under one of this domain's prefixes."""
        return any(path == p or path.startswith(p + "/") for p in self.secret_path_prefixes)


class IdentityBinding(BaseModel):
    """Association between a trust domain and one Domain.

    Attributes:
        name: Unique binding name (e.g. "alpha-workloads").
        domain_id: Domain that matching assertions authenticate as.
        issuer: Required "iss" claim.
        bound_audiences: Accepted audiences; the assertion must carry at least one.
        bound_subject_pattern: "sub" pattern, exact or trailing "*"
            (e.g. "system:serviceaccount:alpha:*").
        bound_claims: Additional claim -> expected value equalities.
    """

    name: str = Field(min_length=1)
    domain_id: str = Field(min_length=1)
    issuer: str = Field(min_length=1)
    bound_audiences: frozenset[str] = Field(min_length=1)
    bound_subject_pattern: str = Field(min_length=1)
    bound_claims: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("bound_subject_pattern", mode="after")
    @classmethod
    def validate_subject_pattern(cls, v: str) -> str:
        """Only a trailing wildcard is allowed, and the namespace must be literal."""
        if "*" in v[:-1]:
            raise ValueError(f"Wildcard '*' is only allowed as the final character: {v!r}")
        segments = v.split(":")
        if len(segments) < 2:
            raise ValueError(f"Subject pattern must look like '<class>:<namespace>:<name>': {v!r}")
        if not segments[-2] or "*" in segments[-2]:
            raise ValueError(f"Subject pattern must name a literal namespace: {v!r}")
        return v

    @property
    def namespace_component(self) -> str:
        """Namespace segment of the subject pattern (the one before the last segment)."""
        return self.bound_subject_pattern.split(":")[-2]

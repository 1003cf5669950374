"""Rule fragments composed into a domain's resolved policy.

Each fragment is a plain function returning capability rules. The
resolver concatenates them in a fixed order:

    1. KV access for each of the domain's secret prefixes
    2. Dynamic credential access for each of the domain's database roles
    3. Self-service token and lease management
    4. The domain's own explicit rules
    5. Isolation denies for every other domain's prefixes and roles

Example for domain "alpha" next to domain "beta":

    secret/alpha/*                [create, read, update, delete, list]
    secret/alpha                  [list]
    database/creds/alpha-app      [read]
    auth/token/renew-self         [update]
    ...
    secret/beta/*                 [deny]
    secret/beta                   [deny]
    database/creds/beta-app       [deny]
"""

from __future__ import annotations

__all__ = [
    "database_fragment",
    "isolation_fragment",
    "kv_fragment",
    "self_service_fragment",
]

from collections.abc import Iterable

from tenant_vault.constants import DATABASE_CREDS_PATH, SELF_SERVICE_PATHS
from tenant_vault.pdp.policy import ALLOW_OPERATIONS, CapabilityRule
from tenant_vault.state.models import Domain


def kv_fragment(domain: Domain) -> list[CapabilityRule]:
    """Full CRUDL under each prefix, plus list on the prefix itself."""
    rules: list[CapabilityRule] = []
    for prefix in sorted(domain.secret_path_prefixes):
        rules.append(
            CapabilityRule(
                path_pattern=f"{prefix}/*",
                operations=ALLOW_OPERATIONS,
                description=f"KV access for {domain.domain_id}",
            )
        )
        rules.append(
            CapabilityRule(
                path_pattern=prefix,
                operations=frozenset({"list"}),
                description=f"KV listing for {domain.domain_id}",
            )
        )
    return rules


def database_fragment(domain: Domain) -> list[CapabilityRule]:
    """Read on each role's credential path."""
    return [
        CapabilityRule(
            path_pattern=f"{DATABASE_CREDS_PATH}/{role}",
            operations=frozenset({"read"}),
            description=f"Dynamic credentials for {domain.domain_id}",
        )
        for role in sorted(domain.database_roles)
    ]


def self_service_fragment() -> list[CapabilityRule]:
    """Token lookup/renew/revoke and lease renew/revoke on the caller's own objects."""
    return [
        CapabilityRule(path_pattern=path, operations=frozenset(ops), description="Self-service")
        for path, ops in SELF_SERVICE_PATHS.items()
    ]


def isolation_fragment(domain: Domain, others: Iterable[Domain]) -> list[CapabilityRule]:
    """Explicit denies for every other domain's prefixes and roles.

    Prefixes of different domains never overlap (the registry rejects it),
    so these denies cannot shadow the domain's own grants.
    """
    rules: list[CapabilityRule] = []
    for other in sorted(others, key=lambda d: d.domain_id):
        if other.domain_id == domain.domain_id:
            continue
        for prefix in sorted(other.secret_path_prefixes):
            for pattern in (f"{prefix}/*", prefix):
                rules.append(
                    CapabilityRule(
                        path_pattern=pattern,
                        operations=frozenset({"deny"}),
                        description=f"Isolation from {other.domain_id}",
                    )
                )
        for role in sorted(other.database_roles):
            if role in domain.database_roles:
                continue
            rules.append(
                CapabilityRule(
                    path_pattern=f"{DATABASE_CREDS_PATH}/{role}",
                    operations=frozenset({"deny"}),
                    description=f"Isolation from {other.domain_id}",
                )
            )
    return rules

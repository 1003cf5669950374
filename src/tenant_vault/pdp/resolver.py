"""Policy resolver: domain id -> fully composed rule set.

Resolution reads one registry snapshot, so a concurrent onboarding or
offboarding is either entirely visible or not at all. The result depends
only on snapshot content, which makes it safe to cache per revision.
"""

from __future__ import annotations

__all__ = [
    "PolicyResolver",
]

import logging
import threading

from tenant_vault.constants import APP_NAME
from tenant_vault.pdp.policy import CapabilityRule, ResolvedPolicy
from tenant_vault.pdp.templates import (
    database_fragment,
    isolation_fragment,
    kv_fragment,
    self_service_fragment,
)
from tenant_vault.state.registry import RegistrySnapshot, TenantRegistry

_logger = logging.getLogger(f"{APP_NAME}.pdp.resolver")


class PolicyResolver:
    """Compose and cache resolved policies.

    Usage:
        resolver = PolicyResolver(registry)
        policy = resolver.resolve("alpha")
    """

    def __init__(self, registry: TenantRegistry) -> None:
        self._registry = registry
        self._cache: dict[tuple[int, str], ResolvedPolicy] = {}
        self._cache_revision = -1
        self._lock = threading.Lock()

    def resolve(self, domain_id: str) -> ResolvedPolicy:
        """Resolve a domain's rule set from the current registry snapshot.

        Raises:
            UnknownDomainError: If the domain is not registered.
        """
        return self.resolve_in(self._registry.snapshot(), domain_id)

    def resolve_in(self, snapshot: RegistrySnapshot, domain_id: str) -> ResolvedPolicy:
        """Resolve a domain's rule set from a given snapshot.

        Raises:
            UnknownDomainError: If the domain is not in the snapshot.
        """
        domain = snapshot.get_domain(domain_id)
        key = (snapshot.revision, domain_id)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        rules: list[CapabilityRule] = []
        rules.extend(kv_fragment(domain))
        rules.extend(database_fragment(domain))
        rules.extend(self_service_fragment())
        rules.extend(domain.policy_rule_set)
        rules.extend(isolation_fragment(domain, snapshot.domains.values()))

        policy = ResolvedPolicy(domain_id=domain_id, rules=tuple(rules))

        with self._lock:
            # Older revisions can never be asked for again by new requests
            if snapshot.revision > self._cache_revision:
                self._cache.clear()
                self._cache_revision = snapshot.revision
            if snapshot.revision == self._cache_revision:
                self._cache[key] = policy

        _logger.debug(
            {
                "event": "policy_resolved",
                "message": f"Resolved policy for {domain_id}: {policy.fingerprint}",
                "domain_id": domain_id,
                "revision": snapshot.revision,
                "rules": len(policy.rules),
                "fingerprint": policy.fingerprint,
            }
        )
        return policy

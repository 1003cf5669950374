"""Tenant registry: domains and identity bindings with snapshot reads.

Writers build a complete candidate state, validate it as a whole, persist
it, then atomically swap the snapshot reference. Readers (the policy
resolver and claim binder) take one snapshot and use it for the whole
request, so they never observe a half-applied onboarding or offboarding.
"""

from __future__ import annotations

__all__ = [
    "RegistrySnapshot",
    "TenantRegistry",
]

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from tenant_vault.constants import APP_NAME
from tenant_vault.exceptions import ConfigurationError, InvalidBindingError, UnknownDomainError
from tenant_vault.state.models import Domain, IdentityBinding

if TYPE_CHECKING:
    from tenant_vault.state.store import StateStore

_logger = logging.getLogger(f"{APP_NAME}.state.registry")


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the registry at one revision.

    Attributes:
        revision: Monotonic counter, incremented on every applied change.
        domains: domain_id -> Domain (read-only mapping).
        bindings: All identity bindings, in registration order.
    """

    revision: int = 0
    domains: Mapping[str, Domain] = field(default_factory=lambda: MappingProxyType({}))
    bindings: tuple[IdentityBinding, ...] = ()

    def get_domain(self, domain_id: str) -> Domain:
        """Get a domain by id.

        Raises:
            UnknownDomainError: If the domain is not registered.
        """
        domain = self.domains.get(domain_id)
        if domain is None:
            raise UnknownDomainError(domain_id)
        return domain

    def bindings_for(self, domain_id: str) -> tuple[IdentityBinding, ...]:
        """Get all bindings that authenticate as the given domain."""
        return tuple(b for b in self.bindings if b.domain_id == domain_id)


def _validate(domains: Mapping[str, Domain], bindings: Iterable[IdentityBinding]) -> None:
    """Validate a candidate registry state as a whole.

    Checks:
    - No secret prefix of one domain equals, contains or lies under a
      prefix of another domain
    - No database role is declared by two domains
    - Binding names are unique
    - Every binding references a registered domain
    - Every binding's subject-pattern namespace equals its domain's namespace

    Raises:
        ConfigurationError: On prefix/role/name clashes.
        UnknownDomainError: If a binding references a missing domain.
        InvalidBindingError: If a binding's namespace does not match its domain.
    """
    role_owner: dict[str, str] = {}
    for domain in domains.values():
        # Checked in both directions, so ancestors and descendants both clash
        for prefix in sorted(domain.secret_path_prefixes):
            for other in domains.values():
                if other.domain_id != domain.domain_id and other.owns_path(prefix):
                    raise ConfigurationError(
                        f"Secret prefix {prefix!r} of {domain.domain_id!r} overlaps "
                        f"a prefix of {other.domain_id!r}"
                    )
        for role in domain.database_roles:
            other = role_owner.setdefault(role, domain.domain_id)
            if other != domain.domain_id:
                raise ConfigurationError(
                    f"Database role {role!r} is declared by both {other!r} and {domain.domain_id!r}"
                )

    names: set[str] = set()
    for binding in bindings:
        if binding.name in names:
            raise ConfigurationError(f"Duplicate identity binding name: {binding.name!r}")
        names.add(binding.name)

        domain = domains.get(binding.domain_id)
        if domain is None:
            raise UnknownDomainError(binding.domain_id)
        if binding.namespace_component != domain.namespace:
            raise InvalidBindingError(
                f"Binding {binding.name!r} subject pattern {binding.bound_subject_pattern!r} names "
                f"namespace {binding.namespace_component!r}, but domain {domain.domain_id!r} "
                f"is bound to namespace {domain.namespace!r}"
            )


class TenantRegistry:
    """Registry of domains and identity bindings.

    Thread-safe: writers serialize on an internal lock, readers take
    snapshot() without locking (reference assignment is atomic and the
    snapshot is immutable).

    Usage:
        registry = TenantRegistry(store)
        registry.put_domain(Domain(domain_id="alpha"))
        registry.put_binding(IdentityBinding(name="alpha", domain_id="alpha", ...))
        snap = registry.snapshot()
    """

    def __init__(self, store: "StateStore | None" = None) -> None:
        """Initialize the registry, loading persisted records if a store is given.

        Args:
            store: Durable state store. None keeps the registry in memory only.
        """
        self._store = store
        self._lock = threading.Lock()

        domains: dict[str, Domain] = {}
        bindings: tuple[IdentityBinding, ...] = ()
        if store is not None:
            state = store.load()
            domains = {d.domain_id: d for d in state.domains}
            bindings = tuple(state.bindings)
            _validate(domains, bindings)

        self._snapshot = RegistrySnapshot(
            revision=0,
            domains=MappingProxyType(domains),
            bindings=bindings,
        )

    def snapshot(self) -> RegistrySnapshot:
        """Get the current immutable snapshot."""
        return self._snapshot

    def get_domain(self, domain_id: str) -> Domain:
        """Get a domain from the current snapshot.

        Raises:
            UnknownDomainError: If the domain is not registered.
        """
        return self._snapshot.get_domain(domain_id)

    def put_domain(self, domain: Domain) -> None:
        """Register a new domain or replace an existing one's rule set.

        Raises:
            ConfigurationError: If prefixes or roles clash with another domain.
            InvalidBindingError: If an existing binding no longer matches the
                domain's namespace.
        """
        with self._lock:
            current = self._snapshot
            domains = dict(current.domains)
            existed = domain.domain_id in domains
            domains[domain.domain_id] = domain
            self._apply(domains, current.bindings)

        _logger.info(
            {
                "event": "domain_updated" if existed else "domain_registered",
                "message": f"Domain {'updated' if existed else 'registered'}: {domain.domain_id}",
                "domain_id": domain.domain_id,
                "prefixes": sorted(domain.secret_path_prefixes),
            }
        )

    def remove_domain(self, domain_id: str) -> Domain:
        """Remove a domain and every binding that points at it.

        Returns:
            The removed domain.

        Raises:
            UnknownDomainError: If the domain is not registered.
        """
        with self._lock:
            current = self._snapshot
            removed = current.get_domain(domain_id)
            domains = {k: v for k, v in current.domains.items() if k != domain_id}
            bindings = tuple(b for b in current.bindings if b.domain_id != domain_id)
            self._apply(domains, bindings)

        _logger.info(
            {
                "event": "domain_removed",
                "message": f"Domain removed: {domain_id}",
                "domain_id": domain_id,
            }
        )
        return removed

    def put_binding(self, binding: IdentityBinding) -> None:
        """Register or replace (by name) an identity binding.

        Raises:
            UnknownDomainError: If the binding's domain is not registered.
            InvalidBindingError: If the subject pattern's namespace does not
                equal the domain's namespace.
        """
        with self._lock:
            current = self._snapshot
            bindings = [b for b in current.bindings if b.name != binding.name]
            bindings.append(binding)
            self._apply(dict(current.domains), tuple(bindings))

        _logger.info(
            {
                "event": "binding_registered",
                "message": f"Identity binding registered: {binding.name} -> {binding.domain_id}",
                "binding": binding.name,
                "domain_id": binding.domain_id,
                "issuer": binding.issuer,
            }
        )

    def remove_binding(self, name: str) -> None:
        """Remove an identity binding by name (no-op if absent)."""
        with self._lock:
            current = self._snapshot
            bindings = tuple(b for b in current.bindings if b.name != name)
            if len(bindings) == len(current.bindings):
                return
            self._apply(dict(current.domains), bindings)

    def onboard(self, domain: Domain, bindings: Iterable[IdentityBinding]) -> None:
        """Register a domain together with its bindings in one atomic change.

        Either the domain and all bindings become visible at once, or (on a
        validation error) nothing changes.
        """
        with self._lock:
            current = self._snapshot
            domains = dict(current.domains)
            domains[domain.domain_id] = domain
            new_bindings = list(bindings)
            names = {b.name for b in new_bindings}
            merged = tuple(b for b in current.bindings if b.name not in names) + tuple(new_bindings)
            self._apply(domains, merged)

        _logger.info(
            {
                "event": "domain_onboarded",
                "message": f"Domain onboarded: {domain.domain_id}",
                "domain_id": domain.domain_id,
                "bindings": sorted(names),
            }
        )

    def _apply(self, domains: dict[str, Domain], bindings: tuple[IdentityBinding, ...]) -> None:
        """Validate, persist and publish a new snapshot. Caller holds the lock."""
        _validate(domains, bindings)
        if self._store is not None:
            self._store.update(domains=list(domains.values()), bindings=list(bindings))
        self._snapshot = RegistrySnapshot(
            revision=self._snapshot.revision + 1,
            domains=MappingProxyType(domains),
            bindings=bindings,
        )

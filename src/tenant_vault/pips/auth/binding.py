"""Claim binder: verified claims -> exactly one Domain.

A binding matches when all of these hold:
    - issuer equals the binding's issuer
    - at least one assertion audience is in bound_audiences
    - subject matches bound_subject_pattern (exact, or prefix before a trailing "*")
    - every bound claim is present with exactly the expected value

If the trust domain's namespace claim is present it must also equal the
bound domain's namespace, so an assertion minted for one namespace can
never authenticate as another domain.

Zero matches raise NoMatchingBindingError. More than one match raises
AmbiguousBindingError; the binder never picks one by priority.
"""

from __future__ import annotations

__all__ = [
    "ClaimBinder",
    "binding_matches",
]

import logging

from tenant_vault.constants import APP_NAME
from tenant_vault.exceptions import AmbiguousBindingError, NoMatchingBindingError
from tenant_vault.pdp.matcher import match_prefix_pattern
from tenant_vault.security.auth.verifier import VerifiedClaims, resolve_claim
from tenant_vault.state.models import Domain, IdentityBinding
from tenant_vault.state.registry import RegistrySnapshot

_logger = logging.getLogger(f"{APP_NAME}.pips.auth.binding")


def binding_matches(binding: IdentityBinding, claims: VerifiedClaims, domain: Domain | None = None) -> bool:
    """Check all of a binding's predicates against verified claims.

    Args:
        binding: Candidate binding.
        claims: Verified claims.
        domain: The binding's domain. When given, a present namespace claim
            must equal the domain's namespace.
    """
    if claims.issuer != binding.issuer:
        return False
    if not binding.bound_audiences.intersection(claims.audiences):
        return False
    if not match_prefix_pattern(binding.bound_subject_pattern, claims.subject):
        return False
    for name, expected in binding.bound_claims.items():
        if resolve_claim(claims.claims, name) != expected:
            return False
    if domain is not None and claims.namespace is not None and claims.namespace != domain.namespace:
        return False
    return True


class ClaimBinder:
    """Bind verified claims to a domain using a registry snapshot.

    Usage:
        binder = ClaimBinder()
        domain = binder.bind(claims, registry.snapshot())
    """

    def bind(self, claims: VerifiedClaims, snapshot: RegistrySnapshot) -> Domain:
        """Find the single domain the claims bind to.

        Args:
            claims: Verified claims.
            snapshot: Registry snapshot to read bindings and domains from.

        Returns:
            The bound Domain.

        Raises:
            NoMatchingBindingError: If no binding matches.
            AmbiguousBindingError: If more than one binding matches.
        """
        matches: list[IdentityBinding] = []
        for binding in snapshot.bindings:
            domain = snapshot.domains.get(binding.domain_id)
            if domain is None:
                continue
            if binding_matches(binding, claims, domain):
                matches.append(binding)

        if not matches:
            raise NoMatchingBindingError(f"no identity binding matches issuer {claims.issuer!r}")

        if len(matches) > 1:
            names = sorted(b.name for b in matches)
            _logger.error(
                {
                    "event": "ambiguous_binding",
                    "message": f"Assertion matches {len(names)} identity bindings: {', '.join(names)}",
                    "issuer": claims.issuer,
                    "candidates": names,
                }
            )
            raise AmbiguousBindingError(
                f"assertion matches {len(names)} identity bindings",
                candidates=names,
            )

        return snapshot.domains[matches[0].domain_id]

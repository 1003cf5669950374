"""Shared fixtures: a controllable clock, two tenant domains, and a signing key.

The two-domain setup ("alpha" and "beta") is the baseline for every
isolation test: each domain owns secret/<id> and one database role.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from tenant_vault.config import OfflineVerification, TrustDomainConfig
from tenant_vault.pdp.resolver import PolicyResolver
from tenant_vault.pips.auth.session import SessionIssuer
from tenant_vault.state.models import Domain, IdentityBinding
from tenant_vault.state.registry import TenantRegistry

ISSUER = "https://oidc.cluster.example.com"
AUDIENCE = "vault"
KEY_ID = "cluster-key-1"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ============================================================================
# Time
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at 2026-01-01T12:00:00Z."""
    return FakeClock()


# ============================================================================
# Tenants
# ============================================================================


@pytest.fixture
def alpha() -> Domain:
    return Domain(domain_id="alpha", description="Team alpha", database_roles=frozenset({"alpha-app"}))


@pytest.fixture
def beta() -> Domain:
    return Domain(domain_id="beta", description="Team beta", database_roles=frozenset({"beta-app"}))


def make_binding(domain_id: str, issuer: str = ISSUER, **overrides: Any) -> IdentityBinding:
    fields: dict[str, Any] = {
        "name": f"{domain_id}-workloads",
        "domain_id": domain_id,
        "issuer": issuer,
        "bound_audiences": frozenset({AUDIENCE}),
        "bound_subject_pattern": f"system:serviceaccount:{domain_id}:*",
    }
    fields.update(overrides)
    return IdentityBinding(**fields)


@pytest.fixture
def binding_factory() -> Callable[..., IdentityBinding]:
    """Build a binding for a domain; keyword arguments override fields."""
    return make_binding


@pytest.fixture
def registry(alpha: Domain, beta: Domain) -> TenantRegistry:
    """In-memory registry with alpha and beta onboarded."""
    registry = TenantRegistry()
    registry.onboard(alpha, [make_binding("alpha")])
    registry.onboard(beta, [make_binding("beta")])
    return registry


@pytest.fixture
def resolver(registry: TenantRegistry) -> PolicyResolver:
    return PolicyResolver(registry)


@pytest.fixture
def sessions(clock: FakeClock) -> SessionIssuer:
    """In-memory session issuer on the fake clock."""
    return SessionIssuer(clock=clock)


@pytest.fixture
def token_for(
    registry: TenantRegistry, resolver: PolicyResolver, sessions: SessionIssuer
) -> Callable[[str], str]:
    """Issue a session for a domain and return its bearer token."""

    def _issue(domain_id: str) -> str:
        domain = registry.get_domain(domain_id)
        session = sessions.issue(domain, resolver.resolve(domain_id), subject=f"system:serviceaccount:{domain_id}:app")
        return session.token

    return _issue


# ============================================================================
# Signing keys and assertions
# ============================================================================


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key the test cluster signs assertions with."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks(rsa_private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    """Public key set with KEY_ID, as an operator would pre-import it."""
    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_private_key.public_key()))
    jwk.update({"kid": KEY_ID, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


@pytest.fixture
def offline_trust_domain(jwks: dict[str, Any]) -> TrustDomainConfig:
    return TrustDomainConfig(
        issuer=ISSUER,
        audiences=[AUDIENCE],
        verification=OfflineVerification(jwks=jwks),
    )


@pytest.fixture
def mint(rsa_private_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """Sign an assertion for alpha's "app" service account.

    Keyword arguments override claims; a value of None removes the claim.
    kid and key select the header key id and signing key.
    """

    def _mint(*, kid: str = KEY_ID, key: rsa.RSAPrivateKey | None = None, **overrides: Any) -> str:
        now = datetime.now(timezone.utc)
        claims: dict[str, Any] = {
            "iss": ISSUER,
            "sub": "system:serviceaccount:alpha:app",
            "aud": [AUDIENCE],
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "kubernetes.io": {"namespace": "alpha", "serviceaccount": {"name": "app"}},
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, key or rsa_private_key, algorithm="RS256", headers={"kid": kid})

    return _mint

"""Identity verification for workload assertions.

Each trust domain is configured with one verification mode:

    live     Every assertion goes to a token-review authority (bounded by a
             timeout). Claims are checked locally as well.
    offline  The signature is checked against a locally cached key set. No
             network call ever happens during verify(). A key id that is not
             cached fails closed with UnknownIssuerError.

Both modes return the same VerifiedClaims or raise one of:
InvalidSignatureError, UnknownIssuerError, ExpiredAssertionError,
AudienceMismatchError, ValidationUnreachableError (live only).
"""

from __future__ import annotations

__all__ = [
    "IdentityVerifier",
    "LiveVerifier",
    "OfflineVerifier",
    "VerifiedClaims",
    "resolve_claim",
]

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import jwt

from tenant_vault.config import LiveVerification, OfflineVerification, TrustDomainConfig
from tenant_vault.constants import SUPPORTED_JWT_ALGORITHMS
from tenant_vault.exceptions import (
    AudienceMismatchError,
    ExpiredAssertionError,
    InvalidSignatureError,
    UnknownIssuerError,
)
from tenant_vault.security.auth.key_cache import KeyCache
from tenant_vault.security.auth.token_review import TokenReviewClient

_REQUIRED_CLAIMS = ["exp", "sub", "iss", "aud"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_claim(claims: dict[str, Any], name: str) -> Any:
    """Look up a claim by name, falling back to a "/"-separated nested path.

    Kubernetes projected tokens nest the namespace as
    {"kubernetes.io": {"namespace": "alpha"}}, which "kubernetes.io/namespace"
    resolves to. A flat key with that exact name is preferred.

    Returns:
        The claim value, or None if absent.
    """
    if name in claims:
        return claims[name]
    node: Any = claims
    for part in name.split("/"):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _normalize_audience(aud: str | list[str] | None) -> tuple[str, ...]:
    if aud is None:
        return ()
    if isinstance(aud, str):
        return (aud,)
    return tuple(aud)


@dataclass(frozen=True)
class VerifiedClaims:
    """Claims from an assertion whose authenticity has been established.

    Attributes:
        issuer: The "iss" claim.
        subject: The "sub" claim (e.g. "system:serviceaccount:alpha:app").
        audiences: The "aud" claim as a tuple.
        expires_at: Expiry from "exp".
        namespace: Value of the trust domain's namespace claim, if present.
        claims: All claims for binding predicates.
    """

    issuer: str
    subject: str
    audiences: tuple[str, ...]
    expires_at: datetime
    namespace: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


def _build_claims(trust_domain: TrustDomainConfig, claims: dict[str, Any]) -> VerifiedClaims:
    namespace = resolve_claim(claims, trust_domain.namespace_claim)
    return VerifiedClaims(
        issuer=claims["iss"],
        subject=claims["sub"],
        audiences=_normalize_audience(claims.get("aud")),
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        namespace=namespace if isinstance(namespace, str) else None,
        claims=claims,
    )


def _decode_unverified(token: str) -> dict[str, Any]:
    """Decode claims without checking anything. Only for routing and pre-checks."""
    try:
        claims: dict[str, Any] = jwt.decode(token, options={"verify_signature": False})
    except jwt.DecodeError as e:
        raise InvalidSignatureError(f"malformed assertion: {e}") from e
    return claims


class _Verifier(Protocol):
    trust_domain: TrustDomainConfig

    async def verify(self, token: str) -> VerifiedClaims: ...


class OfflineVerifier:
    """Verify signatures against a KeyCache. Never performs I/O in verify()."""

    def __init__(self, trust_domain: TrustDomainConfig, key_cache: KeyCache) -> None:
        if not isinstance(trust_domain.verification, OfflineVerification):
            raise TypeError("OfflineVerifier requires an offline trust domain")
        self.trust_domain = trust_domain
        self.key_cache = key_cache

    def verify_sync(self, token: str) -> VerifiedClaims:
        """Verify an assertion against the cached keys.

        Raises:
            InvalidSignatureError: Malformed token, unsupported algorithm, or
                bad signature.
            UnknownIssuerError: Issuer mismatch, or no cached key for the kid.
            ExpiredAssertionError: Past "exp".
            AudienceMismatchError: No accepted audience present.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            raise InvalidSignatureError(f"malformed assertion header: {e}") from e

        if header.get("alg") not in SUPPORTED_JWT_ALGORITHMS:
            raise InvalidSignatureError(f"unsupported signing algorithm: {header.get('alg')!r}")

        key = self.key_cache.get_key(header.get("kid"))
        if key is None:
            # Fail closed, never fetch mid-request
            raise UnknownIssuerError(f"no cached verification key for kid {header.get('kid')!r}")

        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                key.key,
                algorithms=list(SUPPORTED_JWT_ALGORITHMS),
                issuer=self.trust_domain.issuer,
                audience=self.trust_domain.audiences,
                options={
                    "require": _REQUIRED_CLAIMS,
                    "verify_exp": True,
                    "verify_iss": True,
                    "verify_aud": True,
                },
            )
        except jwt.ExpiredSignatureError as e:
            raise ExpiredAssertionError("assertion has expired") from e
        except jwt.InvalidIssuerError as e:
            raise UnknownIssuerError(f"issuer mismatch: expected {self.trust_domain.issuer}") from e
        except jwt.InvalidAudienceError as e:
            raise AudienceMismatchError("assertion audience is not accepted") from e
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError("assertion signature is invalid") from e
        except jwt.PyJWTError as e:
            raise InvalidSignatureError(f"assertion validation error: {e}") from e

        return _build_claims(self.trust_domain, claims)

    async def verify(self, token: str) -> VerifiedClaims:
        return self.verify_sync(token)


class LiveVerifier:
    """Verify assertions through a token-review authority."""

    def __init__(
        self,
        trust_domain: TrustDomainConfig,
        *,
        review_client: TokenReviewClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not isinstance(trust_domain.verification, LiveVerification):
            raise TypeError("LiveVerifier requires a live trust domain")
        self.trust_domain = trust_domain
        self._review = review_client or TokenReviewClient(trust_domain.verification, transport=transport)
        self._clock = clock

    async def verify(self, token: str) -> VerifiedClaims:
        """Check claims locally, then ask the review authority.

        Local checks run first so obviously bad assertions never cost a
        round trip.

        Raises:
            InvalidSignatureError: Malformed, missing claims, or rejected by
                the authority.
            UnknownIssuerError: Issuer mismatch.
            ExpiredAssertionError: Past "exp".
            AudienceMismatchError: No accepted audience present.
            ValidationUnreachableError: Authority unreachable or timed out.
        """
        claims = _decode_unverified(token)
        missing = [c for c in _REQUIRED_CLAIMS if c not in claims]
        if missing:
            raise InvalidSignatureError(f"assertion is missing required claims: {missing}")

        if claims["iss"] != self.trust_domain.issuer:
            raise UnknownIssuerError(f"issuer mismatch: expected {self.trust_domain.issuer}")

        try:
            expires_at = datetime.fromtimestamp(float(claims["exp"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError) as e:
            raise InvalidSignatureError("assertion has an invalid exp claim") from e
        if self._clock() >= expires_at:
            raise ExpiredAssertionError("assertion has expired")

        accepted = set(self.trust_domain.audiences)
        if not accepted.intersection(_normalize_audience(claims["aud"])):
            raise AudienceMismatchError("assertion audience is not accepted")

        result = await self._review.review(token, list(self.trust_domain.audiences))

        if result.username and result.username != claims["sub"]:
            raise InvalidSignatureError("reviewed identity does not match the assertion subject")
        if result.audiences and not accepted.intersection(result.audiences):
            raise AudienceMismatchError("reviewed audiences are not accepted")

        return _build_claims(self.trust_domain, claims)


class IdentityVerifier:
    """Route each assertion to the verifier of its issuer's trust domain.

    Usage:
        verifier = await IdentityVerifier.from_config(config.trust_domains)
        claims = await verifier.verify(token)
    """

    def __init__(self, verifiers: Iterable[_Verifier]) -> None:
        self._verifiers: dict[str, _Verifier] = {}
        for v in verifiers:
            self._verifiers[v.trust_domain.issuer] = v

    @classmethod
    async def from_config(
        cls,
        trust_domains: Iterable[TrustDomainConfig],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "IdentityVerifier":
        """Build verifiers, loading offline key sets now (configuration time).

        Raises:
            ConfigurationError: If an offline key set cannot be loaded.
        """
        verifiers: list[_Verifier] = []
        for td in trust_domains:
            if isinstance(td.verification, OfflineVerification):
                cache = KeyCache(td.issuer, td.verification, transport=transport)
                await cache.load()
                verifiers.append(OfflineVerifier(td, cache))
            else:
                verifiers.append(LiveVerifier(td, transport=transport))
        return cls(verifiers)

    @property
    def key_caches(self) -> list[KeyCache]:
        """Key caches of all offline trust domains (for refresh scheduling)."""
        return [v.key_cache for v in self._verifiers.values() if isinstance(v, OfflineVerifier)]

    def trust_domain_for(self, issuer: str) -> TrustDomainConfig | None:
        v = self._verifiers.get(issuer)
        return v.trust_domain if v is not None else None

    async def verify(self, token: str) -> VerifiedClaims:
        """Verify an assertion with its issuer's configured mode.

        Raises:
            UnknownIssuerError: If the issuer is not a configured trust domain.
            IdentityError: Any specific verification failure.
        """
        issuer = _decode_unverified(token).get("iss")
        verifier = self._verifiers.get(issuer) if isinstance(issuer, str) else None
        if verifier is None:
            raise UnknownIssuerError(f"untrusted issuer: {issuer!r}")
        return await verifier.verify(token)

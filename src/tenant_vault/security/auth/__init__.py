"""Identity assertion verification.

This module provides:
- Offline verification against pre-imported signing keys (KeyCache)
- Live verification through a token review callback (TokenReviewClient)
- IdentityVerifier routing each assertion to its issuer's verifier

These run before binding and policy resolution.
"""

from tenant_vault.security.auth.key_cache import KeyCache
from tenant_vault.security.auth.token_review import (
    TokenReviewClient,
    TokenReviewResult,
)
from tenant_vault.security.auth.verifier import (
    IdentityVerifier,
    LiveVerifier,
    OfflineVerifier,
    VerifiedClaims,
    resolve_claim,
)

__all__ = [
    # Key cache
    "KeyCache",
    # Live review
    "TokenReviewClient",
    "TokenReviewResult",
    # Verification
    "IdentityVerifier",
    "LiveVerifier",
    "OfflineVerifier",
    "VerifiedClaims",
    "resolve_claim",
]

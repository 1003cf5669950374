"""Security module for workload identity verification.

- auth/: assertion verification, verification key cache, token review client

Note: Identity exceptions are defined in tenant_vault.exceptions
"""

from tenant_vault.exceptions import (
    AudienceMismatchError,
    CriticalSecurityFailure,
    ExpiredAssertionError,
    IdentityError,
    InvalidSignatureError,
    UnknownIssuerError,
    ValidationUnreachableError,
)
from tenant_vault.security.auth import (
    IdentityVerifier,
    KeyCache,
    LiveVerifier,
    OfflineVerifier,
    TokenReviewClient,
    VerifiedClaims,
)

__all__ = [
    # Exceptions
    "AudienceMismatchError",
    "CriticalSecurityFailure",
    "ExpiredAssertionError",
    "IdentityError",
    "InvalidSignatureError",
    "UnknownIssuerError",
    "ValidationUnreachableError",
    # Verification
    "IdentityVerifier",
    "KeyCache",
    "LiveVerifier",
    "OfflineVerifier",
    "TokenReviewClient",
    "VerifiedClaims",
]

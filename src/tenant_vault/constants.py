"""Application-wide constants for tenant-vault.

Constants that define application behavior.
For user-configurable settings per deployment, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    "STATE_FILE_NAME",
    "STATE_SCHEMA_VERSION",
    # Sessions
    "DEFAULT_SESSION_TTL_SECONDS",
    "DEFAULT_SESSION_MAX_TTL_SECONDS",
    "EXPIRED_SESSION_RETENTION_SECONDS",
    "SESSION_TOKEN_BYTES",
    "SESSION_TOKEN_PREFIX",
    # Leases
    "DEFAULT_LEASE_TTL_SECONDS",
    "DEFAULT_LEASE_MAX_TTL_SECONDS",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "LEASE_ID_PREFIX",
    "PRINCIPAL_NAME_PREFIX",
    # Backend retry
    "BACKEND_RETRY_MAX_ATTEMPTS",
    "BACKEND_RETRY_INITIAL_DELAY",
    "BACKEND_RETRY_BACKOFF_MULTIPLIER",
    "REVOCATION_MAX_BACKOFF_SECONDS",
    # Identity verification
    "DEFAULT_TOKEN_REVIEW_TIMEOUT_SECONDS",
    "MIN_TOKEN_REVIEW_TIMEOUT_SECONDS",
    "MAX_TOKEN_REVIEW_TIMEOUT_SECONDS",
    "JWKS_FETCH_TIMEOUT_SECONDS",
    "DEFAULT_JWKS_REFRESH_INTERVAL_SECONDS",
    "MIN_JWKS_REFRESH_INTERVAL_SECONDS",
    "SUPPORTED_JWT_ALGORITHMS",
    "DEFAULT_NAMESPACE_CLAIM",
    # Policy paths
    "KV_MOUNT",
    "DATABASE_CREDS_PATH",
    "SELF_SERVICE_PATHS",
]

# =============================================================================
# Application identity
# =============================================================================

APP_NAME = "tenant-vault"

# Durable state document (domains, bindings, sessions, leases, revocations)
STATE_FILE_NAME = "state.json"
STATE_SCHEMA_VERSION = 1

# =============================================================================
# Sessions
# =============================================================================

DEFAULT_SESSION_TTL_SECONDS: int = 3600  # 1 hour
DEFAULT_SESSION_MAX_TTL_SECONDS: int = 86400  # 24 hours

# Pruned sessions are still reported as expired, not unknown, for this long
EXPIRED_SESSION_RETENTION_SECONDS: int = 86400

# 256 bits via secrets.token_urlsafe
SESSION_TOKEN_BYTES: int = 32
SESSION_TOKEN_PREFIX = "tvs."

# =============================================================================
# Leases (dynamic credentials)
# =============================================================================

DEFAULT_LEASE_TTL_SECONDS: int = 3600
DEFAULT_LEASE_MAX_TTL_SECONDS: int = 86400

# How often the background sweep scans for expired leases and due revocations
DEFAULT_SWEEP_INTERVAL_SECONDS: float = 30.0

LEASE_ID_PREFIX = "database/creds"

# Backend principal names are derived from the lease id so a retried create
# targets the same principal: v-<role>-<8 hex>
PRINCIPAL_NAME_PREFIX = "v"

# =============================================================================
# Backend connector retry
# =============================================================================
# Issue: bounded retries. Revoke: inline bounded retries, then the sweep
# keeps retrying with capped exponential backoff until success.

BACKEND_RETRY_MAX_ATTEMPTS: int = 3
BACKEND_RETRY_INITIAL_DELAY: float = 0.5  # seconds
BACKEND_RETRY_BACKOFF_MULTIPLIER: float = 2.0
REVOCATION_MAX_BACKOFF_SECONDS: float = 300.0  # 5 minutes

# =============================================================================
# Identity verification
# =============================================================================

# Live mode: the token review callback must never hang the caller
DEFAULT_TOKEN_REVIEW_TIMEOUT_SECONDS: float = 5.0
MIN_TOKEN_REVIEW_TIMEOUT_SECONDS: float = 0.1
MAX_TOKEN_REVIEW_TIMEOUT_SECONDS: float = 30.0

# Offline mode: keys are fetched at configuration time and on the refresh
# cadence only, never per request
JWKS_FETCH_TIMEOUT_SECONDS: float = 5.0
DEFAULT_JWKS_REFRESH_INTERVAL_SECONDS: int = 3600
MIN_JWKS_REFRESH_INTERVAL_SECONDS: int = 60

SUPPORTED_JWT_ALGORITHMS: tuple[str, ...] = ("RS256", "ES256")

# Kubernetes projected service account tokens carry the namespace here
DEFAULT_NAMESPACE_CLAIM = "kubernetes.io/namespace"

# =============================================================================
# Policy paths
# =============================================================================

KV_MOUNT = "secret"
DATABASE_CREDS_PATH = "database/creds"

# Paths every session may use to manage its own token and leases
SELF_SERVICE_PATHS: dict[str, tuple[str, ...]] = {
    "auth/token/lookup-self": ("read",),
    "auth/token/renew-self": ("update",),
    "auth/token/revoke-self": ("update",),
    "sys/leases/renew": ("update",),
    "sys/leases/revoke": ("update",),
}

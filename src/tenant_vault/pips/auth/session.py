"""Session issuance bound to a domain and its resolved rule set.

A session is the result of a successful login: verified identity, exactly
one bound domain, and the rule set resolved for that domain at issue time.
The session token is the only thing a workload presents afterwards.

Security properties:
- Tokens are cryptographically secure and non-deterministic (256 bits)
- Only a SHA-256 accessor of the token is persisted; the token itself is
  returned once, at issue time
- Renewal never pushes the cumulative lifetime past max_ttl
- Revocation is immediate and idempotent

Lifetime rule:
    lifetime = expires_at - issued_at
    renew(): expires_at += ttl, refused if the new lifetime > max_ttl.
    With ttl=3600 and max_ttl=86400 a session may be renewed 23 times.
"""

from __future__ import annotations

__all__ = [
    "Session",
    "SessionIssuer",
    "token_accessor",
]

import hashlib
import secrets
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from tenant_vault.constants import (
    DEFAULT_SESSION_MAX_TTL_SECONDS,
    DEFAULT_SESSION_TTL_SECONDS,
    EXPIRED_SESSION_RETENTION_SECONDS,
    SESSION_TOKEN_BYTES,
    SESSION_TOKEN_PREFIX,
)
from tenant_vault.exceptions import MaxTTLExceededError, SessionExpiredError, SessionRevokedError
from tenant_vault.pdp.policy import ResolvedPolicy

if TYPE_CHECKING:
    from tenant_vault.config import SessionConfig
    from tenant_vault.state.models import Domain
    from tenant_vault.state.store import StateStore
    from tenant_vault.telemetry.audit.auth_logger import AuthLogger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_accessor(token: str) -> str:
    """Derive the persisted lookup key for a session token."""
    return hashlib.sha256(token.encode()).hexdigest()


class Session(BaseModel):
    """Capability-scoped session.

    Attributes:
        accessor: SHA-256 of the token; the persisted lookup key.
        domain_id: Domain the session is bound to.
        subject: Verified subject the session was issued for.
        policy: Resolved rule set at issue time.
        issued_at: Issue timestamp (UTC).
        expires_at: Current expiry timestamp (UTC).
        ttl: Renewal increment in seconds.
        max_ttl: Ceiling on expires_at - issued_at, in seconds.
        renewable: Whether renew() is permitted.
        renewed_count: Number of successful renewals.
        revoked_at: Revocation timestamp, or None while valid.
        token: Bearer token. Only populated on the object returned by
            issue(); never persisted.
    """

    accessor: str
    domain_id: str
    subject: str = ""
    policy: ResolvedPolicy
    issued_at: datetime
    expires_at: datetime
    ttl: int = Field(default=DEFAULT_SESSION_TTL_SECONDS, gt=0)
    max_ttl: int = Field(default=DEFAULT_SESSION_MAX_TTL_SECONDS, gt=0)
    renewable: bool = True
    renewed_count: int = 0
    revoked_at: datetime | None = None
    token: str = Field(default="", exclude=True, repr=False)

    model_config = ConfigDict(frozen=True)

    @property
    def lifetime(self) -> timedelta:
        """Cumulative lifetime granted so far."""
        return self.expires_at - self.issued_at

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class SessionIssuer:
    """Issue, renew, revoke and look up sessions.

    Sessions are kept in memory keyed by accessor and written through to the
    state store on every change, so a restart recovers every session's
    validity window (and its revocation).

    Usage:
        issuer = SessionIssuer(store, config.session)
        session = issuer.issue(domain, policy, subject="system:serviceaccount:alpha:app")
        token = session.token            # hand this to the workload
        issuer.lookup(token)             # raises if revoked or expired
        issuer.renew(token)
        issuer.revoke(token)
    """

    def __init__(
        self,
        store: "StateStore | None" = None,
        config: "SessionConfig | None" = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        auth_logger: "AuthLogger | None" = None,
    ) -> None:
        """Initialize the issuer, recovering persisted sessions.

        Args:
            store: Durable state store. None keeps sessions in memory only.
            config: TTL settings. Defaults to 3600s / 86400s, renewable.
            clock: Source of the current UTC time.
            auth_logger: Audit logger for issue/renew/revoke events.
        """
        self._store = store
        self._clock = clock
        self._auth_logger = auth_logger
        self._lock = threading.Lock()

        if config is None:
            self._ttl = DEFAULT_SESSION_TTL_SECONDS
            self._max_ttl = DEFAULT_SESSION_MAX_TTL_SECONDS
            self._renewable = True
        else:
            self._ttl = config.ttl_seconds
            self._max_ttl = config.max_ttl_seconds
            self._renewable = config.renewable

        self._sessions: dict[str, Session] = {}
        # accessor -> expires_at of pruned sessions, so lookups still say "expired"
        self._expired: dict[str, datetime] = {}
        if store is not None:
            self._sessions = {s.accessor: s for s in store.load().sessions}

    def issue(
        self,
        domain: "Domain",
        policy: ResolvedPolicy,
        *,
        subject: str = "",
        ttl: int | None = None,
    ) -> Session:
        """Mint a session bound to a domain and its resolved rule set.

        Args:
            domain: Domain the verified identity bound to.
            policy: The domain's resolved rule set.
            subject: Verified subject (for audit only).
            ttl: Optional shorter TTL; capped at the configured max_ttl.
                None uses the configured ttl.

        Returns:
            Session with the bearer token populated.

        Raises:
            ValueError: If the policy was resolved for a different domain,
                or ttl is not positive.
        """
        if policy.domain_id != domain.domain_id:
            raise ValueError(
                f"Policy for {policy.domain_id!r} cannot be bound to domain {domain.domain_id!r}"
            )
        if ttl is not None and ttl <= 0:
            raise ValueError(f"Session ttl must be positive, got {ttl}")

        effective_ttl = min(ttl if ttl is not None else self._ttl, self._max_ttl)
        token = SESSION_TOKEN_PREFIX + secrets.token_urlsafe(SESSION_TOKEN_BYTES)
        now = self._clock()
        session = Session(
            accessor=token_accessor(token),
            domain_id=domain.domain_id,
            subject=subject,
            policy=policy,
            issued_at=now,
            expires_at=now + timedelta(seconds=effective_ttl),
            ttl=effective_ttl,
            max_ttl=self._max_ttl,
            renewable=self._renewable,
            token=token,
        )

        with self._lock:
            self._prune(now)
            self._sessions[session.accessor] = session.model_copy(update={"token": ""})
            self._persist()

        if self._auth_logger is not None:
            self._auth_logger.log_session_event("session_issued", session)
        return session

    def lookup(self, token: str) -> Session:
        """Get the live session for a token.

        Expired sessions stay distinguishable from revoked ones for
        EXPIRED_SESSION_RETENTION_SECONDS after they are pruned. Past that an
        expired token is reported like an unknown one.

        Raises:
            SessionRevokedError: If the token is unknown or was revoked.
            SessionExpiredError: If the session is past its expiry.
        """
        accessor = token_accessor(token)
        session = self._sessions.get(accessor)
        if session is None and accessor in self._expired:
            raise SessionExpiredError("session has expired")
        if session is None or session.is_revoked:
            raise SessionRevokedError("session is revoked or does not exist")
        if session.is_expired(self._clock()):
            raise SessionExpiredError("session has expired")
        return session

    def renew(self, token: str) -> Session:
        """Extend a live session's expiry by its ttl.

        Returns:
            The renewed session.

        Raises:
            SessionRevokedError: If the session is unknown or revoked.
            SessionExpiredError: If the session already expired.
            MaxTTLExceededError: If the session is not renewable, or the new
                lifetime would exceed max_ttl.
        """
        with self._lock:
            session = self.lookup(token)
            if not session.renewable:
                raise MaxTTLExceededError("session is not renewable")

            new_expiry = session.expires_at + timedelta(seconds=session.ttl)
            if new_expiry - session.issued_at > timedelta(seconds=session.max_ttl):
                raise MaxTTLExceededError(
                    f"renewal would extend the session lifetime past max_ttl ({session.max_ttl}s)"
                )

            renewed = session.model_copy(
                update={"expires_at": new_expiry, "renewed_count": session.renewed_count + 1}
            )
            self._sessions[renewed.accessor] = renewed
            self._persist()

        if self._auth_logger is not None:
            self._auth_logger.log_session_event("session_renewed", renewed)
        return renewed

    def revoke(self, token: str) -> None:
        """Invalidate a session immediately.

        Idempotent: revoking an unknown or already-revoked token is a no-op.
        """
        session = self._revoke_accessor(token_accessor(token))
        if session is not None and self._auth_logger is not None:
            self._auth_logger.log_session_event("session_revoked", session)

    def revoke_domain(self, domain_id: str) -> int:
        """Revoke every live session bound to a domain.

        Returns:
            Number of sessions revoked.
        """
        accessors = [
            s.accessor for s in list(self._sessions.values()) if s.domain_id == domain_id and not s.is_revoked
        ]
        count = 0
        for accessor in accessors:
            session = self._revoke_accessor(accessor)
            if session is not None:
                count += 1
                if self._auth_logger is not None:
                    self._auth_logger.log_session_event("session_revoked", session)
        return count

    def sessions_for(self, domain_id: str) -> list[Session]:
        """Get all known (possibly revoked) sessions for a domain."""
        return [s for s in self._sessions.values() if s.domain_id == domain_id]

    @property
    def active_session_count(self) -> int:
        """Count of sessions that are neither revoked nor expired."""
        now = self._clock()
        return sum(1 for s in self._sessions.values() if not s.is_revoked and not s.is_expired(now))

    def _revoke_accessor(self, accessor: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(accessor)
            if session is None or session.is_revoked:
                return None
            revoked = session.model_copy(update={"revoked_at": self._clock()})
            self._sessions[accessor] = revoked
            self._persist()
            return revoked

    def _prune(self, now: datetime) -> None:
        """Drop sessions past their expiry; revoked ones are kept until then. Caller holds the lock.

        Unrevoked sessions leave a tombstone behind, itself dropped after
        EXPIRED_SESSION_RETENTION_SECONDS.
        """
        expired = [s for s in self._sessions.values() if s.is_expired(now)]
        for session in expired:
            del self._sessions[session.accessor]
            if not session.is_revoked:
                self._expired[session.accessor] = session.expires_at

        cutoff = now - timedelta(seconds=EXPIRED_SESSION_RETENTION_SECONDS)
        for accessor in [a for a, expires_at in self._expired.items() if expires_at <= cutoff]:
            del self._expired[accessor]

    def _persist(self) -> None:
        """Write sessions to the state store. Caller holds the lock."""
        if self._store is not None:
            self._store.update(sessions=list(self._sessions.values()))

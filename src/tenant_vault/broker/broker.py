"""Dynamic credential broker.

Issues short-lived backend principals on demand and tracks each one as a
lease until the backend confirms it has been destroyed.

Concurrency:
    Every mutation of a lease happens under that lease's asyncio.Lock, so a
    renew racing an expiry-triggered revoke is serialized. Once a lease is
    REVOKING, renew fails with LeaseNotFoundError (revoke wins). Backend
    destroy calls for one lease never run concurrently, which is what keeps
    destroy_principal at exactly one success per lease.

Durability:
    Leases and revocation jobs are written to the state store on every
    change. A lease found in REVOKING at startup resumes retrying; it is
    never reset to ACTIVE.

Failure handling:
    - issue: bounded retries with exponential backoff, then
      BackendUnavailableError. The principal name chosen for the failed
      attempt is queued for destruction, since a lost response may have
      created it. The same happens when the create is cancelled or the
      connector raises any other error.
    - revoke: bounded inline retries, then the job stays queued and the
      sweep retries with capped exponential backoff until it succeeds.
      Any connector error counts as a failed attempt.
"""

from __future__ import annotations

__all__ = [
    "CredentialBroker",
    "IssuedCredential",
    "revocation_backoff",
]

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from tenant_vault.broker.connector import BackendConnector, Credential
from tenant_vault.broker.lease import Lease, LeaseState, RevocationJob, new_lease_id, principal_name
from tenant_vault.constants import (
    APP_NAME,
    BACKEND_RETRY_BACKOFF_MULTIPLIER,
    BACKEND_RETRY_INITIAL_DELAY,
    BACKEND_RETRY_MAX_ATTEMPTS,
    DATABASE_CREDS_PATH,
    DEFAULT_LEASE_MAX_TTL_SECONDS,
    DEFAULT_LEASE_TTL_SECONDS,
    REVOCATION_MAX_BACKOFF_SECONDS,
)
from tenant_vault.exceptions import (
    BackendUnavailableError,
    LeaseNotFoundError,
    MaxTTLExceededError,
    PermissionDeniedError,
)
from tenant_vault.pdp.engine import PolicyEngine
from tenant_vault.pips.auth.session import Session, SessionIssuer
from tenant_vault.state.registry import TenantRegistry
from tenant_vault.telemetry.audit.lease_logger import LeaseLogger, RevocationTrigger, create_lease_logger
from tenant_vault.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from tenant_vault.config import LeaseConfig
    from tenant_vault.state.store import StateStore

_logger = logging.getLogger(f"{APP_NAME}.broker")
_system_logger = get_system_logger()

_RENEW_PATH = "sys/leases/renew"
_REVOKE_PATH = "sys/leases/revoke"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def revocation_backoff(attempts: int) -> float:
    """Delay before the next revocation attempt after `attempts` failures.

    initial * multiplier^(attempts-1), capped at REVOCATION_MAX_BACKOFF_SECONDS.
    """
    if attempts <= 0:
        return 0.0
    delay = BACKEND_RETRY_INITIAL_DELAY * (BACKEND_RETRY_BACKOFF_MULTIPLIER ** (attempts - 1))
    return min(delay, REVOCATION_MAX_BACKOFF_SECONDS)


@dataclass(frozen=True)
class IssuedCredential:
    """Result of a successful issue.

    Attributes:
        lease: The new ACTIVE lease.
        credential: Username and password. The password is not kept anywhere
            else.
    """

    lease: Lease
    credential: Credential


class CredentialBroker:
    """Issue, renew and revoke leased backend credentials.

    Usage:
        broker = CredentialBroker(connector, sessions, registry, store)
        issued = await broker.issue(token, "alpha-app")
        await broker.renew(issued.lease.lease_id, token=token)
        await broker.revoke(issued.lease.lease_id, token=token)
    """

    def __init__(
        self,
        connector: BackendConnector,
        sessions: SessionIssuer,
        registry: TenantRegistry,
        store: "StateStore | None" = None,
        config: "LeaseConfig | None" = None,
        *,
        engine: PolicyEngine | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        lease_logger: LeaseLogger | None = None,
    ) -> None:
        """Initialize the broker and recover persisted leases and jobs.

        Args:
            connector: Backend connector (sole caller is this broker).
            sessions: Session issuer to resolve tokens.
            registry: Tenant registry (role ownership).
            store: Durable state store. None keeps leases in memory only.
            config: Lease TTL settings.
            engine: Policy engine (default: a new PolicyEngine).
            clock: Source of the current UTC time.
            sleep: Awaitable sleep used between retries.
            lease_logger: Audit logger for lease events.
        """
        self._connector = connector
        self._sessions = sessions
        self._registry = registry
        self._store = store
        self._engine = engine or PolicyEngine()
        self._clock = clock
        self._sleep = sleep
        self._lease_logger = lease_logger or create_lease_logger()

        if config is None:
            self._default_ttl = DEFAULT_LEASE_TTL_SECONDS
            self._max_ttl = DEFAULT_LEASE_MAX_TTL_SECONDS
        else:
            self._default_ttl = config.default_ttl_seconds
            self._max_ttl = config.max_ttl_seconds

        self._locks: dict[str, asyncio.Lock] = {}
        self._leases: dict[str, Lease] = {}
        self._jobs: dict[str, RevocationJob] = {}
        if store is not None:
            self._recover(store)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_lease(self, lease_id: str) -> Lease | None:
        return self._leases.get(lease_id)

    def leases_for(self, domain_id: str) -> list[Lease]:
        return [lease for lease in self._leases.values() if lease.domain_id == domain_id]

    @property
    def leases(self) -> list[Lease]:
        return list(self._leases.values())

    @property
    def pending_revocations(self) -> list[RevocationJob]:
        return list(self._jobs.values())

    # =========================================================================
    # Operations
    # =========================================================================

    async def issue(self, token: str, role: str) -> IssuedCredential:
        """Create a backend principal for a role and lease it to the session's domain.

        Args:
            token: Session token.
            role: Database role name.

        Returns:
            IssuedCredential with the ACTIVE lease and the credential.

        Raises:
            SessionRevokedError / SessionExpiredError: Invalid session.
            PermissionDeniedError: If the session may not read the role's
                credential path, or the role does not belong to its domain.
            BackendUnavailableError: If every create attempt failed.
            asyncio.CancelledError: If cancelled mid-create. Any error other
                than BackendUnavailableError also propagates unchanged. In
                every failure case the principal name is queued for cleanup.
        """
        session = self._sessions.lookup(token)
        path = f"{DATABASE_CREDS_PATH}/{role}"
        self._engine.check(session.policy, path, "read")
        domain = self._registry.get_domain(session.domain_id)
        if role not in domain.database_roles:
            raise PermissionDeniedError(path=path, operation="read")

        lease_id = new_lease_id(role)
        username = principal_name(role, lease_id)

        async with self._lock_for(lease_id):
            credential: Credential | None = None
            last_error: BackendUnavailableError | None = None
            delay = BACKEND_RETRY_INITIAL_DELAY
            attempt = 0
            try:
                for attempt in range(1, BACKEND_RETRY_MAX_ATTEMPTS + 1):
                    try:
                        credential = await self._connector.create_principal(role, username)
                        break
                    except BackendUnavailableError as e:
                        last_error = e
                        _system_logger.warning(
                            {
                                "event": "principal_create_retry",
                                "message": f"Creating principal for {role} failed (attempt {attempt})",
                                "role": role,
                                "attempt": attempt,
                                "error_message": str(e),
                            }
                        )
                        if attempt < BACKEND_RETRY_MAX_ATTEMPTS:
                            await self._sleep(delay)
                            delay *= BACKEND_RETRY_BACKOFF_MULTIPLIER
            except BaseException as e:
                # Cancelled or failed mid-create: the backend may hold the principal
                self._queue_cleanup(session.domain_id, role, lease_id, username, e, attempt)
                raise

            if credential is None:
                # A lost response may still have created the principal
                self._queue_cleanup(
                    session.domain_id,
                    role,
                    lease_id,
                    username,
                    last_error or BackendUnavailableError("backend unavailable"),
                    BACKEND_RETRY_MAX_ATTEMPTS,
                )
                raise BackendUnavailableError(
                    f"could not create credentials for role {role!r} after {BACKEND_RETRY_MAX_ATTEMPTS} attempts"
                ) from last_error

            now = self._clock()
            lease = Lease(
                lease_id=lease_id,
                domain_id=session.domain_id,
                role=role,
                credential_ref=credential.username,
                created_at=now,
                expires_at=now + timedelta(seconds=self._default_ttl),
                default_ttl=self._default_ttl,
                max_ttl=self._max_ttl,
            )
            self._leases[lease_id] = lease
            self._persist()

        self._lease_logger.log_issued(lease)
        return IssuedCredential(lease=lease, credential=credential)

    async def renew(self, lease_id: str, *, token: str | None = None) -> Lease:
        """Extend a lease by its default_ttl.

        Args:
            lease_id: Lease to renew.
            token: Session token of the caller. When given, the session must
                belong to the lease's domain and may update sys/leases/renew.
                None is for trusted internal callers.

        Returns:
            The renewed lease.

        Raises:
            LeaseNotFoundError: If the lease is unknown, not ACTIVE, expired,
                or owned by another domain.
            MaxTTLExceededError: If renewal would push the lifetime past max_ttl.
        """
        if lease_id not in self._leases:
            raise LeaseNotFoundError(lease_id)
        async with self._lock_for(lease_id):
            lease = self._leases.get(lease_id)
            if lease is None or lease.state != LeaseState.ACTIVE:
                raise LeaseNotFoundError(lease_id)
            if token is not None:
                self._check_owner(self._sessions.lookup(token), lease, _RENEW_PATH)

            if lease.is_expired(self._clock()):
                self._begin_revocation(lease, "expiry")
                raise LeaseNotFoundError(lease_id)

            if not lease.can_renew():
                raise MaxTTLExceededError(
                    f"renewal would extend lease lifetime past max_ttl ({lease.max_ttl}s)"
                )

            renewed = lease.model_copy(
                update={
                    "expires_at": lease.expires_at + timedelta(seconds=lease.default_ttl),
                    "renewed_count": lease.renewed_count + 1,
                }
            )
            self._leases[lease_id] = renewed
            self._persist()

        self._lease_logger.log_renewed(renewed)
        return renewed

    async def revoke(
        self,
        lease_id: str,
        *,
        token: str | None = None,
        trigger: RevocationTrigger = "explicit",
    ) -> LeaseState:
        """Revoke a lease: destroy its backend principal, then drop the record.

        Inline attempts are bounded. If they all fail the lease stays REVOKING
        and the sweep keeps retrying. Revoking a lease that is already
        REVOKING joins the existing job.

        Args:
            lease_id: Lease to revoke.
            token: Session token of the caller (see renew()).
            trigger: Why the lease is being revoked (for audit).

        Returns:
            GONE if the principal was destroyed, REVOKING if it is queued.

        Raises:
            LeaseNotFoundError: If the lease is unknown or owned by another
                domain.
        """
        if lease_id not in self._leases:
            raise LeaseNotFoundError(lease_id)
        async with self._lock_for(lease_id):
            lease = self._leases.get(lease_id)
            if lease is None:
                raise LeaseNotFoundError(lease_id)
            if token is not None:
                self._check_owner(self._sessions.lookup(token), lease, _REVOKE_PATH)

            if lease.state == LeaseState.ACTIVE:
                self._begin_revocation(lease, trigger)
            return await self._attempt_revocation(lease_id, BACKEND_RETRY_MAX_ATTEMPTS)

    async def revoke_domain(self, domain_id: str) -> dict[str, LeaseState]:
        """Revoke every lease of a domain (offboarding).

        Returns:
            lease_id -> resulting state.
        """
        results: dict[str, LeaseState] = {}
        for lease in self.leases_for(domain_id):
            try:
                results[lease.lease_id] = await self.revoke(lease.lease_id, trigger="offboarding")
            except LeaseNotFoundError:
                # Completed by a concurrent sweep
                results[lease.lease_id] = LeaseState.GONE
        return results

    # =========================================================================
    # Sweep hooks (called by LeaseSweeper)
    # =========================================================================

    async def expire_due(self) -> int:
        """Move ACTIVE leases past their expiry to REVOKING.

        Returns:
            Number of leases moved.
        """
        moved = 0
        for lease_id in [lid for lid, lease in self._leases.items() if lease.state == LeaseState.ACTIVE]:
            if lease_id not in self._leases:
                continue
            async with self._lock_for(lease_id):
                lease = self._leases.get(lease_id)
                if lease is None or lease.state != LeaseState.ACTIVE:
                    continue
                if lease.is_expired(self._clock()):
                    self._begin_revocation(lease, "expiry")
                    moved += 1
        return moved

    async def retry_due(self) -> tuple[int, int]:
        """Make one attempt for every revocation job that is due.

        A job whose attempt fails, for any reason, is rescheduled with
        backoff and the pass moves on to the next job.

        Returns:
            (completed, still_pending) counts for the jobs attempted.
        """
        completed = 0
        pending = 0
        for lease_id in list(self._jobs):
            if lease_id not in self._jobs:
                continue
            async with self._lock_for(lease_id):
                job = self._jobs.get(lease_id)
                if job is None or job.next_attempt_at > self._clock():
                    continue
                state = await self._attempt_revocation(lease_id, 1)
                if state == LeaseState.GONE:
                    completed += 1
                else:
                    pending += 1
        return completed, pending

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_for(self, lease_id: str) -> asyncio.Lock:
        """Lock for a tracked lease or job. Dropped once the record is GONE."""
        lock = self._locks.get(lease_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[lease_id] = lock
        return lock

    def _queue_cleanup(
        self,
        domain_id: str,
        role: str,
        lease_id: str,
        username: str,
        error: BaseException,
        attempts: int,
    ) -> None:
        """Queue destruction of a principal whose create did not complete. Caller holds the lease lock."""
        self._jobs[lease_id] = RevocationJob(
            lease_id=lease_id,
            credential_ref=username,
            next_attempt_at=self._clock(),
        )
        self._persist()
        self._lease_logger.log_issue_failed(
            domain_id=domain_id,
            role=role,
            credential_ref=username,
            error=error,
            attempts=attempts,
        )

    def _check_owner(self, session: Session, lease: Lease, path: str) -> None:
        if session.domain_id != lease.domain_id:
            # Same error as an unknown lease, so ids of other domains are not confirmed
            raise LeaseNotFoundError(lease.lease_id)
        self._engine.check(session.policy, path, "update")

    def _begin_revocation(self, lease: Lease, trigger: RevocationTrigger) -> None:
        """ACTIVE -> REVOKING and enqueue the job. Caller holds the lease lock."""
        revoking = lease.model_copy(update={"state": LeaseState.REVOKING})
        self._leases[lease.lease_id] = revoking
        if lease.lease_id not in self._jobs:
            self._jobs[lease.lease_id] = RevocationJob(
                lease_id=lease.lease_id,
                credential_ref=lease.credential_ref,
                next_attempt_at=self._clock(),
            )
        self._persist()
        self._lease_logger.log_revoking(revoking, trigger)

    async def _attempt_revocation(self, lease_id: str, max_attempts: int) -> LeaseState:
        """Try to destroy the job's principal. Caller holds the lease lock."""
        job = self._jobs.get(lease_id)
        if job is None:
            return LeaseState.GONE

        for attempt in range(max_attempts):
            try:
                await self._connector.destroy_principal(job.credential_ref)
            except Exception as e:
                job = job.model_copy(
                    update={
                        "attempts": job.attempts + 1,
                        "next_attempt_at": self._clock() + timedelta(seconds=revocation_backoff(job.attempts + 1)),
                        "last_error": str(e),
                    }
                )
                self._jobs[lease_id] = job
                self._persist()
                self._lease_logger.log_revocation_failed(job, e)
                if attempt < max_attempts - 1:
                    await self._sleep(revocation_backoff(job.attempts))
                continue

            # Record is dropped only after the backend confirmed
            self._jobs.pop(lease_id, None)
            lease = self._leases.pop(lease_id, None)
            self._locks.pop(lease_id, None)
            self._persist()
            self._lease_logger.log_revoked(job)
            if lease is not None:
                _logger.info(
                    {
                        "event": "lease_gone",
                        "message": f"Lease revoked: {lease_id}",
                        "lease_id": lease_id,
                        "domain_id": lease.domain_id,
                    }
                )
            return LeaseState.GONE

        _system_logger.warning(
            {
                "event": "revocation_pending",
                "message": f"Revocation of {lease_id} failed {job.attempts} times, retrying in background",
                "lease_id": lease_id,
                "attempts": job.attempts,
                "next_attempt_at": job.next_attempt_at.isoformat(),
            }
        )
        return LeaseState.REVOKING

    def _recover(self, store: "StateStore") -> None:
        state = store.load()
        self._leases = {lease.lease_id: lease for lease in state.leases}
        self._jobs = {job.lease_id: job for job in state.revocations}

        # Every REVOKING lease must have a job, or it would never be retried
        missing = [
            lease for lease in self._leases.values()
            if lease.state == LeaseState.REVOKING and lease.lease_id not in self._jobs
        ]
        for lease in missing:
            self._jobs[lease.lease_id] = RevocationJob(
                lease_id=lease.lease_id,
                credential_ref=lease.credential_ref,
                next_attempt_at=self._clock(),
            )
            self._lease_logger.log_revoking(lease, "recovery")
        if missing:
            self._persist()

        if self._leases or self._jobs:
            _system_logger.info(
                {
                    "event": "leases_recovered",
                    "message": f"Recovered {len(self._leases)} leases and {len(self._jobs)} pending revocations",
                    "leases": len(self._leases),
                    "revocations": len(self._jobs),
                }
            )

    def _persist(self) -> None:
        if self._store is not None:
            self._store.update(leases=list(self._leases.values()), revocations=list(self._jobs.values()))

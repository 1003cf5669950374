"""Login flow: identity assertion -> session.

    verify (IdentityVerifier) -> bind (ClaimBinder) -> resolve (PolicyResolver)
        -> issue (SessionIssuer)

Binding and resolution read the same registry snapshot, so a login racing
an onboarding or offboarding sees the registry either entirely before or
entirely after the change.

Every identity or binding failure is logged with its specific cause to the
auth audit log and surfaced to the caller as a generic AuthenticationFailed.
"""

from __future__ import annotations

__all__ = [
    "AuthenticationService",
]

import logging
from typing import Any

import jwt

from tenant_vault.constants import APP_NAME
from tenant_vault.exceptions import AuthenticationFailed, BindingError, IdentityError
from tenant_vault.pdp.resolver import PolicyResolver
from tenant_vault.pips.auth.binding import ClaimBinder
from tenant_vault.pips.auth.session import Session, SessionIssuer
from tenant_vault.security.auth.verifier import IdentityVerifier
from tenant_vault.state.registry import TenantRegistry
from tenant_vault.telemetry.audit.auth_logger import AuthLogger, create_auth_logger

_logger = logging.getLogger(f"{APP_NAME}.service")


def _unverified_context(token: str) -> tuple[str | None, str | None]:
    """Best-effort (iss, sub) of a rejected token, for the audit record only."""
    try:
        claims: dict[str, Any] = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None, None
    iss = claims.get("iss")
    sub = claims.get("sub")
    return (iss if isinstance(iss, str) else None, sub if isinstance(sub, str) else None)


class AuthenticationService:
    """Exchange a workload identity assertion for a session.

    Usage:
        service = AuthenticationService(verifier, registry, resolver, sessions)
        session = await service.login(jwt_token)
        session.token   # present this on secret and credential calls
    """

    def __init__(
        self,
        verifier: IdentityVerifier,
        registry: TenantRegistry,
        resolver: PolicyResolver,
        sessions: SessionIssuer,
        binder: ClaimBinder | None = None,
        auth_logger: AuthLogger | None = None,
    ) -> None:
        self._verifier = verifier
        self._registry = registry
        self._resolver = resolver
        self._sessions = sessions
        self._binder = binder or ClaimBinder()
        self._auth_logger = auth_logger or create_auth_logger()

    @property
    def sessions(self) -> SessionIssuer:
        return self._sessions

    async def login(self, token: str) -> Session:
        """Verify an assertion, bind it to one domain and issue a session.

        Args:
            token: Signed identity assertion (JWT).

        Returns:
            Session with its bearer token populated.

        Raises:
            AuthenticationFailed: For any identity or binding failure. The
                specific error is chained as __cause__.
        """
        try:
            claims = await self._verifier.verify(token)
            snapshot = self._registry.snapshot()
            domain = self._binder.bind(claims, snapshot)
        except (IdentityError, BindingError) as e:
            issuer, subject = _unverified_context(token)
            self._auth_logger.log_login_failed(e, issuer=issuer, subject=subject)
            raise AuthenticationFailed() from e

        policy = self._resolver.resolve_in(snapshot, domain.domain_id)
        session = self._sessions.issue(domain, policy, subject=claims.subject)
        self._auth_logger.log_login_succeeded(issuer=claims.issuer, subject=claims.subject, session=session)
        _logger.debug(
            {
                "event": "login",
                "message": f"Session issued for domain {domain.domain_id}",
                "domain_id": domain.domain_id,
                "policy_fingerprint": policy.fingerprint,
            }
        )
        return session

    def logout(self, token: str) -> None:
        """Revoke the caller's own session (idempotent)."""
        self._sessions.revoke(token)

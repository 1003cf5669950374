"""Authentication Policy Information Point.

Turns verified identity claims into a domain-bound session.

- ClaimBinder: verified claims -> exactly one Domain
- SessionIssuer: issue, renew, revoke and look up sessions

Assertion verification is in security/auth/.
Auth audit logging is in telemetry/audit/auth_logger.py.
"""

# state.store imports pips.auth.session; import submodules directly:
#   from tenant_vault.pips.auth.session import SessionIssuer
__all__: list[str] = []

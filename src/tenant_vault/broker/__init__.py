"""Dynamic credential broker.

Structure:
    lease.py      - Lease and RevocationJob records, lease state machine
    connector.py  - BackendConnector protocol and in-memory implementation
    broker.py     - CredentialBroker (issue, renew, revoke)
    sweeper.py    - LeaseSweeper (expiry and revocation retries)
"""

# state.store imports broker.lease; import submodules directly:
#   from tenant_vault.broker.broker import CredentialBroker
__all__: list[str] = []

"""Policy Enforcement Point (PEP) - Secret access enforcement.

Every secret operation presents a session token. The PEP looks up the
session, asks the PDP for a decision on the path and operation, and only
then touches storage.

Structure:
    secret_store.py - SecretStore (policy-enforcing facade over storage/kv.py)

Note: PermissionDeniedError is defined in tenant_vault.exceptions
"""

from tenant_vault.exceptions import PermissionDeniedError
from tenant_vault.pep.secret_store import SecretStore

__all__ = [
    "PermissionDeniedError",
    "SecretStore",
]

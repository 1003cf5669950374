"""Tenant registry and durable state.

Structure:
    models.py    - Domain and IdentityBinding records
    registry.py  - TenantRegistry with immutable snapshots
    store.py     - StateStore (JSON state document)
"""

# Import submodules directly:
#   from tenant_vault.state.registry import TenantRegistry
__all__: list[str] = []

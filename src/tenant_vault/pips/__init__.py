"""Policy Information Points (PIPs) - Identity attributes for decisions.

- auth/: claim binding and session issuance
"""

# Namespace package - no direct exports, submodules accessed via:
#   from tenant_vault.pips.auth.session import SessionIssuer
__all__: list[str] = []

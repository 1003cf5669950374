"""Policy Decision Point (PDP) - Capability rule evaluation.

The PDP is stateless and side-effect free. Enforcement happens in pep/
(secret store) and broker/ (dynamic credentials).

Structure:
    decision.py       - Decision enum (ALLOW/DENY)
    policy.py         - CapabilityRule and ResolvedPolicy models
    matcher.py        - Path normalization and pattern matching
    engine.py         - PolicyEngine for evaluation
    templates.py      - Rule fragments built from a domain's attributes
    resolver.py       - PolicyResolver (domain id -> ResolvedPolicy)
"""

from tenant_vault.pdp.decision import Decision
from tenant_vault.pdp.engine import Evaluation, MatchedRule, PolicyEngine
from tenant_vault.pdp.matcher import InvalidPathError, normalize_path
from tenant_vault.pdp.policy import CapabilityRule, ResolvedPolicy

# NOTE: templates and resolver read state.models / state.registry, which in
# turn import pdp.policy. Import them directly to avoid circular imports:
#   from tenant_vault.pdp.resolver import PolicyResolver

__all__ = [
    # Decision
    "Decision",
    # Engine
    "Evaluation",
    "MatchedRule",
    "PolicyEngine",
    # Paths
    "InvalidPathError",
    "normalize_path",
    # Policy models
    "CapabilityRule",
    "ResolvedPolicy",
]

"""Capability rule models for path-based policy evaluation.

Policy structure:
    ResolvedPolicy
    ├── domain_id: Domain the rules were resolved for
    ├── fingerprint: Content hash of the rule set (stable across runs)
    └── rules: tuple[CapabilityRule]
        └── CapabilityRule
            ├── path_pattern: Exact path or literal prefix + trailing "*"
            └── operations: subset of create/read/update/delete/list, or {deny}

Design principles:
1. A "deny" rule is absolute: it overrides every allow that matches the same path
2. Among allow rules, the most specific pattern (longest literal prefix) decides
3. Default to DENY if no rule matches (zero trust)
4. Patterns support only exact match and a trailing wildcard, never regex
"""

from __future__ import annotations

__all__ = [
    "ALLOW_OPERATIONS",
    "CapabilityRule",
    "OperationType",
    "ResolvedPolicy",
    "VALID_OPERATIONS",
    "merge_rules",
    "policy_fingerprint",
]

import hashlib
import json
from collections.abc import Iterable
from typing import Literal, Self, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Operations type for capability rules - single source of truth
OperationType = Literal["create", "read", "update", "delete", "list", "deny"]

VALID_OPERATIONS: tuple[str, ...] = get_args(OperationType)

# Everything except "deny"
ALLOW_OPERATIONS: frozenset[str] = frozenset(op for op in VALID_OPERATIONS if op != "deny")


class CapabilityRule(BaseModel):
    """One access-control statement.

    Attributes:
        path_pattern: Exact path ("secret/alpha") or literal prefix followed by a
            single trailing wildcard ("secret/alpha/*"). Leading and trailing
            slashes are stripped.
        operations: Allowed operations, or exactly {"deny"}.
        description: Optional human-readable note for audit output.
    """

    path_pattern: str = Field(min_length=1)
    operations: frozenset[OperationType]
    description: str | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("path_pattern", mode="after")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Allow only a single trailing wildcard; reject regex-like syntax."""
        v = v.strip().strip("/")
        if not v:
            raise ValueError("path_pattern cannot be empty")
        if "*" in v[:-1]:
            raise ValueError(f"Wildcard '*' is only allowed as the final character: {v!r}")
        if any(c in v for c in "?[]"):
            raise ValueError(f"Unsupported pattern syntax in {v!r}; use a trailing '*' only")
        return v

    @field_validator("operations", mode="after")
    @classmethod
    def validate_operations(cls, v: frozenset[str]) -> frozenset[str]:
        """Require at least one operation; deny cannot be mixed with allows."""
        if not v:
            raise ValueError("operations cannot be empty")
        if "deny" in v and len(v) > 1:
            raise ValueError("'deny' cannot be combined with other operations")
        return v

    @property
    def is_deny(self) -> bool:
        """True if this rule denies every operation on matching paths."""
        return "deny" in self.operations

    @property
    def is_wildcard(self) -> bool:
        """True if the pattern ends with a wildcard."""
        return self.path_pattern.endswith("*")

    @property
    def literal_prefix(self) -> str:
        """Pattern text before the wildcard (whole pattern if exact)."""
        return self.path_pattern[:-1] if self.is_wildcard else self.path_pattern

    @property
    def specificity(self) -> tuple[int, int]:
        """Sort key for "most specific wins": literal length, then exact over wildcard."""
        return (len(self.literal_prefix), 0 if self.is_wildcard else 1)


def merge_rules(rules: Iterable[CapabilityRule]) -> tuple[CapabilityRule, ...]:
    """Deduplicate rules by pattern, preserving first-seen order.

    Rules sharing a pattern are folded into one: if any of them denies, the
    merged rule denies; otherwise their operations are unioned.

    Args:
        rules: Rules in composition order.

    Returns:
        Tuple of rules with unique patterns.
    """
    merged: dict[str, CapabilityRule] = {}
    for rule in rules:
        existing = merged.get(rule.path_pattern)
        if existing is None:
            merged[rule.path_pattern] = rule
            continue
        if existing.is_deny:
            continue
        if rule.is_deny:
            merged[rule.path_pattern] = rule
            continue
        merged[rule.path_pattern] = existing.model_copy(
            update={"operations": existing.operations | rule.operations}
        )
    return tuple(merged.values())


def policy_fingerprint(rules: Iterable[CapabilityRule]) -> str:
    """Generate a deterministic fingerprint of a rule set.

    Same rule content always produces the same fingerprint, so sessions can
    record exactly which rule set they were issued against.

    Returns:
        Fingerprint in format "pol_<12-char-hex>".
    """
    content = json.dumps(
        [{"path_pattern": r.path_pattern, "operations": sorted(r.operations)} for r in rules],
        sort_keys=True,
    )
    return f"pol_{hashlib.sha256(content.encode()).hexdigest()[:12]}"


class ResolvedPolicy(BaseModel):
    """Fully composed, deduplicated rule set for one domain.

    Attributes:
        domain_id: Domain the rules govern.
        rules: Capability rules with unique patterns.
        fingerprint: Content hash (auto-generated when omitted).
    """

    domain_id: str = Field(min_length=1)
    rules: tuple[CapabilityRule, ...] = ()
    fingerprint: str = ""

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def ensure_fingerprint(self) -> Self:
        """Deduplicate rules and fill in the fingerprint."""
        rules = merge_rules(self.rules)
        # Model is frozen, use object.__setattr__
        object.__setattr__(self, "rules", rules)
        if not self.fingerprint:
            object.__setattr__(self, "fingerprint", policy_fingerprint(rules))
        return self

    @property
    def deny_rules(self) -> tuple[CapabilityRule, ...]:
        """Rules with the deny effect."""
        return tuple(r for r in self.rules if r.is_deny)

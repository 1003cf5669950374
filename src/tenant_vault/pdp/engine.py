"""Policy engine - evaluate a path and operation against a resolved rule set.

Evaluation flow:
1. Collect all rules whose pattern matches the path
2. Any matching deny rule → DENY (deny is absolute)
3. Otherwise select the most specific matching allow rules
4. ALLOW if the requested operation is in their operations, else DENY
5. No match → DENY (zero trust)

Specificity:
    A rule's specificity is (literal prefix length, exact bonus). The exact
    bonus makes "secret/alpha" more specific than "secret/alpha*" although
    both share the same literal text. When several allow rules tie on
    specificity their operations are unioned; composition never produces
    such ties for different patterns except through explicit domain rules.

Example:
    rules:   secret/alpha/*          [create, read, update, delete, list]
             secret/alpha/certs/*    [read]
             secret/alpha/certs/ca   [deny]

    read   secret/alpha/app-config   → ALLOW  (secret/alpha/*)
    update secret/alpha/certs/app    → DENY   (secret/alpha/certs/* is more specific)
    read   secret/alpha/certs/ca     → DENY   (deny rule)
    read   secret/beta/app-config    → DENY   (no match)
"""

from __future__ import annotations

__all__ = [
    "Evaluation",
    "MatchedRule",
    "PolicyEngine",
]

from dataclasses import dataclass, field

from tenant_vault.exceptions import PermissionDeniedError, PolicyEnforcementFailure
from tenant_vault.pdp.decision import Decision
from tenant_vault.pdp.matcher import match_path_pattern
from tenant_vault.pdp.policy import VALID_OPERATIONS, CapabilityRule, ResolvedPolicy


@dataclass(frozen=True, slots=True)
class MatchedRule:
    """A capability rule that matched the request path.

    Attributes:
        path_pattern: The rule's pattern.
        operations: The rule's operations.
        specificity: Specificity key; higher sorts as more specific.
    """

    path_pattern: str
    operations: frozenset[str]
    specificity: tuple[int, int] = (0, 0)

    @property
    def is_deny(self) -> bool:
        return "deny" in self.operations


@dataclass(frozen=True, slots=True)
class Evaluation:
    """Outcome of evaluating one request.

    Attributes:
        decision: ALLOW or DENY.
        path: Path that was evaluated.
        operation: Operation that was evaluated.
        matched_rules: All rules whose pattern matched the path.
        final_rule: Pattern of the rule that determined the outcome, or None
            when nothing matched and the default applied.
    """

    decision: Decision
    path: str
    operation: str
    matched_rules: tuple[MatchedRule, ...] = field(default_factory=tuple)
    final_rule: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW


class PolicyEngine:
    """Policy evaluation engine.

    Stateless and side-effect free: the same policy, path and operation
    always yield the same decision, so one engine can be shared across
    concurrent requests.
    """

    def evaluate(self, policy: ResolvedPolicy, path: str, operation: str) -> Decision:
        """Evaluate a request against a resolved policy.

        Args:
            policy: The session's resolved rule set.
            path: Normalized request path.
            operation: One of create, read, update, delete, list.

        Returns:
            Decision: ALLOW or DENY.

        Raises:
            PolicyEnforcementFailure: If evaluation fails unexpectedly.
        """
        return self.explain(policy, path, operation).decision

    def explain(self, policy: ResolvedPolicy, path: str, operation: str) -> Evaluation:
        """Evaluate a request and return the full reasoning.

        Args:
            policy: The session's resolved rule set.
            path: Normalized request path.
            operation: One of create, read, update, delete, list.

        Returns:
            Evaluation with decision, matched rules and final rule.

        Raises:
            PolicyEnforcementFailure: If evaluation fails unexpectedly.
                Cannot trust policy decisions if evaluation crashes.
        """
        try:
            if operation not in VALID_OPERATIONS or operation == "deny":
                # Unknown operations never match an allow
                return Evaluation(decision=Decision.DENY, path=path, operation=operation)

            matching = [rule for rule in policy.rules if match_path_pattern(rule.path_pattern, path)]
            matched = tuple(
                MatchedRule(
                    path_pattern=rule.path_pattern,
                    operations=frozenset(rule.operations),
                    specificity=rule.specificity,
                )
                for rule in matching
            )

            if not matching:
                return Evaluation(decision=Decision.DENY, path=path, operation=operation)

            # Deny is absolute, regardless of specificity or ordering
            denies = [rule for rule in matching if rule.is_deny]
            if denies:
                return Evaluation(
                    decision=Decision.DENY,
                    path=path,
                    operation=operation,
                    matched_rules=matched,
                    final_rule=self._get_most_specific_rule(denies).path_pattern,
                )

            top = self._get_most_specific_rule(matching).specificity
            winners = [rule for rule in matching if rule.specificity == top]
            allowed_ops: set[str] = set()
            for rule in winners:
                allowed_ops |= rule.operations

            decision = Decision.ALLOW if operation in allowed_ops else Decision.DENY
            return Evaluation(
                decision=decision,
                path=path,
                operation=operation,
                matched_rules=matched,
                final_rule=winners[0].path_pattern,
            )

        except PolicyEnforcementFailure:
            raise
        except Exception as e:
            raise PolicyEnforcementFailure(
                f"Policy evaluation failed unexpectedly: {type(e).__name__}: {e}. "
                "Cannot safely evaluate requests."
            ) from e

    def check(self, policy: ResolvedPolicy, path: str, operation: str) -> Evaluation:
        """Evaluate a request and raise if it is denied.

        Args:
            policy: The session's resolved rule set.
            path: Normalized request path.
            operation: Requested operation.

        Returns:
            The ALLOW evaluation.

        Raises:
            PermissionDeniedError: If the decision is DENY. The message is
                generic; diagnostics are attached as attributes.
        """
        evaluation = self.explain(policy, path, operation)
        if not evaluation.allowed:
            raise PermissionDeniedError(
                path=path,
                operation=operation,
                decision=evaluation.decision,
                matched_rules=[m.path_pattern for m in evaluation.matched_rules],
                final_rule=evaluation.final_rule,
            )
        return evaluation

    def allows_any(self, policy: ResolvedPolicy, path: str, operations: tuple[str, ...]) -> bool:
        """Check whether at least one of the operations is allowed on the path."""
        return any(self.evaluate(policy, path, op) == Decision.ALLOW for op in operations)

    def _get_most_specific_rule(self, rules: list[CapabilityRule]) -> CapabilityRule:
        """Get the most specific rule from a non-empty list.

        Ties keep the first rule in policy order (preserves predictability).
        """
        scored = [(rule.specificity, idx, rule) for idx, rule in enumerate(rules)]
        scored.sort(key=lambda x: (-x[0][0], -x[0][1], x[1]))
        return scored[0][2]

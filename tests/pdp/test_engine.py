"""Tests for capability rule evaluation.

Tests cover:
- Deny is absolute regardless of specificity or order
- Most specific allow decides
- Default deny (no match, unknown operations)
- Rule validation and merging
- Path normalization and pattern matching
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tenant_vault.exceptions import PermissionDeniedError
from tenant_vault.pdp import Decision, PolicyEngine
from tenant_vault.pdp.matcher import InvalidPathError, match_path_pattern, match_prefix_pattern, normalize_path
from tenant_vault.pdp.policy import ALLOW_OPERATIONS, CapabilityRule, ResolvedPolicy, merge_rules


def rule(pattern: str, *ops: str) -> CapabilityRule:
    return CapabilityRule(path_pattern=pattern, operations=frozenset(ops))


@pytest.fixture
def engine() -> PolicyEngine:
    return PolicyEngine()


@pytest.fixture
def alpha_policy() -> ResolvedPolicy:
    return ResolvedPolicy(
        domain_id="alpha",
        rules=(
            rule("secret/alpha/*", *ALLOW_OPERATIONS),
            rule("secret/alpha", "list"),
            rule("secret/alpha/certs/*", "read"),
            rule("secret/alpha/certs/ca", "deny"),
            rule("secret/beta/*", "deny"),
        ),
    )


class TestDecisions:
    """Allow/deny outcomes."""

    def test_allow_under_own_prefix(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        assert engine.evaluate(alpha_policy, "secret/alpha/app-config", "read") == Decision.ALLOW
        assert engine.evaluate(alpha_policy, "secret/alpha/app-config", "create") == Decision.ALLOW

    def test_list_on_prefix_itself(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        assert engine.evaluate(alpha_policy, "secret/alpha", "list") == Decision.ALLOW
        assert engine.evaluate(alpha_policy, "secret/alpha", "read") == Decision.DENY

    def test_more_specific_allow_narrows(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        """secret/alpha/certs/* (read) beats secret/alpha/* (everything)."""
        assert engine.evaluate(alpha_policy, "secret/alpha/certs/app", "read") == Decision.ALLOW
        assert engine.evaluate(alpha_policy, "secret/alpha/certs/app", "update") == Decision.DENY

    def test_deny_wins_over_matching_allows(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        evaluation = engine.explain(alpha_policy, "secret/alpha/certs/ca", "read")
        assert evaluation.decision == Decision.DENY
        assert evaluation.final_rule == "secret/alpha/certs/ca"

    def test_less_specific_deny_still_wins(self, engine: PolicyEngine) -> None:
        """A broad deny overrides a narrower allow."""
        policy = ResolvedPolicy(
            domain_id="alpha",
            rules=(rule("secret/shared/alpha/*", "read"), rule("secret/shared/*", "deny")),
        )
        assert engine.evaluate(policy, "secret/shared/alpha/key", "read") == Decision.DENY

    def test_rule_order_does_not_matter(self, engine: PolicyEngine) -> None:
        forward = ResolvedPolicy(domain_id="a", rules=(rule("x/*", "read"), rule("x/y", "deny")))
        backward = ResolvedPolicy(domain_id="a", rules=(rule("x/y", "deny"), rule("x/*", "read")))
        assert engine.evaluate(forward, "x/y", "read") == Decision.DENY
        assert engine.evaluate(backward, "x/y", "read") == Decision.DENY

    def test_exact_beats_wildcard_with_same_literal(self, engine: PolicyEngine) -> None:
        policy = ResolvedPolicy(domain_id="a", rules=(rule("x/key*", "read", "update"), rule("x/key", "read")))
        assert engine.evaluate(policy, "x/key", "update") == Decision.DENY
        assert engine.evaluate(policy, "x/keys", "update") == Decision.ALLOW

    def test_no_match_denies(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        evaluation = engine.explain(alpha_policy, "secret/gamma/app-config", "read")
        assert evaluation.decision == Decision.DENY
        assert evaluation.matched_rules == ()
        assert evaluation.final_rule is None

    @pytest.mark.parametrize("operation", ["deny", "sudo", ""])
    def test_unknown_operation_denies(
        self, engine: PolicyEngine, alpha_policy: ResolvedPolicy, operation: str
    ) -> None:
        assert engine.evaluate(alpha_policy, "secret/alpha/app-config", operation) == Decision.DENY

    def test_other_domain_denied(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        assert engine.evaluate(alpha_policy, "secret/beta/app-config", "read") == Decision.DENY

    def test_allows_any(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        assert engine.allows_any(alpha_policy, "secret/alpha/certs/app", ("create", "read"))
        assert not engine.allows_any(alpha_policy, "secret/alpha/certs/app", ("create", "update"))


class TestCheck:
    """PolicyEngine.check raises generic errors with diagnostics attached."""

    def test_check_returns_evaluation_on_allow(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        evaluation = engine.check(alpha_policy, "secret/alpha/app-config", "read")
        assert evaluation.allowed
        assert evaluation.final_rule == "secret/alpha/*"

    def test_check_raises_generic_error(self, engine: PolicyEngine, alpha_policy: ResolvedPolicy) -> None:
        with pytest.raises(PermissionDeniedError) as exc_info:
            engine.check(alpha_policy, "secret/beta/app-config", "read")

        error = exc_info.value
        assert str(error) == "permission denied"
        assert "beta" not in str(error)
        assert error.error_data["path"] == "secret/beta/app-config"
        assert error.error_data["final_rule"] == "secret/beta/*"
        assert error.error_data["decision"] == "deny"

    def test_denial_message_same_for_existing_and_missing_paths(
        self, engine: PolicyEngine, alpha_policy: ResolvedPolicy
    ) -> None:
        messages = set()
        for path in ("secret/beta/app-config", "secret/beta/does-not-exist", "secret/nowhere"):
            with pytest.raises(PermissionDeniedError) as exc_info:
                engine.check(alpha_policy, path, "read")
            messages.add(str(exc_info.value))
        assert messages == {"permission denied"}


class TestRules:
    """CapabilityRule validation and merging."""

    @pytest.mark.parametrize("pattern", ["secret/*/app", "secret/a?", "secret/[ab]", "  /  "])
    def test_invalid_patterns_rejected(self, pattern: str) -> None:
        with pytest.raises(ValidationError):
            rule(pattern, "read")

    def test_deny_cannot_mix_with_allows(self) -> None:
        with pytest.raises(ValidationError):
            rule("secret/alpha/*", "deny", "read")

    def test_empty_operations_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CapabilityRule(path_pattern="secret/alpha", operations=frozenset())

    def test_slashes_stripped(self) -> None:
        assert rule("/secret/alpha/", "list").path_pattern == "secret/alpha"

    def test_merge_unions_operations(self) -> None:
        merged = merge_rules([rule("x/*", "read"), rule("y", "list"), rule("x/*", "update")])
        assert [r.path_pattern for r in merged] == ["x/*", "y"]
        assert merged[0].operations == frozenset({"read", "update"})

    def test_merge_deny_absorbs_allow(self) -> None:
        merged = merge_rules([rule("x/*", "read"), rule("x/*", "deny"), rule("x/*", "update")])
        assert len(merged) == 1
        assert merged[0].is_deny

    def test_fingerprint_depends_only_on_content(self) -> None:
        a = ResolvedPolicy(domain_id="alpha", rules=(rule("x/*", "read"),))
        b = ResolvedPolicy(domain_id="alpha", rules=(rule("x/*", "read"), rule("x/*", "read")))
        c = ResolvedPolicy(domain_id="alpha", rules=(rule("x/*", "update"),))
        assert a.fingerprint == b.fingerprint
        assert a.fingerprint != c.fingerprint
        assert a.fingerprint.startswith("pol_")


class TestMatcher:
    """Path normalization and pattern matching."""

    def test_normalize_strips_slashes(self) -> None:
        assert normalize_path("/secret/alpha/app-config/") == "secret/alpha/app-config"

    @pytest.mark.parametrize("path", ["", "/", "secret//alpha", "secret/alpha/../beta", "secret/./alpha"])
    def test_normalize_rejects_traversal(self, path: str) -> None:
        with pytest.raises(InvalidPathError):
            normalize_path(path)

    def test_prefix_pattern(self) -> None:
        assert match_prefix_pattern("system:serviceaccount:alpha:*", "system:serviceaccount:alpha:app")
        assert not match_prefix_pattern("system:serviceaccount:alpha:*", "system:serviceaccount:alphabet:app")
        assert match_prefix_pattern("exact", "exact")
        assert not match_prefix_pattern("exact", "exactly")
        assert not match_prefix_pattern("x*", None)

    def test_path_pattern_ignores_slashes(self) -> None:
        assert match_path_pattern("secret/alpha/*", "/secret/alpha/app-config")
        assert not match_path_pattern("secret/alpha/*", "secret/alphabet/app-config")

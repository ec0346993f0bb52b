"""
Rule Evaluator for AgentGate.

The evaluator maps (PolicyPack, PolicyInput) to a PolicyResult. It is a
pure function: no I/O, no mutation, and the same arguments always produce
the same result. Persisting the decision is the caller's job.

Design Principles:
    - Conjunctive: any failing category denies the whole decision
    - Open by omission: a category absent from the pack imposes nothing
    - Vacuous satisfaction: checks over missing optional facts pass
    - Auditable: every failure carries a stable reason code

How it works:
    1. The input is flattened into a document once
    2. Categories are visited in canonical order
    3. Each enabled category runs its checks (custom or built-in)
    4. A definitely-false check appends its reason code
    5. No reason codes means ["all_checks_passed"]
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from agentgate.errors import AgentGateError, PolicyEvaluationError
from agentgate.policy.defaults import default_checks
from agentgate.policy.predicates import evaluate_predicate, iter_paths
from agentgate.schema import (
    CategoryRule,
    PolicyInput,
    PolicyPack,
    PolicyResult,
    RuleCategory,
    RuleCheck,
)

# Top-level keys of PolicyInput.to_document()
DOCUMENT_ROOTS = frozenset({"agent", "task", "tool", "organization", "context"})


@dataclass(frozen=True)
class CheckTrace:
    """
    Outcome of a single check, for explanations.

    Attributes:
        category: Category the check belongs to
        reason_code: Code emitted when the check fails
        outcome: True, False, or None (unknown, counts as pass)
        builtin: Whether the check came from the category defaults
    """

    category: RuleCategory
    reason_code: str
    outcome: bool | None
    builtin: bool

    @property
    def failed(self) -> bool:
        return self.outcome is False


class PolicyEngine:
    """
    Evaluates a single policy pack.

    Usage:
        engine = PolicyEngine(pack)
        result = engine.evaluate(policy_input)
        if result.deny:
            print(result.reason_codes)

    Attributes:
        pack: The pack being enforced
    """

    def __init__(self, pack: PolicyPack) -> None:
        self.pack = pack

    def evaluate(self, policy_input: PolicyInput) -> PolicyResult:
        """
        Evaluate the pack against an input.

        Args:
            policy_input: Facts for this decision

        Returns:
            PolicyResult with allow/deny and ordered reason codes

        Raises:
            PolicyEvaluationError: If a check cannot be evaluated
        """
        reason_codes: list[str] = []
        for trace in self.explain(policy_input):
            if trace.failed and trace.reason_code not in reason_codes:
                reason_codes.append(trace.reason_code)

        context = policy_input.model_dump(mode="json", exclude_none=True)
        if reason_codes:
            return PolicyResult.denied(reason_codes, context)
        return PolicyResult.passed(context)

    def explain(self, policy_input: PolicyInput) -> list[CheckTrace]:
        """Evaluate every check and return the per-check outcomes."""
        document = policy_input.to_document()
        traces: list[CheckTrace] = []

        for category in self.pack.enabled_categories():
            rule = self.pack.rules[category]
            checks, builtin = self._checks_for(category, rule)
            for check in checks:
                traces.append(
                    CheckTrace(
                        category=category,
                        reason_code=check.reason_code,
                        outcome=self._run_check(category, check, document),
                        builtin=builtin,
                    )
                )

        return traces

    def validate(self) -> list[str]:
        """Static problems with the pack; see validate_rules()."""
        return validate_rules(self.pack.rules)

    def _checks_for(
        self,
        category: RuleCategory,
        rule: CategoryRule,
    ) -> tuple[tuple[RuleCheck, ...], bool]:
        if rule.checks:
            return tuple(rule.checks), False
        return default_checks(category), True

    def _run_check(
        self,
        category: RuleCategory,
        check: RuleCheck,
        document: dict[str, Any],
    ) -> bool | None:
        try:
            return evaluate_predicate(check.predicate, document)
        except PolicyEvaluationError as e:
            if not e.category:
                e.category = category.value
                e.context["category"] = category.value
            raise
        except AgentGateError:
            raise
        except Exception as e:
            raise PolicyEvaluationError(
                category=category.value,
                underlying_error=f"{type(e).__name__}: {e}",
            ) from e


def evaluate(pack: PolicyPack, policy_input: PolicyInput) -> PolicyResult:
    """Evaluate ``pack`` against ``policy_input``."""
    return PolicyEngine(pack).evaluate(policy_input)


def validate_rules(rules: Mapping[RuleCategory, CategoryRule]) -> list[str]:
    """
    Find problems that parse cleanly but make a pack misbehave.

    Reported:
        - No enabled category (the pack allows everything)
        - A path or ref outside the input document roots, which can never
          resolve and so always leaves its check unknown

    Returns:
        Human-readable problems, empty when none were found
    """
    problems: list[str] = []
    if not any(rule.enabled for rule in rules.values()):
        problems.append("no enabled categories: every input will be allowed")

    for category, rule in rules.items():
        for check in rule.checks:
            for path in iter_paths(check.predicate):
                root = path.split(".", 1)[0]
                if root not in DOCUMENT_ROOTS:
                    problems.append(
                        f"{category.value}/{check.reason_code}: path {path!r} does not "
                        f"start with one of {', '.join(sorted(DOCUMENT_ROOTS))}"
                    )
    return problems

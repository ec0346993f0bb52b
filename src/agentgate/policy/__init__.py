"""
Policy evaluation for AgentGate.

The evaluator is the decision core: it maps a pack and an input snapshot
to an allow/deny result with reason codes. It never touches storage.

Key Components:
    - PolicyEngine / evaluate: Conjunctive category evaluation
    - evaluate_predicate: Three-valued predicate trees
    - default_checks: Built-in checks per category
"""

from agentgate.policy.defaults import DATA_CLASS_CREDENTIALS, default_checks
from agentgate.policy.engine import CheckTrace, PolicyEngine, evaluate, validate_rules
from agentgate.policy.predicates import evaluate_predicate, iter_paths, resolve_path

__all__ = [
    "CheckTrace",
    "DATA_CLASS_CREDENTIALS",
    "PolicyEngine",
    "default_checks",
    "evaluate",
    "evaluate_predicate",
    "iter_paths",
    "resolve_path",
    "validate_rules",
]

"""
Built-in checks for each rule category.

A category listed in a pack without explicit ``checks`` is evaluated with
the checks below. They are plain predicate data, the same shape a pack
author would write, so the evaluator has no per-category code paths.
"""

from agentgate.schema import RuleCategory, RuleCheck

# Credentials an agent must hold for each task data class
DATA_CLASS_CREDENTIALS: dict[str, str] = {
    "PHI": "HIPAA_COMPLIANT",
    "PII": "NO_PII_VIOLATIONS_90D",
    "PCI": "PCI_DSS_COMPLIANT",
    "GDPR": "GDPR_COMPLIANT",
}

DEFAULT_MAX_RETENTION_DAYS = 90
STAKE_FREE_BUDGET = 5000
STAKE_RATIO = 0.1


def _credential_checks() -> dict:
    return {
        "all": [
            {
                "any": [
                    {"path": "task.requirements.data_class", "op": "ne", "value": data_class},
                    {"path": "agent.credential_types", "op": "contains", "value": credential},
                ]
            }
            for data_class, credential in DATA_CLASS_CREDENTIALS.items()
        ]
    }


_DEFAULT_CHECKS: dict[RuleCategory, list[dict]] = {
    RuleCategory.DATA_RESIDENCY: [
        {
            "predicate": {
                "path": "agent.regions",
                "op": "contains",
                "ref": "task.requirements.region",
                "default": [],
            },
            "reason_code": "data_residency_violation",
        },
    ],
    RuleCategory.TOOL_PERMISSIONS: [
        {
            "predicate": _credential_checks(),
            "reason_code": "missing_required_credentials",
        },
        {
            "predicate": {"path": "agent.tools", "op": "contains", "ref": "tool"},
            "reason_code": "tool_not_permitted",
        },
    ],
    RuleCategory.SPEND_LIMITS: [
        {
            "predicate": {"path": "task.budget", "op": "lte", "ref": "agent.spend_limit"},
            "reason_code": "spend_limit_exceeded",
        },
    ],
    RuleCategory.REPUTATION_THRESHOLD: [
        {
            "predicate": {
                "path": "agent.reputation",
                "op": "gte",
                "ref": "task.requirements.min_trust_score",
                "default": 0,
            },
            "reason_code": "insufficient_reputation",
        },
    ],
    RuleCategory.AUDIT_TRAIL: [
        {
            "predicate": {
                "any": [
                    {"path": "task.requirements.industry", "op": "ne", "value": "finance"},
                    {
                        "path": "agent.features.full_audit_trail",
                        "op": "eq",
                        "value": True,
                        "default": False,
                    },
                ]
            },
            "reason_code": "audit_trail_required",
        },
    ],
    RuleCategory.RETENTION_POLICY: [
        {
            "predicate": {
                "path": "task.requirements.retention_days",
                "op": "lte",
                "value": DEFAULT_MAX_RETENTION_DAYS,
            },
            "reason_code": "retention_limit_exceeded",
        },
    ],
    RuleCategory.STAKE_REQUIREMENT: [
        {
            "predicate": {
                "any": [
                    {"path": "task.budget", "op": "lte", "value": STAKE_FREE_BUDGET},
                    {
                        "path": "agent.active_stake",
                        "op": "gte",
                        "ref": "task.budget",
                        "scale": STAKE_RATIO,
                    },
                ]
            },
            "reason_code": "insufficient_stake",
        },
    ],
    RuleCategory.BLACKLIST: [
        {
            "predicate": {"path": "organization.blacklist", "op": "excludes", "ref": "agent.id"},
            "reason_code": "agent_blacklisted",
        },
    ],
}

DEFAULT_CHECKS: dict[RuleCategory, tuple[RuleCheck, ...]] = {
    category: tuple(RuleCheck.model_validate(c) for c in checks)
    for category, checks in _DEFAULT_CHECKS.items()
}


def default_checks(category: RuleCategory) -> tuple[RuleCheck, ...]:
    """Return the built-in checks for a category."""
    return DEFAULT_CHECKS[category]

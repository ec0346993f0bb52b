"""
Schema definitions for AgentGate.

This module defines the Pydantic models used throughout AgentGate:
- RuleCategory/CategoryRule/RuleCheck: What a policy pack contains
- Predicate models: The structured rule language (all/any/not/compare)
- PolicyPack: A versioned, scoped bundle of category rules
- AgentFacts/TaskFacts/OrganizationFacts/PolicyInput: Read-only facts
- PolicyResult/PolicyDecision/CheckpointResult: Evaluation outcomes

Design Decisions:
    - Fact and result models are frozen; a snapshot never changes after capture
    - Rule models forbid unknown fields so typos fail at pack creation
    - Categories keep their camelCase wire names; everything else is snake_case
    - Predicate paths address the flattened document from PolicyInput.to_document()
"""

import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from agentgate.errors import PolicyPackValidationError

INITIAL_VERSION = "1.0.0"
ALL_CHECKS_PASSED = "all_checks_passed"

_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")


# =============================================================================
# Enums
# =============================================================================


class RuleCategory(str, Enum):
    """
    The fixed set of rule categories a pack may define.

    Declaration order is the canonical evaluation order.
    """

    DATA_RESIDENCY = "dataResidency"
    TOOL_PERMISSIONS = "toolPermissions"
    SPEND_LIMITS = "spendLimits"
    REPUTATION_THRESHOLD = "reputationThreshold"
    AUDIT_TRAIL = "auditTrail"
    RETENTION_POLICY = "retentionPolicy"
    STAKE_REQUIREMENT = "stakeRequirement"
    BLACKLIST = "blacklist"


CANONICAL_ORDER: tuple[RuleCategory, ...] = tuple(RuleCategory)


class CompareOp(str, Enum):
    """Comparison operators available to predicate leaves."""

    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    EXCLUDES = "excludes"
    CONTAINS_ALL = "contains_all"
    EXISTS = "exists"


class DecisionOutcome(str, Enum):
    """Outcome recorded in the decision log."""

    ALLOW = "ALLOW"
    DENY = "DENY"


class Checkpoint(str, Enum):
    """Lifecycle call site that requested a decision."""

    BID = "bid"
    ASSIGNMENT = "assignment"
    TOOL = "tool"
    MANUAL = "manual"


# =============================================================================
# Predicate Models
# =============================================================================


class Compare(BaseModel):
    """
    Comparison leaf.

    The left operand is read from ``path``. The right operand is either a
    literal ``value`` or another path given as ``ref`` (optionally multiplied
    by ``scale``). ``default`` stands in for a missing left operand; without
    one a missing operand makes the leaf unknown.

    Attributes:
        path: Dotted path of the left operand (e.g. "agent.regions")
        op: Comparison operator
        value: Literal right operand
        ref: Dotted path of the right operand
        scale: Multiplier applied to a numeric ``ref`` operand
        default: Value used when ``path`` is missing
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = Field(..., min_length=1)
    op: CompareOp
    value: Any = None
    ref: str | None = None
    scale: float | None = None
    default: Any = None

    @model_validator(mode="after")
    def validate_operands(self) -> "Compare":
        """A leaf needs exactly one right operand, except for ``exists``."""
        if self.op == CompareOp.EXISTS:
            return self
        if self.value is None and self.ref is None:
            msg = f"{self.op.value} on {self.path} needs a value or ref"
            raise ValueError(msg)
        if self.value is not None and self.ref is not None:
            msg = f"{self.op.value} on {self.path} takes value or ref, not both"
            raise ValueError(msg)
        if self.scale is not None and self.ref is None:
            msg = "scale only applies to ref operands"
            raise ValueError(msg)
        return self


class AllOf(BaseModel):
    """Conjunction: true only when every child is true."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    all: list["Predicate"] = Field(..., min_length=1)


class AnyOf(BaseModel):
    """Disjunction: true when at least one child is true."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    any: list["Predicate"] = Field(..., min_length=1)


class NotOf(BaseModel):
    """Negation of a single child."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    not_: "Predicate" = Field(..., alias="not")


Predicate = Union[AllOf, AnyOf, NotOf, Compare]

AllOf.model_rebuild()
AnyOf.model_rebuild()
NotOf.model_rebuild()


# =============================================================================
# Rule Models
# =============================================================================


class RuleCheck(BaseModel):
    """
    One predicate and the reason code emitted when it is definitely false.

    Attributes:
        predicate: Predicate tree to evaluate
        reason_code: Stable snake_case code appended on failure
        description: Optional human-readable note
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    predicate: Predicate
    reason_code: str = Field(..., pattern=r"^[a-z][a-z0-9_]*$")
    description: str = ""


class CategoryRule(BaseModel):
    """
    Definition of a single rule category inside a pack.

    An empty ``checks`` list means the category's built-in checks apply.
    ``source`` keeps any policy text supplied with the rule; it is stored
    for reference and never executed.

    Shorthands accepted on input:
        "some text" -> enabled, default checks, source="some text"
        true / null -> enabled, default checks
        false       -> disabled
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str = ""
    enabled: bool = True
    checks: list[RuleCheck] = Field(default_factory=list)
    source: str | None = None

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        """Expand string/bool shorthands into a full rule definition."""
        if data is None or data is True:
            return {}
        if data is False:
            return {"enabled": False}
        if isinstance(data, str):
            return {"source": data}
        return data


def parse_rules(raw: Mapping[str, Any], pack_id: str = "") -> dict[RuleCategory, CategoryRule]:
    """
    Validate a raw category -> rule mapping.

    Args:
        raw: Mapping of category names to rule definitions
        pack_id: Pack ID for error context (empty on create)

    Returns:
        Mapping keyed by RuleCategory, in canonical order

    Raises:
        PolicyPackValidationError: If the rules are not a mapping, no category
            is given, a category name is unknown, or a rule body does not
            validate
    """
    if not isinstance(raw, Mapping):
        raise PolicyPackValidationError(
            pack_id=pack_id,
            validation_error=f"rules must be a mapping of categories, got {type(raw).__name__}",
        )
    if not raw:
        raise PolicyPackValidationError(
            pack_id=pack_id,
            validation_error="at least one rule category is required",
        )

    known = {c.value: c for c in RuleCategory}
    unknown = sorted(str(k) for k in raw if str(getattr(k, "value", k)) not in known)
    if unknown:
        raise PolicyPackValidationError(
            pack_id=pack_id,
            validation_error=f"unknown rule categories: {', '.join(unknown)}",
            suggestion=f"Valid categories: {', '.join(known)}",
        )

    parsed: dict[RuleCategory, CategoryRule] = {}
    for key, body in raw.items():
        category = known[str(getattr(key, "value", key))]
        try:
            parsed[category] = (
                body if isinstance(body, CategoryRule) else CategoryRule.model_validate(body)
            )
        except ValidationError as e:
            raise PolicyPackValidationError(
                pack_id=pack_id,
                validation_error=f"{category.value}: {e}",
            ) from e

    return {c: parsed[c] for c in CANONICAL_ORDER if c in parsed}


def bump_patch(version: str) -> str:
    """Return the next patch version: 1.2.3 -> 1.2.4."""
    if not _VERSION_RE.match(version):
        msg = f"Invalid semantic version: {version}"
        raise ValueError(msg)
    major, minor, patch = (int(p) for p in version.split("."))
    return f"{major}.{minor}.{patch + 1}"


class PolicyPack(BaseModel):
    """
    A versioned bundle of category rules.

    Attributes:
        id: Unique identifier
        name: Human-readable name
        version: Semantic version, bumped on every update
        scope: Organization ID, or None for the global default
        rules: Category -> rule definition
        created_by: Actor that created the pack
        created_at: Creation timestamp
        updated_at: Last update timestamp
        archived_at: Soft-delete timestamp (None while active)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str = Field(..., min_length=1)
    version: str = INITIAL_VERSION
    scope: str | None = None
    rules: dict[RuleCategory, CategoryRule]
    created_by: str = "system"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None
    archived_at: datetime | None = None

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Versions are plain major.minor.patch."""
        if not _VERSION_RE.match(v):
            msg = f"Invalid semantic version: {v}"
            raise ValueError(msg)
        return v

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def enabled_categories(self) -> list[RuleCategory]:
        """Categories present and enabled, in canonical order."""
        return [c for c in CANONICAL_ORDER if c in self.rules and self.rules[c].enabled]


# =============================================================================
# Fact Models
# =============================================================================


class Credential(BaseModel):
    """A verifiable credential held by an agent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str
    issuer: str | None = None
    revoked: bool = False
    expires_at: datetime | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        """Not revoked and either no expiry or expiry in the future."""
        if self.revoked:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(UTC)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return expires > now


class StakePosition(BaseModel):
    """An amount staked by an agent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    amount: float = Field(..., ge=0)
    status: str = "ACTIVE"


class Approval(BaseModel):
    """An approval attached to a task or organization (e.g. HIGH_VALUE)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str
    status: str = "PENDING"


class AgentFacts(BaseModel):
    """
    Read-only snapshot of an agent.

    Credentials are expected to be pre-filtered to active ones by the
    provider. ``tools`` of None means the agent declares no tool list.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    org_id: str | None = None
    status: str = "ACTIVE"
    region: str | None = None
    regions: list[str] = Field(default_factory=list)
    tools: list[str] | None = None
    features: dict[str, bool] = Field(default_factory=dict)
    credentials: list[Credential] = Field(default_factory=list)
    reputation_score: float = 0.0
    compliance_score: float | None = None
    spend_limit_per_task: float | None = None
    stake_positions: list[StakePosition] = Field(default_factory=list)


class TaskRequirements(BaseModel):
    """Optional constraints a task places on the agent that runs it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    region: str | None = None
    data_class: str | None = None
    min_trust_score: float | None = None
    retention_days: int | None = None
    industry: str | None = None


class TaskFacts(BaseModel):
    """Read-only snapshot of a task."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    title: str = ""
    org_id: str | None = None
    budget: float = 0.0
    requirements: TaskRequirements = Field(default_factory=TaskRequirements)
    approvals: list[Approval] = Field(default_factory=list)


class OrganizationFacts(BaseModel):
    """Read-only snapshot of an organization."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    blacklist: list[str] = Field(default_factory=list)
    approvals: list[Approval] = Field(default_factory=list)


def _approved_types(approvals: list[Approval]) -> list[str]:
    return sorted({a.type for a in approvals if a.status == "APPROVED"})


class PolicyInput(BaseModel):
    """
    Everything the evaluator may look at for one decision.

    Attributes:
        agent: Agent snapshot
        task: Task snapshot (absent for tool checks)
        tool: Tool name (runtime checks only)
        organization: Organization snapshot
        context: Free-form caller context merged into the document
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    agent: AgentFacts | None = None
    task: TaskFacts | None = None
    tool: str | None = None
    organization: OrganizationFacts | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        """
        Flatten into the nested dict that predicate paths address.

        Derived keys:
            agent.regions          declared regions plus the home region
            agent.credential_types sorted credential type names
            agent.active_stake     sum of ACTIVE stake positions
            agent.spend_limit      per-task limit, +inf when undeclared
            agent.reputation       overall reputation score
            task.approved_types    approval types with status APPROVED
            organization.approved_types
        """
        doc: dict[str, Any] = {"context": dict(self.context)}

        if self.agent is not None:
            agent = self.agent.model_dump(mode="json")
            regions = list(self.agent.regions)
            if self.agent.region and self.agent.region not in regions:
                regions.append(self.agent.region)
            agent["regions"] = regions
            agent["credential_types"] = sorted({c.type for c in self.agent.credentials})
            agent["active_stake"] = sum(
                s.amount for s in self.agent.stake_positions if s.status == "ACTIVE"
            )
            agent["spend_limit"] = (
                self.agent.spend_limit_per_task
                if self.agent.spend_limit_per_task is not None
                else math.inf
            )
            agent["reputation"] = self.agent.reputation_score
            doc["agent"] = agent

        if self.task is not None:
            task = self.task.model_dump(mode="json")
            task["approved_types"] = _approved_types(self.task.approvals)
            doc["task"] = task

        if self.tool is not None:
            doc["tool"] = self.tool

        if self.organization is not None:
            org = self.organization.model_dump(mode="json")
            org["approved_types"] = _approved_types(self.organization.approvals)
            doc["organization"] = org

        return doc


# =============================================================================
# Result Models
# =============================================================================


class PolicyResult(BaseModel):
    """
    Outcome of evaluating one pack against one input.

    Attributes:
        allow: Whether the action is permitted
        deny: Whether any category denied
        reason_codes: Ordered, non-empty list of reason codes
        context: JSON-safe echo of the input for audit
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allow: bool
    deny: bool
    reason_codes: list[str] = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_consistency(self) -> "PolicyResult":
        if self.deny and self.allow:
            msg = "a denied result cannot also allow"
            raise ValueError(msg)
        return self

    @classmethod
    def passed(cls, context: dict[str, Any] | None = None) -> "PolicyResult":
        """Create a result for a pack whose checks all passed."""
        return cls(allow=True, deny=False, reason_codes=[ALL_CHECKS_PASSED], context=context or {})

    @classmethod
    def denied(cls, reason_codes: list[str], context: dict[str, Any] | None = None) -> "PolicyResult":
        """Create a DENY result."""
        return cls(allow=False, deny=True, reason_codes=reason_codes, context=context or {})

    @property
    def outcome(self) -> DecisionOutcome:
        return DecisionOutcome.DENY if self.deny else DecisionOutcome.ALLOW


class PolicyDecision(BaseModel):
    """
    An immutable decision log entry.

    Pack name and version are copied in at write time so the entry stays
    readable after the pack is edited or archived.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    policy_pack_id: str
    pack_name: str
    pack_version: str
    agent_id: str | None = None
    task_id: str | None = None
    task_title: str | None = None
    checkpoint: Checkpoint = Checkpoint.MANUAL
    decision: DecisionOutcome
    reason_codes: list[str]
    context: dict[str, Any] = Field(default_factory=dict)
    decided_at: datetime


class CheckpointResult(BaseModel):
    """
    What a checkpoint returns to its caller.

    Attributes:
        allowed: Whether the gated action may proceed
        reasons: Machine-readable reason codes
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool
    reasons: list[str] = Field(..., min_length=1)

    @classmethod
    def allow(cls, *reasons: str) -> "CheckpointResult":
        """Create an allowed result."""
        return cls(allowed=True, reasons=list(reasons))

    @classmethod
    def deny(cls, *reasons: str) -> "CheckpointResult":
        """Create a denied result."""
        return cls(allowed=False, reasons=list(reasons))


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_rules(path: Path | str) -> dict[RuleCategory, CategoryRule]:
    """
    Load a category -> rule mapping from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        PolicyPackValidationError: If the rules don't validate
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return parse_rules(data or {})


def load_input(path: Path | str) -> PolicyInput:
    """Load a PolicyInput from a YAML file."""
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return PolicyInput.model_validate(data or {})

"""
Checkpoint adapters for AgentGate.

PolicyGate is the orchestration layer that the marketplace calls before
an agent bids, before a task is assigned, and before a tool runs. It
coordinates between:
- FactsProvider: Loads agent, task and organization snapshots
- GateDB: Resolves the applicable policy pack
- PolicyEngine: Evaluates the pack
- DecisionLog: Records every decision

Failure Policy:
    - Missing agent or task: DENY with "not_found" (fail-closed)
    - No pack for the org and no global pack: ALLOW with
      "no_policy_pack_configured" (fail-open)
    - Unexpected error while resolving or evaluating: ALLOW with
      "policy_evaluation_error", logged for operators (fail-open)

The asymmetry is deliberate business policy: missing configuration must
never block the marketplace, but an unknown agent or task never passes.
Checkpoint methods return a CheckpointResult for every domain outcome and
only raise for malformed arguments.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from agentgate.audit import DecisionLog
from agentgate.errors import PolicyPackNotFoundError
from agentgate.facts import FactsProvider
from agentgate.policy import PolicyEngine
from agentgate.schema import (
    Checkpoint,
    CheckpointResult,
    OrganizationFacts,
    PolicyInput,
    PolicyPack,
    PolicyResult,
)
from agentgate.store import GateDB

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
NO_POLICY_PACK = "no_policy_pack_configured"
EVALUATION_ERROR = "policy_evaluation_error"

DEFAULT_MAX_WORKERS = 8


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{name} must be a non-empty string, got {value!r}"
        raise ValueError(msg)
    return value


class PolicyGate:
    """
    Policy checkpoints for the marketplace lifecycle.

    Usage:
        gate = PolicyGate(db, facts)
        result = gate.can_agent_bid("agent-1", "task-9")
        if not result.allowed:
            reject(result.reasons)

    Attributes:
        db: Pack store and decision storage
        facts: Read model for agents, tasks and organizations
        decision_log: Audit trail the decisions are written to
        max_workers: Thread pool size for batch evaluation
    """

    def __init__(
        self,
        db: GateDB,
        facts: FactsProvider,
        decision_log: DecisionLog | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.db = db
        self.facts = facts
        self.decision_log = decision_log or DecisionLog(db)
        self.max_workers = max_workers

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def can_agent_bid(self, agent_id: str, task_id: str) -> CheckpointResult:
        """Gate bid submission for an agent on a task."""
        return self._check_task(agent_id, task_id, Checkpoint.BID)

    def can_assign_task(self, agent_id: str, task_id: str) -> CheckpointResult:
        """
        Gate task assignment.

        Runs the same evaluation as bidding again, because the agent's
        credentials or reputation may have changed since the bid.
        """
        return self._check_task(agent_id, task_id, Checkpoint.ASSIGNMENT)

    def can_invoke_tool(
        self,
        agent_id: str,
        tool_name: str,
        context: dict[str, Any] | None = None,
    ) -> CheckpointResult:
        """
        Gate a runtime tool invocation.

        The pack is resolved by the agent's organization. ``context`` is
        merged into the input; a ``task_id`` key pulls in that task's facts.
        """
        _require_id(agent_id, "agent_id")
        _require_id(tool_name, "tool_name")
        context = dict(context or {})

        try:
            agent = self.facts.get_agent(agent_id)
            if agent is None:
                logger.info("Tool check denied: agent %s not found", agent_id)
                return CheckpointResult.deny(NOT_FOUND)

            pack = self.db.resolve_pack(agent.org_id)
            if pack is None:
                return CheckpointResult.allow(NO_POLICY_PACK)

            task_id = context.get("task_id")
            task = self.facts.get_task(task_id) if isinstance(task_id, str) else None

            policy_input = PolicyInput(
                agent=agent,
                task=task,
                tool=tool_name,
                organization=self._organization(agent.org_id),
                context=context,
            )
            return self._decide(pack, policy_input, Checkpoint.TOOL)
        except Exception:
            logger.exception(
                "Policy evaluation failed for agent %s invoking %s; allowing",
                agent_id,
                tool_name,
            )
            return CheckpointResult.allow(EVALUATION_ERROR)

    def batch_evaluate_agents(
        self,
        agent_ids: list[str],
        task_id: str,
    ) -> dict[str, CheckpointResult]:
        """
        Run the bid checkpoint for many agents against one task.

        Evaluations run concurrently and independently; a failure for one
        agent is reported as that agent's result only.
        """
        _require_id(task_id, "task_id")
        if not agent_ids:
            return {}

        results: dict[str, CheckpointResult] = {}
        workers = max(1, min(self.max_workers, len(agent_ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                agent_id: pool.submit(self.can_agent_bid, agent_id, task_id)
                for agent_id in agent_ids
            }
            for agent_id, future in futures.items():
                try:
                    results[agent_id] = future.result()
                except Exception:
                    logger.exception("Batch evaluation failed for agent %r", agent_id)
                    results[agent_id] = CheckpointResult.allow(EVALUATION_ERROR)

        return results

    # =========================================================================
    # Direct Evaluation
    # =========================================================================

    def evaluate_pack(
        self,
        pack_id: str,
        policy_input: PolicyInput,
        checkpoint: Checkpoint = Checkpoint.MANUAL,
    ) -> PolicyResult:
        """
        Evaluate a specific pack and log the decision.

        Unlike the checkpoints this raises: it is meant for testing packs.

        Raises:
            PolicyPackNotFoundError: If the pack doesn't exist
            PolicyEvaluationError: If evaluation fails
        """
        pack = self.db.get_pack(pack_id)
        if pack is None:
            raise PolicyPackNotFoundError(pack_id=pack_id)

        result = PolicyEngine(pack).evaluate(policy_input)
        self.decision_log.log_decision(pack, policy_input, result, checkpoint)
        return result

    # =========================================================================
    # Internals
    # =========================================================================

    def _check_task(
        self,
        agent_id: str,
        task_id: str,
        checkpoint: Checkpoint,
    ) -> CheckpointResult:
        _require_id(agent_id, "agent_id")
        _require_id(task_id, "task_id")

        try:
            agent = self.facts.get_agent(agent_id)
            task = self.facts.get_task(task_id)
            if agent is None or task is None:
                logger.info(
                    "%s check denied: agent %s or task %s not found",
                    checkpoint.value,
                    agent_id,
                    task_id,
                )
                return CheckpointResult.deny(NOT_FOUND)

            pack = self.db.resolve_pack(task.org_id)
            if pack is None:
                return CheckpointResult.allow(NO_POLICY_PACK)

            policy_input = PolicyInput(
                agent=agent,
                task=task,
                organization=self._organization(task.org_id),
            )
            return self._decide(pack, policy_input, checkpoint)
        except Exception:
            logger.exception(
                "Policy evaluation failed at %s for agent %s on task %s; allowing",
                checkpoint.value,
                agent_id,
                task_id,
            )
            return CheckpointResult.allow(EVALUATION_ERROR)

    def _organization(self, org_id: str | None) -> OrganizationFacts | None:
        return self.facts.get_organization(org_id) if org_id else None

    def _decide(
        self,
        pack: PolicyPack,
        policy_input: PolicyInput,
        checkpoint: Checkpoint,
    ) -> CheckpointResult:
        result = PolicyEngine(pack).evaluate(policy_input)
        self.decision_log.log_decision(pack, policy_input, result, checkpoint)
        return CheckpointResult(
            allowed=result.allow and not result.deny,
            reasons=list(result.reason_codes),
        )

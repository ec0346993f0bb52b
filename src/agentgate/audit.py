"""
Decision Log for AgentGate.

Every evaluation a checkpoint performs is written here. The log sits next
to the gated action, not in front of it: a failed write is logged and
counted, and the caller's allow/deny outcome stands regardless.

Also derives per-agent metrics from the log:
    - get_agent_violations: most recent DENY decisions
    - get_compliance_rate: share of non-denied decisions in a trailing window
"""

import logging
import threading
from datetime import UTC, datetime, timedelta

from agentgate.errors import StorageError
from agentgate.schema import (
    Checkpoint,
    DecisionOutcome,
    PolicyDecision,
    PolicyInput,
    PolicyPack,
    PolicyResult,
)
from agentgate.store import GateDB

logger = logging.getLogger(__name__)

DEFAULT_VIOLATIONS_LIMIT = 50
DEFAULT_WINDOW_DAYS = 90


class DecisionLog:
    """
    Append-only audit trail over a GateDB.

    Usage:
        log = DecisionLog(db)
        log.log_decision(pack, policy_input, result, Checkpoint.BID)
        rate = log.get_compliance_rate("agent-1")

    Attributes:
        db: Database the decisions are written to
        write_failures: Number of decisions that could not be persisted
    """

    def __init__(self, db: GateDB) -> None:
        self.db = db
        self.write_failures = 0
        self._failures_lock = threading.Lock()

    def log_decision(
        self,
        pack: PolicyPack,
        policy_input: PolicyInput,
        result: PolicyResult,
        checkpoint: Checkpoint = Checkpoint.MANUAL,
    ) -> str | None:
        """
        Persist one decision.

        Never raises: any failure to persist is logged and counted, so the
        caller's decision stands regardless of audit-log availability.

        Returns:
            The decision ID, or None if the write failed
        """
        agent = policy_input.agent
        task = policy_input.task
        try:
            return self.db.record_decision(
                pack=pack,
                decision=result.outcome,
                reason_codes=list(result.reason_codes),
                context=result.context,
                agent_id=agent.id if agent else None,
                task_id=task.id if task else None,
                task_title=(task.title or None) if task else None,
                checkpoint=checkpoint,
            )
        except Exception as e:
            with self._failures_lock:
                self.write_failures += 1
            logger.error(
                "Failed to log policy decision for pack %s (audit gap #%d): %s",
                pack.id,
                self.write_failures,
                e,
                exc_info=not isinstance(e, StorageError),
            )
            return None

    def get_agent_violations(
        self,
        agent_id: str,
        limit: int = DEFAULT_VIOLATIONS_LIMIT,
    ) -> list[PolicyDecision]:
        """Most recent DENY decisions for an agent, newest first."""
        return self.db.query_decisions(
            agent_id=agent_id,
            decision=DecisionOutcome.DENY,
            limit=limit,
        )

    def get_decisions(
        self,
        policy_pack_id: str | None = None,
        agent_id: str | None = None,
        task_id: str | None = None,
        decision: DecisionOutcome | None = None,
        limit: int = 100,
    ) -> list[PolicyDecision]:
        """Decision history with optional filters, newest first."""
        return self.db.query_decisions(
            policy_pack_id=policy_pack_id,
            agent_id=agent_id,
            task_id=task_id,
            decision=decision,
            limit=limit,
        )

    def get_compliance_rate(
        self,
        agent_id: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> float:
        """
        Percentage of an agent's decisions in the window that were not denied.

        Returns 100.0 when the agent has no decisions in the window.
        """
        since = datetime.now(UTC) - timedelta(days=window_days)
        total, denied = self.db.count_decisions(agent_id, since)
        if total == 0:
            return 100.0
        return (total - denied) / total * 100

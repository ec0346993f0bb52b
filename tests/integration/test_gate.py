"""
Integration tests for PolicyGate checkpoints.

Tests cover:
- Fail-closed on missing agents and tasks
- Fail-open on missing configuration and evaluator errors
- End-to-end residency scenario
- Re-validation at assignment time
- Tool invocation checks
- Batch evaluation
- Decisions written to the audit trail
"""

import pytest

from agentgate.audit import DecisionLog
from agentgate.errors import PolicyPackNotFoundError, StorageWriteError
from agentgate.facts import InMemoryFacts
from agentgate.gate import EVALUATION_ERROR, NO_POLICY_PACK, NOT_FOUND, PolicyGate
from agentgate.schema import (
    ALL_CHECKS_PASSED,
    AgentFacts,
    Checkpoint,
    CheckpointResult,
    Credential,
    DecisionOutcome,
    PolicyInput,
    TaskFacts,
    TaskRequirements,
)
from agentgate.store import GateDB

RESIDENCY = {"dataResidency": {}}
BROKEN = {
    "spendLimits": {
        "checks": [
            {
                "reason_code": "broken_check",
                "predicate": {"path": "task.budget", "op": "lt", "value": "cheap"},
            }
        ]
    }
}


@pytest.fixture
def gate(db: GateDB, facts: InMemoryFacts) -> PolicyGate:
    return PolicyGate(db, facts)


class ExplodingFacts(InMemoryFacts):
    """Facts provider that fails on every agent lookup."""

    def get_agent(self, agent_id: str) -> AgentFacts | None:
        raise RuntimeError("read model unavailable")


# =============================================================================
# Failure Policy
# =============================================================================


class TestFailurePolicy:
    """Fail-open vs fail-closed split."""

    def test_no_pack_fails_open(self, gate: PolicyGate) -> None:
        result = gate.can_agent_bid("agent-us", "task-eu")
        assert result == CheckpointResult(allowed=True, reasons=[NO_POLICY_PACK])

    def test_missing_agent_fails_closed(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("global", RESIDENCY)
        result = gate.can_agent_bid("ghost", "task-eu")
        assert result == CheckpointResult(allowed=False, reasons=[NOT_FOUND])

    def test_missing_task_fails_closed(self, gate: PolicyGate) -> None:
        result = gate.can_assign_task("agent-us", "ghost")
        assert not result.allowed
        assert result.reasons == [NOT_FOUND]

    def test_missing_entity_wins_over_missing_pack(self, gate: PolicyGate) -> None:
        assert not gate.can_agent_bid("ghost", "task-eu").allowed

    def test_evaluation_error_fails_open(
        self, gate: PolicyGate, db: GateDB, caplog: pytest.LogCaptureFixture
    ) -> None:
        db.create_pack("broken", BROKEN, scope="org-a")
        result = gate.can_agent_bid("agent-us", "task-eu")
        assert result == CheckpointResult(allowed=True, reasons=[EVALUATION_ERROR])
        assert "Policy evaluation failed" in caplog.text

    def test_provider_error_fails_open(self, db: GateDB) -> None:
        db.create_pack("global", RESIDENCY)
        gate = PolicyGate(db, ExplodingFacts())
        result = gate.can_invoke_tool("agent-us", "web_search")
        assert result.allowed
        assert result.reasons == [EVALUATION_ERROR]

    @pytest.mark.parametrize(
        "error",
        [
            StorageWriteError(operation="record_decision", underlying_error="locked"),
            OSError("disk full"),
            RuntimeError("store closed"),
        ],
    )
    def test_audit_failure_does_not_change_outcome(
        self,
        db: GateDB,
        facts: InMemoryFacts,
        monkeypatch: pytest.MonkeyPatch,
        error: Exception,
    ) -> None:
        db.create_pack("global", RESIDENCY)

        def fail(*args, **kwargs):
            raise error

        monkeypatch.setattr(db, "record_decision", fail)
        gate = PolicyGate(db, facts)
        result = gate.can_agent_bid("agent-us", "task-eu")
        assert result == CheckpointResult(allowed=False, reasons=["data_residency_violation"])
        assert gate.decision_log.write_failures == 1

    @pytest.mark.parametrize("bad_id", ["", "   ", None, 42])
    def test_malformed_ids_raise(self, gate: PolicyGate, bad_id) -> None:
        with pytest.raises(ValueError):
            gate.can_agent_bid(bad_id, "task-eu")
        with pytest.raises(ValueError):
            gate.can_invoke_tool("agent-us", bad_id)


# =============================================================================
# End-to-end Scenario
# =============================================================================


class TestResidencyScenario:
    """Region mismatch denies; adding the region allows."""

    def test_us_agent_denied_for_eu_task(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("EU only", RESIDENCY, scope="org-a")
        result = gate.can_agent_bid("agent-us", "task-eu")
        assert result == CheckpointResult(allowed=False, reasons=["data_residency_violation"])

    def test_us_eu_agent_allowed(self, db: GateDB, facts: InMemoryFacts) -> None:
        db.create_pack("EU only", RESIDENCY, scope="org-a")
        facts.add_agent(AgentFacts(id="agent-us-eu", org_id="org-a", regions=["US", "EU"]))
        result = PolicyGate(db, facts).can_agent_bid("agent-us-eu", "task-eu")
        assert result == CheckpointResult(allowed=True, reasons=[ALL_CHECKS_PASSED])

    def test_global_pack_applies_without_org_pack(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("global", RESIDENCY)
        assert not gate.can_agent_bid("agent-us", "task-eu").allowed

    def test_org_pack_overrides_global(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("global", RESIDENCY)
        db.create_pack("lenient", {"blacklist": {}}, scope="org-a")
        assert gate.can_agent_bid("agent-us", "task-eu").allowed


# =============================================================================
# Assignment Re-validation
# =============================================================================


class TestAssignment:
    """Assignment runs the evaluation again against fresh facts."""

    def test_revoked_credential_between_bid_and_assign(self, db: GateDB) -> None:
        db.create_pack("hipaa-lite", {"toolPermissions": {}}, scope="org-h")
        facts = InMemoryFacts()
        task = TaskFacts(
            id="t-phi",
            org_id="org-h",
            requirements=TaskRequirements(data_class="PHI"),
        )
        facts.add_task(task)
        facts.add_agent(
            AgentFacts(id="a1", credentials=[Credential(type="HIPAA_COMPLIANT")])
        )
        gate = PolicyGate(db, facts)
        assert gate.can_agent_bid("a1", "t-phi").allowed

        facts.add_agent(
            AgentFacts(id="a1", credentials=[Credential(type="HIPAA_COMPLIANT", revoked=True)])
        )
        result = gate.can_assign_task("a1", "t-phi")
        assert not result.allowed
        assert result.reasons == ["missing_required_credentials"]

    def test_checkpoints_recorded(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("EU only", RESIDENCY, scope="org-a")
        gate.can_agent_bid("agent-us", "task-eu")
        gate.can_assign_task("agent-us", "task-eu")
        decisions = gate.decision_log.get_decisions(agent_id="agent-us")
        assert sorted(d.checkpoint for d in decisions) == [Checkpoint.ASSIGNMENT, Checkpoint.BID]
        assert all(d.task_title == "Summarize EU filings" for d in decisions)


# =============================================================================
# Tool Invocation
# =============================================================================


class TestToolCheckpoint:
    """Runtime tool gating."""

    def test_permitted_tool(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("tools", {"toolPermissions": {}}, scope="org-a")
        assert gate.can_invoke_tool("agent-us", "web_search").allowed

    def test_unlisted_tool(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("tools", {"toolPermissions": {}}, scope="org-a")
        result = gate.can_invoke_tool("agent-us", "shell")
        assert result == CheckpointResult(allowed=False, reasons=["tool_not_permitted"])

    def test_missing_agent(self, gate: PolicyGate) -> None:
        assert gate.can_invoke_tool("ghost", "web_search").reasons == [NOT_FOUND]

    def test_context_task_is_loaded(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("residency", RESIDENCY, scope="org-a")
        assert gate.can_invoke_tool("agent-us", "web_search").allowed
        result = gate.can_invoke_tool("agent-us", "web_search", {"task_id": "task-eu"})
        assert result.reasons == ["data_residency_violation"]

    def test_context_reaches_predicates(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack(
            "sandbox",
            {
                "toolPermissions": {
                    "checks": [
                        {
                            "reason_code": "sandbox_required",
                            "predicate": {"path": "context.sandboxed", "op": "eq", "value": True},
                        }
                    ]
                }
            },
            scope="org-a",
        )
        assert gate.can_invoke_tool("agent-us", "shell", {"sandboxed": True}).allowed
        denied = gate.can_invoke_tool("agent-us", "shell", {"sandboxed": False})
        assert denied.reasons == ["sandbox_required"]

    def test_tool_decision_logged(self, gate: PolicyGate, db: GateDB) -> None:
        db.create_pack("tools", {"toolPermissions": {}}, scope="org-a")
        gate.can_invoke_tool("agent-us", "shell")
        [decision] = gate.decision_log.get_agent_violations("agent-us")
        assert decision.checkpoint == Checkpoint.TOOL
        assert decision.context["tool"] == "shell"


# =============================================================================
# Batch Evaluation
# =============================================================================


class TestBatch:
    """Concurrent evaluation of many agents."""

    def test_batch_results_per_agent(self, db: GateDB, facts: InMemoryFacts) -> None:
        db.create_pack("EU only", RESIDENCY, scope="org-a")
        facts.add_agent(AgentFacts(id="agent-eu", regions=["EU"]))
        gate = PolicyGate(db, facts, max_workers=4)

        results = gate.batch_evaluate_agents(["agent-us", "agent-eu", "ghost"], "task-eu")
        assert results["agent-us"].reasons == ["data_residency_violation"]
        assert results["agent-eu"].allowed
        assert results["ghost"].reasons == [NOT_FOUND]

    def test_empty_batch(self, gate: PolicyGate) -> None:
        assert gate.batch_evaluate_agents([], "task-eu") == {}

    def test_one_failure_does_not_block_others(
        self, db: GateDB, facts: InMemoryFacts, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db.create_pack("EU only", RESIDENCY, scope="org-a")
        facts.add_agent(AgentFacts(id="agent-eu", regions=["EU"]))
        gate = PolicyGate(db, facts)
        original = gate.can_agent_bid

        def flaky(agent_id: str, task_id: str) -> CheckpointResult:
            if agent_id == "agent-eu":
                raise RuntimeError("boom")
            return original(agent_id, task_id)

        monkeypatch.setattr(gate, "can_agent_bid", flaky)
        results = gate.batch_evaluate_agents(["agent-us", "agent-eu"], "task-eu")
        assert results["agent-eu"] == CheckpointResult(allowed=True, reasons=[EVALUATION_ERROR])
        assert results["agent-us"].reasons == ["data_residency_violation"]

    def test_many_agents(self, db: GateDB, facts: InMemoryFacts) -> None:
        db.create_pack("EU only", RESIDENCY, scope="org-a")
        ids = [f"agent-{i}" for i in range(40)]
        for i, agent_id in enumerate(ids):
            facts.add_agent(AgentFacts(id=agent_id, regions=["EU"] if i % 2 else ["US"]))
        results = PolicyGate(db, facts).batch_evaluate_agents(ids, "task-eu")
        assert sum(r.allowed for r in results.values()) == 20
        assert len(DecisionLog(db).get_decisions(limit=100)) == 40


# =============================================================================
# Direct Evaluation
# =============================================================================


class TestEvaluatePack:
    """evaluate_pack raises instead of failing open."""

    def test_evaluate_and_log(self, gate: PolicyGate, db: GateDB) -> None:
        pack_id = db.create_pack("EU only", RESIDENCY)
        policy_input = PolicyInput(
            agent=AgentFacts(id="x", regions=["US"]),
            task=TaskFacts(id="t", requirements=TaskRequirements(region="EU")),
        )
        result = gate.evaluate_pack(pack_id, policy_input)
        assert result.deny
        [decision] = gate.decision_log.get_decisions(policy_pack_id=pack_id)
        assert decision.decision == DecisionOutcome.DENY
        assert decision.checkpoint == Checkpoint.MANUAL

    def test_unknown_pack(self, gate: PolicyGate) -> None:
        with pytest.raises(PolicyPackNotFoundError):
            gate.evaluate_pack("nope", PolicyInput())

"""
Unit tests for the decision log.

Tests cover:
- Logging decisions with entity snapshots
- Violations listing
- Compliance rate bounds
- Write failures never propagating
"""

from datetime import UTC, datetime, timedelta

import pytest

from agentgate.audit import DecisionLog
from agentgate.errors import StorageWriteError
from agentgate.schema import (
    AgentFacts,
    Checkpoint,
    DecisionOutcome,
    PolicyInput,
    PolicyPack,
    PolicyResult,
    TaskFacts,
)
from agentgate.store import GateDB


class FailingDB(GateDB):
    """GateDB whose decision writes always fail."""

    def record_decision(self, *args, **kwargs) -> str:
        raise StorageWriteError(operation="record_decision", underlying_error="disk I/O error")


@pytest.fixture
def pack(db: GateDB) -> PolicyPack:
    return db.get_pack(db.create_pack("Baseline", {"spendLimits": {}}))


@pytest.fixture
def log(db: GateDB) -> DecisionLog:
    return DecisionLog(db)


def bid_input(agent_id: str = "a1") -> PolicyInput:
    return PolicyInput(
        agent=AgentFacts(id=agent_id),
        task=TaskFacts(id="t1", title="Translate contract", budget=10),
    )


def record(db: GateDB, pack: PolicyPack, outcome: DecisionOutcome, days_ago: int = 0) -> None:
    db.record_decision(
        pack,
        outcome,
        ["x"],
        {},
        agent_id="a1",
        decided_at=datetime.now(UTC) - timedelta(days=days_ago),
    )


class TestLogDecision:
    """Tests for log_decision."""

    def test_logs_entities_and_outcome(self, log: DecisionLog, pack: PolicyPack) -> None:
        result = PolicyResult.denied(["spend_limit_exceeded"])
        decision_id = log.log_decision(pack, bid_input(), result, Checkpoint.BID)
        assert decision_id is not None

        [decision] = log.get_decisions(agent_id="a1")
        assert decision.id == decision_id
        assert decision.task_id == "t1"
        assert decision.task_title == "Translate contract"
        assert decision.checkpoint == Checkpoint.BID
        assert decision.decision == DecisionOutcome.DENY

    def test_tool_decision_without_task(self, log: DecisionLog, pack: PolicyPack) -> None:
        policy_input = PolicyInput(agent=AgentFacts(id="a1"), tool="shell")
        log.log_decision(pack, policy_input, PolicyResult.passed(), Checkpoint.TOOL)
        [decision] = log.get_decisions(agent_id="a1")
        assert decision.task_id is None
        assert decision.task_title is None

    def test_write_failure_is_swallowed(self, temp_dir, pack: PolicyPack) -> None:
        with FailingDB(temp_dir / "failing.db") as failing:
            log = DecisionLog(failing)
            assert log.log_decision(pack, bid_input(), PolicyResult.passed()) is None
            assert log.log_decision(pack, bid_input(), PolicyResult.passed()) is None
            assert log.write_failures == 2

    def test_write_failure_is_logged(self, temp_dir, pack: PolicyPack, caplog) -> None:
        with FailingDB(temp_dir / "failing.db") as failing:
            DecisionLog(failing).log_decision(pack, bid_input(), PolicyResult.passed())
        assert "Failed to log policy decision" in caplog.text

    def test_unexpected_write_error_is_swallowed(
        self, log: DecisionLog, pack: PolicyPack, monkeypatch: pytest.MonkeyPatch, caplog
    ) -> None:
        def fail(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(log.db, "record_decision", fail)
        result = PolicyResult.denied(["data_residency_violation"])
        assert log.log_decision(pack, bid_input(), result, Checkpoint.BID) is None
        assert log.write_failures == 1
        assert "disk full" in caplog.text


class TestViolations:
    """Tests for get_agent_violations."""

    def test_only_denials_newest_first(self, db: GateDB, log: DecisionLog, pack: PolicyPack) -> None:
        record(db, pack, DecisionOutcome.DENY, days_ago=3)
        record(db, pack, DecisionOutcome.ALLOW, days_ago=2)
        record(db, pack, DecisionOutcome.DENY, days_ago=1)
        violations = log.get_agent_violations("a1")
        assert len(violations) == 2
        assert all(v.decision == DecisionOutcome.DENY for v in violations)
        assert violations[0].decided_at > violations[1].decided_at
        assert violations[0].pack_name == "Baseline"

    def test_limit(self, db: GateDB, log: DecisionLog, pack: PolicyPack) -> None:
        for _ in range(5):
            record(db, pack, DecisionOutcome.DENY)
        assert len(log.get_agent_violations("a1", limit=2)) == 2


class TestComplianceRate:
    """Tests for get_compliance_rate."""

    def test_no_decisions_is_100(self, log: DecisionLog) -> None:
        assert log.get_compliance_rate("a1") == 100

    def test_all_denied_is_0(self, db: GateDB, log: DecisionLog, pack: PolicyPack) -> None:
        record(db, pack, DecisionOutcome.DENY)
        record(db, pack, DecisionOutcome.DENY)
        assert log.get_compliance_rate("a1") == 0

    def test_half_denied_is_50(self, db: GateDB, log: DecisionLog, pack: PolicyPack) -> None:
        record(db, pack, DecisionOutcome.ALLOW)
        record(db, pack, DecisionOutcome.DENY)
        assert log.get_compliance_rate("a1") == 50

    def test_window_excludes_old_decisions(
        self, db: GateDB, log: DecisionLog, pack: PolicyPack
    ) -> None:
        record(db, pack, DecisionOutcome.DENY, days_ago=120)
        record(db, pack, DecisionOutcome.ALLOW)
        assert log.get_compliance_rate("a1") == 100
        assert log.get_compliance_rate("a1", window_days=365) == 50

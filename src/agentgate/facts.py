"""
Fact providers for AgentGate.

Checkpoints read agents, tasks and organizations through a FactsProvider.
The marketplace's own read models implement the protocol; InMemoryFacts
is the bundled implementation used by the CLI and tests.

Providers hand out agents whose credentials are already filtered to the
active ones (not revoked, no expiry or expiry in the future). The engine
trusts that filtering as-is.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import yaml

from agentgate.schema import AgentFacts, OrganizationFacts, TaskFacts


class FactsProvider(Protocol):
    """Read-only access to the entities a decision needs."""

    def get_agent(self, agent_id: str) -> AgentFacts | None: ...

    def get_task(self, task_id: str) -> TaskFacts | None: ...

    def get_organization(self, org_id: str) -> OrganizationFacts | None: ...


def with_active_credentials(agent: AgentFacts, now: datetime | None = None) -> AgentFacts:
    """Return a copy of ``agent`` holding only its active credentials."""
    now = now or datetime.now(UTC)
    active = [c for c in agent.credentials if c.is_active(now)]
    if len(active) == len(agent.credentials):
        return agent
    return agent.model_copy(update={"credentials": active})


class InMemoryFacts:
    """
    Dictionary-backed FactsProvider.

    Usage:
        facts = InMemoryFacts()
        facts.add_agent(AgentFacts(id="a1", regions=["US"]))
        facts.add_task(TaskFacts(id="t1", budget=100))

    Or load from YAML with top-level ``agents``, ``tasks`` and
    ``organizations`` lists:
        facts = InMemoryFacts.from_yaml("facts.yaml")
    """

    def __init__(self) -> None:
        self._agents: dict[str, AgentFacts] = {}
        self._tasks: dict[str, TaskFacts] = {}
        self._organizations: dict[str, OrganizationFacts] = {}

    def add_agent(self, agent: AgentFacts) -> None:
        self._agents[agent.id] = agent

    def add_task(self, task: TaskFacts) -> None:
        self._tasks[task.id] = task

    def add_organization(self, organization: OrganizationFacts) -> None:
        self._organizations[organization.id] = organization

    def get_agent(self, agent_id: str) -> AgentFacts | None:
        agent = self._agents.get(agent_id)
        return with_active_credentials(agent) if agent else None

    def get_task(self, task_id: str) -> TaskFacts | None:
        return self._tasks.get(task_id)

    def get_organization(self, org_id: str) -> OrganizationFacts | None:
        return self._organizations.get(org_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryFacts":
        """Build a provider from plain data."""
        facts = cls()
        for raw in data.get("agents") or []:
            facts.add_agent(AgentFacts.model_validate(raw))
        for raw in data.get("tasks") or []:
            facts.add_task(TaskFacts.model_validate(raw))
        for raw in data.get("organizations") or []:
            facts.add_organization(OrganizationFacts.model_validate(raw))
        return facts

    @classmethod
    def from_yaml(cls, path: Path | str) -> "InMemoryFacts":
        """
        Load a provider from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValidationError: If an entity doesn't match the schema
        """
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

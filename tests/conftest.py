"""
Pytest configuration and fixtures for AgentGate tests.

This module provides shared fixtures used across unit and integration
tests: a temporary database, a facts provider and sample entities.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from agentgate.facts import InMemoryFacts
from agentgate.schema import (
    AgentFacts,
    Credential,
    OrganizationFacts,
    TaskFacts,
    TaskRequirements,
)
from agentgate.store import GateDB


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir: Path) -> Generator[GateDB, None, None]:
    """Create a database instance in a temporary directory."""
    database = GateDB(temp_dir / "agentgate.db")
    yield database
    database.close()


@pytest.fixture
def us_agent() -> AgentFacts:
    """An active US agent with a HIPAA credential."""
    return AgentFacts(
        id="agent-us",
        org_id="org-a",
        region="US",
        regions=["US"],
        tools=["web_search", "summarize"],
        credentials=[Credential(type="HIPAA_COMPLIANT", issuer="acme")],
        reputation_score=80.0,
        spend_limit_per_task=1000.0,
    )


@pytest.fixture
def eu_task() -> TaskFacts:
    """A task that must run in the EU."""
    return TaskFacts(
        id="task-eu",
        title="Summarize EU filings",
        org_id="org-a",
        budget=500.0,
        requirements=TaskRequirements(region="EU"),
    )


@pytest.fixture
def organization() -> OrganizationFacts:
    """An organization with one blacklisted agent."""
    return OrganizationFacts(id="org-a", blacklist=["agent-banned"])


@pytest.fixture
def facts(us_agent: AgentFacts, eu_task: TaskFacts, organization: OrganizationFacts) -> InMemoryFacts:
    """A facts provider holding the sample entities."""
    provider = InMemoryFacts()
    provider.add_agent(us_agent)
    provider.add_task(eu_task)
    provider.add_organization(organization)
    return provider

"""
AgentGate - Policy decision engine for AI-agent marketplaces.

AgentGate decides whether an agent may bid on a task, be assigned a task,
or invoke a tool at runtime. It provides:
- Versioned, organization-scoped policy packs stored in SQLite
- Deterministic, conjunctive evaluation of category rules
- An audit trail of every decision with compliance rates
- A library of compliance templates (HIPAA, GDPR, FINRA, ...)

Example usage:
    $ agentgate template apply HIPAA_COMPLIANCE --scope org-1
    $ agentgate check bid agent-1 task-9 --facts facts.yaml
    $ agentgate compliance agent-1
"""

__version__ = "0.1.0"
__author__ = "AgentGate Contributors"

from agentgate.audit import DecisionLog
from agentgate.facts import FactsProvider, InMemoryFacts
from agentgate.gate import PolicyGate
from agentgate.policy import PolicyEngine
from agentgate.schema import CheckpointResult, PolicyInput, PolicyPack, PolicyResult
from agentgate.store import GateDB

__all__ = [
    "__version__",
    "__author__",
    "CheckpointResult",
    "DecisionLog",
    "FactsProvider",
    "GateDB",
    "InMemoryFacts",
    "PolicyEngine",
    "PolicyGate",
    "PolicyInput",
    "PolicyPack",
    "PolicyResult",
]

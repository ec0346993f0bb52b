"""
Storage module for AgentGate.

This module provides SQLite-based persistence for policy packs and the
decision log.

Tables:
    - policy_packs: Versioned, scoped rule bundles (soft-deleted via archived_at)
    - policy_decisions: Append-only record of every evaluation

Why SQLite?
    - Zero configuration (no server needed)
    - ACID transactions built-in, which the version compare-and-swap relies on
    - Portable single-file format
"""

from agentgate.store.db import GateDB, generate_id

__all__ = [
    "GateDB",
    "generate_id",
]

"""
SQLite storage for AgentGate.

This module provides persistent storage for policy packs and the decision
log. Everything lives in a single SQLite database file.

Design Principles:
    - Append-only decisions: decision rows are never updated or deleted
    - Versioned packs: every update bumps the patch version via compare-and-swap
    - Soft delete: archived packs stop resolving but stay joinable
    - Thread-safe: one connection guarded by a re-entrant lock

Tables:
    - policy_packs: Versioned, scoped rule bundles
    - policy_decisions: Immutable audit trail of every evaluation
"""

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

from agentgate.errors import (
    PolicyPackNotFoundError,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
    VersionConflictError,
)
from agentgate.schema import (
    INITIAL_VERSION,
    CategoryRule,
    Checkpoint,
    DecisionOutcome,
    PolicyDecision,
    PolicyPack,
    RuleCategory,
    bump_patch,
    parse_rules,
)

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Policy packs: versioned rule bundles, scope NULL = global default
CREATE TABLE IF NOT EXISTS policy_packs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    scope TEXT,
    rules_json TEXT NOT NULL,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    archived_at TEXT
);

-- Policy decisions: append-only audit trail
CREATE TABLE IF NOT EXISTS policy_decisions (
    id TEXT PRIMARY KEY,
    policy_pack_id TEXT NOT NULL,
    pack_name TEXT NOT NULL,
    pack_version TEXT NOT NULL,
    agent_id TEXT,
    task_id TEXT,
    task_title TEXT,
    checkpoint TEXT NOT NULL,
    decision TEXT NOT NULL,
    reason_codes_json TEXT NOT NULL,
    context_json TEXT NOT NULL,
    decided_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_policy_packs_scope ON policy_packs(scope, created_at);
CREATE INDEX IF NOT EXISTS idx_decisions_agent ON policy_decisions(agent_id, decided_at);
CREATE INDEX IF NOT EXISTS idx_decisions_pack ON policy_decisions(policy_pack_id);
"""


def generate_id() -> str:
    """Generate a unique ID for packs and decisions."""
    return uuid.uuid4().hex[:12]


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def _dump_rules(rules: Mapping[RuleCategory, CategoryRule]) -> str:
    return json.dumps(
        {
            category.value: rule.model_dump(mode="json", by_alias=True, exclude_none=True)
            for category, rule in rules.items()
        },
        sort_keys=False,
    )


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class GateDB:
    """
    SQLite database for policy packs and decisions.

    Usage:
        db = GateDB("agentgate.db")
        pack_id = db.create_pack("baseline", {"spendLimits": {}}, scope="org-1")
        pack = db.resolve_pack("org-1")
        db.close()

    Or use as context manager:
        with GateDB("agentgate.db") as db:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     Will be created if it doesn't exist.
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            with self._lock:
                cursor = self._conn.executescript(CREATE_TABLES_SQL)
                cursor.close()

                cursor = self._conn.execute(
                    "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                )
                if cursor.fetchone() is None:
                    self._conn.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (SCHEMA_VERSION, now_iso()),
                    )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for a locked database transaction."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "GateDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Policy Pack Operations
    # =========================================================================

    def _row_to_pack(self, row: sqlite3.Row) -> PolicyPack:
        return PolicyPack(
            id=row["id"],
            name=row["name"],
            version=row["version"],
            scope=row["scope"],
            rules=parse_rules(json.loads(row["rules_json"]), pack_id=row["id"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
            archived_at=_parse_dt(row["archived_at"]),
        )

    def create_pack(
        self,
        name: str,
        rules: Mapping[str, Any],
        scope: str | None = None,
        created_by: str = "system",
    ) -> str:
        """
        Create a new policy pack at version 1.0.0.

        Args:
            name: Pack name
            rules: Category name -> rule definition (at least one)
            scope: Organization ID, or None for the global default
            created_by: Actor creating the pack

        Returns:
            The generated pack ID

        Raises:
            PolicyPackValidationError: If rules are empty or invalid
        """
        parsed = parse_rules(rules)
        pack_id = generate_id()

        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO policy_packs (
                        id, name, version, scope, rules_json, created_by, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        pack_id,
                        name,
                        INITIAL_VERSION,
                        scope,
                        _dump_rules(parsed),
                        created_by,
                        now_iso(),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="create_pack",
                underlying_error=str(e),
            ) from e

        logger.info("Created policy pack %s (%s) scope=%s", name, pack_id, scope or "global")
        return pack_id

    def get_pack(self, pack_id: str, include_archived: bool = False) -> PolicyPack | None:
        """
        Get a pack by ID.

        Args:
            pack_id: The pack to look up
            include_archived: Also return archived packs

        Returns:
            PolicyPack or None if not found
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM policy_packs WHERE id = ?",
                    (pack_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="get_pack",
                underlying_error=str(e),
            ) from e

        if row is None:
            return None
        if row["archived_at"] and not include_archived:
            return None
        return self._row_to_pack(row)

    def update_pack(
        self,
        pack_id: str,
        rules: Mapping[str, Any] | None = None,
        name: str | None = None,
        expected_version: str | None = None,
    ) -> str:
        """
        Update a pack and bump its patch version.

        Each supplied category replaces the stored definition for that
        category wholesale; categories not supplied are kept.

        Args:
            pack_id: Pack to update
            rules: Categories to replace
            name: New name
            expected_version: Version the caller last saw; the update fails
                if the stored version differs

        Returns:
            The new version string

        Raises:
            PolicyPackNotFoundError: If the pack doesn't exist or is archived
            VersionConflictError: If the stored version moved on
            PolicyPackValidationError: If the supplied rules are invalid
        """
        replacement = parse_rules(rules, pack_id=pack_id) if rules else {}

        try:
            with self.transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM policy_packs WHERE id = ? AND archived_at IS NULL",
                    (pack_id,),
                ).fetchone()
                if row is None:
                    raise PolicyPackNotFoundError(pack_id=pack_id)

                current_version = row["version"]
                if expected_version is not None and expected_version != current_version:
                    raise VersionConflictError(
                        pack_id=pack_id,
                        expected_version=expected_version,
                        actual_version=current_version,
                    )

                merged = parse_rules(json.loads(row["rules_json"]), pack_id=pack_id)
                merged.update(replacement)
                merged = parse_rules(merged, pack_id=pack_id)
                new_version = bump_patch(current_version)

                cursor = conn.execute(
                    """
                    UPDATE policy_packs
                    SET name = ?, version = ?, rules_json = ?, updated_at = ?
                    WHERE id = ? AND version = ?
                    """,
                    (
                        name or row["name"],
                        new_version,
                        _dump_rules(merged),
                        now_iso(),
                        pack_id,
                        current_version,
                    ),
                )
                if cursor.rowcount == 0:
                    raise VersionConflictError(
                        pack_id=pack_id,
                        expected_version=current_version,
                        actual_version="unknown",
                    )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="update_pack",
                underlying_error=str(e),
            ) from e

        logger.info("Updated policy pack %s to version %s", pack_id, new_version)
        return new_version

    def resolve_pack(self, org_id: str | None) -> PolicyPack | None:
        """
        Find the pack that applies to an organization.

        The newest active pack scoped to ``org_id`` wins; otherwise the
        newest active global pack; otherwise None.
        """
        if org_id:
            packs = self.list_packs(scope=org_id, limit=1)
            if packs:
                return packs[0]

        packs = self.list_packs(scope=None, limit=1)
        return packs[0] if packs else None

    def list_packs(
        self,
        scope: str | None = None,
        limit: int = 100,
        include_archived: bool = False,
    ) -> list[PolicyPack]:
        """
        List packs for a scope, newest first.

        Args:
            scope: Organization ID, or None for global packs
            limit: Maximum number of packs to return
            include_archived: Also list archived packs

        Returns:
            List of PolicyPack objects, most recent first
        """
        clauses = ["scope IS NULL" if scope is None else "scope = ?"]
        params: list[Any] = [] if scope is None else [scope]
        if not include_archived:
            clauses.append("archived_at IS NULL")
        params.append(limit)

        try:
            with self._lock:
                rows = self._conn.execute(
                    f"""
                    SELECT * FROM policy_packs
                    WHERE {' AND '.join(clauses)}
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                    """,
                    params,
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_packs",
                underlying_error=str(e),
            ) from e

        return [self._row_to_pack(row) for row in rows]

    def delete_pack(self, pack_id: str) -> None:
        """
        Archive a pack.

        The row is kept so decision history can still be joined to it.

        Raises:
            PolicyPackNotFoundError: If the pack doesn't exist or is already archived
        """
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE policy_packs SET archived_at = ?
                    WHERE id = ? AND archived_at IS NULL
                    """,
                    (now_iso(), pack_id),
                )
                if cursor.rowcount == 0:
                    raise PolicyPackNotFoundError(pack_id=pack_id)
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="delete_pack",
                underlying_error=str(e),
            ) from e

        logger.info("Archived policy pack %s", pack_id)

    # =========================================================================
    # Decision Operations
    # =========================================================================

    def _row_to_decision(self, row: sqlite3.Row) -> PolicyDecision:
        return PolicyDecision(
            id=row["id"],
            policy_pack_id=row["policy_pack_id"],
            pack_name=row["pack_name"],
            pack_version=row["pack_version"],
            agent_id=row["agent_id"],
            task_id=row["task_id"],
            task_title=row["task_title"],
            checkpoint=Checkpoint(row["checkpoint"]),
            decision=DecisionOutcome(row["decision"]),
            reason_codes=json.loads(row["reason_codes_json"]),
            context=json.loads(row["context_json"]),
            decided_at=datetime.fromisoformat(row["decided_at"]),
        )

    def record_decision(
        self,
        pack: PolicyPack,
        decision: DecisionOutcome,
        reason_codes: list[str],
        context: dict[str, Any],
        agent_id: str | None = None,
        task_id: str | None = None,
        task_title: str | None = None,
        checkpoint: Checkpoint = Checkpoint.MANUAL,
        decided_at: datetime | None = None,
    ) -> str:
        """
        Append a decision to the log.

        Returns:
            The generated decision ID
        """
        decision_id = generate_id()
        decided = (decided_at or datetime.now(UTC)).isoformat()

        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO policy_decisions (
                        id, policy_pack_id, pack_name, pack_version,
                        agent_id, task_id, task_title, checkpoint,
                        decision, reason_codes_json, context_json, decided_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        decision_id,
                        pack.id,
                        pack.name,
                        pack.version,
                        agent_id,
                        task_id,
                        task_title,
                        checkpoint.value,
                        decision.value,
                        json.dumps(reason_codes),
                        json.dumps(context, default=str),
                        decided,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="record_decision",
                underlying_error=str(e),
            ) from e

        return decision_id

    def query_decisions(
        self,
        policy_pack_id: str | None = None,
        agent_id: str | None = None,
        task_id: str | None = None,
        decision: DecisionOutcome | None = None,
        limit: int = 100,
    ) -> list[PolicyDecision]:
        """
        Query the decision log, newest first.

        All filters are optional and combined with AND.
        """
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("policy_pack_id", policy_pack_id),
            ("agent_id", agent_id),
            ("task_id", task_id),
            ("decision", decision.value if decision else None),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        try:
            with self._lock:
                rows = self._conn.execute(
                    f"""
                    SELECT * FROM policy_decisions
                    {where}
                    ORDER BY decided_at DESC, rowid DESC
                    LIMIT ?
                    """,
                    params,
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="query_decisions",
                underlying_error=str(e),
            ) from e

        return [self._row_to_decision(row) for row in rows]

    def count_decisions(self, agent_id: str, since: datetime) -> tuple[int, int]:
        """
        Count an agent's decisions since a point in time.

        Returns:
            Tuple of (total, denied)
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT
                        COUNT(*) AS total,
                        COALESCE(SUM(CASE WHEN decision = ? THEN 1 ELSE 0 END), 0) AS denied
                    FROM policy_decisions
                    WHERE agent_id = ? AND decided_at >= ?
                    """,
                    (DecisionOutcome.DENY.value, agent_id, since.isoformat()),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="count_decisions",
                underlying_error=str(e),
            ) from e

        return row["total"], row["denied"]

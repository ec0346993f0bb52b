"""
Exception hierarchy for AgentGate.

All AgentGate exceptions inherit from AgentGateError, allowing callers to
catch every AgentGate-specific exception with a single except clause.

Exception Categories:
    - PolicyPackError: Pack lookup, validation and version conflicts
    - PolicyEvaluationError: Unexpected failure inside the evaluator
    - TemplateNotFoundError: Unknown template key
    - StorageError: Database operation failed
    - ConfigError: Invalid configuration file or values

Checkpoint calls never raise these for domain conditions; they are mapped
to allow/deny results by PolicyGate. They surface from the store, the
template library and the CLI.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Pack errors: 1xxx
ERROR_PACK_NOT_FOUND = 1001
ERROR_PACK_INVALID = 1002
ERROR_PACK_VERSION_CONFLICT = 1003

# Evaluation errors: 2xxx
ERROR_EVALUATION_FAILED = 2001
ERROR_PREDICATE_INVALID = 2002

# Template errors: 3xxx
ERROR_TEMPLATE_NOT_FOUND = 3001

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003

# Config errors: 6xxx
ERROR_CONFIG_INVALID = 6001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class AgentGateError(Exception):
    """
    Base exception for all AgentGate errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Pack Errors
# =============================================================================


@dataclass
class PolicyPackError(AgentGateError):
    """
    Base class for policy pack errors.

    Attributes:
        pack_id: ID of the pack involved (if known)
    """

    pack_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["pack_id"] = self.pack_id


@dataclass
class PolicyPackNotFoundError(PolicyPackError):
    """Raised when a pack does not exist or has been archived."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy pack not found: {self.pack_id}"
        if self.code == 0:
            self.code = ERROR_PACK_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Use `agentgate pack list` to see available packs"
        super().__post_init__()


@dataclass
class PolicyPackValidationError(PolicyPackError):
    """Raised when pack rules are empty or name unknown categories."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid policy pack: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_PACK_INVALID
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class VersionConflictError(PolicyPackError):
    """Raised when a compare-and-swap update finds a newer version."""

    expected_version: str = ""
    actual_version: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Version conflict on pack {self.pack_id}: "
                f"expected {self.expected_version}, found {self.actual_version}"
            )
        if self.code == 0:
            self.code = ERROR_PACK_VERSION_CONFLICT
        if not self.suggestion:
            self.suggestion = "Reload the pack and reapply your changes"
        super().__post_init__()
        self.context.update({
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
        })


# =============================================================================
# Evaluation Errors
# =============================================================================


@dataclass
class PolicyEvaluationError(AgentGateError):
    """Raised when rule evaluation fails unexpectedly."""

    category: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Evaluation of {self.category or 'pack'} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_EVALUATION_FAILED
        self.context.update({
            "category": self.category,
            "underlying_error": self.underlying_error,
        })


@dataclass
class PredicateError(PolicyEvaluationError):
    """Raised when a predicate cannot be applied to its operands."""

    path: str = ""
    op: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot apply {self.op} to {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PREDICATE_INVALID
        super().__post_init__()
        self.context.update({"path": self.path, "op": self.op})


# =============================================================================
# Template Errors
# =============================================================================


@dataclass
class TemplateNotFoundError(AgentGateError):
    """Raised when a template key is not in the catalog."""

    template: str = ""
    available: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Template not found: {self.template}"
        if self.code == 0:
            self.code = ERROR_TEMPLATE_NOT_FOUND
        if not self.suggestion and self.available:
            self.suggestion = f"Available templates: {', '.join(self.available)}"
        self.context.update({"template": self.template, "available": self.available})


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(AgentGateError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "create_pack")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(AgentGateError):
    """Raised when the configuration file or environment is invalid."""

    config_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.config_path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["config_path"] = self.config_path

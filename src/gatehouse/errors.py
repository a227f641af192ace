"""
Exception hierarchy for Gatehouse.

All Gatehouse exceptions inherit from GatehouseError, allowing callers to
catch every Gatehouse-specific exception with a single except clause.

Exception Categories:
    - ConfigError: Rule file could not be read or failed validation
    - ConstraintError: A constraint could not be evaluated
    - StorageError: Audit database operation failed

Most of these never reach evaluation callers. The rule loader turns config
errors into a deny-all configuration, the constraint framework turns
constraint errors into a failed validation, and the audit store reports
storage errors through its error hook instead of raising. They exist so
that the internals can fail with a typed, inspectable value.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Config errors: 1xxx
ERROR_CONFIG_LOAD = 1001
ERROR_CONFIG_INVALID = 1002

# Constraint errors: 2xxx
ERROR_CONSTRAINT_FAILED = 2001
ERROR_CONSTRAINT_UNKNOWN = 2002

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class GatehouseError(Exception):
    """
    Base exception for all Gatehouse errors.

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
# Config Errors
# =============================================================================


@dataclass
class ConfigError(GatehouseError):
    """
    Base class for rule file errors.

    Attributes:
        path: The rule file involved (if any)
    """

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["path"] = self.path


@dataclass
class ConfigLoadError(ConfigError):
    """Raised when a rule file cannot be read or parsed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to load rules from {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_LOAD
        if not self.suggestion:
            self.suggestion = "Check that the file exists and is valid YAML"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class ConfigValidationError(ConfigError):
    """Raised when a rule file parses but has the wrong shape."""

    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid rule file {self.path}: {len(self.errors)} error(s)"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        super().__post_init__()
        self.context["errors"] = list(self.errors)


# =============================================================================
# Constraint Errors
# =============================================================================


@dataclass
class ConstraintError(GatehouseError):
    """
    Raised when a constraint implementation fails while evaluating.

    Attributes:
        constraint_type: The ``type`` of the constraint being evaluated
        underlying_error: What went wrong
    """

    constraint_type: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Constraint '{self.constraint_type}' failed: {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_CONSTRAINT_FAILED
        self.context.update({
            "constraint_type": self.constraint_type,
            "underlying_error": self.underlying_error,
        })


@dataclass
class UnknownConstraintError(ConstraintError):
    """Raised when no validator is registered for a constraint type."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown constraint type '{self.constraint_type}'"
        if self.code == 0:
            self.code = ERROR_CONSTRAINT_UNKNOWN
        super().__post_init__()


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(GatehouseError):
    """
    Base class for audit storage errors.

    Attributes:
        operation: The operation that failed (e.g., "record_session_event")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when the audit database cannot be opened."""

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

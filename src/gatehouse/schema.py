"""
Schema definitions for Gatehouse.

This module defines the Pydantic models shared across Gatehouse:
- Decision/PermissionPattern: What a rule says about matching input
- ConstraintResult: The outcome of second-stage constraint checks
- ToolExecutionRow/SessionLogRow/PermissionEventRow: Audit records
- LogFilter/ToolStats/ToolUsage/TimelineEntry: Audit query shapes

Design Decisions:
    - Models are immutable (frozen=True) and reject unknown fields
    - Enums subclass str so they serialize as their plain values
    - Audit timestamps are stored as epoch milliseconds and surfaced
      as timezone-aware UTC datetimes
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================


class Decision(str, Enum):
    """Verdict attached to a rule, a default, or a final gate decision."""

    ALLOW = "allow"
    DENY = "deny"


class ToolDecision(str, Enum):
    """Lifecycle state of a tool execution row."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionEventType(str, Enum):
    """Session lifecycle events recorded in the audit store."""

    CREATED = "created"
    COMPACTED = "compacted"
    DELETED = "deleted"
    ERROR = "error"
    IDLE = "idle"


class PermissionStatus(str, Enum):
    """Outcome of a permission request as reported by the host."""

    ASK = "ask"
    ALLOW = "allow"
    DENY = "deny"


# =============================================================================
# Rule Models
# =============================================================================


class PermissionPattern(BaseModel):
    """
    One pattern with its decision, reason and constraints.

    A rule file entry with ``patterns: [...]`` becomes one PermissionPattern
    per pattern, all sharing the same decision, reason and constraints.

    Attributes:
        pattern: Glob-style pattern (``*`` is the only wildcard)
        decision: What to do when the pattern matches
        reason: Optional human-readable explanation
        constraints: Second-stage checks, only applied when decision is allow
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str = Field(..., description="Glob-style pattern")
    decision: Decision = Field(..., description="Decision when the pattern matches")
    reason: str | None = Field(default=None, description="Why this rule exists")
    constraints: tuple[Any, ...] = Field(
        default=(),
        description="Constraints applied when the decision is allow",
    )


class ConstraintResult(BaseModel):
    """
    Result of validating one or more constraints.

    Attributes:
        valid: Whether every constraint checked so far passed
        violation: Human-readable reason for the first failure
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    valid: bool = Field(..., description="Whether the constraints passed")
    violation: str | None = Field(default=None, description="First violation found")

    @classmethod
    def ok(cls) -> "ConstraintResult":
        """Create a passing result."""
        return cls(valid=True)

    @classmethod
    def fail(cls, violation: str) -> "ConstraintResult":
        """Create a failing result."""
        return cls(valid=False, violation=violation)


# =============================================================================
# Audit Models
# =============================================================================


class ToolExecutionRow(BaseModel):
    """
    A row from the tool_execution_log table.

    Each tool call produces a ``started`` row and, later, a ``completed`` or
    ``failed`` row with the same call_id.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    timestamp: datetime
    session_id: str | None = None
    call_id: str | None = None
    tool_name: str
    decision: ToolDecision
    args_json: str | None = None
    result_summary: str | None = None
    duration_ms: int | None = None


class SessionLogRow(BaseModel):
    """A row from the session_log table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    timestamp: datetime
    session_id: str
    event_type: SessionEventType
    details_json: str | None = None


class PermissionEventRow(BaseModel):
    """A row from the permission_event table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    timestamp: datetime
    session_id: str
    permission_type: str
    resource: str | None = None
    status: PermissionStatus
    details_json: str | None = None


class LogFilter(BaseModel):
    """
    Conjunctive filter for audit queries.

    Every field that is set narrows the result; unset fields are ignored.

    Attributes:
        since: Only rows at or after this instant
        before: Only rows at or before this instant
        session_id: Only rows for this session
        tool_name: Only rows for this tool
        limit: Maximum rows for list queries
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    since: datetime | None = None
    before: datetime | None = None
    session_id: str | None = None
    tool_name: str | None = None
    limit: int = Field(default=1000, gt=0)


class ToolStats(BaseModel):
    """Aggregate tool execution counts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total: int = 0
    started: int = 0
    completed: int = 0
    failed: int = 0
    avg_duration_ms: float | None = None


class ToolUsage(BaseModel):
    """Per-tool row count and mean duration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool_name: str
    count: int
    avg_duration_ms: float | None = None


class PatternHits(BaseModel):
    """How often one matched pattern led to one permission status."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str
    status: PermissionStatus
    count: int


class PermissionStats(BaseModel):
    """
    Aggregate permission decisions.

    ``top_patterns`` covers events recorded with a matched pattern (the
    gate records one for every non-default decision), most hit first.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    total: int = 0
    allowed: int = 0
    denied: int = 0
    asked: int = 0
    top_patterns: tuple[PatternHits, ...] = ()


class TimelineEntry(BaseModel):
    """
    One item of a reconstructed session timeline.

    ``kind`` tells which of the optional fields are populated: tool
    executions carry tool_name/decision/result_summary/duration_ms, session
    events carry event_type/details_json.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: datetime
    kind: Literal["tool_execution", "session_event"]
    tool_name: str | None = None
    decision: ToolDecision | None = None
    result_summary: str | None = None
    duration_ms: int | None = None
    event_type: SessionEventType | None = None
    details_json: str | None = None


# =============================================================================
# Time Helpers
# =============================================================================

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=value)

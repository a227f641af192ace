"""
JSON output for Gatehouse commands.

Every ``--json`` flag in the CLI goes through this module so that the
shape of a check result or an audit read is the same everywhere.

Design Principles:
    - Consistent schema: a check always has input, trace and verdict keys
    - Human-readable keys: descriptive snake_case names
    - ISO timestamps: datetimes are rendered with isoformat()
"""

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from gatehouse.gate import GateDecision
from gatehouse.policy.engine import TracedMatchResult


def to_json(value: Any, indent: int = 2) -> str:
    """Serialize models, dataclasses, enums and datetimes to JSON."""
    return json.dumps(value, indent=indent, default=_json_serializer)


def build_check_dict(
    value: str,
    workdir: str,
    traced: TracedMatchResult,
    verdict: GateDecision,
) -> dict[str, Any]:
    """
    Build the JSON document for one ``check`` invocation.

    Args:
        value: The input that was checked
        workdir: Working directory used for constraint validation
        traced: Trace from the decision engine
        verdict: Final verdict from the gate

    Returns:
        Dictionary with input, workdir, trace, match, constraints and verdict
    """
    match = traced.result
    constraints = None
    if verdict.constraint_result is not None:
        constraints = {
            "valid": verdict.constraint_result.valid,
            "violation": verdict.constraint_result.violation,
        }

    return {
        "input": value,
        "workdir": workdir,
        "trace": [
            {
                "index": entry.index,
                "pattern": entry.pattern,
                "regex": entry.regex,
                "decision": entry.decision.value,
                "matched": entry.matched,
                "reason": entry.reason,
            }
            for entry in traced.trace
        ],
        "match": {
            "pattern": match.matched_pattern,
            "decision": match.decision.value,
            "reason": match.reason,
            "is_default": match.is_default,
        },
        "constraints": constraints,
        "decision": verdict.decision.value,
        "allowed": verdict.allowed,
        "reason": verdict.reason,
    }


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

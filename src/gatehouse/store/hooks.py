"""
Host callbacks that feed the audit store.

A host application (an agent runner, an editor plugin, ...) calls these
around every tool invocation, every permission request and every session
lifecycle event. Each hook turns its payload into one insert.

Security Note:
    Tool arguments are sanitized before they are written. Any mapping key
    that names a credential (password, token, api_key, ...) has its value
    replaced with "[REDACTED]", at any depth.
"""

import json
import re
from collections.abc import Mapping
from typing import Any

from gatehouse.schema import PermissionStatus, SessionEventType, ToolDecision
from gatehouse.store.db import AuditDB

RESULT_SUMMARY_MAX_LENGTH = 500
REDACTED = "[REDACTED]"
UNSERIALIZABLE = "[Unable to serialize args]"

SENSITIVE_KEY = re.compile(
    r"^(password|secret|token|key|apikey|api_key|auth|credential|private)$",
    re.IGNORECASE,
)

EVENT_TYPES: dict[str, SessionEventType] = {
    "session.created": SessionEventType.CREATED,
    "session.compacted": SessionEventType.COMPACTED,
    "session.deleted": SessionEventType.DELETED,
    "session.error": SessionEventType.ERROR,
    "session.idle": SessionEventType.IDLE,
}


def sanitize_args(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive mapping values redacted."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if SENSITIVE_KEY.match(str(key)) else sanitize_args(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_args(item) for item in value]
    return value


def safe_stringify(value: Any) -> str:
    """Sanitize and JSON-encode ``value``; never raises."""
    try:
        return json.dumps(sanitize_args(value), default=str)
    except (TypeError, ValueError, RecursionError):
        return UNSERIALIZABLE


def create_result_summary(output: str, max_length: int = RESULT_SUMMARY_MAX_LENGTH) -> str:
    """Truncate tool output to ``max_length`` characters, ending in "..."."""
    if len(output) <= max_length:
        return output
    return output[: max_length - 3] + "..."


def map_event_type(event_type: str) -> SessionEventType | None:
    """Map a host event name like "session.created" to a SessionEventType."""
    return EVENT_TYPES.get(event_type)


def is_failure(metadata: Mapping[str, Any] | None) -> bool:
    """
    Decide whether a finished tool call failed.

    Failure means any of: ``error`` is True, ``exitCode`` is present and not
    0, or ``success`` is False.
    """
    if not metadata:
        return False
    if metadata.get("error") is True:
        return True
    if "exitCode" in metadata and metadata["exitCode"] != 0:
        return True
    return metadata.get("success") is False


class AuditHooks:
    """
    Callback surface for a host application.

    Usage:
        hooks = AuditHooks(AuditDB())
        hooks.tool_execute_before("s1", "c1", "bash", args={"command": "ls"})
        hooks.tool_execute_after("s1", "c1", "bash", output="...", metadata={"exitCode": 0})

    No hook raises; the store reports its own failures.
    """

    def __init__(self, db: AuditDB) -> None:
        self.db = db

    def tool_execute_before(
        self,
        session_id: str | None,
        call_id: str | None,
        tool_name: str,
        args: Any = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        args_json = None if args is None else safe_stringify(args)
        return self.db.record_tool_execution_start(
            tool_name=tool_name,
            session_id=session_id,
            call_id=call_id,
            args_json=args_json,
            agent=(metadata or {}).get("agent"),
        )

    def tool_execute_after(
        self,
        session_id: str | None,
        call_id: str | None,
        tool_name: str,
        output: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        decision = ToolDecision.FAILED if is_failure(metadata) else ToolDecision.COMPLETED
        return self.db.record_tool_execution_end(
            tool_name=tool_name,
            call_id=call_id,
            session_id=session_id,
            decision=decision,
            result_summary=create_result_summary(output or ""),
        )

    def permission_asked(
        self,
        session_id: str,
        permission_type: str,
        status: PermissionStatus | str,
        resource: str | None = None,
        action: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> int:
        """Record a permission request; ``action`` stands in for a missing resource."""
        payload = {
            "session_id": session_id,
            "type": permission_type,
            "resource": resource,
            "action": action,
            **(details or {}),
        }
        return self.db.record_permission_event(
            session_id=session_id,
            permission_type=permission_type,
            status=status,
            resource=resource if resource is not None else action,
            details_json=safe_stringify(payload),
        )

    def session_event(self, event_type: str, properties: Mapping[str, Any] | None = None) -> int:
        """
        Record a host session event.

        Events outside the session lifecycle are ignored (returns 0).
        """
        mapped = map_event_type(event_type)
        if mapped is None:
            return 0
        properties = properties or {}
        session_id = (
            properties.get("sessionId")
            or properties.get("session_id")
            or properties.get("sessionID")
            or "unknown"
        )
        return self.db.record_session_event(
            session_id=str(session_id),
            event_type=mapped,
            details_json=safe_stringify(properties) if properties else None,
        )

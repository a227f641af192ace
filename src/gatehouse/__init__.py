"""
Gatehouse - Permission gating and audit trail for agent tool calls.

Gatehouse sits between an agent host and the tools it runs:
- Glob rule files decide allow/deny (first match wins, deny-by-default)
- Allowed rules can carry constraints checked against the live request
- Tool executions, session events and permission decisions land in SQLite
- Aggregates are exported in Prometheus text format

Example usage:
    $ gatehouse check sh-permissions.yaml git status
    $ gatehouse audit stats --since 7d
    $ gatehouse metrics serve --port 9090
"""

__version__ = "0.1.0"
__author__ = "Gatehouse Contributors"

from gatehouse.gate import GateDecision, PermissionGate
from gatehouse.policy import DecisionEngine, MatchResult, PermissionsConfig, RuleStore
from gatehouse.schema import Decision
from gatehouse.store import AuditDB, AuditHooks

__all__ = [
    "__version__",
    "__author__",
    "AuditDB",
    "AuditHooks",
    "Decision",
    "DecisionEngine",
    "GateDecision",
    "MatchResult",
    "PermissionGate",
    "PermissionsConfig",
    "RuleStore",
]

"""
Audit storage for Gatehouse.

All tool executions, session lifecycle events and permission decisions are
recorded in a single SQLite file for later inspection and metrics export.

Tables:
    - tool_execution_log: started/completed/failed rows, correlated by call_id
    - session_log: created/compacted/deleted/error/idle events
    - permission_event: permission requests and their outcome

Design principles:
    - Insert-only: history is never modified
    - Audit must not break the audited: storage failures are reported
      through a hook, never raised
"""

from gatehouse.store.db import (
    DB_PATH_ENV,
    DEFAULT_DB_PATH,
    AuditDB,
    log_storage_error,
    resolve_db_path,
)
from gatehouse.store.hooks import (
    AuditHooks,
    create_result_summary,
    map_event_type,
    safe_stringify,
    sanitize_args,
)
from gatehouse.store.timefilter import parse_since, parse_timestamp

__all__ = [
    "DB_PATH_ENV",
    "DEFAULT_DB_PATH",
    "AuditDB",
    "AuditHooks",
    "create_result_summary",
    "log_storage_error",
    "map_event_type",
    "parse_since",
    "parse_timestamp",
    "resolve_db_path",
    "safe_stringify",
    "sanitize_args",
]

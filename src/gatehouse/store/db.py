"""
SQLite audit store for Gatehouse.

This module is the only place that holds SQL. It records tool executions,
session lifecycle events and permission decisions, and answers the
aggregate queries used by the CLI and the metrics exporter.

Design Principles:
    - Insert-only: a tool call is a ``started`` row plus a later
      ``completed``/``failed`` row with the same call_id; nothing is updated
      or deleted
    - Never break the caller: public writes and reads swallow storage
      errors and report them through an injectable hook
    - One connection per store, shared by every thread; concurrent inserts
      are serialized by SQLite (WAL journal, busy timeout), not by locks here
    - Self-initializing: the parent directory and schema are created on
      first access

Tables:
    - tool_execution_log: One row per tool call state change
    - session_log: Session lifecycle events
    - permission_event: Permission requests and their outcome

Timestamps are stored as integer epoch milliseconds.
"""

import logging
import os
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from gatehouse.errors import (
    StorageConnectionError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from gatehouse.schema import (
    LogFilter,
    PatternHits,
    PermissionEventRow,
    PermissionStats,
    PermissionStatus,
    SessionEventType,
    SessionLogRow,
    TimelineEntry,
    ToolDecision,
    ToolExecutionRow,
    ToolStats,
    ToolUsage,
    from_epoch_ms,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".gatehouse" / "audit" / "audit-trail.db"
DB_PATH_ENV = "GATEHOUSE_AUDIT_DB"

BUSY_TIMEOUT_MS = 5000
DEFAULT_USAGE_LIMIT = 15

ErrorReporter = Callable[[str, Exception], None]

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS tool_execution_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    session_id TEXT,
    message_id TEXT,
    call_id TEXT,
    tool_name TEXT NOT NULL,
    agent TEXT,
    args_json TEXT,
    decision TEXT NOT NULL CHECK (decision IN ('started', 'completed', 'failed')),
    result_summary TEXT,
    duration_ms INTEGER
);

CREATE TABLE IF NOT EXISTS session_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    session_id TEXT NOT NULL,
    event_type TEXT NOT NULL
        CHECK (event_type IN ('created', 'compacted', 'deleted', 'error', 'idle')),
    details_json TEXT
);

CREATE TABLE IF NOT EXISTS permission_event (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    session_id TEXT NOT NULL,
    permission_type TEXT NOT NULL,
    resource TEXT,
    status TEXT NOT NULL CHECK (status IN ('ask', 'allow', 'deny')),
    details_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_tool_timestamp ON tool_execution_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_tool_name ON tool_execution_log(tool_name);
CREATE INDEX IF NOT EXISTS idx_tool_session_id ON tool_execution_log(session_id);
CREATE INDEX IF NOT EXISTS idx_tool_decision ON tool_execution_log(decision);
CREATE INDEX IF NOT EXISTS idx_tool_call_id ON tool_execution_log(call_id);

CREATE INDEX IF NOT EXISTS idx_session_id ON session_log(session_id);
CREATE INDEX IF NOT EXISTS idx_session_event_type ON session_log(event_type);
CREATE INDEX IF NOT EXISTS idx_session_timestamp ON session_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_session_id_timestamp ON session_log(session_id, timestamp);

CREATE INDEX IF NOT EXISTS idx_permission_timestamp ON permission_event(timestamp);
CREATE INDEX IF NOT EXISTS idx_permission_session_id ON permission_event(session_id);
CREATE INDEX IF NOT EXISTS idx_permission_status ON permission_event(status);
"""

# A call with no call_id still counts once
_CALL_KEY = "COALESCE(call_id, 'row:' || id)"


def resolve_db_path(explicit: str | Path | None = None) -> Path:
    """Pick the audit database path: explicit value, then environment, then default."""
    if explicit:
        return Path(explicit).expanduser()
    from_env = os.environ.get(DB_PATH_ENV)
    if from_env:
        return Path(from_env).expanduser()
    return DEFAULT_DB_PATH


def log_storage_error(operation: str, error: Exception) -> None:
    """Default error reporter: one WARNING line per failed operation."""
    logger.warning("Audit store %s failed: %s", operation, error)


def _filter_clause(
    filter: LogFilter | None,
    name_column: str = "tool_name",
) -> tuple[str, list[Any]]:
    if filter is None:
        return "", []

    conditions: list[str] = []
    params: list[Any] = []

    if filter.since is not None:
        conditions.append("timestamp >= ?")
        params.append(to_epoch_ms(filter.since))
    if filter.before is not None:
        conditions.append("timestamp <= ?")
        params.append(to_epoch_ms(filter.before))
    if filter.session_id:
        conditions.append("session_id = ?")
        params.append(filter.session_id)
    if filter.tool_name:
        conditions.append(f"{name_column} = ?")
        params.append(filter.tool_name)

    if not conditions:
        return "", []
    return "WHERE " + " AND ".join(conditions), params


class AuditDB:
    """
    SQLite database for the Gatehouse audit trail.

    Usage:
        db = AuditDB("~/.gatehouse/audit/audit-trail.db")
        db.record_tool_execution_start("bash", session_id="s1", call_id="c1")
        db.record_tool_execution_end("bash", call_id="c1", session_id="s1")
        stats = db.get_stats()
        db.close()

    Or use as context manager:
        with AuditDB(path) as db:
            ...

    No method raises a storage error. Failures go to ``error_reporter`` as
    ``(operation, error)`` and the method returns 0, an empty list or
    zeroed stats.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        error_reporter: ErrorReporter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Create a store. Nothing is opened until the first operation.

        Args:
            db_path: Database file (see resolve_db_path for the default)
            error_reporter: Called with (operation, error) on every failure
            clock: Source of "now" for new rows
        """
        self.db_path = resolve_db_path(db_path)
        self.error_reporter = error_reporter or log_storage_error
        self._clock = clock or (lambda: datetime.now(UTC))
        self._conn: sqlite3.Connection | None = None
        self._init_lock = threading.Lock()

    # =========================================================================
    # Connection
    # =========================================================================

    def _connection(self) -> sqlite3.Connection:
        conn = self._conn
        if conn is not None:
            return conn
        with self._init_lock:
            if self._conn is None:
                self._conn = self._connect()
            return self._conn

    def _connect(self) -> sqlite3.Connection:
        """Open the database, creating its directory and schema."""
        try:
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=BUSY_TIMEOUT_MS / 1000,
            )
        except (OSError, sqlite3.Error) as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            conn.close()
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

        try:
            conn.executescript(CREATE_TABLES_SQL).close()
        except sqlite3.Error as e:
            conn.close()
            raise StorageWriteError(operation="init_schema", underlying_error=str(e)) from e

        logger.debug("Opened audit store at %s", self.db_path)
        return conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "AuditDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    def _report(self, operation: str, error: Exception) -> None:
        try:
            self.error_reporter(operation, error)
        except Exception:
            # A broken reporter must not turn into a failed write
            logger.exception("Audit error reporter raised while handling %s", operation)

    def _insert(self, operation: str, sql: str, params: tuple[Any, ...]) -> int:
        try:
            cursor = self._connection().execute(sql, params)
            return int(cursor.lastrowid or 0)
        except sqlite3.Error as e:
            raise StorageWriteError(operation=operation, underlying_error=str(e)) from e

    def _query(self, operation: str, sql: str, params: list[Any] | tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            return self._connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(operation=operation, underlying_error=str(e)) from e

    def _now_ms(self, timestamp: datetime | None) -> int:
        return to_epoch_ms(timestamp or self._clock())

    # =========================================================================
    # Writes
    # =========================================================================

    def record_tool_execution_start(
        self,
        tool_name: str,
        session_id: str | None = None,
        call_id: str | None = None,
        args_json: str | None = None,
        message_id: str | None = None,
        agent: str | None = None,
        timestamp: datetime | None = None,
    ) -> int:
        """
        Insert a ``started`` row.

        Returns:
            The new row id, or 0 if the write failed
        """
        try:
            return self._insert(
                "record_tool_execution_start",
                """
                INSERT INTO tool_execution_log (
                    timestamp, session_id, message_id, call_id, tool_name,
                    agent, args_json, decision
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self._now_ms(timestamp),
                    session_id,
                    message_id,
                    call_id,
                    tool_name,
                    agent,
                    args_json,
                    ToolDecision.STARTED.value,
                ),
            )
        except StorageError as e:
            self._report("record_tool_execution_start", e)
            return 0

    def record_tool_execution_end(
        self,
        tool_name: str,
        call_id: str | None = None,
        session_id: str | None = None,
        decision: ToolDecision = ToolDecision.COMPLETED,
        result_summary: str | None = None,
        duration_ms: int | None = None,
        timestamp: datetime | None = None,
    ) -> int:
        """
        Insert a ``completed`` or ``failed`` row correlated by call_id.

        When ``duration_ms`` is not given it is measured from the matching
        ``started`` row, if there is one.

        Returns:
            The new row id, or 0 if the write failed
        """
        operation = "record_tool_execution_end"
        try:
            decision = ToolDecision(decision)
            if decision == ToolDecision.STARTED:
                raise StorageWriteError(
                    operation=operation,
                    underlying_error="end decision must be 'completed' or 'failed'",
                )

            now_ms = self._now_ms(timestamp)
            if duration_ms is None and call_id is not None:
                rows = self._query(
                    operation,
                    """
                    SELECT timestamp FROM tool_execution_log
                    WHERE call_id = ? AND decision = 'started'
                    ORDER BY id DESC LIMIT 1
                    """,
                    (call_id,),
                )
                if rows:
                    duration_ms = max(0, now_ms - rows[0]["timestamp"])

            return self._insert(
                operation,
                """
                INSERT INTO tool_execution_log (
                    timestamp, session_id, call_id, tool_name,
                    decision, result_summary, duration_ms
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now_ms,
                    session_id,
                    call_id,
                    tool_name,
                    decision.value,
                    result_summary,
                    duration_ms,
                ),
            )
        except (StorageError, ValueError) as e:
            self._report(operation, e)
            return 0

    def record_session_event(
        self,
        session_id: str,
        event_type: SessionEventType,
        details_json: str | None = None,
        timestamp: datetime | None = None,
    ) -> int:
        """Insert a session lifecycle event. Returns the row id or 0."""
        try:
            return self._insert(
                "record_session_event",
                """
                INSERT INTO session_log (timestamp, session_id, event_type, details_json)
                VALUES (?, ?, ?, ?)
                """,
                (
                    self._now_ms(timestamp),
                    session_id,
                    SessionEventType(event_type).value,
                    details_json,
                ),
            )
        except (StorageError, ValueError) as e:
            self._report("record_session_event", e)
            return 0

    def record_permission_event(
        self,
        session_id: str,
        permission_type: str,
        status: PermissionStatus,
        resource: str | None = None,
        details_json: str | None = None,
        timestamp: datetime | None = None,
    ) -> int:
        """Insert a permission request/decision. Returns the row id or 0."""
        try:
            return self._insert(
                "record_permission_event",
                """
                INSERT INTO permission_event (
                    timestamp, session_id, permission_type, resource, status, details_json
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    self._now_ms(timestamp),
                    session_id,
                    permission_type,
                    resource,
                    PermissionStatus(status).value,
                    details_json,
                ),
            )
        except (StorageError, ValueError) as e:
            self._report("record_permission_event", e)
            return 0

    # =========================================================================
    # Reads
    # =========================================================================

    def get_logs(self, filter: LogFilter | None = None) -> list[ToolExecutionRow]:
        """Tool execution rows matching ``filter``, newest first."""
        filter = filter or LogFilter()
        where, params = _filter_clause(filter)
        try:
            rows = self._query(
                "get_logs",
                f"""
                SELECT id, timestamp, session_id, call_id, tool_name, decision,
                       args_json, result_summary, duration_ms
                FROM tool_execution_log
                {where}
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                [*params, filter.limit],
            )
        except StorageError as e:
            self._report("get_logs", e)
            return []

        return [
            ToolExecutionRow(
                id=row["id"],
                timestamp=from_epoch_ms(row["timestamp"]),
                session_id=row["session_id"],
                call_id=row["call_id"],
                tool_name=row["tool_name"],
                decision=ToolDecision(row["decision"]),
                args_json=row["args_json"],
                result_summary=row["result_summary"],
                duration_ms=row["duration_ms"],
            )
            for row in rows
        ]

    def get_stats(self, filter: LogFilter | None = None) -> ToolStats:
        """
        Aggregate counts over tool executions matching ``filter``.

        ``total`` counts calls (rows sharing a call_id count once);
        ``started``/``completed``/``failed`` count rows in each state.
        The average duration covers completed and failed rows.
        """
        where, params = _filter_clause(filter)
        try:
            rows = self._query(
                "get_stats",
                f"""
                SELECT
                    COUNT(DISTINCT {_CALL_KEY}) AS total,
                    COALESCE(SUM(CASE WHEN decision = 'started' THEN 1 ELSE 0 END), 0) AS started,
                    COALESCE(SUM(CASE WHEN decision = 'completed' THEN 1 ELSE 0 END), 0) AS completed,
                    COALESCE(SUM(CASE WHEN decision = 'failed' THEN 1 ELSE 0 END), 0) AS failed,
                    AVG(CASE WHEN decision IN ('completed', 'failed') THEN duration_ms END)
                        AS avg_duration_ms
                FROM tool_execution_log
                {where}
                """,
                params,
            )
        except StorageError as e:
            self._report("get_stats", e)
            return ToolStats()

        row = rows[0]
        return ToolStats(
            total=row["total"],
            started=row["started"],
            completed=row["completed"],
            failed=row["failed"],
            avg_duration_ms=row["avg_duration_ms"],
        )

    def get_usage_by_name(
        self,
        filter: LogFilter | None = None,
        top_n: int = DEFAULT_USAGE_LIMIT,
    ) -> list[ToolUsage]:
        """The ``top_n`` most used tools, by number of calls."""
        where, params = _filter_clause(filter)
        try:
            rows = self._query(
                "get_usage_by_name",
                f"""
                SELECT
                    tool_name,
                    COUNT(DISTINCT {_CALL_KEY}) AS count,
                    AVG(CASE WHEN decision IN ('completed', 'failed') THEN duration_ms END)
                        AS avg_duration_ms
                FROM tool_execution_log
                {where}
                GROUP BY tool_name
                ORDER BY count DESC, tool_name ASC
                LIMIT ?
                """,
                [*params, top_n],
            )
        except StorageError as e:
            self._report("get_usage_by_name", e)
            return []

        return [
            ToolUsage(
                tool_name=row["tool_name"],
                count=row["count"],
                avg_duration_ms=row["avg_duration_ms"],
            )
            for row in rows
        ]

    def get_session_timeline(self, session_id: str) -> list[TimelineEntry]:
        """Tool executions and session events for one session, oldest first."""
        try:
            tool_rows = self._query(
                "get_session_timeline",
                """
                SELECT id, timestamp, tool_name, decision, result_summary, duration_ms
                FROM tool_execution_log
                WHERE session_id = ?
                ORDER BY timestamp ASC, id ASC
                """,
                (session_id,),
            )
            session_rows = self._query(
                "get_session_timeline",
                """
                SELECT id, timestamp, event_type, details_json
                FROM session_log
                WHERE session_id = ?
                ORDER BY timestamp ASC, id ASC
                """,
                (session_id,),
            )
        except StorageError as e:
            self._report("get_session_timeline", e)
            return []

        entries: list[tuple[int, int, int, TimelineEntry]] = []
        for row in session_rows:
            entries.append((
                row["timestamp"],
                0,
                row["id"],
                TimelineEntry(
                    timestamp=from_epoch_ms(row["timestamp"]),
                    kind="session_event",
                    event_type=SessionEventType(row["event_type"]),
                    details_json=row["details_json"],
                ),
            ))
        for row in tool_rows:
            entries.append((
                row["timestamp"],
                1,
                row["id"],
                TimelineEntry(
                    timestamp=from_epoch_ms(row["timestamp"]),
                    kind="tool_execution",
                    tool_name=row["tool_name"],
                    decision=ToolDecision(row["decision"]),
                    result_summary=row["result_summary"],
                    duration_ms=row["duration_ms"],
                ),
            ))

        # Session events sort before tool rows recorded in the same millisecond
        entries.sort(key=lambda e: e[:3])
        return [entry for *_, entry in entries]

    def get_session_logs(
        self,
        session_id: str | None = None,
        limit: int = 1000,
    ) -> list[SessionLogRow]:
        """Session events, newest first, optionally for one session."""
        where = "WHERE session_id = ?" if session_id else ""
        params: list[Any] = [session_id] if session_id else []
        try:
            rows = self._query(
                "get_session_logs",
                f"""
                SELECT id, timestamp, session_id, event_type, details_json
                FROM session_log
                {where}
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                [*params, limit],
            )
        except StorageError as e:
            self._report("get_session_logs", e)
            return []

        return [
            SessionLogRow(
                id=row["id"],
                timestamp=from_epoch_ms(row["timestamp"]),
                session_id=row["session_id"],
                event_type=SessionEventType(row["event_type"]),
                details_json=row["details_json"],
            )
            for row in rows
        ]

    def get_permission_events(
        self,
        session_id: str | None = None,
        status: PermissionStatus | None = None,
        limit: int = 1000,
    ) -> list[PermissionEventRow]:
        """Permission events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if session_id:
            conditions.append("session_id = ?")
            params.append(session_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(PermissionStatus(status).value)
        where = ("WHERE " + " AND ".join(conditions)) if conditions else ""

        try:
            rows = self._query(
                "get_permission_events",
                f"""
                SELECT id, timestamp, session_id, permission_type, resource, status, details_json
                FROM permission_event
                {where}
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                [*params, limit],
            )
        except StorageError as e:
            self._report("get_permission_events", e)
            return []

        return [
            PermissionEventRow(
                id=row["id"],
                timestamp=from_epoch_ms(row["timestamp"]),
                session_id=row["session_id"],
                permission_type=row["permission_type"],
                resource=row["resource"],
                status=PermissionStatus(row["status"]),
                details_json=row["details_json"],
            )
            for row in rows
        ]

    def get_permission_stats(
        self,
        filter: LogFilter | None = None,
        top_n: int = DEFAULT_USAGE_LIMIT,
    ) -> PermissionStats:
        """
        Counts by status plus the ``top_n`` most hit (pattern, status) pairs.

        ``filter.tool_name`` applies to the permission type. The matched
        pattern is read from ``details_json``; events without one (default
        decisions, host-reported asks) only count toward the totals.
        """
        where, params = _filter_clause(filter, name_column="permission_type")
        try:
            totals = self._query(
                "get_permission_stats",
                f"""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN status = 'allow' THEN 1 ELSE 0 END), 0) AS allowed,
                    COALESCE(SUM(CASE WHEN status = 'deny' THEN 1 ELSE 0 END), 0) AS denied,
                    COALESCE(SUM(CASE WHEN status = 'ask' THEN 1 ELSE 0 END), 0) AS asked
                FROM permission_event
                {where}
                """,
                params,
            )
            patterns = self._query(
                "get_permission_stats",
                f"""
                SELECT pattern, status, COUNT(*) AS count
                FROM (
                    SELECT
                        status,
                        CASE WHEN json_valid(details_json) THEN
                            CASE WHEN json_type(details_json, '$.matched_pattern') = 'text'
                                THEN json_extract(details_json, '$.matched_pattern')
                            END
                        END AS pattern
                    FROM permission_event
                    {where}
                )
                WHERE pattern IS NOT NULL
                GROUP BY pattern, status
                ORDER BY count DESC, pattern ASC, status ASC
                LIMIT ?
                """,
                [*params, top_n],
            )
        except StorageError as e:
            self._report("get_permission_stats", e)
            return PermissionStats()

        row = totals[0]
        return PermissionStats(
            total=row["total"],
            allowed=row["allowed"],
            denied=row["denied"],
            asked=row["asked"],
            top_patterns=tuple(
                PatternHits(
                    pattern=p["pattern"],
                    status=PermissionStatus(p["status"]),
                    count=p["count"],
                )
                for p in patterns
            ),
        )

    # =========================================================================
    # Metrics Queries
    # =========================================================================

    def tool_counts(self) -> list[tuple[str, str, int]]:
        """(tool_name, decision, rows) for every pair present."""
        try:
            rows = self._query(
                "tool_counts",
                """
                SELECT tool_name, decision, COUNT(*) AS count
                FROM tool_execution_log
                GROUP BY tool_name, decision
                """,
            )
        except StorageError as e:
            self._report("tool_counts", e)
            return []
        return [(row["tool_name"], row["decision"], row["count"]) for row in rows]

    def tool_durations(self) -> list[tuple[str, int]]:
        """(tool_name, duration_ms) for every finished row with a duration."""
        try:
            rows = self._query(
                "tool_durations",
                """
                SELECT tool_name, duration_ms
                FROM tool_execution_log
                WHERE decision IN ('completed', 'failed') AND duration_ms IS NOT NULL
                """,
            )
        except StorageError as e:
            self._report("tool_durations", e)
            return []
        return [(row["tool_name"], row["duration_ms"]) for row in rows]

    def in_progress_count(self) -> int:
        """Started rows with no completed/failed row for the same call_id."""
        try:
            rows = self._query(
                "in_progress_count",
                """
                SELECT COUNT(*) AS count FROM tool_execution_log t1
                WHERE t1.decision = 'started'
                  AND NOT EXISTS (
                      SELECT 1 FROM tool_execution_log t2
                      WHERE t2.call_id = t1.call_id
                        AND t2.call_id IS NOT NULL
                        AND t2.decision IN ('completed', 'failed')
                  )
                """,
            )
        except StorageError as e:
            self._report("in_progress_count", e)
            return 0
        return rows[0]["count"]

    def session_counts(self) -> list[tuple[str, int]]:
        """(event_type, rows) for every event type present."""
        try:
            rows = self._query(
                "session_counts",
                "SELECT event_type, COUNT(*) AS count FROM session_log GROUP BY event_type",
            )
        except StorageError as e:
            self._report("session_counts", e)
            return []
        return [(row["event_type"], row["count"]) for row in rows]

    def active_session_count(self) -> int:
        """Sessions with a ``created`` event and no ``deleted`` event."""
        try:
            rows = self._query(
                "active_session_count",
                """
                SELECT COUNT(DISTINCT session_id) AS count
                FROM session_log s1
                WHERE s1.event_type = 'created'
                  AND NOT EXISTS (
                      SELECT 1 FROM session_log s2
                      WHERE s2.session_id = s1.session_id AND s2.event_type = 'deleted'
                  )
                """,
            )
        except StorageError as e:
            self._report("active_session_count", e)
            return 0
        return rows[0]["count"]

    def size_bytes(self) -> int:
        """
        Size of the store on disk: the database file plus its ``-wal`` and
        ``-shm`` companions. Missing files count as 0.
        """
        total = 0
        for suffix in ("", "-wal", "-shm"):
            path = self.db_path.with_name(self.db_path.name + suffix)
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
            except OSError as e:
                self._report("size_bytes", e)
        return total

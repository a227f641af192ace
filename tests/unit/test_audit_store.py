"""
Unit tests for the SQLite audit store.

Tests cover:
- Database initialization
- Tool execution start/end correlation
- Session and permission events
- Filtered reads, stats and usage
- Session timeline ordering
- Metrics queries
- Permission stats
- Concurrent writers on the shared connection
- Error reporting instead of raising
"""

import json
import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from gatehouse.errors import StorageConnectionError, StorageError, StorageWriteError
from gatehouse.schema import (
    LogFilter,
    PermissionStatus,
    SessionEventType,
    ToolDecision,
)
from gatehouse.store import DB_PATH_ENV, DEFAULT_DB_PATH, AuditDB, resolve_db_path


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def t0() -> datetime:
    return datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def seconds(t: datetime, n: float) -> datetime:
    return t + timedelta(seconds=n)


# =============================================================================
# Initialization
# =============================================================================


class TestInitialization:
    """Tests for database setup."""

    def test_creates_directory_and_tables(self, temp_dir: Path) -> None:
        path = temp_dir / "nested" / "dir" / "audit.db"
        with AuditDB(path) as db:
            db.record_session_event("s1", SessionEventType.CREATED)

        assert path.exists()
        conn = sqlite3.connect(path)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert {"tool_execution_log", "session_log", "permission_event"} <= tables

    def test_lazy_open(self, temp_dir: Path) -> None:
        """Nothing is created until the first operation."""
        path = temp_dir / "lazy.db"
        AuditDB(path)
        assert not path.exists()

    def test_reopen_keeps_rows(self, temp_dir: Path) -> None:
        path = temp_dir / "audit.db"
        with AuditDB(path) as db:
            db.record_tool_execution_start("bash", session_id="s1", call_id="c1")
        with AuditDB(path) as db:
            assert len(db.get_logs()) == 1


class TestResolveDbPath:
    """Tests for resolve_db_path."""

    def test_explicit(self, temp_dir: Path) -> None:
        assert resolve_db_path(temp_dir / "x.db") == temp_dir / "x.db"

    def test_environment(self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
        monkeypatch.setenv(DB_PATH_ENV, str(temp_dir / "env.db"))
        assert resolve_db_path() == temp_dir / "env.db"

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(DB_PATH_ENV, raising=False)
        assert resolve_db_path() == DEFAULT_DB_PATH


# =============================================================================
# Writes
# =============================================================================


class TestToolExecutions:
    """Tests for start/end rows."""

    def test_start_then_end(self, audit_db: AuditDB, t0: datetime) -> None:
        start_id = audit_db.record_tool_execution_start(
            "bash", session_id="s1", call_id="c1", args_json='{"command": "ls"}', timestamp=t0
        )
        end_id = audit_db.record_tool_execution_end(
            "bash",
            call_id="c1",
            session_id="s1",
            result_summary="ok",
            timestamp=seconds(t0, 1.5),
        )

        assert start_id > 0
        assert end_id > start_id

        rows = audit_db.get_logs()
        assert [r.decision for r in rows] == [ToolDecision.COMPLETED, ToolDecision.STARTED]
        assert rows[0].duration_ms == 1500
        assert rows[0].call_id == rows[1].call_id == "c1"
        assert rows[1].args_json == '{"command": "ls"}'

    def test_explicit_duration_kept(self, audit_db: AuditDB, t0: datetime) -> None:
        audit_db.record_tool_execution_start("bash", call_id="c1", timestamp=t0)
        audit_db.record_tool_execution_end(
            "bash", call_id="c1", duration_ms=42, timestamp=seconds(t0, 10)
        )
        assert audit_db.get_logs()[0].duration_ms == 42

    def test_end_without_start(self, audit_db: AuditDB) -> None:
        """An end with no matching start is still recorded, without duration."""
        assert audit_db.record_tool_execution_end("bash", call_id="orphan") > 0
        row = audit_db.get_logs()[0]
        assert row.duration_ms is None

    def test_failed_end(self, audit_db: AuditDB) -> None:
        audit_db.record_tool_execution_start("bash", call_id="c1")
        audit_db.record_tool_execution_end("bash", call_id="c1", decision=ToolDecision.FAILED)
        assert audit_db.get_logs()[0].decision == ToolDecision.FAILED

    def test_end_rejects_started(self, audit_db: AuditDB) -> None:
        """'started' is not a valid end state; the write is reported, not raised."""
        reported: list[tuple[str, Exception]] = []
        audit_db.error_reporter = lambda op, e: reported.append((op, e))

        assert audit_db.record_tool_execution_end("bash", decision=ToolDecision.STARTED) == 0
        assert reported[0][0] == "record_tool_execution_end"
        assert isinstance(reported[0][1], StorageWriteError)
        assert audit_db.get_logs() == []

    def test_end_rejects_unknown_decision(self, audit_db: AuditDB) -> None:
        reported: list[str] = []
        audit_db.error_reporter = lambda op, e: reported.append(op)
        assert audit_db.record_tool_execution_end("bash", decision="exploded") == 0
        assert reported == ["record_tool_execution_end"]

    def test_rows_never_updated(self, audit_db: AuditDB) -> None:
        """A call produces two rows; the started row is untouched."""
        audit_db.record_tool_execution_start("bash", call_id="c1")
        audit_db.record_tool_execution_end("bash", call_id="c1", result_summary="done")
        started = [r for r in audit_db.get_logs() if r.decision == ToolDecision.STARTED]
        assert len(started) == 1
        assert started[0].result_summary is None


class TestEvents:
    """Tests for session and permission events."""

    def test_session_event(self, audit_db: AuditDB) -> None:
        assert audit_db.record_session_event("s1", SessionEventType.CREATED, '{"a": 1}') > 0
        rows = audit_db.get_session_logs("s1")
        assert len(rows) == 1
        assert rows[0].event_type == SessionEventType.CREATED
        assert rows[0].details_json == '{"a": 1}'

    def test_session_event_bad_type(self, audit_db: AuditDB) -> None:
        reported: list[str] = []
        audit_db.error_reporter = lambda op, e: reported.append(op)
        assert audit_db.record_session_event("s1", "exploded") == 0
        assert reported == ["record_session_event"]

    def test_permission_event(self, audit_db: AuditDB) -> None:
        audit_db.record_permission_event("s1", "bash", PermissionStatus.ASK, resource="ls")
        audit_db.record_permission_event("s1", "bash", PermissionStatus.DENY, resource="rm")
        audit_db.record_permission_event("s2", "edit", PermissionStatus.ALLOW)

        assert len(audit_db.get_permission_events()) == 3
        assert len(audit_db.get_permission_events(session_id="s1")) == 2
        denied = audit_db.get_permission_events(status=PermissionStatus.DENY)
        assert [e.resource for e in denied] == ["rm"]


# =============================================================================
# Reads
# =============================================================================


@pytest.fixture
def populated(audit_db: AuditDB, t0: datetime) -> AuditDB:
    """Three bash calls, one read call, one unfinished edit."""
    for i, (tool, ok, dur) in enumerate(
        [("bash", True, 100), ("bash", True, 300), ("bash", False, 200), ("read", True, 50)]
    ):
        start = seconds(t0, i * 10)
        audit_db.record_tool_execution_start(tool, session_id="s1", call_id=f"c{i}", timestamp=start)
        audit_db.record_tool_execution_end(
            tool,
            call_id=f"c{i}",
            session_id="s1",
            decision=ToolDecision.COMPLETED if ok else ToolDecision.FAILED,
            duration_ms=dur,
            timestamp=seconds(start, dur / 1000),
        )
    audit_db.record_tool_execution_start(
        "edit", session_id="s2", call_id="c9", timestamp=seconds(t0, 100)
    )
    return audit_db


class TestReads:
    """Tests for filtered reads and aggregates."""

    def test_logs_newest_first(self, populated: AuditDB) -> None:
        rows = populated.get_logs()
        assert len(rows) == 9
        assert rows[0].tool_name == "edit"
        timestamps = [r.timestamp for r in rows]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_logs_filters(self, populated: AuditDB, t0: datetime) -> None:
        assert len(populated.get_logs(LogFilter(tool_name="read"))) == 2
        assert len(populated.get_logs(LogFilter(session_id="s2"))) == 1
        assert len(populated.get_logs(LogFilter(since=seconds(t0, 25)))) == 3
        assert len(populated.get_logs(LogFilter(before=seconds(t0, 5)))) == 2
        assert len(populated.get_logs(LogFilter(limit=4))) == 4

    def test_stats(self, populated: AuditDB) -> None:
        stats = populated.get_stats()
        assert stats.total == 5
        assert stats.started == 5
        assert stats.completed == 3
        assert stats.failed == 1
        assert stats.avg_duration_ms == pytest.approx(162.5)

    def test_stats_filtered(self, populated: AuditDB) -> None:
        stats = populated.get_stats(LogFilter(tool_name="bash"))
        assert stats.total == 3
        assert stats.avg_duration_ms == pytest.approx(200)

    def test_stats_empty(self, audit_db: AuditDB) -> None:
        stats = audit_db.get_stats()
        assert stats.total == 0
        assert stats.avg_duration_ms is None

    def test_usage(self, populated: AuditDB) -> None:
        usage = populated.get_usage_by_name()
        assert [(u.tool_name, u.count) for u in usage] == [("bash", 3), ("edit", 1), ("read", 1)]
        assert usage[0].avg_duration_ms == pytest.approx(200)
        assert usage[1].avg_duration_ms is None

    def test_usage_top_n(self, populated: AuditDB) -> None:
        assert len(populated.get_usage_by_name(top_n=1)) == 1

    def test_timeline(self, audit_db: AuditDB, t0: datetime) -> None:
        audit_db.record_tool_execution_start("bash", session_id="s1", call_id="c1", timestamp=t0)
        audit_db.record_session_event("s1", SessionEventType.CREATED, timestamp=t0)
        audit_db.record_tool_execution_end(
            "bash", call_id="c1", session_id="s1", timestamp=seconds(t0, 1)
        )
        audit_db.record_session_event("s1", SessionEventType.IDLE, timestamp=seconds(t0, 2))
        audit_db.record_session_event("other", SessionEventType.CREATED, timestamp=t0)

        timeline = audit_db.get_session_timeline("s1")
        assert [(e.kind, e.event_type or e.decision) for e in timeline] == [
            ("session_event", SessionEventType.CREATED),
            ("tool_execution", ToolDecision.STARTED),
            ("tool_execution", ToolDecision.COMPLETED),
            ("session_event", SessionEventType.IDLE),
        ]
        assert timeline[2].duration_ms == 1000

    def test_timeline_unknown_session(self, audit_db: AuditDB) -> None:
        assert audit_db.get_session_timeline("nobody") == []


class TestMetricsQueries:
    """Tests for the aggregate queries behind the exporter."""

    def test_tool_counts(self, populated: AuditDB) -> None:
        counts = sorted(populated.tool_counts())
        assert ("bash", "completed", 2) in counts
        assert ("bash", "failed", 1) in counts
        assert ("bash", "started", 3) in counts
        assert ("edit", "started", 1) in counts

    def test_in_progress(self, populated: AuditDB) -> None:
        assert populated.in_progress_count() == 1

    def test_durations(self, populated: AuditDB) -> None:
        assert sorted(populated.tool_durations()) == [
            ("bash", 100),
            ("bash", 200),
            ("bash", 300),
            ("read", 50),
        ]

    def test_active_sessions(self, audit_db: AuditDB) -> None:
        audit_db.record_session_event("a", SessionEventType.CREATED)
        audit_db.record_session_event("b", SessionEventType.CREATED)
        audit_db.record_session_event("b", SessionEventType.DELETED)
        audit_db.record_session_event("c", SessionEventType.IDLE)

        assert audit_db.active_session_count() == 1
        assert sorted(audit_db.session_counts()) == [("created", 2), ("deleted", 1), ("idle", 1)]

    def test_size(self, temp_dir: Path) -> None:
        path = temp_dir / "size.db"
        db = AuditDB(path)
        assert db.size_bytes() == 0
        db.record_session_event("a", SessionEventType.CREATED)
        db.close()
        assert AuditDB(path).size_bytes() > 0

    def test_size_includes_wal(self, temp_dir: Path) -> None:
        """Rows not yet checkpointed into the main file still count."""
        path = temp_dir / "wal.db"
        db = AuditDB(path)
        for i in range(500):
            db.record_tool_execution_start("bash", session_id="s1", call_id=f"c{i}", args_json="x" * 200)

        on_disk = sum(
            p.stat().st_size
            for p in (path, temp_dir / "wal.db-wal", temp_dir / "wal.db-shm")
            if p.exists()
        )
        assert (temp_dir / "wal.db-wal").exists()
        assert db.size_bytes() == on_disk
        assert db.size_bytes() > path.stat().st_size
        db.close()


class TestErrorReporting:
    """Storage failures are reported, never raised."""

    def test_unwritable_path(self, temp_dir: Path) -> None:
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")
        reported: list[tuple[str, Exception]] = []

        db = AuditDB(blocker / "audit.db", error_reporter=lambda op, e: reported.append((op, e)))
        assert db.record_session_event("s1", SessionEventType.CREATED) == 0
        assert db.get_logs() == []
        assert db.get_stats().total == 0
        assert db.in_progress_count() == 0

        assert [op for op, _ in reported][:2] == ["record_session_event", "get_logs"]
        assert all(isinstance(e, StorageError) for _, e in reported)

    def test_broken_reporter_contained(self, temp_dir: Path) -> None:
        """A reporter that raises does not escape."""
        blocker = temp_dir / "file"
        blocker.write_text("x")

        def explode(op: str, e: Exception) -> None:
            raise RuntimeError("reporter down")

        db = AuditDB(blocker / "audit.db", error_reporter=explode)
        assert db.record_tool_execution_start("bash") == 0

    def test_default_reporter_logs(self, temp_dir: Path, caplog: pytest.LogCaptureFixture) -> None:
        blocker = temp_dir / "file"
        blocker.write_text("x")
        db = AuditDB(blocker / "audit.db")
        with caplog.at_level("WARNING", logger="gatehouse.store.db"):
            db.record_session_event("s1", SessionEventType.CREATED)
        assert any("record_session_event" in r.getMessage() for r in caplog.records)

    def test_failed_pragma_closes_connection(
        self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A connection that cannot be configured is closed, then reported."""

        class _BrokenConnection:
            closed = False
            row_factory = None

            def execute(self, sql: str, *args: object) -> None:
                raise sqlite3.OperationalError("database is locked")

            def close(self) -> None:
                self.closed = True

        opened: list[_BrokenConnection] = []

        def fake_connect(*args: object, **kwargs: object) -> _BrokenConnection:
            conn = _BrokenConnection()
            opened.append(conn)
            return conn

        monkeypatch.setattr(sqlite3, "connect", fake_connect)
        reported: list[tuple[str, Exception]] = []
        db = AuditDB(temp_dir / "pragma.db", error_reporter=lambda op, e: reported.append((op, e)))

        assert db.record_session_event("s1", SessionEventType.CREATED) == 0
        assert len(opened) == 1
        assert opened[0].closed
        assert isinstance(reported[0][1], StorageConnectionError)


# =============================================================================
# Permission Stats
# =============================================================================


class TestPermissionStats:
    """Tests for get_permission_stats."""

    def _event(self, db: AuditDB, status: PermissionStatus, pattern: str | None, **kwargs) -> None:
        details = json.dumps({"matched_pattern": pattern, "is_default": pattern is None})
        db.record_permission_event(
            kwargs.pop("session_id", "s1"),
            kwargs.pop("permission_type", "bash"),
            status,
            resource="cmd",
            details_json=details,
            **kwargs,
        )

    def test_empty(self, audit_db: AuditDB) -> None:
        stats = audit_db.get_permission_stats()
        assert stats.total == 0
        assert stats.top_patterns == ()

    def test_counts_and_top_patterns(self, audit_db: AuditDB) -> None:
        for _ in range(3):
            self._event(audit_db, PermissionStatus.DENY, "rm -rf*")
        for _ in range(2):
            self._event(audit_db, PermissionStatus.ALLOW, "git status")
        self._event(audit_db, PermissionStatus.DENY, "ls*")
        self._event(audit_db, PermissionStatus.DENY, None)
        audit_db.record_permission_event("s1", "bash", PermissionStatus.ASK, details_json="not json")

        stats = audit_db.get_permission_stats()

        assert (stats.total, stats.allowed, stats.denied, stats.asked) == (8, 2, 5, 1)
        assert [(h.pattern, h.status.value, h.count) for h in stats.top_patterns] == [
            ("rm -rf*", "deny", 3),
            ("git status", "allow", 2),
            ("ls*", "deny", 1),
        ]

    def test_same_pattern_split_by_status(self, audit_db: AuditDB) -> None:
        """A constrained allow rule can end in either status."""
        self._event(audit_db, PermissionStatus.ALLOW, "ls*")
        self._event(audit_db, PermissionStatus.DENY, "ls*")

        hits = {(h.pattern, h.status.value) for h in audit_db.get_permission_stats().top_patterns}
        assert hits == {("ls*", "allow"), ("ls*", "deny")}

    def test_top_n(self, audit_db: AuditDB) -> None:
        for pattern in ("a", "b", "c"):
            self._event(audit_db, PermissionStatus.ALLOW, pattern)
        assert len(audit_db.get_permission_stats(top_n=2).top_patterns) == 2

    def test_filter(self, audit_db: AuditDB, t0: datetime) -> None:
        self._event(audit_db, PermissionStatus.DENY, "rm*", timestamp=t0)
        self._event(audit_db, PermissionStatus.ALLOW, "ls*", timestamp=seconds(t0, 60))
        self._event(audit_db, PermissionStatus.ALLOW, "run", permission_type="container", timestamp=t0)

        early = audit_db.get_permission_stats(LogFilter(before=seconds(t0, 30)))
        assert (early.total, early.denied) == (2, 1)

        bash_only = audit_db.get_permission_stats(LogFilter(tool_name="bash"))
        assert bash_only.total == 2

        s2 = audit_db.get_permission_stats(LogFilter(session_id="s2"))
        assert s2.total == 0


# =============================================================================
# Concurrent Writers
# =============================================================================


class TestConcurrentWriters:
    """Many threads share one store and one connection."""

    def test_parallel_start_end_pairs(self, temp_dir: Path) -> None:
        reported: list[tuple[str, Exception]] = []
        db = AuditDB(temp_dir / "concurrent.db", error_reporter=lambda op, e: reported.append((op, e)))

        def worker(n: int) -> None:
            for i in range(200):
                call_id = f"w{n}-c{i}"
                db.record_tool_execution_start("bash", session_id=f"s{n}", call_id=call_id)
                db.record_tool_execution_end("bash", call_id=call_id, session_id=f"s{n}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert reported == []
        stats = db.get_stats()
        assert stats.completed == 1600
        assert stats.started == 1600
        assert stats.total == 1600
        assert db.in_progress_count() == 0
        db.close()

"""
Security tests for secrets in the audit trail.

These tests verify that credentials passed as tool arguments never reach
the audit store, at any nesting depth, and that hostile payloads cannot
break recording.
"""

import json
from pathlib import Path

import pytest

from gatehouse.store import AuditDB, AuditHooks, safe_stringify, sanitize_args


class TestSanitizeArgs:
    """Tests for key-based redaction."""

    @pytest.mark.parametrize(
        "key",
        ["password", "PASSWORD", "secret", "token", "key", "apikey", "api_key", "auth", "credential", "private"],
    )
    def test_sensitive_keys(self, key: str) -> None:
        assert sanitize_args({key: "s3cr3t"}) == {key: "[REDACTED]"}

    def test_nested_and_lists(self) -> None:
        value = {"env": [{"name": "A", "token": "x"}], "opts": {"db": {"password": "y"}}}
        cleaned = sanitize_args(value)

        assert cleaned["env"][0] == {"name": "A", "token": "[REDACTED]"}
        assert cleaned["opts"]["db"]["password"] == "[REDACTED]"

    def test_only_whole_key_names(self) -> None:
        """Keys that merely contain a sensitive word are kept."""
        assert sanitize_args({"keyboard": "qwerty", "tokens_used": 12}) == {
            "keyboard": "qwerty",
            "tokens_used": 12,
        }

    def test_input_not_mutated(self) -> None:
        original = {"password": "p"}
        sanitize_args(original)
        assert original == {"password": "p"}


class TestSafeStringify:
    """Hostile payloads still produce a string."""

    def test_circular_reference(self) -> None:
        loop: dict = {}
        loop["self"] = loop
        assert safe_stringify(loop) == "[Unable to serialize args]"

    def test_unserializable_values_stringified(self) -> None:
        data = json.loads(safe_stringify({"path": Path("/x")}))
        assert data == {"path": "/x"}


class TestStoredRows:
    """What actually lands in the database."""

    def test_secret_never_written(self, temp_dir: Path) -> None:
        db_path = temp_dir / "redact.db"
        with AuditDB(db_path) as db:
            hooks = AuditHooks(db)
            hooks.tool_execute_before(
                "s1", "c1", "http", args={"url": "https://api", "headers": {"auth": "Bearer abc123"}}
            )
            hooks.permission_asked(
                "s1", "http", "ask", resource="https://api", details={"token": "abc123"}
            )

        assert b"abc123" not in db_path.read_bytes()
        wal = db_path.with_name(db_path.name + "-wal")
        if wal.exists():
            assert b"abc123" not in wal.read_bytes()

    def test_sql_in_values_is_data(self, audit_db: AuditDB) -> None:
        name = "bash'); DROP TABLE tool_execution_log; --"
        audit_db.record_tool_execution_start(name, session_id="s1", call_id="c1")

        (row,) = audit_db.get_logs()
        assert row.tool_name == name

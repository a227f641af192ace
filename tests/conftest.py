"""
Pytest configuration and fixtures for Gatehouse tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Generator

import pytest

from gatehouse.store import AuditDB


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_rules(temp_dir: Path) -> Callable[[str], Path]:
    """Return a helper that writes rule YAML to a file and returns its path."""

    def _write(content: str, name: str = "permissions.yaml") -> Path:
        path = temp_dir / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_rules_yaml() -> str:
    """Return a shell rule file with allow, deny and constrained rules."""
    return """
rules:
  - pattern: "rm -rf*"
    decision: deny
    reason: Destructive
  - patterns: ["git status", "git log*"]
    decision: allow
    reason: Read-only git
  - pattern: "ls*"
    decision: allow
    constraints:
      - cwd_only
  - pattern: "find *"
    decision: allow
    constraints:
      - cwd_only
      - type: max_depth
        value: 3
default: deny
default_reason: Command not in allowlist
"""


@pytest.fixture
def fixed_time() -> datetime:
    """A fixed point in time for deterministic audit rows."""
    return datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def audit_db(temp_dir: Path) -> Generator[AuditDB, None, None]:
    """Create an audit store in a temporary directory."""
    db = AuditDB(temp_dir / "audit" / "audit-trail.db")
    yield db
    db.close()

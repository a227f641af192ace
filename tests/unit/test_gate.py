"""
Unit tests for the PermissionGate.

Tests cover:
- Trimming and evaluation
- Constraint override of allow rules
- Deny rules skip constraints
- Permission event recording
"""

import json
from pathlib import Path

from gatehouse.constraints import SHELL, ShellContext
from gatehouse.gate import PermissionGate
from gatehouse.policy import RuleStore, load_config
from gatehouse.schema import Decision, PermissionStatus
from gatehouse.store import AuditDB


def make_gate(write_rules, yaml_text: str, **kwargs) -> PermissionGate:
    store = RuleStore(write_rules(yaml_text), constraint_schema=SHELL)
    return PermissionGate(store, domain=SHELL, **kwargs)


class TestGateDecision:
    """Tests for PermissionGate.check."""

    def test_allow_without_constraints(self, write_rules, sample_rules_yaml: str) -> None:
        gate = make_gate(write_rules, sample_rules_yaml)
        verdict = gate.check("git status")

        assert verdict.allowed
        assert verdict.reason == "Read-only git"
        assert verdict.constraint_result is None

    def test_input_trimmed(self, write_rules, sample_rules_yaml: str) -> None:
        """Surrounding whitespace does not change the decision."""
        gate = make_gate(write_rules, sample_rules_yaml)
        assert gate.check("  git status \n").allowed

    def test_deny_rule(self, write_rules, sample_rules_yaml: str) -> None:
        gate = make_gate(write_rules, sample_rules_yaml)
        verdict = gate.check("rm -rf /")

        assert verdict.decision == Decision.DENY
        assert verdict.reason == "Destructive"
        assert verdict.match.matched_pattern == "rm -rf*"

    def test_default_deny(self, write_rules, sample_rules_yaml: str) -> None:
        gate = make_gate(write_rules, sample_rules_yaml)
        verdict = gate.check("curl http://example.com")

        assert not verdict.allowed
        assert verdict.match.is_default
        assert verdict.reason == "Command not in allowlist"

    def test_constraints_pass(self, write_rules, sample_rules_yaml: str, temp_dir: Path) -> None:
        gate = make_gate(write_rules, sample_rules_yaml)
        verdict = gate.check("ls src", ShellContext("ls src", str(temp_dir)))

        assert verdict.allowed
        assert verdict.constraint_result is not None
        assert verdict.constraint_result.valid

    def test_constraint_override(self, write_rules, sample_rules_yaml: str, temp_dir: Path) -> None:
        """A failed constraint turns the allow into a deny."""
        gate = make_gate(write_rules, sample_rules_yaml)
        verdict = gate.check("ls /etc", ShellContext("ls /etc", str(temp_dir)))

        assert verdict.decision == Decision.DENY
        assert "outside working directory" in verdict.reason
        assert verdict.violation == verdict.reason
        # The engine's match is untouched
        assert verdict.match.decision == Decision.ALLOW
        assert verdict.match.matched_pattern == "ls*"

    def test_second_constraint_enforced(self, write_rules, sample_rules_yaml: str, temp_dir: Path) -> None:
        gate = make_gate(write_rules, sample_rules_yaml)
        command = "find . -name x"
        verdict = gate.check(command, ShellContext(command, str(temp_dir)))
        assert verdict.reason == "Command denied: Must specify -maxdepth (max 3) for safety"

    def test_deny_rule_skips_constraints(self, write_rules) -> None:
        """Constraints on a deny rule are never evaluated."""
        gate = make_gate(
            write_rules,
            """
rules:
  - pattern: "rm *"
    decision: deny
    reason: no rm
    constraints: [no_force]
""",
        )
        verdict = gate.check("rm x", ShellContext("rm x", "/work"))
        assert verdict.reason == "no rm"
        assert verdict.constraint_result is None

    def test_default_context(self, write_rules, sample_rules_yaml: str, monkeypatch, temp_dir: Path) -> None:
        """Without a context, the shell domain uses the process working directory."""
        monkeypatch.chdir(temp_dir)
        gate = make_gate(write_rules, sample_rules_yaml)
        assert gate.check("ls").allowed
        assert not gate.check("ls /").allowed

    def test_constraints_without_domain_deny(self, write_rules, sample_rules_yaml: str) -> None:
        """A constrained allow with no domain to check it is denied."""
        config = load_config(write_rules(sample_rules_yaml)).config
        gate = PermissionGate(config)
        verdict = gate.check("ls src")

        assert not verdict.allowed
        assert verdict.violation.startswith("Operation denied:")

    def test_broken_rule_file_denies(self, temp_dir: Path) -> None:
        """A missing rule file denies everything."""
        gate = PermissionGate(RuleStore(temp_dir / "missing.yaml"), domain=SHELL)
        verdict = gate.check("git status")
        assert not verdict.allowed
        assert verdict.match.is_default


class TestGateAudit:
    """Tests for permission event recording."""

    def test_records_event(self, write_rules, sample_rules_yaml: str, audit_db: AuditDB) -> None:
        gate = make_gate(write_rules, sample_rules_yaml, audit=audit_db, permission_type="bash")
        gate.check("rm -rf /", session_id="s1")

        events = audit_db.get_permission_events(session_id="s1")
        assert len(events) == 1
        event = events[0]
        assert event.status == PermissionStatus.DENY
        assert event.permission_type == "bash"
        assert event.resource == "rm -rf /"
        details = json.loads(event.details_json)
        assert details["matched_pattern"] == "rm -rf*"
        assert details["is_default"] is False

    def test_no_session_no_event(self, write_rules, sample_rules_yaml: str, audit_db: AuditDB) -> None:
        gate = make_gate(write_rules, sample_rules_yaml, audit=audit_db)
        gate.check("git status")
        assert audit_db.get_permission_events() == []

    def test_permission_type_defaults_to_domain(self, write_rules, sample_rules_yaml: str) -> None:
        assert make_gate(write_rules, sample_rules_yaml).permission_type == "shell"

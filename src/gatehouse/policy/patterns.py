"""
Pattern compilation for Gatehouse rules.

Rule patterns are deliberately tiny: ``*`` matches any run of characters
(including none) and everything else is literal. Matching is
case-insensitive and always covers the whole input.

Examples:
    "git status"  matches "git status", "GIT STATUS"
    "git *"       matches "git log", "git " but not "git"
    "rm -rf*"     matches "rm -rf /", "rm -rf"
    "*"           matches anything, including ""
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Matcher:
    """
    A compiled rule pattern.

    Attributes:
        pattern: The source pattern as written in the rule file
        regex: The anchored, case-insensitive compiled expression
    """

    pattern: str
    regex: re.Pattern[str]

    def test(self, value: str) -> bool:
        """Return True if the pattern covers the whole of ``value``."""
        return self.regex.fullmatch(value) is not None


def pattern_to_regex(pattern: str, ignore_case: bool = True) -> re.Pattern[str]:
    """
    Translate a glob-style pattern to a compiled regular expression.

    Every regex metacharacter is escaped; each ``*`` becomes ``.*``.
    The result is anchored at both ends. Any string is a valid pattern,
    so this never raises.

    ``*`` does not cross newlines: "echo*" must not cover a second command
    on the next line.
    """
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(f"^{body}$", flags)


def compile_pattern(pattern: str) -> Matcher:
    """Compile a rule pattern into a Matcher."""
    return Matcher(pattern=pattern, regex=pattern_to_regex(pattern))


def matches_glob(value: str, pattern: str, ignore_case: bool = False) -> bool:
    """
    One-off glob check used by constraint helpers.

    Case-sensitive by default, since it is applied to filesystem names and
    image references rather than whole command lines.
    """
    return pattern_to_regex(pattern, ignore_case=ignore_case).fullmatch(value) is not None

"""
Shell command constraints for Gatehouse.

Context: the full command line plus the working directory it runs in.

Constraint kinds:
    cwd_only        Every path argument resolves inside the working
                    directory (``also_allow`` widens, ``exclude`` narrows)
    no_recursive    No ``-r``/``-R``/``--recursive``, including combined
                    short flags such as ``-rf``
    no_force        No ``-f``/``--force``
    max_depth       ``-maxdepth N``/``--max-depth N`` present and N <= value
    require_flag    The given flag is present

Paths are resolved lexically against the working directory. Symlinks are
not followed; the command has not run yet and its targets may not exist.
"""

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Annotated, ClassVar, Literal

from pydantic import Field, TypeAdapter

from gatehouse.constraints.base import ConstraintDomain, ConstraintSpec, Validator
from gatehouse.policy.patterns import matches_glob
from gatehouse.schema import ConstraintResult

DENIED = "Command denied:"


@dataclass(frozen=True)
class ShellContext:
    """
    What a shell constraint sees.

    Attributes:
        command: The command line as submitted (already trimmed)
        workdir: Directory the command would run in
    """

    command: str
    workdir: str


# =============================================================================
# Tokenizing
# =============================================================================


def tokenize(command: str) -> list[str]:
    """
    Split a command line into words.

    Single and double quotes group words and are removed. Outside quotes a
    backslash makes the next character literal. Words are separated by
    spaces and tabs. No expansion of any kind is performed.

    Example:
        tokenize('grep "a b" c\\ d')  # ['grep', 'a b', 'c d']
    """
    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None
    escape_next = False

    for char in command:
        if escape_next:
            current.append(char)
            escape_next = False
        elif char == "\\" and quote is None:
            escape_next = True
        elif quote is not None:
            if char == quote:
                quote = None
            else:
                current.append(char)
        elif char in ("'", '"'):
            quote = char
        elif char in (" ", "\t"):
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens


def non_flag_args(args: list[str]) -> list[str]:
    """Arguments that do not start with ``-``."""
    return [arg for arg in args if not arg.startswith("-")]


def _cd_paths(args: list[str]) -> list[str]:
    if not args:
        return ["~"]
    # "-" means the previous directory; checked before flag filtering
    if "-" in args:
        return ["-"]
    paths = non_flag_args(args)
    return [paths[0]] if paths else ["~"]


def _paths_or_cwd(args: list[str]) -> list[str]:
    return non_flag_args(args) or ["."]


def _find_paths(args: list[str]) -> list[str]:
    paths: list[str] = []
    for arg in args:
        if arg.startswith("-"):
            break
        paths.append(arg)
    return paths or ["."]


def _paths_after_first(args: list[str]) -> list[str]:
    # grep/rg: the first non-flag is the search pattern
    return non_flag_args(args)[1:]


PATH_EXTRACTORS: dict[str, Callable[[list[str]], list[str]]] = {
    "cd": _cd_paths,
    "ls": _paths_or_cwd,
    "tree": _paths_or_cwd,
    "du": _paths_or_cwd,
    "find": _find_paths,
    "grep": _paths_after_first,
    "rg": _paths_after_first,
}


def extract_paths(command: str) -> list[str]:
    """
    Return the path arguments of a command.

    Commands without a dedicated extractor (cat, cp, rm, ...) treat every
    non-flag argument as a path.
    """
    tokens = tokenize(command)
    if not tokens:
        return []
    name, args = tokens[0], tokens[1:]
    extractor = PATH_EXTRACTORS.get(name, non_flag_args)
    return extractor(args)


# =============================================================================
# Path Helpers
# =============================================================================


def resolve_path(workdir: str, path: str) -> str:
    """Resolve ``path`` against ``workdir`` without touching the filesystem."""
    return os.path.abspath(os.path.join(workdir, path))


def matches_exclude(resolved: str, patterns: list[str]) -> str | None:
    """
    Return the first exclude pattern that names a component of ``resolved``.

    Each pattern is matched (case-sensitively) against the basename and
    every path segment, so ``.git`` excludes ``repo/.git/config``.
    """
    segments = [s for s in resolved.split(os.sep) if s]
    base = os.path.basename(resolved)
    for pattern in patterns:
        if matches_glob(base, pattern):
            return pattern
        for segment in segments:
            if matches_glob(segment, pattern):
                return pattern
    return None


def is_within_or_equal(path: str, base: str) -> bool:
    """True if ``path`` is ``base`` or lies underneath it."""
    path = os.path.abspath(path)
    base = os.path.abspath(base)
    if path == base:
        return True
    rel = os.path.relpath(path, base)
    return rel != os.curdir and rel.split(os.sep)[0] != os.pardir and not os.path.isabs(rel)


def has_short_flag(token: str, flag: str) -> bool:
    """
    True if ``token`` carries the single-letter ``flag``.

    Combined short flags count: ``-rf`` has both ``-r`` and ``-f``.
    Long options never do.
    """
    letter = flag[1:] if flag.startswith("-") else flag
    if len(letter) != 1:
        return False
    if token == f"-{letter}":
        return True
    if token.startswith("-") and not token.startswith("--") and len(token) > 2:
        return letter in token[1:]
    return False


_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _parse_depth(value: str) -> int | None:
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


# =============================================================================
# Validators
# =============================================================================


def check_cwd_only(
    command: str,
    workdir: str,
    also_allow: tuple[str, ...] = (),
    exclude: tuple[str, ...] = (),
) -> ConstraintResult:
    """Every path argument must stay inside ``workdir``."""
    workdir_abs = os.path.abspath(workdir)
    extra_roots = [resolve_path(workdir_abs, os.path.expanduser(a)) for a in also_allow if a != "~"]

    # No path arguments means the command acts on the working directory
    for path in extract_paths(command):
        if path == "-":
            return ConstraintResult.fail(f"{DENIED} 'cd -' not allowed (unknown destination)")

        if path == "~" or path.startswith("~/"):
            if "~" in also_allow:
                continue
            return ConstraintResult.fail(f"{DENIED} Home directory (~) not allowed")

        resolved = resolve_path(workdir_abs, path)

        if exclude:
            pattern = matches_exclude(resolved, list(exclude))
            if pattern:
                return ConstraintResult.fail(
                    f"{DENIED} Path '{path}' matches excluded pattern '{pattern}'"
                )

        if is_within_or_equal(resolved, workdir_abs):
            continue
        if any(is_within_or_equal(resolved, root) for root in extra_roots):
            continue

        return ConstraintResult.fail(
            f"{DENIED} Path '{path}' resolves to '{resolved}' "
            f"which is outside working directory '{workdir}'"
        )

    return ConstraintResult.ok()


def check_no_recursive(command: str) -> ConstraintResult:
    for token in tokenize(command):
        if token == "--recursive" or has_short_flag(token, "-r") or has_short_flag(token, "-R"):
            return ConstraintResult.fail(f"{DENIED} Recursive flag not allowed ({token})")
    return ConstraintResult.ok()


def check_no_force(command: str) -> ConstraintResult:
    for token in tokenize(command):
        if token == "--force" or has_short_flag(token, "-f"):
            return ConstraintResult.fail(f"{DENIED} Force flag not allowed ({token})")
    return ConstraintResult.ok()


def check_max_depth(command: str, max_allowed: int) -> ConstraintResult:
    """
    Require an explicit depth limit no deeper than ``max_allowed``.

    Every occurrence of the depth option is checked.
    """
    tokens = tokenize(command)
    found = False

    for i, token in enumerate(tokens):
        if token not in ("-maxdepth", "--max-depth"):
            continue
        found = True

        if i + 1 >= len(tokens):
            return ConstraintResult.fail(f"{DENIED} Missing value for {token}")
        raw = tokens[i + 1]

        depth = _parse_depth(raw)
        if depth is None:
            return ConstraintResult.fail(f"{DENIED} Invalid depth value '{raw}'")
        if depth > max_allowed:
            return ConstraintResult.fail(
                f"{DENIED} Depth {depth} exceeds maximum allowed ({max_allowed})"
            )

    if not found:
        return ConstraintResult.fail(
            f"{DENIED} Must specify -maxdepth (max {max_allowed}) for safety"
        )
    return ConstraintResult.ok()


def check_require_flag(command: str, flag: str) -> ConstraintResult:
    tokens = tokenize(command)
    if flag in tokens:
        return ConstraintResult.ok()

    if flag.startswith("-") and not flag.startswith("--") and len(flag) == 2:
        if any(has_short_flag(token, flag) for token in tokens):
            return ConstraintResult.ok()

    return ConstraintResult.fail(f"{DENIED} Required flag '{flag}' not found")


# =============================================================================
# Constraint Models
# =============================================================================


class CwdOnly(ConstraintSpec):
    type: Literal["cwd_only"] = "cwd_only"
    also_allow: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    shorthand: ClassVar[bool] = True
    field_errors: ClassVar[dict[str, str]] = {
        "also_allow": "cwd_only.also_allow must be an array",
        "exclude": "cwd_only.exclude must be an array",
    }


class NoRecursive(ConstraintSpec):
    type: Literal["no_recursive"] = "no_recursive"

    shorthand: ClassVar[bool] = True


class NoForce(ConstraintSpec):
    type: Literal["no_force"] = "no_force"

    shorthand: ClassVar[bool] = True


class MaxDepth(ConstraintSpec):
    type: Literal["max_depth"] = "max_depth"
    value: int = Field(..., ge=0)

    field_errors: ClassVar[dict[str, str]] = {
        "value": "max_depth requires a non-negative 'value'",
    }


class RequireFlag(ConstraintSpec):
    type: Literal["require_flag"] = "require_flag"
    flag: str = Field(..., min_length=1)

    field_errors: ClassVar[dict[str, str]] = {
        "flag": "require_flag requires a non-empty 'flag'",
    }


ShellConstraint = Annotated[
    CwdOnly | NoRecursive | NoForce | MaxDepth | RequireFlag,
    Field(discriminator="type"),
]


class ShellDomain(ConstraintDomain[ShellContext]):
    """Constraints for shell command lines."""

    name = "shell"
    denial_prefix = DENIED
    kinds = (CwdOnly, NoRecursive, NoForce, MaxDepth, RequireFlag)
    adapter = TypeAdapter(ShellConstraint)

    def dispatch(self) -> Mapping[str, Validator]:
        return _DISPATCH

    def default_context(self, value: str) -> ShellContext:
        return ShellContext(command=value, workdir=os.getcwd())


_DISPATCH: dict[str, Validator] = {
    "cwd_only": lambda c, ctx: check_cwd_only(ctx.command, ctx.workdir, c.also_allow, c.exclude),
    "no_recursive": lambda c, ctx: check_no_recursive(ctx.command),
    "no_force": lambda c, ctx: check_no_force(ctx.command),
    "max_depth": lambda c, ctx: check_max_depth(ctx.command, c.value),
    "require_flag": lambda c, ctx: check_require_flag(ctx.command, c.flag),
}

SHELL = ShellDomain()

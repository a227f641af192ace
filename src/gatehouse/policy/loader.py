"""
Rule file loading for Gatehouse.

A rule file is YAML of the form::

    rules:
      - pattern: "git status"
        decision: allow
      - patterns: ["rm -rf*", "mkfs*"]
        decision: deny
        reason: Destructive
      - pattern: "find *"
        decision: allow
        constraints:
          - cwd_only
          - type: max_depth
            value: 3
    default: deny
    default_reason: Command not in allowlist

Loading is fail-closed. If the file cannot be read, is not valid YAML, or
has the wrong shape, every error is logged and the loader returns a config
with no rules and a deny default. Nothing here raises to the caller.

The RuleStore memoizes the compiled config. It is an ordinary value owned
by the host application; there is no module-level cache.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from gatehouse.errors import ConfigLoadError, ConfigValidationError
from gatehouse.policy.patterns import Matcher, compile_pattern
from gatehouse.schema import Decision, PermissionPattern

logger = logging.getLogger(__name__)

FALLBACK_REASON = "Permissions file failed to load - all operations denied for safety"
DEFAULT_REASON = "Operation not in allowlist"

_DECISIONS = ("allow", "deny")


# =============================================================================
# Compiled Config
# =============================================================================


@dataclass(frozen=True)
class CompiledRule:
    """
    A single-pattern rule plus its compiled matcher.

    Built once per load and never mutated. ``rule`` is the back-reference
    handed to constraint validation.
    """

    rule: PermissionPattern
    matcher: Matcher

    @property
    def pattern(self) -> str:
        return self.rule.pattern

    @property
    def decision(self) -> Decision:
        return self.rule.decision

    @property
    def reason(self) -> str | None:
        return self.rule.reason

    @property
    def constraints(self) -> tuple[Any, ...]:
        return self.rule.constraints


@dataclass(frozen=True)
class PermissionsConfig:
    """
    An ordered, immutable rule set.

    Attributes:
        rules: Compiled rules in declaration order (first match wins)
        default: Decision when no rule matches
        default_reason: Reason reported with the default decision
    """

    rules: tuple[CompiledRule, ...] = ()
    default: Decision = Decision.DENY
    default_reason: str = DEFAULT_REASON

    @classmethod
    def fallback(cls, reason: str = FALLBACK_REASON) -> "PermissionsConfig":
        """The deny-everything config used when loading fails."""
        return cls(rules=(), default=Decision.DENY, default_reason=reason)


@dataclass(frozen=True)
class LoadResult:
    """A loaded config plus the errors that forced a fallback, if any."""

    config: PermissionsConfig
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors


# =============================================================================
# Validation
# =============================================================================


class ConstraintSchema(Protocol):
    """
    Domain hook for rule constraints.

    ``check`` returns an error message for an invalid constraint list and
    ``parse`` turns one raw constraint into the domain's typed value.
    """

    def check(self, constraints: list[Any], rule_index: int) -> str | None: ...

    def parse(self, raw: Any) -> Any: ...


def validate_rule(
    rule: Any,
    index: int,
    constraint_schema: ConstraintSchema | None = None,
) -> str | None:
    """
    Validate a single raw rule.

    Returns:
        An error message, or None if the rule is well formed
    """
    if not isinstance(rule, dict):
        return f"Rule {index}: Must be an object"

    has_pattern = isinstance(rule.get("pattern"), str)
    patterns = rule.get("patterns")
    has_patterns = isinstance(patterns, list) and all(isinstance(p, str) for p in patterns)
    if not has_pattern and not has_patterns:
        return f"Rule {index}: Must have 'pattern' (string) or 'patterns' (string array)"

    if rule.get("decision") not in _DECISIONS:
        return f"Rule {index}: 'decision' must be 'allow' or 'deny'"

    reason = rule.get("reason")
    if reason is not None and not isinstance(reason, str):
        return f"Rule {index}: 'reason' must be a string or null"

    if "constraints" in rule:
        constraints = rule["constraints"]
        if not isinstance(constraints, list):
            return f"Rule {index}: 'constraints' must be an array"
        if constraint_schema is not None:
            return constraint_schema.check(constraints, index)

    return None


def validate_config(
    parsed: Any,
    constraint_schema: ConstraintSchema | None = None,
) -> list[str]:
    """
    Validate a parsed rule document.

    Returns:
        Every error found (empty if the document is valid)
    """
    if not isinstance(parsed, dict):
        return ["Config must be an object"]

    rules = parsed.get("rules")
    if not isinstance(rules, list):
        return ['Config must have a "rules" array']

    errors: list[str] = []
    for index, rule in enumerate(rules):
        error = validate_rule(rule, index, constraint_schema)
        if error:
            errors.append(error)

    if "default" in parsed and parsed["default"] not in _DECISIONS:
        errors.append("'default' must be 'allow' or 'deny'")

    if "default_reason" in parsed and not isinstance(parsed["default_reason"], str):
        errors.append("'default_reason' must be a string")

    return errors


# =============================================================================
# Loading
# =============================================================================


def read_rule_document(path: Path | str) -> Any:
    """
    Read and parse a YAML rule file.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise ConfigLoadError(path=str(path), underlying_error=str(e)) from e


def build_config(
    parsed: dict[str, Any],
    constraint_schema: ConstraintSchema | None = None,
) -> PermissionsConfig:
    """
    Expand a validated document into a PermissionsConfig.

    Each entry of ``patterns`` becomes its own CompiledRule. Order is kept
    across rules and within each rule's pattern list.
    """
    compiled: list[CompiledRule] = []

    for raw in parsed["rules"]:
        patterns = raw.get("patterns")
        if not isinstance(patterns, list):
            patterns = [raw["pattern"]]

        raw_constraints = raw.get("constraints") or []
        if constraint_schema is not None:
            constraints = tuple(constraint_schema.parse(c) for c in raw_constraints)
        else:
            constraints = tuple(raw_constraints)

        for pattern in patterns:
            rule = PermissionPattern(
                pattern=pattern,
                decision=Decision(raw["decision"]),
                reason=raw.get("reason"),
                constraints=constraints,
            )
            compiled.append(CompiledRule(rule=rule, matcher=compile_pattern(pattern)))

    return PermissionsConfig(
        rules=tuple(compiled),
        default=Decision(parsed.get("default", Decision.DENY.value)),
        default_reason=parsed.get("default_reason", DEFAULT_REASON),
    )


def load_config(
    path: Path | str,
    constraint_schema: ConstraintSchema | None = None,
) -> LoadResult:
    """
    Load a rule file, falling back to deny-all on any problem.

    Never raises. The returned LoadResult carries the errors (if any) so
    tooling can report them; evaluation callers only need ``.config``.
    """
    try:
        parsed = read_rule_document(path)
    except ConfigLoadError as e:
        logger.error("Failed to load permissions from %s: %s", path, e.underlying_error)
        return LoadResult(config=PermissionsConfig.fallback(), errors=(e.message,))

    errors = validate_config(parsed, constraint_schema)
    if errors:
        error = ConfigValidationError(path=str(path), errors=errors)
        logger.error("%s", error.message)
        for message in errors:
            logger.error("  - %s", message)
        return LoadResult(config=PermissionsConfig.fallback(), errors=tuple(errors))

    try:
        config = build_config(parsed, constraint_schema)
    except (ValueError, TypeError) as e:
        # A constraint schema that validates but cannot parse its own input
        logger.error("Failed to compile rules from %s: %s", path, e)
        return LoadResult(config=PermissionsConfig.fallback(), errors=(str(e),))

    logger.debug("Loaded %d rule(s) from %s", len(config.rules), path)
    return LoadResult(config=config)


class RuleStore:
    """
    Load-once holder for a rule file's compiled config.

    Construct one per rule file at startup and hand it to the DecisionEngine
    and tooling. The first access loads and compiles the file; later
    accesses return the same PermissionsConfig. ``reload()`` builds a new
    config and swaps it in with a single assignment, so evaluations already
    in flight keep the snapshot they started with.

    Usage:
        store = RuleStore("sh-permissions.yaml", constraint_schema=SHELL)
        engine = DecisionEngine(store)
    """

    def __init__(
        self,
        path: Path | str,
        constraint_schema: ConstraintSchema | None = None,
    ) -> None:
        self.path = Path(path)
        self.constraint_schema = constraint_schema
        self._result: LoadResult | None = None
        self._lock = threading.Lock()

    @property
    def config(self) -> PermissionsConfig:
        """The compiled config, loading it on first access."""
        result = self._result
        if result is None:
            result = self._load_once()
        return result.config

    @property
    def errors(self) -> tuple[str, ...]:
        """Errors from the most recent load (empty if it succeeded)."""
        result = self._result
        if result is None:
            result = self._load_once()
        return result.errors

    def reload(self) -> PermissionsConfig:
        """Re-read the rule file and swap in the new config."""
        result = load_config(self.path, self.constraint_schema)
        self._result = result
        return result.config

    def invalidate(self) -> None:
        """Drop the cached config; the next access reloads."""
        self._result = None

    def _load_once(self) -> LoadResult:
        with self._lock:
            if self._result is None:
                self._result = load_config(self.path, self.constraint_schema)
            return self._result

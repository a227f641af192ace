"""
Decision Engine for Gatehouse.

The Decision Engine resolves an input string against an ordered rule list.

Design Principles:
    - First match wins: rules are walked in declaration order, no
      specificity inference
    - Deny-by-default: the configured default applies when nothing matches,
      and a broken rule file defaults to deny
    - Pure: evaluation reads one config snapshot and writes nothing
    - Never raises: every input string has a decision

How it works:
    1. Take the current PermissionsConfig snapshot from the config source
    2. Test each compiled rule's matcher against the input
    3. Return the first match, or the default

Constraints are not applied here. A MatchResult with decision ALLOW and a
rule carrying constraints still has to pass the constraint validator
(see gatehouse.gate).
"""

from dataclasses import dataclass, field
from typing import Protocol

from gatehouse.policy.loader import CompiledRule, PermissionsConfig
from gatehouse.schema import Decision, PermissionPattern


class ConfigSource(Protocol):
    """Anything that exposes a current PermissionsConfig (e.g. a RuleStore)."""

    @property
    def config(self) -> PermissionsConfig: ...


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of resolving an input against the rules.

    ``matched_pattern`` is None exactly when ``is_default`` is True.

    Attributes:
        decision: ALLOW or DENY (before constraints)
        matched_pattern: The pattern that matched, if any
        reason: The rule's reason, or the default reason
        is_default: True if no rule matched
        rule: Back-reference to the matched rule
    """

    decision: Decision
    matched_pattern: str | None = None
    reason: str | None = None
    is_default: bool = False
    rule: PermissionPattern | None = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    @property
    def has_constraints(self) -> bool:
        return self.rule is not None and bool(self.rule.constraints)


@dataclass(frozen=True)
class TraceEntry:
    """One rule examined during a traced evaluation. Never persisted."""

    index: int
    pattern: str
    decision: Decision
    matched: bool
    reason: str | None = None
    regex: str = ""


@dataclass(frozen=True)
class TracedMatchResult:
    """A MatchResult plus the rules examined to reach it."""

    result: MatchResult
    trace: tuple[TraceEntry, ...] = field(default_factory=tuple)


def _from_rule(rule: CompiledRule) -> MatchResult:
    return MatchResult(
        decision=rule.decision,
        matched_pattern=rule.pattern,
        reason=rule.reason,
        is_default=False,
        rule=rule.rule,
    )


def _from_default(config: PermissionsConfig) -> MatchResult:
    return MatchResult(
        decision=config.default,
        matched_pattern=None,
        reason=config.default_reason,
        is_default=True,
        rule=None,
    )


class DecisionEngine:
    """
    First-match-wins evaluator over a rule set.

    Usage:
        store = RuleStore("sh-permissions.yaml")
        engine = DecisionEngine(store)
        result = engine.evaluate("git status")
        if result.allowed:
            ...

    The engine accepts either a live config source (a RuleStore, so reloads
    are picked up) or a fixed PermissionsConfig.
    """

    def __init__(self, source: ConfigSource | PermissionsConfig) -> None:
        self._source = source

    @property
    def config(self) -> PermissionsConfig:
        """The config snapshot the next evaluation will use."""
        if isinstance(self._source, PermissionsConfig):
            return self._source
        return self._source.config

    def evaluate(self, value: str) -> MatchResult:
        """
        Resolve ``value`` to a decision.

        The input is matched as given; callers that want whitespace trimmed
        must trim it first.
        """
        config = self.config
        for rule in config.rules:
            if rule.matcher.test(value):
                return _from_rule(rule)
        return _from_default(config)

    def evaluate_with_trace(self, value: str) -> TracedMatchResult:
        """
        Resolve ``value`` and record every rule examined.

        The walk is identical to evaluate(): it stops at the first match, so
        the trace ends with the matching entry (or covers every rule when
        the default applies).
        """
        config = self.config
        trace: list[TraceEntry] = []
        for index, rule in enumerate(config.rules):
            matched = rule.matcher.test(value)
            trace.append(
                TraceEntry(
                    index=index,
                    pattern=rule.pattern,
                    decision=rule.decision,
                    matched=matched,
                    reason=rule.reason,
                    regex=rule.matcher.regex.pattern,
                )
            )
            if matched:
                return TracedMatchResult(result=_from_rule(rule), trace=tuple(trace))
        return TracedMatchResult(result=_from_default(config), trace=tuple(trace))

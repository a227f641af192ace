"""
Rule resolution for Gatehouse.

Key concepts:
    - Matcher: a compiled glob pattern (``*`` wildcard, case-insensitive,
      whole-string)
    - RuleStore: loads a YAML rule file once and hands out an immutable
      PermissionsConfig; a broken file becomes a deny-all config
    - DecisionEngine: first-match-wins evaluation, with an optional trace
"""

from gatehouse.policy.engine import (
    DecisionEngine,
    MatchResult,
    TracedMatchResult,
    TraceEntry,
)
from gatehouse.policy.loader import (
    DEFAULT_REASON,
    FALLBACK_REASON,
    CompiledRule,
    LoadResult,
    PermissionsConfig,
    RuleStore,
    load_config,
    validate_config,
    validate_rule,
)
from gatehouse.policy.patterns import Matcher, compile_pattern, pattern_to_regex

__all__ = [
    "DEFAULT_REASON",
    "FALLBACK_REASON",
    "CompiledRule",
    "DecisionEngine",
    "LoadResult",
    "MatchResult",
    "Matcher",
    "PermissionsConfig",
    "RuleStore",
    "TraceEntry",
    "TracedMatchResult",
    "compile_pattern",
    "load_config",
    "pattern_to_regex",
    "validate_config",
    "validate_rule",
]

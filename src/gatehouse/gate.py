"""
Permission gate: the caller-facing decision path.

The gate puts the pieces together for one kind of request:

    input -> trim -> DecisionEngine -> (constraints, if allowed) -> GateDecision
                                                               \\-> audit (optional)

Design Principles:
    - The decision path never raises: config problems are already a
      deny-all config, constraint crashes are already failures, and the
      audit store swallows its own errors
    - The engine's MatchResult is never mutated; a constraint failure is
      expressed by the GateDecision on top of it
"""

import logging
from dataclasses import dataclass
from typing import Any

from gatehouse.constraints.base import ConstraintDomain
from gatehouse.policy.engine import DecisionEngine, MatchResult
from gatehouse.policy.loader import PermissionsConfig, RuleStore
from gatehouse.schema import ConstraintResult, Decision, PermissionStatus
from gatehouse.store.db import AuditDB
from gatehouse.store.hooks import safe_stringify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    """
    Final verdict for one request.

    Attributes:
        decision: ALLOW only if a rule (or the default) allowed and every
            constraint passed
        reason: Violation text if a constraint failed, else the match reason
        match: The engine's MatchResult, unmodified
        constraint_result: Outcome of the constraint check, or None if no
            check ran
    """

    decision: Decision
    reason: str | None
    match: MatchResult
    constraint_result: ConstraintResult | None = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    @property
    def violation(self) -> str | None:
        if self.constraint_result is None:
            return None
        return self.constraint_result.violation


class PermissionGate:
    """
    Evaluate requests against one rule file and one constraint domain.

    Usage:
        store = RuleStore("sh-permissions.yaml", constraint_schema=SHELL)
        gate = PermissionGate(store, domain=SHELL, permission_type="bash")
        verdict = gate.check("ls src", ShellContext("ls src", "/work"))
        if not verdict.allowed:
            print(verdict.reason)

    Attributes:
        engine: The DecisionEngine over the store
        domain: Constraint domain used for allowed rules with constraints
        audit: Optional store that receives one permission event per check
        permission_type: Recorded as the event's permission_type
    """

    def __init__(
        self,
        rules: RuleStore | PermissionsConfig,
        domain: ConstraintDomain | None = None,
        audit: AuditDB | None = None,
        permission_type: str | None = None,
    ) -> None:
        self.engine = DecisionEngine(rules)
        self.domain = domain
        self.audit = audit
        self.permission_type = permission_type or (domain.name if domain else "operation")

    def check(
        self,
        value: str,
        context: Any = None,
        session_id: str | None = None,
    ) -> GateDecision:
        """
        Decide on ``value``.

        Args:
            value: The request text (surrounding whitespace is ignored)
            context: Domain context for constraint validation
            session_id: If given and an audit store is set, the decision is
                recorded as a permission event

        Returns:
            GateDecision with the final verdict
        """
        value = value.strip()
        match = self.engine.evaluate(value)
        verdict = self._apply_constraints(match, value, context)

        logger.debug(
            "%s %r -> %s (%s)",
            self.permission_type,
            value,
            verdict.decision.value,
            verdict.reason,
        )

        if self.audit is not None and session_id:
            self._record(session_id, value, verdict)
        return verdict

    def _apply_constraints(self, match: MatchResult, value: str, context: Any) -> GateDecision:
        if not match.allowed or not match.has_constraints:
            return GateDecision(decision=match.decision, reason=match.reason, match=match)

        if self.domain is None:
            result = ConstraintResult.fail(
                "Operation denied: rule has constraints but no constraint domain is configured"
            )
        else:
            if context is None:
                context = self.domain.default_context(value)
            result = self.domain.validate(match.rule.constraints, context)

        if result.valid:
            return GateDecision(
                decision=Decision.ALLOW,
                reason=match.reason,
                match=match,
                constraint_result=result,
            )
        return GateDecision(
            decision=Decision.DENY,
            reason=result.violation,
            match=match,
            constraint_result=result,
        )

    def _record(self, session_id: str, value: str, verdict: GateDecision) -> None:
        status = PermissionStatus.ALLOW if verdict.allowed else PermissionStatus.DENY
        details = {
            "matched_pattern": verdict.match.matched_pattern,
            "is_default": verdict.match.is_default,
            "reason": verdict.reason,
            "violation": verdict.violation,
        }
        self.audit.record_permission_event(
            session_id=session_id,
            permission_type=self.permission_type,
            status=status,
            resource=value,
            details_json=safe_stringify(details),
        )

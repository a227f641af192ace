"""
Constraint framework for Gatehouse.

A constraint is a second-stage check attached to an allow rule. When the
pattern matches, every constraint on the rule must also pass or the allow
becomes a deny.

This module defines the domain-independent pieces:
- ConstraintSpec: Base model for one constraint kind (tagged by ``type``)
- ConstraintDomain: Abstract base a vocabulary of constraints implements
- validate_constraints: Ordered, short-circuit evaluation over a dispatch table

Design Principles:
    - Fail-closed: an unknown type or a validator that raises is a failure
    - Short-circuit: the first failing constraint is the one reported
    - Domains own their vocabulary: the framework knows nothing about
      shells or containers, only about ``type`` keys and dispatch tables

Rule files may write a parameterless constraint as a bare string
(``- no_force``); it is parsed as ``{"type": "no_force"}``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from gatehouse.errors import ConstraintError, UnknownConstraintError
from gatehouse.schema import ConstraintResult

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")

Validator = Callable[[Any, Any], ConstraintResult]


class ConstraintSpec(BaseModel):
    """
    Base for one kind of constraint.

    Subclasses declare ``type: Literal["..."]`` plus their parameters.

    Class Attributes:
        shorthand: Whether the bare-string form is accepted
        field_errors: Config error text per parameter name
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    shorthand: ClassVar[bool] = False
    field_errors: ClassVar[dict[str, str]] = {}


def constraint_type(constraint: Any) -> str | None:
    """Read the ``type`` tag from a parsed, dict or shorthand constraint."""
    if isinstance(constraint, str):
        return constraint
    if isinstance(constraint, BaseModel):
        return getattr(constraint, "type", None)
    if isinstance(constraint, Mapping):
        value = constraint.get("type")
        return value if isinstance(value, str) else None
    return None


def validate_constraints(
    constraints: Iterable[Any],
    context: Any,
    dispatch: Mapping[str, Validator],
    denial_prefix: str = "Operation denied:",
) -> ConstraintResult:
    """
    Evaluate constraints in order and stop at the first failure.

    Args:
        constraints: Constraint values as stored on the matched rule
        context: Domain context handed to every validator
        dispatch: Validator per constraint ``type``
        denial_prefix: Prefix for failures produced by the framework itself

    Returns:
        ConstraintResult.ok() if every constraint passed, otherwise the
        first failure. Never raises.
    """
    for constraint in constraints:
        kind = constraint_type(constraint)
        validator = dispatch.get(kind) if kind is not None else None

        if validator is None:
            error = UnknownConstraintError(constraint_type=str(kind))
            logger.warning("%s", error.message)
            return ConstraintResult.fail(f"{denial_prefix} Unknown constraint type '{kind}'")

        try:
            result = validator(constraint, context)
        except Exception as e:
            # Any crash inside a validator denies the request
            error = ConstraintError(constraint_type=kind, underlying_error=str(e))
            logger.warning("%s", error.message, exc_info=True)
            return ConstraintResult.fail(f"{denial_prefix} {error.message}")

        if not result.valid:
            return result

    return ConstraintResult.ok()


class ConstraintDomain(ABC, Generic[ContextT]):
    """
    A vocabulary of constraints and the validators that enforce them.

    Subclasses provide:
        name: Short domain name (e.g. "shell")
        denial_prefix: Prefix for violation messages
        kinds: The ConstraintSpec subclasses in this domain
        adapter: TypeAdapter over the domain's tagged union
        dispatch(): Validator per ``type``

    A domain plugs into the rule loader as its constraint schema (check
    and parse) and into the gate as the validator (validate).
    """

    name: ClassVar[str]
    denial_prefix: ClassVar[str] = "Operation denied:"
    kinds: ClassVar[tuple[type[ConstraintSpec], ...]]
    adapter: ClassVar[TypeAdapter[Any]]

    @abstractmethod
    def dispatch(self) -> Mapping[str, Validator]:
        """Return the validator for each constraint ``type``."""
        ...

    def default_context(self, value: str) -> Any:
        """Context used when the caller supplies none."""
        return None

    def _kind_map(self) -> dict[str, type[ConstraintSpec]]:
        return {kind.model_fields["type"].default: kind for kind in self.kinds}

    # -------------------------------------------------------------------------
    # Rule file hooks
    # -------------------------------------------------------------------------

    def check(self, constraints: list[Any], rule_index: int) -> str | None:
        """
        Validate the raw constraint list of one rule.

        Returns:
            The first error message, or None if every constraint is valid
        """
        for index, raw in enumerate(constraints):
            error = self._check_one(raw, index, rule_index)
            if error:
                return f"Rule {rule_index}: {error}"
        return None

    def _check_one(self, raw: Any, index: int, rule_index: int) -> str | None:
        kinds = self._kind_map()

        if isinstance(raw, str):
            kind = kinds.get(raw)
            if kind is None:
                return f"Invalid constraint type '{raw}'"
            if not kind.shorthand:
                return f"Constraint '{raw}' requires object form with parameters"
            return None

        if not isinstance(raw, dict):
            return f"Constraint {index} must be a string or object"

        type_name = raw.get("type")
        if not isinstance(type_name, str):
            return f"Constraint {index} missing 'type' field"

        kind = kinds.get(type_name)
        if kind is None:
            return f"Unknown constraint type '{type_name}'"

        try:
            kind.model_validate(raw)
        except ValidationError as e:
            loc = e.errors()[0]["loc"]
            field_name = str(loc[0]) if loc else ""
            return kind.field_errors.get(
                field_name, f"{type_name}.{field_name} is invalid"
            )
        return None

    def parse(self, raw: Any) -> ConstraintSpec:
        """Turn one raw constraint (string shorthand or mapping) into its model."""
        if isinstance(raw, ConstraintSpec):
            return raw
        if isinstance(raw, str):
            raw = {"type": raw}
        return self.adapter.validate_python(raw)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def validate(self, constraints: Iterable[Any], context: ContextT) -> ConstraintResult:
        """
        Run a rule's constraints against a request context.

        Raw constraints (rules loaded without this domain) are parsed
        first; one that does not parse is a failure.
        """
        parsed: list[Any] = []
        for raw in constraints:
            if isinstance(raw, ConstraintSpec):
                parsed.append(raw)
                continue
            kind = constraint_type(raw)
            if kind not in self._kind_map():
                parsed.append(raw)
                continue
            try:
                parsed.append(self.parse(raw))
            except ValidationError as e:
                logger.warning("Malformed %s constraint %r: %s", self.name, raw, e)
                return ConstraintResult.fail(
                    f"{self.denial_prefix} Malformed constraint '{kind}'"
                )

        return validate_constraints(parsed, context, self.dispatch(), self.denial_prefix)

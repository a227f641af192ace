"""
Container operation constraints for Gatehouse.

Context: a Docker-style container create config (``HostConfig`` with
``Privileged``, ``NetworkMode``, ``Binds``, ``Memory``, ``NanoCpus``), the
image name and the container name. Each constraint only looks at one part
of the context and passes when that part is absent, so a rule shared by
``container:create`` and ``container:stop`` does not need two variants.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, ClassVar, Literal

from pydantic import Field, TypeAdapter

from gatehouse.constraints.base import ConstraintDomain, ConstraintSpec, Validator
from gatehouse.policy.patterns import pattern_to_regex
from gatehouse.schema import ConstraintResult

DENIED = "Operation denied:"

_MEMORY = re.compile(r"^(\d+(?:\.\d+)?)\s*([kmgtp]?)b?$")
_MEMORY_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4, "p": 1024**5}


@dataclass(frozen=True)
class ContainerContext:
    """
    What a container constraint sees. Any field may be missing.

    Attributes:
        container_config: Create payload in Docker Engine API shape
        image_name: Image reference, e.g. "node:20"
        container_name: Container name, with or without Docker's leading "/"
    """

    container_config: Mapping[str, Any] | None = None
    image_name: str | None = None
    container_name: str | None = None


def parse_memory(value: str) -> int | None:
    """
    Parse a memory size such as "512m", "1g", "1.5GB" or "1024" to bytes.

    Units are binary (k = 1024). Returns None if the string is not a size.
    """
    match = _MEMORY.match(value.strip().lower())
    if not match:
        return None
    number, unit = match.groups()
    return int(float(number) * _MEMORY_UNITS[unit])


def matches_any(value: str, patterns: tuple[str, ...]) -> bool:
    """Case-insensitive glob match against any pattern."""
    return any(pattern_to_regex(p).fullmatch(value) for p in patterns)


# =============================================================================
# Validators
# =============================================================================


def check_no_privileged(config: Mapping[str, Any]) -> ConstraintResult:
    if (config.get("HostConfig") or {}).get("Privileged") is True:
        return ConstraintResult.fail(f"{DENIED} Privileged containers are not allowed")
    return ConstraintResult.ok()


def check_no_host_network(config: Mapping[str, Any]) -> ConstraintResult:
    if (config.get("HostConfig") or {}).get("NetworkMode") == "host":
        return ConstraintResult.fail(f"{DENIED} Host network mode is not allowed")
    return ConstraintResult.ok()


def check_allowed_mounts(config: Mapping[str, Any], allowed: tuple[str, ...]) -> ConstraintResult:
    """Every bind mount source ("src:dst[:opts]") must match an allowed pattern."""
    for bind in (config.get("HostConfig") or {}).get("Binds") or []:
        source = bind.split(":", 1)[0]
        if not matches_any(source, allowed):
            return ConstraintResult.fail(
                f"{DENIED} Mount source '{source}' not in allowed paths. "
                f"Allowed: {', '.join(allowed)}"
            )
    return ConstraintResult.ok()


def check_image_pattern(image_name: str, allowed: tuple[str, ...]) -> ConstraintResult:
    if not matches_any(image_name, allowed):
        return ConstraintResult.fail(
            f"{DENIED} Image '{image_name}' not in allowed patterns. "
            f"Allowed: {', '.join(allowed)}"
        )
    return ConstraintResult.ok()


def check_container_pattern(container_name: str, allowed: tuple[str, ...]) -> ConstraintResult:
    name = container_name[1:] if container_name.startswith("/") else container_name
    if not matches_any(name, allowed):
        return ConstraintResult.fail(
            f"{DENIED} Container '{name}' not in allowed patterns. "
            f"Allowed: {', '.join(allowed)}"
        )
    return ConstraintResult.ok()


def check_resource_limits(
    config: Mapping[str, Any],
    max_memory: str | None = None,
    max_cpus: float | None = None,
) -> ConstraintResult:
    """
    Compare requested Memory (bytes) and NanoCpus against the limits.

    A limit of zero or an unset request is not checked.
    """
    host = config.get("HostConfig") or {}

    memory = host.get("Memory")
    if max_memory and memory:
        max_bytes = parse_memory(max_memory)
        if max_bytes and memory > max_bytes:
            return ConstraintResult.fail(
                f"{DENIED} Memory limit {memory} exceeds maximum {max_memory}"
            )

    nano_cpus = host.get("NanoCpus")
    if max_cpus and nano_cpus:
        cpus = nano_cpus / 1e9
        if cpus > max_cpus:
            return ConstraintResult.fail(
                f"{DENIED} CPU limit {cpus:g} exceeds maximum {max_cpus:g}"
            )

    return ConstraintResult.ok()


# =============================================================================
# Constraint Models
# =============================================================================


class NoPrivileged(ConstraintSpec):
    type: Literal["no_privileged"] = "no_privileged"

    shorthand: ClassVar[bool] = True


class NoHostNetwork(ConstraintSpec):
    type: Literal["no_host_network"] = "no_host_network"

    shorthand: ClassVar[bool] = True


class AllowedMounts(ConstraintSpec):
    type: Literal["allowed_mounts"] = "allowed_mounts"
    value: tuple[str, ...]

    field_errors: ClassVar[dict[str, str]] = {
        "value": "allowed_mounts requires 'value' as string array",
    }


class ImagePattern(ConstraintSpec):
    type: Literal["image_pattern"] = "image_pattern"
    value: tuple[str, ...]

    field_errors: ClassVar[dict[str, str]] = {
        "value": "image_pattern requires 'value' as string array",
    }


class ContainerPattern(ConstraintSpec):
    type: Literal["container_pattern"] = "container_pattern"
    value: tuple[str, ...]

    field_errors: ClassVar[dict[str, str]] = {
        "value": "container_pattern requires 'value' as string array",
    }


class ResourceLimits(ConstraintSpec):
    type: Literal["resource_limits"] = "resource_limits"
    max_memory: str | None = None
    max_cpus: float | None = None

    field_errors: ClassVar[dict[str, str]] = {
        "max_memory": "resource_limits.max_memory must be a string (e.g., '512m')",
        "max_cpus": "resource_limits.max_cpus must be a number",
    }


ContainerConstraint = Annotated[
    NoPrivileged | NoHostNetwork | AllowedMounts | ImagePattern | ContainerPattern | ResourceLimits,
    Field(discriminator="type"),
]


def _with_config(check):
    def run(constraint: Any, ctx: ContainerContext) -> ConstraintResult:
        if not ctx.container_config:
            return ConstraintResult.ok()
        return check(constraint, ctx.container_config)

    return run


def _image(constraint: ImagePattern, ctx: ContainerContext) -> ConstraintResult:
    if not ctx.image_name:
        return ConstraintResult.ok()
    return check_image_pattern(ctx.image_name, constraint.value)


def _container(constraint: ContainerPattern, ctx: ContainerContext) -> ConstraintResult:
    if not ctx.container_name:
        return ConstraintResult.ok()
    return check_container_pattern(ctx.container_name, constraint.value)


_DISPATCH: dict[str, Validator] = {
    "no_privileged": _with_config(lambda c, config: check_no_privileged(config)),
    "no_host_network": _with_config(lambda c, config: check_no_host_network(config)),
    "allowed_mounts": _with_config(lambda c, config: check_allowed_mounts(config, c.value)),
    "resource_limits": _with_config(
        lambda c, config: check_resource_limits(config, c.max_memory, c.max_cpus)
    ),
    "image_pattern": _image,
    "container_pattern": _container,
}


class ContainerDomain(ConstraintDomain[ContainerContext]):
    """Constraints for container operations."""

    name = "container"
    denial_prefix = DENIED
    kinds = (NoPrivileged, NoHostNetwork, AllowedMounts, ImagePattern, ContainerPattern, ResourceLimits)
    adapter = TypeAdapter(ContainerConstraint)

    def dispatch(self) -> Mapping[str, Validator]:
        return _DISPATCH

    def default_context(self, value: str) -> ContainerContext:
        return ContainerContext()


CONTAINER = ContainerDomain()

"""
Second-stage constraints for allow rules.

Two domains ship with Gatehouse:
    - SHELL: command-line checks (cwd_only, no_recursive, no_force,
      max_depth, require_flag)
    - CONTAINER: container create/run checks (no_privileged,
      no_host_network, allowed_mounts, image_pattern, container_pattern,
      resource_limits)

A domain is passed to RuleStore as its constraint schema and to
PermissionGate as its validator.
"""

from gatehouse.constraints.base import (
    ConstraintDomain,
    ConstraintSpec,
    constraint_type,
    validate_constraints,
)
from gatehouse.constraints.container import CONTAINER, ContainerContext, ContainerDomain
from gatehouse.constraints.shell import SHELL, ShellContext, ShellDomain

DOMAINS: dict[str, ConstraintDomain] = {
    SHELL.name: SHELL,
    CONTAINER.name: CONTAINER,
}

__all__ = [
    "CONTAINER",
    "DOMAINS",
    "SHELL",
    "ConstraintDomain",
    "ConstraintSpec",
    "ContainerContext",
    "ContainerDomain",
    "ShellContext",
    "ShellDomain",
    "constraint_type",
    "validate_constraints",
]

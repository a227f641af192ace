"""
Output rendering for the Gatehouse CLI.

- console: Rich tables and the check trace for humans
- json: stable JSON documents for ``--json``
"""

from gatehouse.report.console import (
    render_check,
    render_load_errors,
    render_logs,
    render_permissions,
    render_permission_stats,
    render_stats,
    render_timeline,
    render_usage,
)
from gatehouse.report.json import build_check_dict, to_json

__all__ = [
    "build_check_dict",
    "render_check",
    "render_load_errors",
    "render_logs",
    "render_permissions",
    "render_permission_stats",
    "render_stats",
    "render_timeline",
    "render_usage",
    "to_json",
]

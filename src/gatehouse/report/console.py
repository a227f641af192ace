"""
Terminal rendering for Gatehouse.

Covers the ``check`` trace (which rules were tried, which one won, whether
its constraints held) and the audit read views: logs, stats, usage and a
session timeline.

Design Principles:
    - Verdict at a glance: the decision line is always last and colored
    - Same layout for every check so outputs can be diffed
    - User text (patterns, commands, reasons) is escaped before it reaches
      Rich markup
"""

from collections.abc import Sequence
from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gatehouse.gate import GateDecision
from gatehouse.policy.engine import TracedMatchResult
from gatehouse.schema import (
    Decision,
    PermissionEventRow,
    PermissionStats,
    SessionEventType,
    TimelineEntry,
    ToolDecision,
    ToolExecutionRow,
    ToolStats,
    ToolUsage,
)

# Status icons
ICON_SUCCESS = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_STARTED = "[dim]○[/dim]"
ICON_EVENT = "[blue]●[/blue]"

RULE = "-" * 80

_DECISION_STYLE = {
    ToolDecision.STARTED: "dim",
    ToolDecision.COMPLETED: "green",
    ToolDecision.FAILED: "red",
}

_EVENT_STYLE = {
    SessionEventType.CREATED: "green",
    SessionEventType.COMPACTED: "cyan",
    SessionEventType.DELETED: "yellow",
    SessionEventType.ERROR: "red",
    SessionEventType.IDLE: "dim",
}


def _get_console(console: Console | None) -> Console:
    return console if console is not None else Console()


def _decision_markup(decision: Decision) -> str:
    color = "green" if decision == Decision.ALLOW else "red"
    return f"[bold {color}]{decision.value.upper()}[/bold {color}]"


def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _format_duration(duration_ms: int | float | None) -> str:
    if duration_ms is None:
        return "-"
    if duration_ms >= 1000:
        return f"{duration_ms / 1000:.2f}s"
    return f"{duration_ms:.0f}ms"


def _truncate(s: str | None, max_len: int) -> str:
    if not s:
        return ""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


# =============================================================================
# Check trace
# =============================================================================


def render_check(
    value: str,
    workdir: str,
    traced: TracedMatchResult,
    verdict: GateDecision,
    console: Console | None = None,
    show_all: bool = False,
) -> None:
    """
    Print the rule trace and verdict for one input.

    Args:
        value: The input that was checked
        workdir: Working directory used for constraint validation
        traced: Trace from DecisionEngine.evaluate_with_trace
        verdict: Final verdict from PermissionGate.check
        console: Rich Console instance (creates one if not provided)
        show_all: Also list the rules that were tried and did not match
    """
    console = _get_console(console)

    console.print(f"Input: {escape(value)}")
    console.print(f"Working directory: {escape(workdir)}")
    console.print(RULE)
    console.print()

    console.print("[bold]Trace (patterns checked in order):[/bold]")
    console.print(RULE)

    printed = False
    for entry in traced.trace:
        if not entry.matched and not show_all:
            continue
        printed = True
        tag = "[bold cyan][MATCH][/bold cyan]" if entry.matched else "[dim][     ][/dim]"
        console.print(f"{tag} #{entry.index:03d} {escape(entry.pattern)}")
        console.print(
            f"         regex: /{escape(entry.regex)}/i -> {_decision_markup(entry.decision)}"
        )
        if entry.reason:
            console.print(f"         reason: {escape(entry.reason)}")

    if not any(entry.matched for entry in traced.trace):
        if printed:
            console.print()
        console.print("  [dim](no patterns matched - using default)[/dim]")
    console.print()

    result = traced.result
    if verdict.constraint_result is not None:
        console.print("[bold]Constraint validation:[/bold]")
        if verdict.constraint_result.valid:
            console.print(f"  {ICON_SUCCESS} [green]All constraints passed[/green]")
        else:
            console.print(
                f"  {ICON_ERROR} [red]{escape(verdict.constraint_result.violation or '')}[/red]"
            )
        console.print()

    console.print("[bold]Result:[/bold]")
    console.print(RULE)
    if result.is_default:
        console.print("Matched: (default rule)")
    else:
        console.print(f"Matched: {escape(result.matched_pattern or '')}")
    console.print(f"Decision: {_decision_markup(verdict.decision)}")
    console.print(f"Reason: {escape(verdict.reason or '')}")


def render_load_errors(
    path: str,
    errors: Sequence[str],
    console: Console | None = None,
) -> None:
    """Print the errors that turned a rule file into the deny-all config."""
    console = _get_console(console)
    body = "\n".join(f"{ICON_ERROR} {escape(error)}" for error in errors)
    console.print(
        Panel(
            body,
            title=f"[red]Failed to load {escape(path)}[/red]",
            border_style="red",
            expand=False,
        )
    )


# =============================================================================
# Audit views
# =============================================================================


def render_logs(rows: Sequence[ToolExecutionRow], console: Console | None = None) -> None:
    """Tool execution rows, newest first."""
    console = _get_console(console)
    if not rows:
        console.print("[dim]No tool executions found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Time", style="dim")
    table.add_column("Session", overflow="fold")
    table.add_column("Tool", style="cyan")
    table.add_column("Status", width=10)
    table.add_column("Duration", justify="right")
    table.add_column("Details", overflow="fold")

    for row in rows:
        style = _DECISION_STYLE[row.decision]
        details = row.result_summary if row.decision != ToolDecision.STARTED else row.args_json
        table.add_row(
            _format_time(row.timestamp),
            escape(_truncate(row.session_id, 16)),
            escape(row.tool_name),
            f"[{style}]{row.decision.value}[/{style}]",
            _format_duration(row.duration_ms),
            escape(_truncate(details, 60)),
        )

    console.print(table)


def render_stats(stats: ToolStats, console: Console | None = None) -> None:
    console = _get_console(console)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    table.add_row("Total calls", str(stats.total))
    table.add_row("Started", str(stats.started))
    table.add_row("Completed", f"[green]{stats.completed}[/green]")
    table.add_row("Failed", f"[red]{stats.failed}[/red]" if stats.failed else "0")
    table.add_row("Avg duration", _format_duration(stats.avg_duration_ms))

    console.print(Panel(table, title="[bold]Tool Execution Stats[/bold]", expand=False))


def render_usage(usage: Sequence[ToolUsage], console: Console | None = None) -> None:
    console = _get_console(console)
    if not usage:
        console.print("[dim]No tool executions found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Tool", style="cyan")
    table.add_column("Calls", justify="right")
    table.add_column("Avg duration", justify="right")

    for i, item in enumerate(usage, start=1):
        table.add_row(
            str(i),
            escape(item.tool_name),
            str(item.count),
            _format_duration(item.avg_duration_ms),
        )

    console.print(table)


def render_timeline(
    session_id: str,
    entries: Sequence[TimelineEntry],
    console: Console | None = None,
) -> None:
    """Session events and tool executions for one session, oldest first."""
    console = _get_console(console)
    if not entries:
        console.print(f"[dim]No activity recorded for session {escape(session_id)}.[/dim]")
        return

    table = Table(
        title=f"Session {escape(session_id)}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("", width=2)
    table.add_column("Time", style="dim")
    table.add_column("Event")
    table.add_column("Duration", justify="right")
    table.add_column("Details", overflow="fold")

    for entry in entries:
        if entry.kind == "session_event":
            style = _EVENT_STYLE[entry.event_type]
            table.add_row(
                ICON_EVENT,
                _format_time(entry.timestamp),
                f"[{style}]session {entry.event_type.value}[/{style}]",
                "",
                escape(_truncate(entry.details_json, 60)),
            )
            continue

        if entry.decision == ToolDecision.COMPLETED:
            icon = ICON_SUCCESS
        elif entry.decision == ToolDecision.FAILED:
            icon = ICON_ERROR
        else:
            icon = ICON_STARTED
        table.add_row(
            icon,
            _format_time(entry.timestamp),
            f"[cyan]{escape(entry.tool_name or '')}[/cyan]",
            _format_duration(entry.duration_ms),
            escape(_truncate(entry.result_summary, 60)),
        )

    console.print(table)


def render_permissions(
    events: Sequence[PermissionEventRow],
    console: Console | None = None,
) -> None:
    console = _get_console(console)
    if not events:
        console.print("[dim]No permission events found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Time", style="dim")
    table.add_column("Session", overflow="fold")
    table.add_column("Type", style="cyan")
    table.add_column("Status", width=8)
    table.add_column("Resource", overflow="fold")

    for event in events:
        status = event.status.value
        color = "green" if status == "allow" else "red" if status == "deny" else "yellow"
        table.add_row(
            _format_time(event.timestamp),
            escape(_truncate(event.session_id, 16)),
            escape(event.permission_type),
            f"[{color}]{status}[/{color}]",
            escape(_truncate(event.resource, 60)),
        )

    console.print(table)


def render_permission_stats(stats: PermissionStats, console: Console | None = None) -> None:
    """Totals by status, then the patterns that decided most often."""
    console = _get_console(console)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    table.add_row("Total decisions", str(stats.total))
    table.add_row("Allowed", f"[green]{stats.allowed}[/green]")
    table.add_row("Denied", f"[red]{stats.denied}[/red]" if stats.denied else "0")
    table.add_row("Asked", f"[yellow]{stats.asked}[/yellow]" if stats.asked else "0")
    console.print(Panel(table, title="[bold]Permission Stats[/bold]", expand=False))

    if not stats.top_patterns:
        console.print("[dim]No matched patterns recorded.[/dim]")
        return

    patterns = Table(title="Top patterns", show_header=True, header_style="bold")
    patterns.add_column("#", style="dim", width=3, justify="right")
    patterns.add_column("Pattern", style="cyan", overflow="fold")
    patterns.add_column("Status", width=8)
    patterns.add_column("Hits", justify="right")

    for i, hits in enumerate(stats.top_patterns, start=1):
        status = hits.status.value
        color = "green" if status == "allow" else "red" if status == "deny" else "yellow"
        patterns.add_row(
            str(i),
            escape(hits.pattern),
            f"[{color}]{status}[/{color}]",
            str(hits.count),
        )

    console.print(patterns)

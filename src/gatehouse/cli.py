"""
CLI entry point for Gatehouse.

This module provides the Typer-based command-line interface for Gatehouse.

Commands:
    check               Trace a rule file against one input and print the verdict
    audit logs          List recorded tool executions
    audit stats         Aggregate counts over tool executions
    audit usage         Most used tools
    audit timeline      Everything recorded for one session
    audit permissions   Recorded permission decisions (--stats for totals)
    metrics show        Print the Prometheus exposition once
    metrics serve       Serve /metrics and /health over HTTP

Architecture Note:
    The CLI is intentionally thin: it builds a RuleStore, PermissionGate or
    AuditDB and hands the results to gatehouse.report for rendering, so
    everything it shows is also available programmatically.

Exit codes for ``check``:
    0   ALLOW
    1   DENY
    2   Usage error or rule file failed to load
"""

import json
import logging
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from gatehouse import __version__
from gatehouse.constraints import CONTAINER, DOMAINS, ContainerContext, ShellContext
from gatehouse.gate import PermissionGate
from gatehouse.metrics import MetricsData, MetricsServer, collect, format_metrics
from gatehouse.metrics.server import DEFAULT_HOST, DEFAULT_PORT
from gatehouse.policy import RuleStore
from gatehouse.report import (
    build_check_dict,
    render_check,
    render_load_errors,
    render_logs,
    render_permissions,
    render_permission_stats,
    render_stats,
    render_timeline,
    render_usage,
    to_json,
)
from gatehouse.schema import LogFilter, PermissionStatus
from gatehouse.store import AuditDB, parse_since, parse_timestamp, resolve_db_path
from gatehouse.store.db import DEFAULT_USAGE_LIMIT

EXIT_ALLOW = 0
EXIT_DENY = 1
EXIT_ERROR = 2

# Initialize Typer app with metadata
app = typer.Typer(
    name="gatehouse",
    help="Permission gating and audit trail for agent tool calls.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()


class DomainName(str, Enum):
    shell = "shell"
    container = "container"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]gatehouse[/bold] version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=verbose)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Enable debug logging on stderr.",
        ),
    ] = False,
) -> None:
    """
    Gatehouse - Permission gating and audit trail for agent tool calls.

    Decide which commands an agent may run from ordered glob rules, and
    inspect what it actually ran from the audit store.
    """
    _configure_logging(verbose)


def _output_json_error(error_type: str, message: str, **extra: Any) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": message,
        **extra,
    }
    print(to_json(output))


# =============================================================================
# check
# =============================================================================


def _load_container_config(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("container config must be a JSON object")
    return data


@app.command(context_settings={"allow_interspersed_args": False})
def check(
    rules_path: Annotated[
        Path,
        typer.Argument(
            metavar="RULES",
            help="Path to the rule file (YAML).",
        ),
    ],
    words: Annotated[
        list[str],
        typer.Argument(
            metavar="INPUT...",
            help="The input to check; remaining words are joined with spaces.",
        ),
    ],
    workdir: Annotated[
        Optional[Path],
        typer.Option(
            "--workdir",
            "-w",
            help="Working directory for path constraints. Defaults to the current directory.",
        ),
    ] = None,
    domain: Annotated[
        DomainName,
        typer.Option(
            "--domain",
            "-d",
            help="Constraint domain used to validate and check rule constraints.",
            case_sensitive=False,
        ),
    ] = DomainName.shell,
    image: Annotated[
        Optional[str],
        typer.Option("--image", help="Image name (container domain)."),
    ] = None,
    container_name: Annotated[
        Optional[str],
        typer.Option("--container-name", help="Container name (container domain)."),
    ] = None,
    container_config: Annotated[
        Optional[Path],
        typer.Option(
            "--container-config",
            help="JSON file with the container create config (container domain).",
        ),
    ] = None,
    show_all: Annotated[
        bool,
        typer.Option(
            "--all",
            "-a",
            help="List every rule tried, not only the one that matched.",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Check an input against a rule file and explain the decision.

    Options go before RULES; everything after RULES is the input, so flags
    of the checked command are not parsed.

    Example:
        $ gatehouse check -w ~/project sh-permissions.yaml rm -rf build
    """
    value = " ".join(words).strip()
    resolved_workdir = str((workdir or Path(os.getcwd())).expanduser().resolve())
    constraint_domain = DOMAINS[domain.value]

    store = RuleStore(rules_path, constraint_schema=constraint_domain)
    if store.errors:
        if json_output:
            _output_json_error(
                "config_load_error",
                f"Failed to load {rules_path}",
                errors=list(store.errors),
            )
        else:
            render_load_errors(str(rules_path), store.errors, console)
        raise typer.Exit(code=EXIT_ERROR)

    if constraint_domain is CONTAINER:
        config = None
        if container_config is not None:
            try:
                config = _load_container_config(container_config)
            except (OSError, ValueError) as e:
                if json_output:
                    _output_json_error("container_config_error", str(e))
                else:
                    console.print(f"[red]Error loading container config: {e}[/red]")
                raise typer.Exit(code=EXIT_ERROR)
        context: Any = ContainerContext(
            container_config=config,
            image_name=image,
            container_name=container_name,
        )
    else:
        context = ShellContext(command=value, workdir=resolved_workdir)

    gate = PermissionGate(store, domain=constraint_domain)
    traced = gate.engine.evaluate_with_trace(value)
    verdict = gate.check(value, context)

    if json_output:
        print(to_json(build_check_dict(value, resolved_workdir, traced, verdict)))
    else:
        render_check(value, resolved_workdir, traced, verdict, console, show_all=show_all)

    raise typer.Exit(code=EXIT_ALLOW if verdict.allowed else EXIT_DENY)


# =============================================================================
# Audit Subcommand Group
# =============================================================================

audit_app = typer.Typer(
    name="audit",
    help="Inspect the audit store.",
    no_args_is_help=True,
)
app.add_typer(audit_app, name="audit")


DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the audit database. Defaults to $GATEHOUSE_AUDIT_DB or ~/.gatehouse/audit/audit-trail.db.",
    ),
]
SinceOption = Annotated[
    Optional[str],
    typer.Option(
        "--since",
        "-s",
        help="Only rows after this time: 6h, 2d, 1w, 3m, hour, day, week, month or an ISO date.",
    ),
]
BeforeOption = Annotated[
    Optional[str],
    typer.Option(
        "--before",
        help="Only rows at or before this ISO date or datetime (naive values are UTC).",
    ),
]
SessionOption = Annotated[
    Optional[str],
    typer.Option("--session", help="Only rows for this session ID."),
]
ToolOption = Annotated[
    Optional[str],
    typer.Option("--tool", "-t", help="Only rows for this tool."),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]


def _open_db(db: Path | None, json_output: bool, empty: Any) -> AuditDB:
    """Open the audit store, or exit cleanly if it has never been written."""
    db_path = resolve_db_path(db)
    if not db_path.exists():
        if json_output:
            print(to_json(empty))
        else:
            console.print(f"[yellow]No audit database found at {escape(str(db_path))}[/yellow]")
        raise typer.Exit(code=0)
    return AuditDB(db_path)


def _build_filter(
    since: str | None,
    session: str | None,
    tool: str | None,
    limit: int = 1000,
    before: str | None = None,
) -> LogFilter:
    before_dt = None
    if before:
        before_dt = parse_timestamp(before)
        if before_dt is None:
            raise typer.BadParameter(f"not an ISO date or datetime: {before!r}", param_hint="--before")
    return LogFilter(
        since=parse_since(since) if since else None,
        before=before_dt,
        session_id=session,
        tool_name=tool,
        limit=limit,
    )


@audit_app.command("logs")
def audit_logs(
    db: DbOption = None,
    since: SinceOption = None,
    before: BeforeOption = None,
    session: SessionOption = None,
    tool: ToolOption = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of rows to show.", min=1),
    ] = 50,
    json_output: JsonOption = False,
) -> None:
    """
    List tool executions, newest first.

    Example:
        $ gatehouse audit logs --since 6h --tool bash
    """
    log_filter = _build_filter(since, session, tool, limit, before=before)
    with _open_db(db, json_output, []) as store:
        rows = store.get_logs(log_filter)

    if json_output:
        print(to_json(rows))
    else:
        render_logs(rows, console)


@audit_app.command("stats")
def audit_stats(
    db: DbOption = None,
    since: SinceOption = None,
    before: BeforeOption = None,
    session: SessionOption = None,
    tool: ToolOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show execution counts and the average duration."""
    log_filter = _build_filter(since, session, tool, before=before)
    with _open_db(db, json_output, {}) as store:
        stats = store.get_stats(log_filter)

    if json_output:
        print(to_json(stats))
    else:
        render_stats(stats, console)


@audit_app.command("usage")
def audit_usage(
    db: DbOption = None,
    since: SinceOption = None,
    before: BeforeOption = None,
    session: SessionOption = None,
    top: Annotated[
        int,
        typer.Option("--top", help="Number of tools to show.", min=1),
    ] = DEFAULT_USAGE_LIMIT,
    json_output: JsonOption = False,
) -> None:
    """Show the most used tools by number of calls."""
    log_filter = _build_filter(since, session, None, before=before)
    with _open_db(db, json_output, []) as store:
        usage = store.get_usage_by_name(log_filter, top_n=top)

    if json_output:
        print(to_json(usage))
    else:
        render_usage(usage, console)


@audit_app.command("timeline")
def audit_timeline(
    session_id: Annotated[
        str,
        typer.Argument(help="Session ID to show."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show session events and tool executions for one session, oldest first."""
    with _open_db(db, json_output, []) as store:
        entries = store.get_session_timeline(session_id)

    if json_output:
        print(to_json(entries))
    else:
        render_timeline(session_id, entries, console)


@audit_app.command("permissions")
def audit_permissions(
    db: DbOption = None,
    session: SessionOption = None,
    status: Annotated[
        Optional[PermissionStatus],
        typer.Option("--status", help="Only events with this status.", case_sensitive=False),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of rows to show.", min=1),
    ] = 50,
    stats: Annotated[
        bool,
        typer.Option(
            "--stats",
            help="Show allowed/denied totals and the most hit patterns instead of events.",
        ),
    ] = False,
    since: SinceOption = None,
    before: BeforeOption = None,
    permission_type: Annotated[
        Optional[str],
        typer.Option("--type", help="Only events of this permission type (with --stats)."),
    ] = None,
    top: Annotated[
        int,
        typer.Option("--top", help="Number of patterns to show (with --stats).", min=1),
    ] = DEFAULT_USAGE_LIMIT,
    json_output: JsonOption = False,
) -> None:
    """
    List permission decisions, newest first.

    With --stats, show counts by status and the patterns that decided most
    often instead.

    Example:
        $ gatehouse audit permissions --stats --since 1w
    """
    if stats:
        log_filter = _build_filter(since, session, permission_type, before=before)
        with _open_db(db, json_output, {}) as store:
            permission_stats = store.get_permission_stats(log_filter, top_n=top)

        if json_output:
            print(to_json(permission_stats))
        else:
            render_permission_stats(permission_stats, console)
        return

    with _open_db(db, json_output, []) as store:
        events = store.get_permission_events(session_id=session, status=status, limit=limit)

    if json_output:
        print(to_json(events))
    else:
        render_permissions(events, console)


# =============================================================================
# Metrics Subcommand Group
# =============================================================================

metrics_app = typer.Typer(
    name="metrics",
    help="Export audit aggregates in Prometheus text format.",
    no_args_is_help=True,
)
app.add_typer(metrics_app, name="metrics")


@metrics_app.command("show")
def metrics_show(db: DbOption = None) -> None:
    """
    Print one scrape to stdout.

    A missing database prints the all-zero exposition.
    """
    db_path = resolve_db_path(db)
    if not db_path.exists():
        sys.stdout.write(format_metrics(MetricsData()))
        return
    with AuditDB(db_path) as store:
        sys.stdout.write(format_metrics(collect(store)))


@metrics_app.command("serve")
def metrics_serve(
    db: DbOption = None,
    host: Annotated[
        str,
        typer.Option("--host", help="Address to bind."),
    ] = DEFAULT_HOST,
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to listen on.", min=0, max=65535),
    ] = DEFAULT_PORT,
) -> None:
    """
    Serve /metrics and /health until interrupted.

    Example:
        $ gatehouse metrics serve --port 9464
    """
    with AuditDB(resolve_db_path(db)) as store:
        server = MetricsServer(store, host=host, port=port)
        try:
            console.print(f"[green]Serving metrics on {server.url}metrics[/green] (Ctrl+C to stop)")
            server.start()
        except OSError as e:
            console.print(f"[red]Could not start metrics server: {e}[/red]")
            raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

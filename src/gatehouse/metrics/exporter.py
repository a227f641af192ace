"""
Prometheus text exposition for the audit store.

Families (all prefixed ``gatehouse_``):

    tool_executions_total{tool_name,decision}       counter
    tool_execution_duration_seconds{tool_name,le}   histogram
    tool_executions_in_progress                     gauge
    sessions_total{event_type}                      counter
    active_sessions                                 gauge
    audit_db_size_bytes                             gauge

Output is deterministic: label sets are sorted, families are always emitted
in the same order with their HELP/TYPE headers, and a blank line separates
families. An empty store yields every header and zero-valued gauges.
"""

from collections import defaultdict
from dataclasses import dataclass

from gatehouse.store.db import AuditDB

PREFIX = "gatehouse_"
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

# Upper bounds in seconds; +Inf is added when formatting
DURATION_BUCKETS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)


@dataclass(frozen=True)
class ToolExecutionMetric:
    tool_name: str
    decision: str
    count: int


@dataclass(frozen=True)
class ToolDurationMetric:
    """
    One tool's duration histogram.

    ``buckets`` holds cumulative counts aligned with DURATION_BUCKETS;
    the +Inf bucket equals ``count``.
    """

    tool_name: str
    count: int
    sum_seconds: float
    buckets: tuple[int, ...]


@dataclass(frozen=True)
class SessionEventMetric:
    event_type: str
    count: int


@dataclass(frozen=True)
class MetricsData:
    """Everything a scrape reports. The default value is the all-zero snapshot."""

    tool_executions: tuple[ToolExecutionMetric, ...] = ()
    tool_durations: tuple[ToolDurationMetric, ...] = ()
    in_progress_count: int = 0
    session_events: tuple[SessionEventMetric, ...] = ()
    active_session_count: int = 0
    db_size_bytes: int = 0


def build_histograms(durations: list[tuple[str, int]]) -> tuple[ToolDurationMetric, ...]:
    """Group (tool_name, duration_ms) pairs into cumulative histograms."""
    by_tool: dict[str, list[int]] = defaultdict(list)
    for tool_name, duration_ms in durations:
        by_tool[tool_name].append(duration_ms)

    metrics = []
    for tool_name in sorted(by_tool):
        values = by_tool[tool_name]
        seconds = [ms / 1000 for ms in values]
        buckets = tuple(sum(1 for s in seconds if s <= bound) for bound in DURATION_BUCKETS)
        metrics.append(
            ToolDurationMetric(
                tool_name=tool_name,
                count=len(values),
                sum_seconds=sum(values) / 1000,
                buckets=buckets,
            )
        )
    return tuple(metrics)


def collect(db: AuditDB) -> MetricsData:
    """
    Run the aggregate queries for one scrape.

    Each query that fails is reported by the store and contributes zero,
    so this always returns a complete MetricsData.
    """
    return MetricsData(
        tool_executions=tuple(
            ToolExecutionMetric(tool_name=name, decision=decision, count=count)
            for name, decision, count in sorted(db.tool_counts())
        ),
        tool_durations=build_histograms(db.tool_durations()),
        in_progress_count=db.in_progress_count(),
        session_events=tuple(
            SessionEventMetric(event_type=event_type, count=count)
            for event_type, count in sorted(db.session_counts())
        ),
        active_session_count=db.active_session_count(),
        db_size_bytes=db.size_bytes(),
    )


# =============================================================================
# Formatting
# =============================================================================


def escape_label_value(value: str) -> str:
    """Escape backslash, double quote and newline for a label value."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def format_value(value: int | float) -> str:
    """Render a sample value; integral floats print without a fraction."""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _line(name: str, value: int | float, labels: dict[str, str] | None = None) -> str:
    if not labels:
        return f"{PREFIX}{name} {format_value(value)}"
    rendered = ",".join(f'{k}="{escape_label_value(v)}"' for k, v in labels.items())
    return f"{PREFIX}{name}{{{rendered}}} {format_value(value)}"


def _header(name: str, help_text: str, kind: str) -> list[str]:
    return [f"# HELP {PREFIX}{name} {help_text}", f"# TYPE {PREFIX}{name} {kind}"]


def format_metrics(data: MetricsData) -> str:
    """Render MetricsData in Prometheus text format (trailing newline included)."""
    lines: list[str] = []

    lines += _header("tool_executions_total", "Total number of tool executions", "counter")
    for metric in sorted(data.tool_executions, key=lambda m: (m.tool_name, m.decision)):
        lines.append(
            _line(
                "tool_executions_total",
                metric.count,
                {"tool_name": metric.tool_name, "decision": metric.decision},
            )
        )

    lines.append("")
    lines += _header(
        "tool_execution_duration_seconds",
        "Duration of tool executions in seconds",
        "histogram",
    )
    for metric in sorted(data.tool_durations, key=lambda m: m.tool_name):
        labels = {"tool_name": metric.tool_name}
        for bound, count in zip(DURATION_BUCKETS, metric.buckets):
            lines.append(
                _line(
                    "tool_execution_duration_seconds_bucket",
                    count,
                    {**labels, "le": format_value(bound)},
                )
            )
        lines.append(
            _line("tool_execution_duration_seconds_bucket", metric.count, {**labels, "le": "+Inf"})
        )
        lines.append(_line("tool_execution_duration_seconds_sum", metric.sum_seconds, labels))
        lines.append(_line("tool_execution_duration_seconds_count", metric.count, labels))

    lines.append("")
    lines += _header(
        "tool_executions_in_progress",
        "Number of tool executions currently in progress",
        "gauge",
    )
    lines.append(_line("tool_executions_in_progress", data.in_progress_count))

    lines.append("")
    lines += _header("sessions_total", "Total number of session events", "counter")
    for metric in sorted(data.session_events, key=lambda m: m.event_type):
        lines.append(_line("sessions_total", metric.count, {"event_type": metric.event_type}))

    lines.append("")
    lines += _header("active_sessions", "Number of currently active sessions", "gauge")
    lines.append(_line("active_sessions", data.active_session_count))

    lines.append("")
    lines += _header(
        "audit_db_size_bytes",
        "Size of the audit database file in bytes",
        "gauge",
    )
    lines.append(_line("audit_db_size_bytes", data.db_size_bytes))

    return "\n".join(lines) + "\n"

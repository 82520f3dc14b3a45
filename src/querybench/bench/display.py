"""Terminal display formatting for benchmark reports.

Produces aligned tables and per-run summaries for a BenchReport.
"""

from __future__ import annotations

import math
from datetime import datetime

from querybench.bench.config import ValidationError
from querybench.bench.metrics import BenchmarkMetrics
from querybench.bench.results import BenchReport, RunFailure
from querybench.bench.stats import describe
from querybench.formatting import (
    format_duration,
    format_histogram,
    format_percentage,
    format_section_header,
    format_status_icon,
    format_table,
)

# Non-empty buckets shown in a basic histogram before the rest are folded.
MAX_HISTOGRAM_ROWS = 12


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------


def _format_ms(value: float | None, precision: int = 2) -> str:
    """Format a latency in milliseconds with adaptive units."""
    if value is None or math.isnan(value):
        return "N/A"
    if value < 1:
        return f"{value * 1000:.0f}µs"
    if value < 1000:
        return f"{value:.{precision}f}ms"
    return f"{value / 1000:.{precision}f}s"


def _format_bytes(n: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if abs(n) < 1024 or unit == "GB":
            return f"{n:.0f}{unit}" if unit == "B" else f"{n:.1f}{unit}"
        n /= 1024
    return f"{n:.1f}GB"


def _run_seconds(m: BenchmarkMetrics) -> float | None:
    try:
        start = datetime.fromisoformat(m.time_start.replace("Z", "+00:00"))
        end = datetime.fromisoformat(m.time_end.replace("Z", "+00:00"))
    except ValueError:
        return None
    return (end - start).total_seconds()


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def format_metrics_table(metrics: list[BenchmarkMetrics]) -> str:
    """One row per benchmark/tool run."""
    if not metrics:
        return "  (no runs)"
    rows: list[list[str]] = []
    for m in metrics:
        h = m.histogram
        rows.append(
            [
                m.name,
                m.tool,
                format_status_icon(m.status),
                str(m.request_count),
                f"{m.request_average:.1f}",
                _format_ms(h.p50),
                _format_ms(h.p90),
                _format_ms(h.p99),
                _format_ms(h.max),
                _format_ms(h.mean),
            ]
        )
    return format_table(
        ["Benchmark", "Tool", "Status", "Requests", "Req/s", "p50", "p90", "p99", "Max", "Mean"],
        rows,
        alignments=["l", "l", "l", "r", "r", "r", "r", "r", "r", "r"],
        max_col_width={0: 40},
    )


def format_tool_spread(metrics: list[BenchmarkMetrics]) -> str:
    """How far the tools disagree on each benchmark's median latency.

    Only benchmarks with at least two completed runs are listed.  Returns
    an empty string when there are none.
    """
    by_name: dict[str, list[float]] = {}
    for m in metrics:
        if m.status == "ok" and m.histogram.total_count:
            by_name.setdefault(m.name, []).append(m.histogram.p50)

    rows: list[list[str]] = []
    for name, medians in by_name.items():
        if len(medians) < 2:
            continue
        d = describe(medians)
        rows.append(
            [
                name,
                str(d.n),
                _format_ms(d.min),
                _format_ms(d.median),
                _format_ms(d.max),
                f"{d.cv:.1%}",
            ]
        )
    if not rows:
        return ""
    return format_table(
        ["Benchmark", "Tools", "Lowest p50", "Median p50", "Highest p50", "CV"],
        rows,
        alignments=["l", "r", "r", "r", "r", "r"],
        max_col_width={0: 40},
    )


def format_failures(failures: list[RunFailure]) -> str:
    rows = [
        [f.benchmark, f.tool or "-", f.stage, format_status_icon(f.status), f.message]
        for f in failures
    ]
    return format_table(
        ["Benchmark", "Tool", "Stage", "Status", "Message"],
        rows,
        max_col_width={0: 40, 4: 80},
    )


# ---------------------------------------------------------------------------
# Per-run detail
# ---------------------------------------------------------------------------


def _basic_histogram_lines(m: BenchmarkMetrics) -> list[str]:
    basic = m.basic_histogram
    if basic is None:
        return []
    filled = [b for b in basic.buckets if b.count]
    shown = filled[:MAX_HISTOGRAM_ROWS]
    buckets = [(f"≥{_format_ms(b.gte)}", b.count) for b in shown]
    folded = sum(b.count for b in filled[MAX_HISTOGRAM_ROWS:])
    if folded:
        buckets.append(("higher", folded))
    lines = ["  Latency buckets:"]
    if buckets:
        lines.append(format_histogram(buckets, max_bar_width=30, total=basic.total_count))
    if basic.outliers_removed:
        lines.append(
            f"  Outliers removed: {basic.outliers_removed} "
            f"({format_percentage(basic.outliers_removed, basic.total_count)})"
        )
    return lines


def format_metrics_detail(m: BenchmarkMetrics) -> str:
    """Full summary of one run."""
    h = m.histogram
    lines = [format_section_header(f"{m.name} [{m.tool}]")]
    duration = _run_seconds(m)
    timing = f"  {m.time_start} → {m.time_end}"
    if duration is not None:
        timing += f" ({format_duration(duration)})"
    lines.append(timing)
    lines.append(f"  Status: {format_status_icon(m.status)}")
    if m.terminated_early:
        lines.append("  Terminated early; statistics cover the samples recorded so far.")
    if m.error:
        lines.append(f"  Error: {m.error}")
    lines.append(
        f"  Requests: {m.request_count} ({m.request_average:.1f}/s), "
        f"received {_format_bytes(m.total_bytes)} ({_format_bytes(m.bytes_per_second)}/s)"
    )
    if m.rejected_samples:
        lines.append(f"  Rejected samples: {m.rejected_samples}")
    lines.append("")

    pct_rows = [
        ["p50", _format_ms(h.p50)],
        ["p75", _format_ms(h.p75)],
        ["p90", _format_ms(h.p90)],
        ["p97.5", _format_ms(h.p97_5)],
        ["p99", _format_ms(h.p99)],
        ["p99.9", _format_ms(h.p99_9)],
        ["p99.99", _format_ms(h.p99_99)],
        ["p99.999", _format_ms(h.p99_999)],
        ["min", _format_ms(h.min)],
        ["max", _format_ms(h.max)],
        ["mean", _format_ms(h.mean)],
        ["stddev", _format_ms(h.std_deviation)],
    ]
    if h.geo_mean is not None:
        pct_rows.append(["geomean", _format_ms(h.geo_mean)])
    lines.append(format_table(["Statistic", "Latency"], pct_rows, alignments=["l", "r"]))

    medians = h.prefix_medians()
    if medians:
        geo = h.prefix_geo_means()
        lines.append("")
        rows = [
            [label, _format_ms(value), _format_ms(geo.get(label))]
            for label, value in medians.items()
        ]
        lines.append(format_table(["Prefix", "p50", "geomean"], rows, alignments=["l", "r", "r"]))

    if m.drift is not None:
        d = m.drift
        lines.append("")
        if d.drifted:
            lines.append(
                f"  Drift above {d.threshold:.0%}: "
                + ", ".join(f"{name} ({d.gaps[name]:.1%})" for name in d.flagged)
            )
        else:
            lines.append(f"  No drift above {d.threshold:.0%}.")
        if d.halves_ttest is not None and not math.isnan(d.halves_ttest.p_value):
            lines.append(
                f"  First vs second half: p={d.halves_ttest.p_value:.4f} "
                f"({d.halves_ttest.significance_stars})"
            )

    hist_lines = _basic_histogram_lines(m)
    if hist_lines:
        lines.append("")
        lines.extend(hist_lines)

    hc = m.extended_hasura_checks
    if hc is not None:
        lines.append("")
        lines.append(f"  Allocated per request: {_format_bytes(hc.bytes_allocated_per_request)}")
        lines.append(
            f"  Live bytes: {_format_bytes(hc.live_bytes_before)} → "
            f"{_format_bytes(hc.live_bytes_after)}"
        )
        lines.append(
            f"  Memory in use: {_format_bytes(hc.mem_in_use_bytes_before)} → "
            f"{_format_bytes(hc.mem_in_use_bytes_after)}"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Whole report
# ---------------------------------------------------------------------------


def format_report(report: BenchReport, *, detail: bool = True) -> str:
    """Format a complete report for the terminal."""
    lines = ["querybench report"]
    if report.started_at:
        lines.append(f"  {report.started_at} → {report.ended_at}")
    mode = report.config.get("execution_mode")
    if mode:
        lines.append(f"  Mode: {mode}")
    lines.append("")
    lines.append(format_metrics_table(report.metrics))

    spread = format_tool_spread(report.metrics)
    if spread:
        lines.append("")
        lines.append(format_section_header("Across tools"))
        lines.append(spread)

    if detail:
        for m in report.metrics:
            lines.append("")
            lines.append(format_metrics_detail(m))

    if report.failures:
        lines.append("")
        lines.append(format_section_header("Failures"))
        lines.append(format_failures(report.failures))
    return "\n".join(lines)


def format_validation(errors: list[ValidationError]) -> str:
    """Format validation problems, errors first."""
    if not errors:
        return "Configuration is valid."
    ordered = sorted(errors, key=lambda e: e.severity != "error")
    rows = [[e.severity.upper(), e.benchmark or "-", e.field, e.message] for e in ordered]
    return format_table(["Severity", "Benchmark", "Field", "Message"], rows)

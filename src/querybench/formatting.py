"""Shared text formatting helpers for querybench.

Provides functions for formatting durations, tables, histograms and
other text output used by the CLI and the report display.
"""

from __future__ import annotations


def format_duration(seconds: float) -> str:
    """Format a run length for display.

    Examples: ``'850ms'``, ``'8.2s'``, ``'1m 23s'``, ``'1h 02m 34s'``.
    Sub-minute durations keep one decimal; longer ones are truncated to
    whole seconds.
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    m, s = divmod(int(seconds), 60)
    if m >= 60:
        h, m = divmod(m, 60)
        return f"{h}h {m:02d}m {s:02d}s"
    return f"{m}m {s:02d}s"


def format_status_icon(status: str) -> str:
    """Return a visual status indicator for a run status."""
    icons: dict[str, str] = {
        "ok": "✓ OK",
        "failed": "✗ FAILED",
        "timeout": "⏱ TIMEOUT",
        "cancelled": "⊘ CANCELLED",
        "skipped": "⊘ SKIPPED",
        "invalid": "⚠ INVALID",
    }
    return icons.get(status, status.upper())


def format_table(
    headers: list[str],
    rows: list[list[str]],
    *,
    alignments: list[str] | None = None,
    max_col_width: dict[int, int] | None = None,
    indent: int = 2,
) -> str:
    """Format a list of rows as an aligned text table.

    Auto-calculates column widths from content. Truncates columns that
    exceed *max_col_width* (with ``'...'`` suffix). Right-aligns columns
    marked ``'r'`` in *alignments*.

    Args:
        headers: Column header strings.
        rows: List of rows, each a list of cell strings.
        alignments: Per-column alignment: ``'l'``, ``'r'``, or ``'c'``.
        max_col_width: Column index to max width mapping.
        indent: Number of leading spaces per line.

    Returns:
        The formatted table as a string.
    """
    if not headers:
        return ""

    ncols = len(headers)
    aligns = list(alignments) if alignments is not None else []
    aligns += ["l"] * (ncols - len(aligns))

    def _trunc(text: str, max_w: int) -> str:
        if len(text) <= max_w:
            return text
        return text[: max_w - 3] + "..."

    proc_headers = list(headers)
    proc_rows = [(list(row) + [""] * ncols)[:ncols] for row in rows]

    for ci, max_w in (max_col_width or {}).items():
        if ci < ncols:
            proc_headers[ci] = _trunc(proc_headers[ci], max_w)
            for row in proc_rows:
                row[ci] = _trunc(row[ci], max_w)

    widths = [len(h) for h in proc_headers]
    for row in proc_rows:
        for ci, cell in enumerate(row):
            widths[ci] = max(widths[ci], len(cell))

    def _cell(text: str, width: int, align: str) -> str:
        if align == "r":
            return text.rjust(width)
        if align == "c":
            return text.center(width)
        return text.ljust(width)

    prefix = " " * indent
    lines = [
        prefix + "  ".join(_cell(proc_headers[i], widths[i], aligns[i]) for i in range(ncols))
    ]
    for row in proc_rows:
        lines.append(prefix + "  ".join(_cell(row[i], widths[i], aligns[i]) for i in range(ncols)))
    return "\n".join(line.rstrip() for line in lines)


def format_histogram(
    buckets: list[tuple[str, int]],
    *,
    max_bar_width: int = 40,
    show_percentages: bool = True,
    total: int | None = None,
) -> str:
    """Format a text histogram using block characters.

    Each bucket is ``(label, count)``. Labels are right-aligned, bars are
    proportional to the largest bucket.

    Args:
        buckets: List of (label, count) tuples.
        max_bar_width: Maximum width of the bar in characters.
        show_percentages: Whether to show percentage after count.
        total: Total for percentage calculation. If None, computed from buckets.
    """
    if not buckets:
        return ""

    if total is None:
        total = sum(count for _, count in buckets)

    max_count = max((count for _, count in buckets), default=0)
    label_width = max((len(label) for label, _ in buckets), default=0)

    lines: list[str] = []
    for label, count in buckets:
        if max_count > 0:
            bar_len = int(count / max_count * max_bar_width)
            bar = "█" * bar_len if bar_len > 0 else "▏"
        else:
            bar = ""

        if show_percentages and total > 0:
            pct_str = f"({count / total * 100:4.0f}%)"
        elif show_percentages:
            pct_str = "(  -%)"
        else:
            pct_str = ""

        line = f"  {label:>{label_width}s}   {bar:<{max_bar_width}s}  {count:3d}  {pct_str}"
        lines.append(line.rstrip())

    return "\n".join(lines)


def format_section_header(title: str, width: int = 80) -> str:
    """Format a section header: ``'─── Title ──...'``."""
    prefix = "─── "
    suffix_len = width - len(prefix) - len(title) - 1
    return prefix + title + " " + "─" * max(0, suffix_len)


def format_percentage(count: int, total: int) -> str:
    """Format as percentage: ``'44.2%'``. Returns ``'-'`` if *total* is 0."""
    if total == 0:
        return "-"
    return f"{count / total * 100:.1f}%"

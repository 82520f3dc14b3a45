"""Command-line interface for querybench.

Provides the main CLI entry point with ``run``, ``validate`` and ``show``
subcommands.
"""

from __future__ import annotations

import dataclasses
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any

import click

from querybench import __version__
from querybench.logging import setup_logging

log = logging.getLogger("querybench")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """querybench: load-test query endpoints and compare latency reports."""


def _load(config_path: Path, overrides: dict[str, Any] | None = None) -> Any:
    from querybench.bench.config import load_config
    from querybench.bench.errors import ConfigError

    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        raise click.ClickException(f"Invalid config: {exc}") from exc
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    log.debug("Loaded %d benchmark(s) from %s", len(config.queries), config_path)
    return config


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--mode",
    type=click.Choice(["ASYNC", "SYNC"], case_sensitive=False),
    default=None,
    help="Run benchmarks concurrently (ASYNC) or one after another (SYNC).",
)
@click.option(
    "--stop-on-failure/--continue-on-failure",
    default=None,
    help="In SYNC mode, skip the remaining runs after the first failure.",
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("querybench-report.json"),
    show_default=True,
    help="Where to write the JSON report.",
)
@click.option(
    "--stream-progress",
    is_flag=True,
    help="Write progress events to stderr as JSON lines.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also log everything, at DEBUG level, to this file.",
)
def run_cmd(
    config_path: Path,
    mode: str | None,
    stop_on_failure: bool | None,
    output_path: Path,
    stream_progress: bool,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Run every benchmark in CONFIG_PATH and write a report."""
    from querybench.bench.display import format_report
    from querybench.bench.progress import JsonLinesSink
    from querybench.bench.results import save_report
    from querybench.bench.runner import BenchmarkRunner

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    overrides: dict[str, Any] = {
        "execution_mode": mode.upper() if mode else None,
        "stop_on_failure": stop_on_failure,
    }
    config = _load(config_path, overrides)
    if config.debug:
        setup_logging(verbose=verbose, quiet=quiet, log_file=log_file, tool_output=True)
    if stream_progress:
        config = dataclasses.replace(config, progress=JsonLinesSink(sys.stderr))

    cancel_event = threading.Event()
    runner = BenchmarkRunner(config, cancel_event=cancel_event)

    def _on_interrupt(signum: int, frame: Any) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        click.echo("\nCancelling; press Ctrl-C again to abort.", err=True)
        runner.cancel()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        report = runner.run()
    except KeyboardInterrupt:
        click.echo("\nBenchmark interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904
    finally:
        signal.signal(signal.SIGINT, previous)

    save_report(output_path, report)

    click.echo()
    click.echo(format_report(report, detail=not quiet))
    click.echo()
    click.echo(f"Report saved to: {output_path}")

    if cancel_event.is_set():
        raise SystemExit(130)
    if not report.ok:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(config_path: Path) -> None:
    """Check CONFIG_PATH without running any tool."""
    from querybench.bench.config import validate_config
    from querybench.bench.display import format_validation

    config = _load(config_path)
    errors = validate_config(config)
    click.echo(format_validation(errors))

    runs = sum(len(b.tools) for b in config.queries)
    click.echo(f"\n{len(config.queries)} benchmark(s), {runs} tool run(s).")
    if any(e.severity == "error" for e in errors):
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("report_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--summary", "summary_only", is_flag=True, help="Only show the overview table.")
def show(report_path: Path, summary_only: bool) -> None:
    """Display a saved report."""
    from querybench.bench.display import format_report
    from querybench.bench.results import load_report

    try:
        report = load_report(report_path)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(format_report(report, detail=not summary_only))

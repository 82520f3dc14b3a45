"""Benchmark session orchestration.

The runner takes a validated :class:`GlobalConfig` and runs every
(benchmark, tool) pair it names.  Configuration problems surface in the
report before any tool is started.  ASYNC mode runs all pairs at once
in a thread pool; SYNC mode runs them in config order and, with
``stop_on_failure``, skips what remains after the first failure.

Each pair gets its own :class:`SampleCollector`; a failing or timed-out
tool keeps the samples it streamed before it stopped.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable

from querybench.bench.collector import SampleCollector
from querybench.bench.config import (
    Benchmark,
    BenchmarkTool,
    ExecutionMode,
    GlobalConfig,
    validate_config,
)
from querybench.bench.errors import (
    STAGE_CONFIG,
    STAGE_TOOL,
    ConfigError,
    ToolError,
)
from querybench.bench.hasura import compute_checks, fetch_rts_stats
from querybench.bench.metrics import (
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_OK,
    BenchmarkMetrics,
    ExtendedHasuraChecks,
    assemble_metrics,
    iso_timestamp,
)
from querybench.bench.progress import (
    RUN_FAILED,
    RUN_FINISHED,
    RUN_PROGRESS,
    RUN_SKIPPED,
    RUN_STARTED,
    SESSION_FINISHED,
    SESSION_STARTED,
    ProgressEvent,
    null_sink,
)
from querybench.bench.results import BenchReport, RunFailure
from querybench.bench.stats import compute_summary, detect_drift
from querybench.bench.tools import get_adapter
from querybench.bench.tools.base import FinalCounters, ToolAdapter, ToolRun
from querybench.logging import get_logger

log = get_logger("runner")

STATUS_SKIPPED = "skipped"
STATUS_INVALID = "invalid"

# Samples between two RUN_PROGRESS events of one run.
PROGRESS_EVERY = 1000

RunOutcome = tuple["BenchmarkMetrics | None", "RunFailure | None"]


class BenchmarkRunner:
    """Run every benchmark of a config with every tool it names.

    Args:
        config: The session configuration.
        adapter_factory: Returns a fresh adapter for a tool.
        cancel_event: Shared cancellation flag.  Setting it stops the
            running tools; their partial results are kept and marked
            cancelled, and pairs not yet started are skipped.
        progress_every: Samples between two progress events of a run.

    Usage::

        runner = BenchmarkRunner(config)
        report = runner.run()
    """

    def __init__(
        self,
        config: GlobalConfig,
        *,
        adapter_factory: Callable[[BenchmarkTool], ToolAdapter] = get_adapter,
        cancel_event: threading.Event | None = None,
        progress_every: int = PROGRESS_EVERY,
    ) -> None:
        self.config = config
        self.adapter_factory = adapter_factory
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.progress_every = max(1, progress_every)
        self._sink = config.progress or null_sink

    def cancel(self) -> None:
        """Stop the session; safe to call from a signal handler."""
        self.cancel_event.set()

    # -- session ---------------------------------------------------------------

    def run(self) -> BenchReport:
        """Run the whole session and return its report."""
        config = self.config
        pairs = [
            (bench, tool)
            for bench in config.queries
            for tool in bench.tools
            if tool not in bench.tools_without_options
        ]
        report = BenchReport(started_at=iso_timestamp(time.time()), config=config.to_dict())
        self._emit(
            SESSION_STARTED,
            data={
                "mode": config.execution_mode.value,
                "benchmarks": len(config.queries),
                "runs": len(pairs),
            },
        )

        report.failures.extend(self._validation_failures())
        report.failures.extend(self._missing_options_failures())

        sync = config.execution_mode is ExecutionMode.SYNC
        if config.rejected and sync and config.stop_on_failure:
            log.error(
                "Not running: %d invalid benchmark(s) and stop_on_failure is set",
                len(config.rejected),
            )
            outcomes: list[RunOutcome] = [
                (None, self._skip(bench, tool, "an invalid benchmark stopped the session"))
                for bench, tool in pairs
            ]
        elif sync:
            outcomes = self._run_sequential(pairs)
        else:
            outcomes = self._run_parallel(pairs)

        for metrics, failure in outcomes:
            if metrics is not None:
                report.metrics.append(metrics)
            if failure is not None:
                report.failures.append(failure)

        report.ended_at = iso_timestamp(time.time())
        self._emit(
            SESSION_FINISHED,
            data={"completed": len(report.metrics), "failures": len(report.failures)},
        )
        log.info(
            "Session finished: %d run(s) reported, %d failure(s)",
            len(report.metrics),
            len(report.failures),
        )
        return report

    def _validation_failures(self) -> list[RunFailure]:
        failures: list[RunFailure] = []
        for err in validate_config(self.config):
            if err.severity != "error":
                log.warning("%s: %s", err.benchmark or err.field, err.message)
                continue
            log.error(
                "Invalid benchmark %s [%s]: %s", err.benchmark or "-", STAGE_CONFIG, err.message
            )
            failures.append(
                RunFailure(
                    benchmark=err.benchmark,
                    stage=STAGE_CONFIG,
                    status=STATUS_INVALID,
                    message=err.message,
                )
            )
        return failures

    def _missing_options_failures(self) -> list[RunFailure]:
        failures: list[RunFailure] = []
        for bench in self.config.queries:
            for tool in bench.tools_without_options:
                message = f"no CUSTOM options for '{tool.value}'"
                log.error("Invalid benchmark %s [%s]: %s", bench.name, STAGE_CONFIG, message)
                failures.append(
                    RunFailure(
                        benchmark=bench.name,
                        stage=STAGE_CONFIG,
                        status=STATUS_INVALID,
                        message=message,
                        tool=tool.value,
                    )
                )
        return failures

    def _run_sequential(self, pairs: list[tuple[Benchmark, BenchmarkTool]]) -> list[RunOutcome]:
        outcomes: list[RunOutcome] = []
        for i, (bench, tool) in enumerate(pairs):
            try:
                metrics, failure = self._run_pair(bench, tool)
            except Exception as exc:
                metrics, failure = None, self._worker_failure(bench, tool, exc)
            outcomes.append((metrics, failure))
            if (
                failure is not None
                and self.config.stop_on_failure
                and failure.status != STATUS_CANCELLED
            ):
                reason = f"{bench.name} [{tool.value}] ended with status {failure.status}"
                log.error("Stopping: %s and stop_on_failure is set", reason)
                outcomes.extend(
                    (None, self._skip(b, t, reason)) for b, t in pairs[i + 1 :]
                )
                break
        return outcomes

    def _run_parallel(self, pairs: list[tuple[Benchmark, BenchmarkTool]]) -> list[RunOutcome]:
        if not pairs:
            return []
        outcomes: dict[int, RunOutcome] = {}
        results_lock = threading.Lock()
        completed_count = 0

        def _worker(bench: Benchmark, tool: BenchmarkTool) -> RunOutcome:
            nonlocal completed_count
            outcome = self._run_pair(bench, tool)
            with results_lock:
                completed_count += 1
                log.info(
                    "[%d/%d] %s [%s] done", completed_count, len(pairs), bench.name, tool.value
                )
            return outcome

        with ThreadPoolExecutor(max_workers=len(pairs)) as pool:
            futures: dict[Future[RunOutcome], int] = {
                pool.submit(_worker, bench, tool): i for i, (bench, tool) in enumerate(pairs)
            }
            for future in as_completed(futures):
                i = futures[future]
                bench, tool = pairs[i]
                try:
                    outcomes[i] = future.result()
                except Exception as exc:
                    outcomes[i] = (None, self._worker_failure(bench, tool, exc))

        # Report in config order, not completion order.
        return [outcomes[i] for i in range(len(pairs))]

    # -- one run -----------------------------------------------------------------

    def _run_pair(self, bench: Benchmark, tool: BenchmarkTool) -> RunOutcome:
        name = bench.name
        tool_name = tool.value
        config = self.config

        if self.cancel_event.is_set():
            return None, self._skip(bench, tool, "session cancelled", status=STATUS_CANCELLED)

        before = None
        if config.extended_hasura_checks:
            before = fetch_rts_stats(config.url, headers=config.headers)

        collector = SampleCollector(
            config.histogram, config.precision, benchmark=name, tool=tool_name
        )
        log.info("Running %s with %s (%s)", name, tool_name, bench.execution_strategy.value)
        self._emit(
            RUN_STARTED,
            bench=name,
            tool=tool_name,
            data={
                "strategy": bench.execution_strategy.value,
                "timeout": config.run_timeout(bench),
            },
        )

        status = STATUS_OK
        error: str | None = None
        failure: RunFailure | None = None
        run: ToolRun | None = None
        try:
            adapter = self.adapter_factory(tool)
            run = adapter.run(bench, config, cancel_event=self.cancel_event)
            events = run.events()
            try:
                for event in events:
                    collector.record(event)
                    if collector.count and collector.count % self.progress_every == 0:
                        self._emit(
                            RUN_PROGRESS,
                            bench=name,
                            tool=tool_name,
                            data={"samples": collector.count, "rejected": collector.rejected},
                        )
            finally:
                # Stops the tool if the loop body raised.
                events.close()
        except ConfigError as exc:
            # Raised before the tool starts, e.g. invalid custom options.
            exc.benchmark = exc.benchmark or name
            log.error("Invalid benchmark %s [%s]: %s", name, exc.stage, exc.message)
            failure = RunFailure.from_error(exc, status=STATUS_INVALID, tool=tool_name)
            self._emit(RUN_FAILED, bench=name, tool=tool_name, data=failure.to_dict())
            return None, failure
        except ToolError as exc:
            exc.benchmark = exc.benchmark or name
            status = exc.status
            error = exc.message
            log.error("%s [%s] %s: %s", name, tool_name, status, exc.message)
            failure = RunFailure.from_error(exc, status=status, tool=tool_name)
        except Exception as exc:
            status = STATUS_FAILED
            error = f"{type(exc).__name__}: {exc}"
            log.error("%s [%s] failed at stage %s: %s", name, tool_name, STAGE_TOOL, error)
            failure = RunFailure(
                benchmark=name,
                stage=STAGE_TOOL,
                status=STATUS_FAILED,
                message=error,
                tool=tool_name,
            )

        if self.cancel_event.is_set() and failure is None:
            status = STATUS_CANCELLED
            error = f"cancelled after {collector.count} samples"
            log.warning("%s [%s] %s", name, tool_name, error)
            failure = RunFailure(
                benchmark=name,
                stage=STAGE_TOOL,
                status=STATUS_CANCELLED,
                message=error,
                tool=tool_name,
            )

        if collector.rejected:
            log.warning("%s [%s]: %d sample(s) rejected", name, tool_name, collector.rejected)
        if collector.failed_responses:
            log.warning(
                "%s [%s]: %d request(s) did not succeed",
                name,
                tool_name,
                collector.failed_responses,
            )

        checks: ExtendedHasuraChecks | None = None
        counters = FinalCounters()
        if run is not None and run.counters is not None:
            counters = run.counters
        if before is not None:
            after = fetch_rts_stats(config.url, headers=config.headers)
            if after is not None:
                checks = compute_checks(before, after, counters.count)

        metrics = self._assemble(
            bench,
            tool,
            run.started_at if run is not None else None,
            run.ended_at if run is not None else None,
            counters,
            collector,
            run.ordered if run is not None else True,
            status=status,
            error=error,
            checks=checks,
        )
        if failure is None:
            self._emit(
                RUN_FINISHED,
                bench=name,
                tool=tool_name,
                data={
                    "status": status,
                    "requests": metrics.request_count,
                    "p50": metrics.histogram.p50,
                    "p99": metrics.histogram.p99,
                },
            )
        else:
            self._emit(RUN_FAILED, bench=name, tool=tool_name, data=failure.to_dict())
        return metrics, failure

    def _assemble(
        self,
        bench: Benchmark,
        tool: BenchmarkTool,
        started_at: float | None,
        ended_at: float | None,
        counters: FinalCounters,
        collector: SampleCollector,
        ordered: bool,
        *,
        status: str,
        error: str | None,
        checks: ExtendedHasuraChecks | None,
    ) -> BenchmarkMetrics:
        now = time.time()
        start = started_at if started_at is not None else now
        end = ended_at if ended_at is not None else max(start, now)

        samples = collector.samples
        summary = compute_summary(collector.histogram, samples, ordered=ordered)
        drift = None
        if ordered and samples:
            drift = detect_drift(summary, samples, self.config.drift_threshold)

        return assemble_metrics(
            name=bench.name,
            tool=tool.value,
            started_at=start,
            ended_at=end,
            count=counters.count,
            average=counters.average,
            total_bytes=counters.total_bytes,
            duration_s=counters.duration_s,
            summary=summary,
            parsed_stats=collector.histogram.parsed_stats(),
            basic_histogram=collector.basic_histogram(),
            extended_hasura_checks=checks,
            status=status,
            terminated_early=status != STATUS_OK,
            error=error,
            rejected_samples=collector.rejected,
            drift=drift,
        )

    # -- helpers ---------------------------------------------------------------

    def _skip(
        self,
        bench: Benchmark,
        tool: BenchmarkTool,
        reason: str,
        *,
        status: str = STATUS_SKIPPED,
    ) -> RunFailure:
        log.info("Skipping %s [%s]: %s", bench.name, tool.value, reason)
        failure = RunFailure(
            benchmark=bench.name,
            stage=STAGE_TOOL,
            status=status,
            message=f"Not run: {reason}",
            tool=tool.value,
        )
        self._emit(RUN_SKIPPED, bench=bench.name, tool=tool.value, data={"reason": reason})
        return failure

    def _worker_failure(self, bench: Benchmark, tool: BenchmarkTool, exc: Exception) -> RunFailure:
        log.error("Worker exception for %s [%s]: %s", bench.name, tool.value, exc)
        return RunFailure(
            benchmark=bench.name,
            stage=STAGE_TOOL,
            status=STATUS_FAILED,
            message=f"Worker exception: {exc}",
            tool=tool.value,
        )

    def _emit(
        self,
        kind: str,
        *,
        bench: str = "",
        tool: str = "",
        data: dict[str, Any] | None = None,
    ) -> None:
        self._sink(ProgressEvent(kind=kind, benchmark=bench, tool=tool, data=data or {}))


def run_benchmarks(
    config: GlobalConfig,
    *,
    cancel_event: threading.Event | None = None,
) -> BenchReport:
    """Run *config* with the installed tools."""
    return BenchmarkRunner(config, cancel_event=cancel_event).run()

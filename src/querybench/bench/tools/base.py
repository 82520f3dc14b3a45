"""Common pieces of the load-generator adapters.

Every adapter runs its tool as a subprocess in a new session so that a
timeout or a cancellation can kill the tool together with any workers
it forked.  Output is streamed line by line; a watchdog thread enforces
the run timeout even while the reader is blocked on a quiet tool.
"""

from __future__ import annotations

import json
import os
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Generator, Iterator

from querybench.bench.errors import (
    ProcessFailedError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from querybench.logging import get_logger

if TYPE_CHECKING:
    from querybench.bench.config import Benchmark, GlobalConfig

log = get_logger("tools")

# Seconds between watchdog checks of the deadline and the cancel event.
_POLL_INTERVAL = 0.2
# Seconds to wait for a killed process to be reaped.
_REAP_TIMEOUT = 5


# ---------------------------------------------------------------------------
# Events and counters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SampleEvent:
    """One completed request, as reported by a tool."""

    timestamp: float  # seconds since the epoch
    latency_ms: float
    bytes: int = 0
    success: bool = True


@dataclass(frozen=True)
class FinalCounters:
    """Totals for a finished run."""

    count: int = 0
    average: float = 0.0  # requests per second
    total_bytes: int = 0
    duration_s: float = 0.0

    @classmethod
    def measured(cls, count: int, total_bytes: int, duration_s: float) -> FinalCounters:
        average = count / duration_s if duration_s > 0 else 0.0
        return cls(count=count, average=average, total_bytes=total_bytes, duration_s=duration_s)


class ToolRun:
    """A single tool invocation and its stream of events.

    ``events()`` may be iterated once; closing it stops the tool.  ``counters`` is filled in when
    the stream ends, normally or not; an adapter that gets totals from
    the tool itself sets ``counters`` while producing events.

    Usage::

        run = adapter.run(benchmark, config, cancel_event=event)
        for sample in run.events():
            collector.record(sample)
        run.counters.average
    """

    def __init__(
        self,
        producer: Callable[[ToolRun], Iterator[SampleEvent]],
        *,
        tool: str,
        benchmark: str,
        ordered: bool = True,
    ) -> None:
        self._producer = producer
        self.tool = tool
        self.benchmark = benchmark
        self.ordered = ordered
        self.counters: FinalCounters | None = None
        self.started_at: float | None = None
        self.ended_at: float | None = None
        self._consumed = False

    def events(self) -> Generator[SampleEvent, None, None]:
        if self._consumed:
            raise RuntimeError(f"events of {self.tool} run for {self.benchmark} already consumed")
        self._consumed = True
        return self._stream()

    def _stream(self) -> Generator[SampleEvent, None, None]:
        self.started_at = time.time()
        count = 0
        total_bytes = 0
        try:
            for event in self._producer(self):
                count += 1
                total_bytes += event.bytes
                yield event
        finally:
            self.ended_at = time.time()
            if self.counters is None:
                self.counters = FinalCounters.measured(
                    count, total_bytes, self.ended_at - self.started_at
                )


# ---------------------------------------------------------------------------
# Adapter interface
# ---------------------------------------------------------------------------


class ToolAdapter:
    """Base class for the load-generator adapters.

    Subclasses set ``tool`` and ``ordered`` and implement
    :meth:`_produce`, a generator yielding :class:`SampleEvent`.
    """

    tool = ""
    ordered = True

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or self.default_executable()

    def default_executable(self) -> str:
        raise NotImplementedError

    def run(
        self,
        benchmark: Benchmark,
        context: GlobalConfig,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ToolRun:
        """Prepare one run of *benchmark*; the tool starts on iteration."""
        timeout = context.run_timeout(benchmark)

        def produce(run: ToolRun) -> Iterator[SampleEvent]:
            return self._produce(run, benchmark, context, timeout, cancel_event)

        return ToolRun(produce, tool=self.tool, benchmark=benchmark.name, ordered=self.ordered)

    def _produce(
        self,
        run: ToolRun,
        benchmark: Benchmark,
        context: GlobalConfig,
        timeout: float,
        cancel_event: threading.Event | None,
    ) -> Iterator[SampleEvent]:
        raise NotImplementedError


def request_body(benchmark: Benchmark) -> str:
    """JSON body of the query request."""
    body: dict[str, Any] = {"query": benchmark.query}
    if benchmark.variables is not None:
        body["variables"] = dict(benchmark.variables)
    return json.dumps(body)


def request_headers(context: GlobalConfig) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    headers.update(context.headers)
    return headers


def write_script(content: str, *, suffix: str, workdir: Path) -> Path:
    """Write a generated driver script into *workdir*."""
    fd, path = tempfile.mkstemp(prefix="querybench-", suffix=suffix, dir=workdir)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    return Path(path)


# ---------------------------------------------------------------------------
# Subprocess streaming
# ---------------------------------------------------------------------------


def _kill_process_group(pid: int) -> None:
    """Kill the tool and everything it spawned."""
    try:
        os.killpg(os.getpgid(pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        pass


class _Watchdog(threading.Thread):
    """Kill the process group on timeout or cancellation."""

    def __init__(
        self,
        proc: subprocess.Popen[str],
        timeout: float,
        cancel_event: threading.Event | None,
    ) -> None:
        super().__init__(daemon=True, name=f"querybench-watchdog-{proc.pid}")
        self._proc = proc
        self._deadline = time.monotonic() + timeout
        self._cancel_event = cancel_event
        self._done = threading.Event()
        self._lock = threading.Lock()
        self.reason = ""  # "", "timeout" or "cancelled"

    def run(self) -> None:
        while not self._done.is_set():
            if self._cancel_event is not None and self._cancel_event.is_set():
                self.kill("cancelled")
                return
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                self.kill("timeout")
                return
            self._done.wait(min(_POLL_INTERVAL, remaining))

    def kill(self, reason: str) -> None:
        with self._lock:
            if not self.reason:
                self.reason = reason
        _kill_process_group(self._proc.pid)

    def finish(self) -> None:
        self._done.set()


def _tail(f: Any, limit: int = 2000) -> str:
    f.seek(0)
    text = f.read()
    return text[-limit:].strip()


def stream_lines(
    command: list[str],
    *,
    tool: str,
    benchmark: str,
    timeout: float,
    cancel_event: threading.Event | None = None,
    env: dict[str, str] | None = None,
    cwd: str | Path | None = None,
) -> Iterator[str]:
    """Run *command* and yield its stdout line by line.

    The cancel event is checked between lines and by the watchdog.  A
    cancelled run ends quietly; the caller decides how to report it.

    Raises:
        ToolNotFoundError: The executable does not exist.
        ToolTimeoutError: The run exceeded *timeout* and was killed.
        ProcessFailedError: The tool exited with a non-zero status.
    """
    run_env = dict(os.environ)
    if env:
        run_env.update(env)

    with tempfile.TemporaryFile(mode="w+") as stderr_file:
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd else None,
                env=run_env,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(
                f"{command[0]} not found; is {tool} installed and on PATH?",
                benchmark=benchmark,
                tool=tool,
            ) from exc

        log.debug("Started %s for %s (pid %d): %s", tool, benchmark, proc.pid, command)
        watchdog = _Watchdog(proc, timeout, cancel_event)
        watchdog.start()
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                yield line.rstrip("\n")
                if cancel_event is not None and cancel_event.is_set():
                    watchdog.kill("cancelled")
                    break
            # Bounded by the watchdog deadline.
            exit_code = proc.wait()
        finally:
            watchdog.finish()
            if proc.poll() is None:
                _kill_process_group(proc.pid)
                proc.wait(timeout=_REAP_TIMEOUT)
            if proc.stdout is not None:
                proc.stdout.close()
            watchdog.join(timeout=1)

        if watchdog.reason == "timeout":
            raise ToolTimeoutError(timeout, benchmark=benchmark, tool=tool)
        if watchdog.reason == "cancelled":
            log.info("%s run for %s cancelled", tool, benchmark)
            return
        if exit_code != 0:
            raise ProcessFailedError(
                exit_code, benchmark=benchmark, tool=tool, detail=_tail(stderr_file)
            )

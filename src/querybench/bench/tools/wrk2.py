"""wrk2 adapter.

wrk2 reports latencies only as an HdrHistogram percentile spectrum at
the end of the run (``--latency``).  The adapter parses that spectrum
and expands the rows into synthetic samples so the
shared statistics pipeline can run.  Synthetic samples are sorted by
value, not arrival, so runs are marked unordered and prefix statistics
are left out.
"""

from __future__ import annotations

import math
import re
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

from querybench.bench.config import (
    BenchmarkTool,
    Custom,
    RequestsPerSecond,
    parse_duration,
)
from querybench.bench.errors import ToolError, UnsupportedStrategyError
from querybench.bench.hdr import (
    HDRHistogramParsedStats,
    expand_parsed_stats,
    parse_hdr_histogram_text,
)
from querybench.bench.tools.base import (
    FinalCounters,
    SampleEvent,
    ToolAdapter,
    ToolRun,
    request_body,
    request_headers,
    stream_lines,
    write_script,
)
from querybench.logging import get_logger

if TYPE_CHECKING:
    from querybench.bench.config import Benchmark, GlobalConfig

log = get_logger("tools")

DEFAULT_CONNECTIONS = 10
DEFAULT_THREADS = 2

_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3, "TB": 1024**4}
_TIME_UNITS = {"us": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}
_SUMMARY = re.compile(
    r"(\d+)\s+requests in\s+([\d.]+)(us|ms|s|m|h),\s+([\d.]+)([KMGT]?B) read"
)
_RPS = re.compile(r"^Requests/sec:\s+([\d.]+)", re.MULTILINE)


@dataclass
class Wrk2Result:
    """What wrk2 printed at the end of a run."""

    parsed_stats: list[HDRHistogramParsedStats] = field(default_factory=list)
    requests: int = 0
    duration_s: float = 0.0
    bytes_read: int = 0
    requests_per_sec: float = 0.0


def parse_wrk2_output(text: str) -> Wrk2Result:
    """Parse wrk2 ``--latency`` output.

    Only the rows under "Detailed Percentile spectrum" are taken as the
    distribution; the coarse "Latency Distribution" lines above it are
    ignored.
    """
    result = Wrk2Result()
    marker = text.find("Detailed Percentile spectrum")
    if marker >= 0:
        result.parsed_stats = parse_hdr_histogram_text(text[marker:])

    m = _SUMMARY.search(text)
    if m:
        result.requests = int(m.group(1))
        result.duration_s = float(m.group(2)) * _TIME_UNITS[m.group(3)]
        result.bytes_read = int(float(m.group(4)) * _SIZE_UNITS[m.group(5)])
    m = _RPS.search(text)
    if m:
        result.requests_per_sec = float(m.group(1))
    elif result.duration_s > 0:
        result.requests_per_sec = result.requests / result.duration_s
    return result


def _lua_long_string(text: str) -> str:
    level = 0
    while f"]{'=' * level}]" in text:
        level += 1
    eq = "=" * level
    return f"[{eq}[{text}]{eq}]"


def build_lua_script(benchmark: Benchmark, context: GlobalConfig) -> str:
    """Lua script that turns every wrk request into the query POST."""
    lines = ['wrk.method = "POST"', f"wrk.body = {_lua_long_string(request_body(benchmark))}"]
    for name, value in request_headers(context).items():
        lines.append(f"wrk.headers[{_lua_long_string(name)}] = {_lua_long_string(value)}")
    return "\n".join(lines) + "\n"


def build_command(
    executable: str, benchmark: Benchmark, context: GlobalConfig, script: Path
) -> list[str]:
    """wrk2 command line for one benchmark."""
    s = benchmark.strategy
    opts: dict[str, Any]
    if isinstance(s, RequestsPerSecond):
        opts = {"rate": s.rps, "duration": s.duration}
    elif isinstance(s, Custom):
        opts = benchmark.tool_options(BenchmarkTool.WRK2)
    else:
        raise UnsupportedStrategyError(
            BenchmarkTool.WRK2.value,
            benchmark.execution_strategy.value,
            benchmark=benchmark.name,
        )

    connections = opts.get("connections") or benchmark.connections or DEFAULT_CONNECTIONS
    threads = min(opts.get("threads") or DEFAULT_THREADS, connections)
    command = [
        executable,
        f"-t{threads}",
        f"-c{connections}",
        f"-d{math.ceil(parse_duration(opts['duration']))}s",
        f"-R{opts['rate']}",
        "--latency",
        "-s",
        str(script),
    ]
    if opts.get("timeout"):
        command.append(f"--timeout={math.ceil(parse_duration(opts['timeout']))}s")
    command.append(context.url)
    return command


class Wrk2Adapter(ToolAdapter):
    """Drive wrk2 and expand its percentile spectrum into samples."""

    tool = BenchmarkTool.WRK2.value
    ordered = False

    def default_executable(self) -> str:
        return "wrk"

    def _produce(
        self,
        run: ToolRun,
        benchmark: Benchmark,
        context: GlobalConfig,
        timeout: float,
        cancel_event: threading.Event | None,
    ) -> Iterator[SampleEvent]:
        with tempfile.TemporaryDirectory(prefix="querybench-wrk2-") as workdir:
            script = write_script(
                build_lua_script(benchmark, context), suffix=".lua", workdir=Path(workdir)
            )
            command = build_command(self.executable, benchmark, context, script)
            output: list[str] = []
            for line in stream_lines(
                command,
                tool=self.tool,
                benchmark=benchmark.name,
                timeout=timeout,
                cancel_event=cancel_event,
            ):
                log.debug("wrk2: %s", line)
                output.append(line)

        result = parse_wrk2_output("\n".join(output))
        if not result.parsed_stats:
            if cancel_event is not None and cancel_event.is_set():
                return
            raise ToolError(
                "no latency spectrum in wrk2 output (is this wrk2 with --latency?)",
                benchmark=benchmark.name,
                tool=self.tool,
            )

        samples = expand_parsed_stats(result.parsed_stats)
        run.counters = FinalCounters(
            count=result.requests or len(samples),
            average=result.requests_per_sec,
            total_bytes=result.bytes_read,
            duration_s=result.duration_s,
        )
        now = time.time()
        per_request = result.bytes_read // len(samples) if samples else 0
        for latency in samples:
            yield SampleEvent(timestamp=now, latency_ms=latency, bytes=per_request)

"""autocannon adapter.

autocannon is a Node library, so the adapter writes a small driver
script that loads it, hooks the per-response event and prints one JSON
line per completed request.  A final ``summary`` line carries the
totals autocannon computed itself.  The autocannon package must be
resolvable by Node, e.g. through ``NODE_PATH``.
"""

from __future__ import annotations

import json
import math
import tempfile
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

from querybench.bench.config import (
    BenchmarkTool,
    Custom,
    FixedRequestNumber,
    MaxRequestsInDuration,
    MultiStage,
    RequestsPerSecond,
    parse_duration,
)
from querybench.bench.errors import UnsupportedStrategyError
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

DRIVER_SCRIPT = """\
const autocannon = require('autocannon');
const opts = JSON.parse(process.argv[2]);
const emit = (obj) => process.stdout.write(JSON.stringify(obj) + '\\n');
const instance = autocannon(opts, (err, result) => {
  if (err) {
    console.error(err.message || String(err));
    process.exit(1);
  }
  emit({
    type: 'summary',
    requests: result.requests.total,
    duration: result.duration,
    bytes: result.throughput.total,
  });
});
instance.on('response', (client, statusCode, resBytes, responseTime) => {
  emit({
    type: 'response',
    timestamp: Date.now(),
    statusCode: statusCode,
    bytes: resBytes,
    responseTime: responseTime,
  });
});
process.on('SIGTERM', () => instance.stop());
"""


def build_options(benchmark: Benchmark, context: GlobalConfig) -> dict[str, Any]:
    """autocannon options object for one benchmark."""
    opts: dict[str, Any] = {
        "url": context.url,
        "method": "POST",
        "headers": request_headers(context),
        "body": request_body(benchmark),
        "connections": benchmark.connections or DEFAULT_CONNECTIONS,
    }
    s = benchmark.strategy
    if isinstance(s, RequestsPerSecond):
        opts["overallRate"] = s.rps
        opts["duration"] = parse_duration(s.duration)
    elif isinstance(s, FixedRequestNumber):
        opts["amount"] = s.requests
    elif isinstance(s, MaxRequestsInDuration):
        opts["duration"] = parse_duration(s.duration)
    elif isinstance(s, MultiStage):
        raise UnsupportedStrategyError(
            BenchmarkTool.AUTOCANNON.value,
            benchmark.execution_strategy.value,
            benchmark=benchmark.name,
        )
    elif isinstance(s, Custom):
        opts.update(benchmark.tool_options(BenchmarkTool.AUTOCANNON))
    else:
        raise TypeError(f"Unhandled strategy variant: {type(s).__name__}")
    return opts


def parse_autocannon_line(line: str) -> SampleEvent | FinalCounters | None:
    """Parse one driver output line.

    Returns a SampleEvent for a response, FinalCounters for the summary
    and None for anything else (blank lines, stray Node warnings).
    Missing or malformed latencies are passed through as NaN so the
    collector can reject and count them.
    """
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    kind = data.get("type")
    if kind == "response":
        latency = data.get("responseTime")
        if not _is_number(latency):
            latency = float("nan")
        timestamp = data.get("timestamp")
        if not _is_number(timestamp):
            timestamp = time.time() * 1000
        # A status that is not an integer counts as a failed response.
        status = data.get("statusCode")
        success = (
            isinstance(status, int) and not isinstance(status, bool) and 200 <= status < 400
        )
        return SampleEvent(
            timestamp=float(timestamp) / 1000.0,
            latency_ms=float(latency),
            bytes=_count(data.get("bytes")),
            success=success,
        )
    if kind == "summary":
        duration = data.get("duration")
        return FinalCounters.measured(
            _count(data.get("requests")),
            _count(data.get("bytes")),
            float(duration) if _is_number(duration) else 0.0,
        )
    return None


def _is_number(value: object) -> bool:
    """True for a finite int or float that is not a bool."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def _count(value: object) -> int:
    """Non-negative integer counter, 0 when absent or malformed."""
    if not _is_number(value):
        return 0
    return max(0, int(value))  # type: ignore[call-overload]


class AutocannonAdapter(ToolAdapter):
    """Drive autocannon through a generated Node script."""

    tool = BenchmarkTool.AUTOCANNON.value
    ordered = True

    def default_executable(self) -> str:
        return "node"

    def _produce(
        self,
        run: ToolRun,
        benchmark: Benchmark,
        context: GlobalConfig,
        timeout: float,
        cancel_event: threading.Event | None,
    ) -> Iterator[SampleEvent]:
        opts = build_options(benchmark, context)
        with tempfile.TemporaryDirectory(prefix="querybench-autocannon-") as workdir:
            script = write_script(DRIVER_SCRIPT, suffix=".js", workdir=Path(workdir))
            command = [self.executable, str(script), json.dumps(opts)]
            for line in stream_lines(
                command,
                tool=self.tool,
                benchmark=benchmark.name,
                timeout=timeout,
                cancel_event=cancel_event,
            ):
                parsed = parse_autocannon_line(line)
                if isinstance(parsed, SampleEvent):
                    yield parsed
                elif isinstance(parsed, FinalCounters):
                    run.counters = parsed
                elif line.strip():
                    log.debug("autocannon: %s", line)

"""k6 adapter.

The adapter generates a k6 script whose ``options`` carry one scenario
derived from the execution strategy, runs it with ``--out json=<file>``
and turns the ``http_req_duration`` points of that file into sample
events.  Bytes come from the ``data_received`` points, which k6 reports
per iteration rather than per request, so they only feed the totals.
"""

from __future__ import annotations

import json
import math
import re
import tempfile
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from querybench.bench.config import (
    BenchmarkTool,
    Custom,
    FixedRequestNumber,
    MaxRequestsInDuration,
    MultiStage,
    RequestsPerSecond,
)
from querybench.bench.errors import ToolError
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

DEFAULT_VUS = 10

SCRIPT_TEMPLATE = """\
import http from 'k6/http';

export const options = {options};

const url = {url};
const body = {body};
const params = {{ headers: {headers} }};

export default function () {{
  http.post(url, body, params);
}}
"""


def build_options(benchmark: Benchmark) -> dict[str, Any]:
    """k6 ``options`` object for one benchmark."""
    vus = benchmark.connections or DEFAULT_VUS
    s = benchmark.strategy
    if isinstance(s, RequestsPerSecond):
        scenario: dict[str, Any] = {
            "executor": "constant-arrival-rate",
            "rate": s.rps,
            "timeUnit": "1s",
            "duration": s.duration,
            "preAllocatedVUs": vus,
            "maxVUs": vus * 2,
        }
    elif isinstance(s, FixedRequestNumber):
        scenario = {
            "executor": "shared-iterations",
            "vus": min(vus, s.requests),
            "iterations": s.requests,
        }
    elif isinstance(s, MaxRequestsInDuration):
        scenario = {"executor": "constant-vus", "vus": vus, "duration": s.duration}
    elif isinstance(s, MultiStage):
        scenario = {
            "executor": "ramping-arrival-rate",
            "startRate": s.initial_rps,
            "timeUnit": "1s",
            "preAllocatedVUs": vus,
            "maxVUs": vus * 2,
            "stages": [{"target": st.target, "duration": st.duration} for st in s.stages],
        }
    elif isinstance(s, Custom):
        return benchmark.tool_options(BenchmarkTool.K6)
    else:
        raise TypeError(f"Unhandled strategy variant: {type(s).__name__}")
    return {"scenarios": {"main": scenario}, "summaryTrendStats": ["avg", "min", "max"]}


def build_script(benchmark: Benchmark, context: GlobalConfig) -> str:
    return SCRIPT_TEMPLATE.format(
        options=json.dumps(build_options(benchmark), indent=2),
        url=json.dumps(context.url),
        body=json.dumps(request_body(benchmark)),
        headers=json.dumps(request_headers(context)),
    )


_FRACTION = re.compile(r"\.(\d+)")


def parse_k6_time(value: str) -> float:
    """Parse a k6 RFC 3339 timestamp (nanosecond precision) to epoch seconds."""
    text = value.strip().replace("Z", "+00:00")
    # datetime only takes microseconds.
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text).timestamp()


def parse_k6_points(lines: Iterable[str]) -> tuple[list[SampleEvent], int]:
    """Parse k6 JSON output into sample events and total bytes received.

    Only ``Point`` records are read: ``http_req_duration`` points become
    events (a request is successful unless k6 tagged it with
    ``expected_response: "false"``), ``data_received`` points are
    summed.  Events are returned sorted by timestamp; a point with a
    missing or unreadable ``time`` takes the timestamp of the point
    before it, so it keeps its place in arrival order.
    """
    events: list[SampleEvent] = []
    total_bytes = 0
    last_time = 0.0
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            log.debug("k6: skipping malformed output line: %.80s", line)
            continue
        if not isinstance(record, dict) or record.get("type") != "Point":
            continue
        metric = record.get("metric")
        data = record.get("data")
        if not isinstance(data, dict):
            log.debug("k6: skipping point without data: %.80s", line)
            continue
        if metric == "http_req_duration":
            value = data.get("value")
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                value = float("nan")
            tags = data.get("tags")
            if not isinstance(tags, dict):
                tags = {}
            stamp = data.get("time")
            try:
                last_time = parse_k6_time(stamp) if isinstance(stamp, str) else last_time
            except ValueError:
                log.debug("k6: unreadable point time %r", stamp)
            events.append(
                SampleEvent(
                    timestamp=last_time,
                    latency_ms=float(value),
                    success=str(tags.get("expected_response", "true")) != "false",
                )
            )
        elif metric == "data_received":
            value = data.get("value")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                if math.isfinite(value) and value > 0:
                    total_bytes += int(value)
    events.sort(key=lambda e: e.timestamp)
    return events, total_bytes


class K6Adapter(ToolAdapter):
    """Drive k6 with a generated script and its JSON output."""

    tool = BenchmarkTool.K6.value
    ordered = True

    def default_executable(self) -> str:
        return "k6"

    def _produce(
        self,
        run: ToolRun,
        benchmark: Benchmark,
        context: GlobalConfig,
        timeout: float,
        cancel_event: threading.Event | None,
    ) -> Iterator[SampleEvent]:
        with tempfile.TemporaryDirectory(prefix="querybench-k6-") as workdir:
            script = write_script(
                build_script(benchmark, context), suffix=".js", workdir=Path(workdir)
            )
            out_file = Path(workdir) / "points.json"
            command = [
                self.executable,
                "run",
                "--quiet",
                "--out",
                f"json={out_file}",
                str(script),
            ]
            error: ToolError | None = None
            try:
                for line in stream_lines(
                    command,
                    tool=self.tool,
                    benchmark=benchmark.name,
                    timeout=timeout,
                    cancel_event=cancel_event,
                ):
                    if line.strip():
                        log.debug("k6: %s", line)
            except ToolError as exc:
                # Points written before a failure or a kill are still valid.
                error = exc

            if out_file.exists():
                with open(out_file) as f:
                    events, total_bytes = parse_k6_points(f)
            else:
                events, total_bytes = [], 0
            elapsed = time.time() - (run.started_at or time.time())
            run.counters = FinalCounters.measured(len(events), total_bytes, elapsed)

        yield from events
        if error is not None:
            raise error

"""Progress events emitted while a session runs.

A progress sink is any callable taking a :class:`ProgressEvent`.  The
runner calls it from worker threads, so sinks that write to a shared
stream must serialize their writes; :class:`JsonLinesSink` does.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TextIO

# Event kinds, in the order a run produces them.
SESSION_STARTED = "session_started"
RUN_STARTED = "run_started"
RUN_PROGRESS = "run_progress"
RUN_FINISHED = "run_finished"
RUN_FAILED = "run_failed"
RUN_SKIPPED = "run_skipped"
SESSION_FINISHED = "session_finished"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification."""

    kind: str
    benchmark: str = ""
    tool: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"event": self.kind, "timestamp": self.timestamp}
        if self.benchmark:
            d["benchmark"] = self.benchmark
        if self.tool:
            d["tool"] = self.tool
        d.update(self.data)
        return d


ProgressSink = Callable[[ProgressEvent], None]


def null_sink(event: ProgressEvent) -> None:
    """Sink used when no progress sink is configured."""


class JsonLinesSink:
    """Write each event as one JSON object per line, flushing after each.

    Usage::

        config = dataclasses.replace(config, progress=JsonLinesSink(sys.stderr))
    """

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self._lock = threading.Lock()

    def __call__(self, event: ProgressEvent) -> None:
        line = json.dumps(event.to_dict(), separators=(",", ":"))
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()

"""Session report data structures and JSON persistence.

Hierarchy::

    BenchReport (one session: one config, many runs)
      → metrics: list[BenchmarkMetrics]   (one per benchmark per tool)
      → failures: list[RunFailure]        (invalid, failed, skipped runs)

A run that failed after streaming some samples appears in both lists:
its partial metrics carry the failure status, and the failure entry
records the stage and message.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from querybench.bench.errors import BenchError
from querybench.bench.metrics import BenchmarkMetrics

log = logging.getLogger("querybench")

REPORT_VERSION = 1


@dataclass
class RunFailure:
    """One benchmark (or benchmark/tool pair) that did not complete."""

    benchmark: str
    stage: str  # "config", "tool" or "statistics"
    status: str  # "invalid", "failed", "timeout", "cancelled" or "skipped"
    message: str
    tool: str = ""

    @classmethod
    def from_error(cls, exc: BenchError, *, status: str, tool: str = "") -> RunFailure:
        return cls(
            benchmark=exc.benchmark,
            stage=exc.stage,
            status=status,
            message=exc.message,
            tool=tool or getattr(exc, "tool", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "benchmark": self.benchmark,
            "stage": self.stage,
            "status": self.status,
            "message": self.message,
        }
        if self.tool:
            d["tool"] = self.tool
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunFailure:
        return cls(
            benchmark=data["benchmark"],
            stage=data.get("stage", ""),
            status=data.get("status", "failed"),
            message=data.get("message", ""),
            tool=data.get("tool", ""),
        )


@dataclass
class BenchReport:
    """All results of one session."""

    started_at: str = ""
    ended_at: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    metrics: list[BenchmarkMetrics] = field(default_factory=list)
    failures: list[RunFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if every run completed."""
        return not self.failures

    def metrics_for(self, benchmark: str) -> list[BenchmarkMetrics]:
        return [m for m in self.metrics if m.name == benchmark]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": REPORT_VERSION,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "config": self.config,
            "metrics": [m.to_dict() for m in self.metrics],
            "failures": [f.to_dict() for f in self.failures],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchReport:
        return cls(
            started_at=data.get("started_at", ""),
            ended_at=data.get("ended_at", ""),
            config=data.get("config", {}),
            metrics=[BenchmarkMetrics.from_dict(m) for m in data.get("metrics", [])],
            failures=[RunFailure.from_dict(f) for f in data.get("failures", [])],
        )


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def save_report(path: Path, report: BenchReport) -> None:
    """Write *report* as indented JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2) + "\n")
    log.info("Wrote %s", path)


def load_report(path: Path) -> BenchReport:
    """Read a report written by :func:`save_report`.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not a report.
    """
    if not path.exists():
        raise FileNotFoundError(f"No report at {path}")
    data = json.loads(path.read_text())
    if not isinstance(data, dict) or "metrics" not in data:
        raise ValueError(f"{path} is not a querybench report")
    return BenchReport.from_dict(data)

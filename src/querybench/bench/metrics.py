"""The metrics record produced for each benchmark and tool.

:func:`assemble_metrics` only combines values computed elsewhere
(counters from the tool, the summary from :mod:`querybench.bench.stats`,
the finalized basic histogram); it computes no statistics of its own.
Records serialize with the camelCase keys of the report format.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from querybench.bench.basic_histogram import BasicHistogram
from querybench.bench.hdr import HDRHistogramParsedStats
from querybench.bench.stats import DriftReport, HistogramSummary

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_TIMEOUT = "timeout"
STATUS_CANCELLED = "cancelled"
STATUSES = frozenset({STATUS_OK, STATUS_FAILED, STATUS_TIMEOUT, STATUS_CANCELLED})


def iso_timestamp(epoch_s: float) -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    dt = datetime.fromtimestamp(epoch_s, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class ExtendedHasuraChecks:
    """GHC runtime memory figures taken around a run."""

    bytes_allocated_per_request: float
    live_bytes_before: int
    live_bytes_after: int
    mem_in_use_bytes_before: int
    mem_in_use_bytes_after: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "bytes_allocated_per_request": self.bytes_allocated_per_request,
            "live_bytes_before": self.live_bytes_before,
            "live_bytes_after": self.live_bytes_after,
            "mem_in_use_bytes_before": self.mem_in_use_bytes_before,
            "mem_in_use_bytes_after": self.mem_in_use_bytes_after,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtendedHasuraChecks:
        return cls(
            bytes_allocated_per_request=data["bytes_allocated_per_request"],
            live_bytes_before=data["live_bytes_before"],
            live_bytes_after=data["live_bytes_after"],
            mem_in_use_bytes_before=data["mem_in_use_bytes_before"],
            mem_in_use_bytes_after=data["mem_in_use_bytes_after"],
        )


@dataclass(frozen=True)
class BenchmarkMetrics:
    """Everything measured for one benchmark run with one tool."""

    name: str
    tool: str
    time_start: str
    time_end: str
    request_count: int
    request_average: float  # requests per second
    total_bytes: int
    bytes_per_second: float
    histogram: HistogramSummary
    parsed_stats: tuple[HDRHistogramParsedStats, ...] = ()
    basic_histogram: BasicHistogram | None = None
    extended_hasura_checks: ExtendedHasuraChecks | None = None
    status: str = STATUS_OK
    terminated_early: bool = False
    error: str | None = None
    rejected_samples: int = 0
    drift: DriftReport | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "tool": self.tool,
            "time": {"start": self.time_start, "end": self.time_end},
            "requests": {"count": self.request_count, "average": self.request_average},
            "response": {
                "totalBytes": self.total_bytes,
                "bytesPerSecond": self.bytes_per_second,
            },
            "histogram": {
                "json": self.histogram.to_dict(),
                "parsedStats": [row.to_dict() for row in self.parsed_stats],
            },
            "status": self.status,
            "terminated_early": self.terminated_early,
            "error": self.error,
            "rejected_samples": self.rejected_samples,
        }
        if self.basic_histogram is not None:
            d["basicHistogram"] = self.basic_histogram.to_dict()
        if self.extended_hasura_checks is not None:
            d["extended_hasura_checks"] = self.extended_hasura_checks.to_dict()
        if self.drift is not None:
            d["drift"] = self.drift.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkMetrics:
        time_ = data.get("time", {})
        requests = data.get("requests", {})
        response = data.get("response", {})
        histogram = data.get("histogram", {})
        basic = data.get("basicHistogram")
        hasura = data.get("extended_hasura_checks")
        drift = data.get("drift")
        return cls(
            name=data["name"],
            tool=data.get("tool", ""),
            time_start=time_.get("start", ""),
            time_end=time_.get("end", ""),
            request_count=requests.get("count", 0),
            request_average=requests.get("average", 0.0),
            total_bytes=response.get("totalBytes", 0),
            bytes_per_second=response.get("bytesPerSecond", 0.0),
            histogram=HistogramSummary.from_dict(histogram.get("json", {})),
            parsed_stats=tuple(
                HDRHistogramParsedStats.from_dict(row) for row in histogram.get("parsedStats", [])
            ),
            basic_histogram=BasicHistogram.from_dict(basic) if basic else None,
            extended_hasura_checks=ExtendedHasuraChecks.from_dict(hasura) if hasura else None,
            status=data.get("status", STATUS_OK),
            terminated_early=data.get("terminated_early", False),
            error=data.get("error"),
            rejected_samples=data.get("rejected_samples", 0),
            drift=DriftReport.from_dict(drift) if drift else None,
        )


def assemble_metrics(
    *,
    name: str,
    tool: str,
    started_at: float,
    ended_at: float,
    count: int,
    average: float,
    total_bytes: int,
    duration_s: float,
    summary: HistogramSummary,
    parsed_stats: list[HDRHistogramParsedStats] | tuple[HDRHistogramParsedStats, ...] = (),
    basic_histogram: BasicHistogram | None = None,
    extended_hasura_checks: ExtendedHasuraChecks | None = None,
    status: str = STATUS_OK,
    terminated_early: bool = False,
    error: str | None = None,
    rejected_samples: int = 0,
    drift: DriftReport | None = None,
) -> BenchmarkMetrics:
    """Combine one run's results into a BenchmarkMetrics record.

    Args:
        started_at: Run start, seconds since the epoch.
        ended_at: Run end, seconds since the epoch.
        count: Requests completed, as counted by the tool.
        average: Mean requests per second.
        total_bytes: Response bytes received.
        duration_s: Duration over which *total_bytes* were received.

    Raises:
        ValueError: If *status* is unknown or the run ends before it starts.
    """
    if status not in STATUSES:
        raise ValueError(f"unknown run status {status!r}")
    if ended_at < started_at:
        raise ValueError(f"run ends ({ended_at}) before it starts ({started_at})")
    return BenchmarkMetrics(
        name=name,
        tool=tool,
        time_start=iso_timestamp(started_at),
        time_end=iso_timestamp(ended_at),
        request_count=count,
        request_average=average,
        total_bytes=total_bytes,
        bytes_per_second=total_bytes / duration_s if duration_s > 0 else 0.0,
        histogram=summary,
        parsed_stats=tuple(parsed_stats),
        basic_histogram=basic_histogram,
        extended_hasura_checks=extended_hasura_checks,
        status=status,
        terminated_early=terminated_early,
        error=error,
        rejected_samples=rejected_samples,
        drift=drift,
    )

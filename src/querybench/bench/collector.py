"""Per-run sample accumulation.

A :class:`SampleCollector` owns everything one (benchmark, tool) run
records: the HDR histogram, the basic histogram builder and the
arrival-ordered sample buffer used for prefix statistics.  Each run
gets its own collector, so nothing is shared between runs.
"""

from __future__ import annotations

import logging
import threading

from querybench.bench.basic_histogram import (
    BasicHistogram,
    BasicHistogramBuilder,
    HistogramPolicy,
)
from querybench.bench.errors import HistogramError
from querybench.bench.hdr import PrecisionConfig, PreciseHdrHistogram
from querybench.bench.tools.base import SampleEvent

log = logging.getLogger("querybench")


class SampleCollector:
    """Feed sample events to both histograms and the arrival buffer.

    Invalid latencies are rejected and counted in ``rejected``; they
    never reach either histogram, so ``rejected`` is separate from the
    basic histogram's outliers.
    """

    def __init__(
        self,
        policy: HistogramPolicy | None = None,
        precision: PrecisionConfig | None = None,
        *,
        benchmark: str = "",
        tool: str = "",
    ) -> None:
        self.benchmark = benchmark
        self.tool = tool
        self.histogram = PreciseHdrHistogram(precision)
        self.basic = BasicHistogramBuilder(policy)
        self.rejected = 0
        self.failed_responses = 0
        self.total_bytes = 0
        self.first_timestamp: float | None = None
        self.last_timestamp: float | None = None
        self._samples: list[float] = []
        self._lock = threading.Lock()

    def record(self, event: SampleEvent) -> bool:
        """Record one event.  Returns False if it was rejected."""
        with self._lock:
            try:
                self.histogram.record(event.latency_ms)
            except HistogramError as exc:
                exc.benchmark = self.benchmark
                self.rejected += 1
                log.debug("Rejected sample from %s: %s", self.tool, exc)
                return False
            self.basic.record(event.latency_ms, len(self._samples))
            self._samples.append(event.latency_ms)
            self.total_bytes += event.bytes
            if not event.success:
                self.failed_responses += 1
            if self.first_timestamp is None:
                self.first_timestamp = event.timestamp
            self.last_timestamp = event.timestamp
            return True

    @property
    def count(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> list[float]:
        """Accepted latencies in arrival order (a copy)."""
        with self._lock:
            return list(self._samples)

    def basic_histogram(self) -> BasicHistogram:
        """Finalize the basic histogram over every accepted sample."""
        with self._lock:
            total = len(self._samples)
        return self.basic.finalize(total)

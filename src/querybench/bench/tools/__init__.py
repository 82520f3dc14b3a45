"""Load-generator adapters: one per supported tool."""

from __future__ import annotations

from querybench.bench.config import BenchmarkTool
from querybench.bench.tools.autocannon import AutocannonAdapter
from querybench.bench.tools.base import FinalCounters, SampleEvent, ToolAdapter, ToolRun
from querybench.bench.tools.k6 import K6Adapter
from querybench.bench.tools.wrk2 import Wrk2Adapter

ADAPTERS: dict[BenchmarkTool, type[ToolAdapter]] = {
    BenchmarkTool.AUTOCANNON: AutocannonAdapter,
    BenchmarkTool.K6: K6Adapter,
    BenchmarkTool.WRK2: Wrk2Adapter,
}


def get_adapter(tool: BenchmarkTool) -> ToolAdapter:
    """Return a fresh adapter for *tool*."""
    return ADAPTERS[tool]()


__all__ = [
    "ADAPTERS",
    "AutocannonAdapter",
    "FinalCounters",
    "K6Adapter",
    "SampleEvent",
    "ToolAdapter",
    "ToolRun",
    "Wrk2Adapter",
    "get_adapter",
]

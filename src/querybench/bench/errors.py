"""Error taxonomy for benchmark runs.

Every error carries the benchmark name and the stage it happened in
(``config``, ``tool`` or ``statistics``) so that a failure in one
benchmark can be reported without aborting its siblings::

    BenchError
      ConfigError (ValueError)      -- invalid benchmark definition
        MissingFieldError
        InvalidRangeError
        UnknownStrategyError
        UnsupportedStrategyError
      ToolError (RuntimeError)      -- load generator failed
        ProcessFailedError
        ToolTimeoutError
        ToolNotFoundError
      HistogramError (ValueError)   -- sample rejected at record time
      StatisticsError (ValueError)  -- statistic undefined for the input
"""

from __future__ import annotations

STAGE_CONFIG = "config"
STAGE_TOOL = "tool"
STAGE_STATISTICS = "statistics"


class BenchError(Exception):
    """Base class for all querybench benchmark errors."""

    stage = ""

    def __init__(self, message: str, *, benchmark: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.benchmark = benchmark

    def __str__(self) -> str:
        prefix = f"[{self.stage}]" if self.stage else ""
        if self.benchmark:
            prefix += f" {self.benchmark}:"
        return f"{prefix} {self.message}".strip()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(BenchError, ValueError):
    """A benchmark definition is invalid or incomplete."""

    stage = STAGE_CONFIG

    def __init__(self, message: str, *, benchmark: str = "", field: str = "") -> None:
        super().__init__(message, benchmark=benchmark)
        self.field = field


class MissingFieldError(ConfigError):
    """A field required by the benchmark's execution strategy is absent."""

    def __init__(self, field: str, *, benchmark: str = "", strategy: str = "") -> None:
        if strategy:
            message = f"missing required field '{field}' for strategy {strategy}"
        else:
            message = f"missing required field '{field}'"
        super().__init__(message, benchmark=benchmark, field=field)


class InvalidRangeError(ConfigError):
    """A field is present but its value is outside the allowed domain."""


class UnknownStrategyError(ConfigError):
    """The ``execution_strategy`` tag is not recognized."""

    def __init__(self, strategy: object, *, benchmark: str = "") -> None:
        super().__init__(
            f"unknown execution_strategy {strategy!r}",
            benchmark=benchmark,
            field="execution_strategy",
        )
        self.strategy = strategy


class UnsupportedStrategyError(ConfigError):
    """A declared tool cannot drive the benchmark's execution strategy."""

    def __init__(self, tool: str, strategy: str, *, benchmark: str = "") -> None:
        super().__init__(
            f"tool '{tool}' does not support execution_strategy {strategy}",
            benchmark=benchmark,
            field="tools",
        )
        self.tool = tool
        self.strategy = strategy


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------


class ToolError(BenchError, RuntimeError):
    """A load generator failed while running a benchmark."""

    stage = STAGE_TOOL

    def __init__(self, message: str, *, benchmark: str = "", tool: str = "") -> None:
        super().__init__(message, benchmark=benchmark)
        self.tool = tool

    @property
    def status(self) -> str:
        """Run status recorded in the report for this failure."""
        return "failed"


class ProcessFailedError(ToolError):
    """The tool process exited with a non-zero status."""

    def __init__(
        self,
        exit_code: int,
        *,
        benchmark: str = "",
        tool: str = "",
        detail: str = "",
    ) -> None:
        message = f"{tool or 'tool'} exited with status {exit_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message, benchmark=benchmark, tool=tool)
        self.exit_code = exit_code


class ToolTimeoutError(ToolError):
    """The tool did not finish within the run timeout and was killed."""

    def __init__(self, timeout: float, *, benchmark: str = "", tool: str = "") -> None:
        super().__init__(
            f"{tool or 'tool'} timed out after {timeout:.0f}s",
            benchmark=benchmark,
            tool=tool,
        )
        self.timeout = timeout

    @property
    def status(self) -> str:
        return "timeout"


class ToolNotFoundError(ToolError):
    """The tool executable is not installed or not on PATH."""


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class HistogramError(BenchError, ValueError):
    """A latency sample is negative, missing or not finite."""

    stage = STAGE_STATISTICS


class StatisticsError(BenchError, ValueError):
    """A statistic is undefined for the given samples."""

    stage = STAGE_STATISTICS

"""Benchmark configuration model and loading.

Handles:
- Parsing one benchmark definition into exactly one execution-strategy
  variant (a tagged union on ``execution_strategy``).
- Parsing k6-style duration strings (``"30s"``, ``"1m30s"``).
- Building the immutable GlobalConfig that is threaded through the
  runner, the tool adapters and the metrics assembler.
- Loading the whole configuration from a YAML file.
- Validating the final configuration before any tool is invoked.

Config file format::

    url: http://localhost:8080/v1/graphql
    headers:
      X-Hasura-Admin-Secret: my-secret
    execution_mode: ASYNC
    queries:
      - name: SearchAlbumsWithArtist
        tools: [k6, autocannon]
        execution_strategy: REQUESTS_PER_SECOND
        rps: 200
        duration: 30s
        connections: 50
        query: |
          query SearchAlbumsWithArtist { albums { title } }
"""

from __future__ import annotations

import enum
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Union

from querybench.bench.basic_histogram import HistogramPolicy
from querybench.bench.errors import (
    ConfigError,
    InvalidRangeError,
    MissingFieldError,
    UnknownStrategyError,
    UnsupportedStrategyError,
)
from querybench.bench.hdr import PrecisionConfig
from querybench.bench.progress import ProgressSink

log = logging.getLogger("querybench")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ExecutionStrategy(enum.Enum):
    """How request volume or rate is driven for one benchmark."""

    REQUESTS_PER_SECOND = "REQUESTS_PER_SECOND"
    FIXED_REQUEST_NUMBER = "FIXED_REQUEST_NUMBER"
    MAX_REQUESTS_IN_DURATION = "MAX_REQUESTS_IN_DURATION"
    MULTI_STAGE = "MULTI_STAGE"
    CUSTOM = "CUSTOM"


class ExecutionMode(enum.Enum):
    """ASYNC runs benchmarks concurrently, SYNC one after another."""

    ASYNC = "ASYNC"
    SYNC = "SYNC"


class BenchmarkTool(enum.Enum):
    """Supported load-generation engines."""

    AUTOCANNON = "autocannon"
    K6 = "k6"
    WRK2 = "wrk2"


# Strategies each tool is able to drive.  wrk2 always needs a target
# rate; autocannon has no notion of ramping stages.
TOOL_SUPPORT: dict[BenchmarkTool, frozenset[ExecutionStrategy]] = {
    BenchmarkTool.AUTOCANNON: frozenset(
        {
            ExecutionStrategy.REQUESTS_PER_SECOND,
            ExecutionStrategy.FIXED_REQUEST_NUMBER,
            ExecutionStrategy.MAX_REQUESTS_IN_DURATION,
            ExecutionStrategy.CUSTOM,
        }
    ),
    BenchmarkTool.K6: frozenset(ExecutionStrategy),
    BenchmarkTool.WRK2: frozenset(
        {
            ExecutionStrategy.REQUESTS_PER_SECOND,
            ExecutionStrategy.CUSTOM,
        }
    ),
}


# ---------------------------------------------------------------------------
# Strategy variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Stage:
    """One stage of a multi-stage run: ramp to ``target`` rps over ``duration``."""

    target: float
    duration: str

    @property
    def duration_s(self) -> float:
        return parse_duration(self.duration)


@dataclass(frozen=True)
class RequestsPerSecond:
    """Constant arrival rate for a fixed duration."""

    rps: float
    duration: str


@dataclass(frozen=True)
class FixedRequestNumber:
    """A fixed number of requests with no rate or time constraint."""

    requests: int


@dataclass(frozen=True)
class MaxRequestsInDuration:
    """As many requests as possible within a duration."""

    duration: str


@dataclass(frozen=True)
class MultiStage:
    """Start at ``initial_rps`` and walk through ``stages`` in order."""

    initial_rps: float
    stages: tuple[Stage, ...]


@dataclass(frozen=True)
class Custom:
    """Free-form per-tool options, keyed by tool."""

    options: Mapping[BenchmarkTool, Mapping[str, Any]]


Strategy = Union[
    RequestsPerSecond,
    FixedRequestNumber,
    MaxRequestsInDuration,
    MultiStage,
    Custom,
]


def strategy_kind(strategy: Strategy) -> ExecutionStrategy:
    """Return the tag for a strategy variant."""
    if isinstance(strategy, RequestsPerSecond):
        return ExecutionStrategy.REQUESTS_PER_SECOND
    if isinstance(strategy, FixedRequestNumber):
        return ExecutionStrategy.FIXED_REQUEST_NUMBER
    if isinstance(strategy, MaxRequestsInDuration):
        return ExecutionStrategy.MAX_REQUESTS_IN_DURATION
    if isinstance(strategy, MultiStage):
        return ExecutionStrategy.MULTI_STAGE
    if isinstance(strategy, Custom):
        return ExecutionStrategy.CUSTOM
    raise TypeError(f"Unhandled strategy variant: {type(strategy).__name__}")


# ---------------------------------------------------------------------------
# Benchmark
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Benchmark:
    """A validated benchmark definition."""

    name: str
    tools: tuple[BenchmarkTool, ...]
    query: str
    strategy: Strategy
    variables: Mapping[str, Any] | None = None
    connections: int | None = None

    @property
    def execution_strategy(self) -> ExecutionStrategy:
        return strategy_kind(self.strategy)

    @property
    def tools_without_options(self) -> tuple[BenchmarkTool, ...]:
        """Declared tools a CUSTOM benchmark gives no options; they are not run."""
        s = self.strategy
        if not isinstance(s, Custom):
            return ()
        return tuple(t for t in self.tools if t not in s.options)

    def tool_options(self, tool: BenchmarkTool) -> dict[str, Any]:
        """CUSTOM options for *tool*.

        Raises:
            MissingFieldError: The benchmark has no options for *tool*.
        """
        s = self.strategy
        if not isinstance(s, Custom) or tool not in s.options:
            raise MissingFieldError(
                f"options.{tool.value}",
                benchmark=self.name,
                strategy=ExecutionStrategy.CUSTOM.value,
            )
        return dict(s.options[tool])

    @property
    def expected_duration_s(self) -> float | None:
        """How long the run should take, or None if it is bounded by count."""
        s = self.strategy
        if isinstance(s, (RequestsPerSecond, MaxRequestsInDuration)):
            return parse_duration(s.duration)
        if isinstance(s, MultiStage):
            return sum(stage.duration_s for stage in s.stages)
        if isinstance(s, (FixedRequestNumber, Custom)):
            return None
        raise TypeError(f"Unhandled strategy variant: {type(s).__name__}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the config-file shape."""
        d: dict[str, Any] = {
            "name": self.name,
            "tools": [t.value for t in self.tools],
            "execution_strategy": self.execution_strategy.value,
            "query": self.query,
        }
        if self.variables is not None:
            d["variables"] = dict(self.variables)
        if self.connections is not None:
            d["connections"] = self.connections

        s = self.strategy
        if isinstance(s, RequestsPerSecond):
            d["rps"] = s.rps
            d["duration"] = s.duration
        elif isinstance(s, FixedRequestNumber):
            d["requests"] = s.requests
        elif isinstance(s, MaxRequestsInDuration):
            d["duration"] = s.duration
        elif isinstance(s, MultiStage):
            d["initial_rps"] = s.initial_rps
            d["stages"] = [{"target": st.target, "duration": st.duration} for st in s.stages]
        elif isinstance(s, Custom):
            d["options"] = {tool.value: dict(opts) for tool, opts in s.options.items()}
        else:
            raise TypeError(f"Unhandled strategy variant: {type(s).__name__}")
        return d


# ---------------------------------------------------------------------------
# Duration parsing
# ---------------------------------------------------------------------------

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_FULL = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h))+$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: object) -> float:
    """Parse a k6-style duration string into seconds.

    Accepts one or more ``<number><unit>`` groups with units ``ms``,
    ``s``, ``m`` and ``h``, e.g. ``"30s"``, ``"1m30s"``, ``"250ms"``.

    Raises:
        ValueError: If *value* is not a string, does not match the
            format, or totals zero.
    """
    if not isinstance(value, str):
        raise ValueError(f"duration must be a string like '30s', got {value!r}")
    text = value.strip()
    if not _DURATION_FULL.match(text):
        raise ValueError(f"unparseable duration {value!r} (expected e.g. '30s', '1m30s')")
    total = sum(float(n) * _UNIT_SECONDS[unit] for n, unit in _DURATION_PART.findall(text))
    if total <= 0:
        raise ValueError(f"duration must be positive, got {value!r}")
    return total


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _require(raw: Mapping[str, Any], key: str, name: str, strategy: str) -> Any:
    if key not in raw or raw[key] is None:
        raise MissingFieldError(key, benchmark=name, strategy=strategy)
    return raw[key]


def _positive_number(value: object, key: str, name: str) -> float:
    if not _is_number(value) or value <= 0:  # type: ignore[operator]
        raise InvalidRangeError(
            f"'{key}' must be a number > 0, got {value!r}", benchmark=name, field=key
        )
    return value  # type: ignore[return-value]


def _non_negative_number(value: object, key: str, name: str) -> float:
    if not _is_number(value) or value < 0:  # type: ignore[operator]
        raise InvalidRangeError(
            f"'{key}' must be a number >= 0, got {value!r}", benchmark=name, field=key
        )
    return value  # type: ignore[return-value]


def _positive_int(value: object, key: str, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidRangeError(
            f"'{key}' must be an integer > 0, got {value!r}", benchmark=name, field=key
        )
    return value


def _duration(value: object, key: str, name: str) -> str:
    try:
        parse_duration(value)
    except ValueError as exc:
        raise InvalidRangeError(f"'{key}': {exc}", benchmark=name, field=key) from exc
    return value.strip()  # type: ignore[union-attr]


def _tool(value: object, key: str, name: str) -> BenchmarkTool:
    try:
        return BenchmarkTool(value)
    except ValueError:
        valid = ", ".join(t.value for t in BenchmarkTool)
        raise InvalidRangeError(
            f"unknown tool {value!r} in '{key}' (valid: {valid})", benchmark=name, field=key
        ) from None


# ---------------------------------------------------------------------------
# Strategy parsers
# ---------------------------------------------------------------------------


def _parse_rps(raw: Mapping[str, Any], name: str, tag: str) -> RequestsPerSecond:
    rps = _positive_number(_require(raw, "rps", name, tag), "rps", name)
    duration = _duration(_require(raw, "duration", name, tag), "duration", name)
    return RequestsPerSecond(rps=rps, duration=duration)


def _parse_fixed(raw: Mapping[str, Any], name: str, tag: str) -> FixedRequestNumber:
    requests = _positive_int(_require(raw, "requests", name, tag), "requests", name)
    return FixedRequestNumber(requests=requests)


def _parse_max_in_duration(
    raw: Mapping[str, Any], name: str, tag: str
) -> MaxRequestsInDuration:
    duration = _duration(_require(raw, "duration", name, tag), "duration", name)
    return MaxRequestsInDuration(duration=duration)


def _parse_multi_stage(raw: Mapping[str, Any], name: str, tag: str) -> MultiStage:
    initial = _non_negative_number(
        _require(raw, "initial_rps", name, tag), "initial_rps", name
    )
    stages_raw = _require(raw, "stages", name, tag)
    if not isinstance(stages_raw, list) or not stages_raw:
        raise InvalidRangeError(
            "'stages' must be a non-empty list", benchmark=name, field="stages"
        )
    stages: list[Stage] = []
    for i, st in enumerate(stages_raw):
        key = f"stages[{i}]"
        if not isinstance(st, dict):
            raise InvalidRangeError(
                f"'{key}' must be a mapping with target and duration",
                benchmark=name,
                field=key,
            )
        if st.get("target") is None:
            raise MissingFieldError(f"{key}.target", benchmark=name, strategy=tag)
        if st.get("duration") is None:
            raise MissingFieldError(f"{key}.duration", benchmark=name, strategy=tag)
        stages.append(
            Stage(
                target=_non_negative_number(st["target"], f"{key}.target", name),
                duration=_duration(st["duration"], f"{key}.duration", name),
            )
        )
    return MultiStage(initial_rps=initial, stages=tuple(stages))


# wrk2 takes command-line flags rather than a free-form options object.
WRK2_OPTION_KEYS = frozenset({"rate", "duration", "connections", "threads", "timeout"})


def _check_wrk2_options(opts: Mapping[str, Any], name: str, tag: str) -> None:
    unknown = sorted(set(opts) - WRK2_OPTION_KEYS)
    if unknown:
        raise InvalidRangeError(
            f"unknown wrk2 option(s) {', '.join(map(str, unknown))} "
            f"(valid: {', '.join(sorted(WRK2_OPTION_KEYS))})",
            benchmark=name,
            field="options.wrk2",
        )
    _positive_number(_require(opts, "rate", name, tag), "options.wrk2.rate", name)
    _duration(_require(opts, "duration", name, tag), "options.wrk2.duration", name)
    for key in ("connections", "threads"):
        if opts.get(key) is not None:
            _positive_int(opts[key], f"options.wrk2.{key}", name)
    if opts.get("timeout") is not None:
        _duration(opts["timeout"], "options.wrk2.timeout", name)


def _parse_custom(
    raw: Mapping[str, Any],
    name: str,
    tag: str,
    tools: tuple[BenchmarkTool, ...],
) -> Custom:
    options_raw = _require(raw, "options", name, tag)
    if not isinstance(options_raw, dict):
        raise InvalidRangeError(
            "'options' must be a mapping of tool name -> options",
            benchmark=name,
            field="options",
        )
    options: dict[BenchmarkTool, Mapping[str, Any]] = {}
    for key, value in options_raw.items():
        tool = _tool(key, "options", name)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise InvalidRangeError(
                f"options for '{tool.value}' must be a mapping",
                benchmark=name,
                field=f"options.{tool.value}",
            )
        options[tool] = dict(value)
    if BenchmarkTool.WRK2 in options:
        _check_wrk2_options(options[BenchmarkTool.WRK2], name, tag)
    if not any(t in options for t in tools):
        declared = ", ".join(t.value for t in tools)
        raise MissingFieldError(
            f"options.<{declared}>", benchmark=name, strategy=tag
        )
    return Custom(options=options)


_STRATEGY_PARSERS: dict[
    ExecutionStrategy, Callable[[Mapping[str, Any], str, str], Strategy]
] = {
    ExecutionStrategy.REQUESTS_PER_SECOND: _parse_rps,
    ExecutionStrategy.FIXED_REQUEST_NUMBER: _parse_fixed,
    ExecutionStrategy.MAX_REQUESTS_IN_DURATION: _parse_max_in_duration,
    ExecutionStrategy.MULTI_STAGE: _parse_multi_stage,
}


# ---------------------------------------------------------------------------
# Benchmark parsing
# ---------------------------------------------------------------------------


def parse_benchmark(raw: object) -> Benchmark:
    """Validate one raw benchmark mapping and discriminate its strategy.

    Pure validation: no tool is contacted and nothing is coerced.

    Raises:
        MissingFieldError: A common or strategy-specific field is absent.
        InvalidRangeError: A field has the wrong type or is out of range.
        UnknownStrategyError: ``execution_strategy`` is not recognized.
        UnsupportedStrategyError: A declared tool cannot run the strategy.
    """
    if not isinstance(raw, dict):
        raise InvalidRangeError(
            f"benchmark must be a mapping, got {type(raw).__name__}"
        )

    name = raw.get("name")
    if name is None:
        raise MissingFieldError("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidRangeError("'name' must be a non-empty string", field="name")
    name = name.strip()

    tag = raw.get("execution_strategy")
    if tag is None:
        raise MissingFieldError("execution_strategy", benchmark=name)
    try:
        kind = ExecutionStrategy(tag)
    except ValueError:
        raise UnknownStrategyError(tag, benchmark=name) from None

    tools_raw = raw.get("tools")
    if tools_raw is None:
        raise MissingFieldError("tools", benchmark=name)
    if not isinstance(tools_raw, list) or not tools_raw:
        raise InvalidRangeError(
            "'tools' must be a non-empty list", benchmark=name, field="tools"
        )
    tools: list[BenchmarkTool] = []
    for t in tools_raw:
        tool = _tool(t, "tools", name)
        if tool in tools:
            raise InvalidRangeError(
                f"tool '{tool.value}' is listed more than once",
                benchmark=name,
                field="tools",
            )
        tools.append(tool)

    query = raw.get("query")
    if query is None:
        raise MissingFieldError("query", benchmark=name)
    if not isinstance(query, str) or not query.strip():
        raise InvalidRangeError(
            "'query' must be a non-empty string", benchmark=name, field="query"
        )

    variables = raw.get("variables")
    if variables is not None and not isinstance(variables, dict):
        raise InvalidRangeError(
            "'variables' must be a mapping", benchmark=name, field="variables"
        )

    connections = raw.get("connections")
    if connections is not None:
        connections = _positive_int(connections, "connections", name)

    if kind is ExecutionStrategy.CUSTOM:
        strategy: Strategy = _parse_custom(raw, name, kind.value, tuple(tools))
    else:
        strategy = _STRATEGY_PARSERS[kind](raw, name, kind.value)

    for tool in tools:
        if kind not in TOOL_SUPPORT[tool]:
            raise UnsupportedStrategyError(tool.value, kind.value, benchmark=name)

    return Benchmark(
        name=name,
        tools=tuple(tools),
        query=query,
        strategy=strategy,
        variables=variables,
        connections=connections,
    )


# ---------------------------------------------------------------------------
# GlobalConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GlobalConfig:
    """Shared, immutable configuration for one benchmark session.

    ``queries`` holds only benchmarks that parsed cleanly; definitions
    that failed validation are kept in ``rejected`` so they can be
    reported without blocking their siblings.
    """

    url: str
    queries: tuple[Benchmark, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict)
    execution_mode: ExecutionMode = ExecutionMode.SYNC
    extended_hasura_checks: bool = False
    debug: bool = False
    stop_on_failure: bool = False
    timeout: float = 600.0  # For runs without a known duration
    timeout_grace: float = 30.0  # Added to a run's expected duration
    histogram: HistogramPolicy = field(default_factory=HistogramPolicy)
    precision: PrecisionConfig = field(default_factory=PrecisionConfig)
    drift_threshold: float = 0.10
    rejected: tuple[ConfigError, ...] = ()
    progress: ProgressSink | None = field(default=None, compare=False, repr=False)

    def run_timeout(self, benchmark: Benchmark) -> float:
        """Upper bound in seconds for one tool run of *benchmark*."""
        expected = benchmark.expected_duration_s
        if expected is None:
            return self.timeout
        return expected + self.timeout_grace

    def to_dict(self) -> dict[str, Any]:
        """Serialize the settings recorded alongside a report."""
        return {
            "url": self.url,
            "execution_mode": self.execution_mode.value,
            "extended_hasura_checks": self.extended_hasura_checks,
            "debug": self.debug,
            "stop_on_failure": self.stop_on_failure,
            "timeout": self.timeout,
            "timeout_grace": self.timeout_grace,
            "histogram": self.histogram.to_dict(),
            "precision": self.precision.to_dict(),
            "drift_threshold": self.drift_threshold,
            "queries": [b.to_dict() for b in self.queries],
        }


def _parse_histogram_policy(raw: object) -> HistogramPolicy:
    if raw is None:
        return HistogramPolicy()
    if not isinstance(raw, dict):
        raise InvalidRangeError("'histogram' must be a mapping", field="histogram")
    try:
        boundaries = raw.get("boundaries")
        return HistogramPolicy(
            lower_bound=raw.get("lower_bound", 0.0),
            upper_bound=raw.get("upper_bound", 10_000.0),
            bucket_count=raw.get("bucket_count", 50),
            boundaries=tuple(boundaries) if boundaries is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise InvalidRangeError(f"invalid histogram policy: {exc}", field="histogram") from exc


def _parse_precision(raw: object) -> PrecisionConfig:
    if raw is None:
        return PrecisionConfig()
    if not isinstance(raw, dict):
        raise InvalidRangeError("'precision' must be a mapping", field="precision")
    try:
        return PrecisionConfig(
            significant_digits=raw.get("significant_digits", 3),
            unit_scale=raw.get("unit_scale", 1000),
            highest_trackable_value=raw.get("highest_trackable_value", 60_000.0),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidRangeError(f"invalid precision: {exc}", field="precision") from exc


def _flag(raw: Mapping[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidRangeError(f"'{key}' must be true or false, got {value!r}", field=key)
    return value


def _seconds(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    if not _is_number(value) or value < 0:
        raise InvalidRangeError(f"'{key}' must be a number >= 0, got {value!r}", field=key)
    return float(value)


def parse_global_config(
    raw: object,
    *,
    overrides: Mapping[str, Any] | None = None,
) -> GlobalConfig:
    """Build a GlobalConfig from a parsed config mapping.

    Every benchmark is parsed independently; failures are collected in
    ``GlobalConfig.rejected`` rather than raised.  Problems with the
    shared settings (url, headers, mode, policies) are raised as
    ConfigError because they affect every benchmark.

    Args:
        raw: The parsed YAML mapping.
        overrides: CLI values that take precedence over the file for
            ``execution_mode``, ``stop_on_failure`` and ``debug``.
    """
    if not isinstance(raw, dict):
        raise InvalidRangeError(f"config must be a mapping, got {type(raw).__name__}")
    cli = {k: v for k, v in (overrides or {}).items() if v is not None}

    url = raw.get("url")
    if url is None:
        raise MissingFieldError("url")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        raise InvalidRangeError(f"'url' must be an http(s) URL, got {url!r}", field="url")

    headers = raw.get("headers") or {}
    if not isinstance(headers, dict):
        raise InvalidRangeError("'headers' must be a mapping", field="headers")
    headers = {str(k): str(v) for k, v in headers.items()}

    mode_raw = cli.get("execution_mode", raw.get("execution_mode", ExecutionMode.SYNC.value))
    try:
        mode = ExecutionMode(mode_raw)
    except ValueError:
        raise InvalidRangeError(
            f"'execution_mode' must be ASYNC or SYNC, got {mode_raw!r}",
            field="execution_mode",
        ) from None

    drift = raw.get("drift_threshold", 0.10)
    if not _is_number(drift) or drift <= 0:
        raise InvalidRangeError(
            f"'drift_threshold' must be a number > 0, got {drift!r}", field="drift_threshold"
        )

    queries_raw = raw.get("queries")
    if queries_raw is None:
        raise MissingFieldError("queries")
    if not isinstance(queries_raw, list):
        raise InvalidRangeError("'queries' must be a list", field="queries")

    queries: list[Benchmark] = []
    rejected: list[ConfigError] = []
    for i, entry in enumerate(queries_raw):
        try:
            queries.append(parse_benchmark(entry))
        except ConfigError as exc:
            if not exc.benchmark:
                exc.benchmark = f"queries[{i}]"
            log.error("Invalid benchmark: %s", exc)
            rejected.append(exc)

    return GlobalConfig(
        url=url,
        queries=tuple(queries),
        headers=headers,
        execution_mode=mode,
        extended_hasura_checks=_flag(raw, "extended_hasura_checks", False),
        debug=bool(cli["debug"]) if "debug" in cli else _flag(raw, "debug", False),
        stop_on_failure=(
            bool(cli["stop_on_failure"])
            if "stop_on_failure" in cli
            else _flag(raw, "stop_on_failure", False)
        ),
        timeout=_seconds(raw, "timeout", 600.0),
        timeout_grace=_seconds(raw, "timeout_grace", 30.0),
        histogram=_parse_histogram_policy(raw.get("histogram")),
        precision=_parse_precision(raw.get("precision")),
        drift_threshold=float(drift),
        rejected=tuple(rejected),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation problem."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"
    benchmark: str = ""


def validate_config(config: GlobalConfig) -> list[ValidationError]:
    """Validate a GlobalConfig as a whole.

    Returns a list of validation errors.  Empty list means valid.
    Rejected benchmarks are reported as errors; in SYNC mode with
    ``stop_on_failure`` they block the whole run.
    """
    errors: list[ValidationError] = []

    for exc in config.rejected:
        errors.append(
            ValidationError(
                field=getattr(exc, "field", "") or "queries",
                message=exc.message,
                benchmark=exc.benchmark,
            )
        )

    if not config.queries and not config.rejected:
        errors.append(
            ValidationError(
                field="queries",
                message="No benchmarks defined. Add at least one entry under 'queries'.",
            )
        )

    seen: set[str] = set()
    for bench in config.queries:
        if bench.name in seen:
            errors.append(
                ValidationError(
                    field="name",
                    message=f"Duplicate benchmark name '{bench.name}'; reports will be ambiguous.",
                    severity="warning",
                    benchmark=bench.name,
                )
            )
        seen.add(bench.name)
        for tool in bench.tools_without_options:
            errors.append(
                ValidationError(
                    field=f"options.{tool.value}",
                    message=f"No CUSTOM options for '{tool.value}'; this tool will not be run.",
                    severity="warning",
                    benchmark=bench.name,
                )
            )

    if config.extended_hasura_checks and config.execution_mode is ExecutionMode.ASYNC:
        errors.append(
            ValidationError(
                field="extended_hasura_checks",
                message=(
                    "Memory statistics are per-process; concurrent benchmarks "
                    "will see each other's allocations in ASYNC mode."
                ),
                severity="warning",
            )
        )

    return errors


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a benchmark configuration file.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not a YAML mapping.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a YAML mapping, got {type(data).__name__}")
    return data


def load_config(
    path: Path,
    *,
    overrides: Mapping[str, Any] | None = None,
) -> GlobalConfig:
    """Load and parse a configuration file into a GlobalConfig."""
    return parse_global_config(load_config_file(path), overrides=overrides)

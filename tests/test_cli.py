"""Tests for querybench.cli: the run, validate and show commands."""

from __future__ import annotations

import json
import logging
import tempfile
import textwrap
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import patch

from bench_test_helpers import FakeAdapter, FakeScript, make_metrics
from click.testing import CliRunner

from querybench import __version__
from querybench.bench.config import ExecutionMode, GlobalConfig
from querybench.bench.errors import ProcessFailedError
from querybench.bench.progress import JsonLinesSink
from querybench.bench.results import BenchReport, RunFailure, save_report
from querybench.bench.runner import BenchmarkRunner
from querybench.cli import main

VALID_CONFIG = """\
url: http://localhost:8080/v1/graphql
headers:
  X-Hasura-Admin-Secret: s3cret
queries:
  - name: SearchAlbums
    tools: [k6, wrk2]
    execution_strategy: REQUESTS_PER_SECOND
    rps: 100
    duration: 1s
    query: "query SearchAlbums { albums { title } }"
  - name: ListTracks
    tools: [autocannon]
    execution_strategy: FIXED_REQUEST_NUMBER
    requests: 50
    query: "query ListTracks { tracks { name } }"
"""

INVALID_BENCHMARK = """\
url: http://localhost:8080/v1/graphql
queries:
  - name: NoRate
    tools: [k6]
    execution_strategy: REQUESTS_PER_SECOND
    duration: 1s
    query: "query { a }"
"""


class CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)

    def tearDown(self) -> None:
        # setup_logging attaches handlers to CliRunner's streams.
        logging.getLogger("querybench").handlers.clear()
        self._tmp.cleanup()

    def write(self, name: str, text: str) -> Path:
        path = self.tmpdir / name
        path.write_text(textwrap.dedent(text))
        return path


class TestHelp(CliTestCase):
    def test_group_help(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        self.assertEqual(result.exit_code, 0)
        for command in ("run", "validate", "show"):
            self.assertIn(command, result.output)

    def test_run_help(self) -> None:
        result = CliRunner().invoke(main, ["run", "--help"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("--mode", result.output)
        self.assertIn("--stop-on-failure", result.output)
        self.assertIn("--stream-progress", result.output)

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, result.output)


class TestValidate(CliTestCase):
    def test_valid_config(self) -> None:
        path = self.write("bench.yaml", VALID_CONFIG)
        result = CliRunner().invoke(main, ["validate", str(path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Configuration is valid.", result.output)
        self.assertIn("2 benchmark(s), 3 tool run(s).", result.output)

    def test_invalid_benchmark(self) -> None:
        path = self.write("bench.yaml", INVALID_BENCHMARK)
        result = CliRunner().invoke(main, ["validate", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("ERROR", result.output)
        self.assertIn("rps", result.output)
        self.assertIn("0 benchmark(s)", result.output)

    def test_invalid_shared_settings(self) -> None:
        path = self.write("bench.yaml", "queries: []\n")
        result = CliRunner().invoke(main, ["validate", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid config:", result.output)
        self.assertIn("url", result.output)

    def test_not_a_mapping(self) -> None:
        path = self.write("bench.yaml", "- just\n- a list\n")
        result = CliRunner().invoke(main, ["validate", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("YAML mapping", result.output)

    def test_missing_file(self) -> None:
        result = CliRunner().invoke(main, ["validate", str(self.tmpdir / "nope.yaml")])
        self.assertNotEqual(result.exit_code, 0)


class TestShow(CliTestCase):
    def _save(self) -> Path:
        report = BenchReport(
            started_at="2023-11-14T22:13:20.000Z",
            ended_at="2023-11-14T22:13:40.000Z",
            config={"execution_mode": "SYNC"},
            metrics=[make_metrics("SearchAlbums", "k6")],
            failures=[RunFailure("Bad", "config", "invalid", "missing required field 'rps'")],
        )
        path = self.tmpdir / "report.json"
        save_report(path, report)
        return path

    def test_show(self) -> None:
        result = CliRunner().invoke(main, ["show", str(self._save())])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("querybench report", result.output)
        self.assertIn("─── SearchAlbums [k6]", result.output)
        self.assertIn("missing required field 'rps'", result.output)

    def test_show_summary(self) -> None:
        result = CliRunner().invoke(main, ["show", str(self._save()), "--summary"])
        self.assertEqual(result.exit_code, 0)
        self.assertNotIn("─── SearchAlbums [k6]", result.output)

    def test_show_missing(self) -> None:
        result = CliRunner().invoke(main, ["show", str(self.tmpdir / "missing.json")])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("No report at", result.output)

    def test_show_not_a_report(self) -> None:
        path = self.tmpdir / "other.json"
        path.write_text(json.dumps({"packages": []}))
        result = CliRunner().invoke(main, ["show", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("not a querybench report", result.output)


class TestRun(CliTestCase):
    def _invoke(
        self, scripts: dict[str, FakeScript], *args: str
    ) -> tuple[Any, list[GlobalConfig], Path]:
        configs: list[GlobalConfig] = []

        def make_runner(config: GlobalConfig, **kwargs: Any) -> BenchmarkRunner:
            configs.append(config)
            return BenchmarkRunner(
                config, adapter_factory=lambda tool: FakeAdapter(scripts), **kwargs
            )

        config_path = self.write("bench.yaml", VALID_CONFIG)
        output = self.tmpdir / "out" / "report.json"
        with patch("querybench.bench.runner.BenchmarkRunner", side_effect=make_runner):
            result = CliRunner().invoke(
                main, ["run", str(config_path), "--output", str(output), *args]
            )
        return result, configs, output

    def test_successful_run(self) -> None:
        scripts = {
            "SearchAlbums": FakeScript([float(v) for v in range(1, 51)]),
            "ListTracks": FakeScript([5.0, 6.0, 7.0]),
        }
        result, configs, output = self._invoke(scripts)
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("querybench report", result.output)
        self.assertIn(f"Report saved to: {output}", result.output)
        data = json.loads(output.read_text())
        self.assertEqual(
            [(m["name"], m["tool"]) for m in data["metrics"]],
            [("SearchAlbums", "k6"), ("SearchAlbums", "wrk2"), ("ListTracks", "autocannon")],
        )
        self.assertEqual(configs[0].execution_mode, ExecutionMode.SYNC)
        self.assertEqual(configs[0].headers, {"X-Hasura-Admin-Secret": "s3cret"})

    def test_failed_run_exits_nonzero(self) -> None:
        scripts = {
            "SearchAlbums": FakeScript([1.0, 2.0], error=ProcessFailedError(1, tool="k6")),
            "ListTracks": FakeScript([5.0]),
        }
        result, _, output = self._invoke(scripts, "--stop-on-failure")
        self.assertEqual(result.exit_code, 1)
        data = json.loads(output.read_text())
        self.assertEqual([f["status"] for f in data["failures"]], ["failed", "skipped", "skipped"])

    def test_cli_overrides(self) -> None:
        scripts = {"SearchAlbums": FakeScript([1.0]), "ListTracks": FakeScript([1.0])}
        result, configs, _ = self._invoke(scripts, "--mode", "async", "--stop-on-failure", "-q")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(configs[0].execution_mode, ExecutionMode.ASYNC)
        self.assertTrue(configs[0].stop_on_failure)
        # Quiet mode leaves out the per-run detail.
        self.assertNotIn("─── SearchAlbums [k6]", result.output)

    def test_stream_progress(self) -> None:
        scripts = {"SearchAlbums": FakeScript([1.0]), "ListTracks": FakeScript([1.0])}
        result, configs, _ = self._invoke(scripts, "--stream-progress")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIsInstance(configs[0].progress, JsonLinesSink)
        self.assertIn('"event":"session_started"', result.output)

    def test_log_file(self) -> None:
        scripts = {"SearchAlbums": FakeScript([1.0]), "ListTracks": FakeScript([1.0])}
        log_file = self.tmpdir / "run.log"
        result, _, _ = self._invoke(scripts, "--log-file", str(log_file))
        self.assertEqual(result.exit_code, 0, result.output)
        logging.getLogger("querybench").handlers.clear()
        self.assertIn("Session finished", log_file.read_text())

    def test_invalid_config(self) -> None:
        config_path = self.write("bench.yaml", "url: ftp://example.com\nqueries: []\n")
        result = CliRunner().invoke(main, ["run", str(config_path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid config:", result.output)


if __name__ == "__main__":
    unittest.main()

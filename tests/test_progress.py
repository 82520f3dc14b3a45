"""Tests for querybench.bench.progress."""

from __future__ import annotations

import io
import json
import unittest

from querybench.bench.progress import (
    RUN_FINISHED,
    SESSION_STARTED,
    JsonLinesSink,
    ProgressEvent,
    null_sink,
)


class TestProgressEvent(unittest.TestCase):
    def test_to_dict_merges_data(self) -> None:
        event = ProgressEvent(
            RUN_FINISHED, benchmark="SearchAlbums", tool="k6", data={"count": 10}
        )
        d = event.to_dict()
        self.assertEqual(d["event"], "run_finished")
        self.assertEqual(d["benchmark"], "SearchAlbums")
        self.assertEqual(d["tool"], "k6")
        self.assertEqual(d["count"], 10)
        self.assertTrue(d["timestamp"].endswith("Z"))

    def test_session_event_omits_run_fields(self) -> None:
        d = ProgressEvent(SESSION_STARTED, data={"runs": 2}).to_dict()
        self.assertNotIn("benchmark", d)
        self.assertNotIn("tool", d)


class TestJsonLinesSink(unittest.TestCase):
    def test_one_line_per_event(self) -> None:
        stream = io.StringIO()
        sink = JsonLinesSink(stream)
        sink(ProgressEvent(SESSION_STARTED, data={"runs": 2}))
        sink(ProgressEvent(RUN_FINISHED, benchmark="A", tool="wrk2"))
        lines = stream.getvalue().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertEqual(json.loads(lines[0])["runs"], 2)
        self.assertEqual(json.loads(lines[1])["tool"], "wrk2")

    def test_null_sink_accepts_events(self) -> None:
        self.assertIsNone(null_sink(ProgressEvent(SESSION_STARTED)))


if __name__ == "__main__":
    unittest.main()

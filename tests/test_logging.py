"""Tests for querybench.logging."""

from __future__ import annotations

import logging
import tempfile
import unittest
from pathlib import Path

from querybench.logging import get_logger, setup_logging


def _shown(logger: logging.Logger, name: str, level: int) -> bool:
    """Whether the console handler would emit a record from *name* at *level*."""
    console = logger.handlers[0]
    record = logging.LogRecord(name, level, __file__, 1, "message", None, None)
    return bool(console.filter(record))


class TestSetupLogging(unittest.TestCase):
    def tearDown(self) -> None:
        logger = logging.getLogger("querybench")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_default_info(self) -> None:
        logger = setup_logging()
        self.assertEqual(logger.name, "querybench")
        self.assertTrue(_shown(logger, "querybench.runner", logging.INFO))
        self.assertFalse(_shown(logger, "querybench.runner", logging.DEBUG))

    def test_verbose_wins_over_quiet(self) -> None:
        logger = setup_logging(verbose=True, quiet=True)
        self.assertTrue(_shown(logger, "querybench.runner", logging.DEBUG))

    def test_quiet(self) -> None:
        logger = setup_logging(quiet=True)
        self.assertFalse(_shown(logger, "querybench.runner", logging.INFO))
        self.assertTrue(_shown(logger, "querybench.runner", logging.WARNING))

    def test_tool_output_only_for_tools(self) -> None:
        logger = setup_logging(quiet=True, tool_output=True)
        self.assertTrue(_shown(logger, "querybench.tools", logging.DEBUG))
        self.assertFalse(_shown(logger, "querybench.runner", logging.DEBUG))
        self.assertFalse(_shown(logger, "querybench.runner", logging.INFO))

    def test_reconfigure_replaces_handlers(self) -> None:
        setup_logging()
        logger = setup_logging(verbose=True)
        self.assertEqual(len(logger.handlers), 1)

    def test_log_file_gets_debug(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "querybench.log"
            logger = setup_logging(quiet=True, log_file=path)
            get_logger("tools").debug("k6: running")
            for handler in logger.handlers:
                handler.flush()
            self.assertIn("querybench.tools: k6: running", path.read_text())
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()


class TestGetLogger(unittest.TestCase):
    def test_child_of_package_logger(self) -> None:
        self.assertEqual(get_logger("runner").name, "querybench.runner")
        self.assertIs(get_logger("runner").parent, logging.getLogger("querybench"))


if __name__ == "__main__":
    unittest.main()

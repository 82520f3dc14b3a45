"""Logging setup for querybench.

All modules log under the ``querybench`` namespace.  The console shows
INFO and above by default; tool adapters log every line a load generator
prints at DEBUG under ``querybench.tools``, which a config's ``debug``
flag lets through to the console without enabling DEBUG everywhere.
"""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "querybench"
_TOOLS_LOGGER = f"{_LOGGER_NAME}.tools"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"


class _ConsoleFilter(logging.Filter):
    """Pass records at *level* and above, plus tool output if requested."""

    def __init__(self, level: int, tool_output: bool) -> None:
        super().__init__()
        self.level = level
        self.tool_output = tool_output

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self.level:
            return True
        return self.tool_output and record.name.startswith(_TOOLS_LOGGER)


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    tool_output: bool = False,
) -> logging.Logger:
    """Configure and return the ``querybench`` logger.

    Calling it again replaces the handlers of the previous call.

    Args:
        verbose: Show DEBUG records on the console.
        quiet: Only show warnings and errors. Ignored if *verbose* is set.
        log_file: Also write every record, at DEBUG, to this file.
        tool_output: Show the DEBUG lines of ``querybench.tools`` even when
            the console is at INFO or WARNING.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG)
    console.addFilter(_ConsoleFilter(level, tool_output))
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``querybench.<name>``."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")

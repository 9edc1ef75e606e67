# src/notnow/logging_setup.py

"""
Logging for the notnow command.

stderr shows what the user asked about: notnow's own records at the chosen
level, everything else only at ERROR+. notnow.log in the log directory gets
every record, which is what load problems and save failures are debugged from.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "notnow.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _ConsoleNoiseFilter(logging.Filter):
    """Pass notnow.* records; foreign records (py.warnings included) need `foreign_level`."""

    def __init__(self, foreign_level: int = logging.ERROR) -> None:
        super().__init__()
        self.foreign_level = foreign_level

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "notnow" or record.name.startswith("notnow."):
            return True
        return record.levelno >= self.foreign_level


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(handler)


def setup_logging(
    *,
    log_dir: str | Path = ".local/notnow",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install the stderr and notnow.log handlers on the root logger.

    Replaces any handlers already there, so calling it twice does not double
    the output. Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler(sys.stderr)
    console.addFilter(_ConsoleNoiseFilter())
    _attach(root, console, console_level)
    _attach(root, logging.FileHandler(str(log_file), encoding="utf-8"), file_level)

    # warnings.warn(...) arrives as 'py.warnings'
    logging.captureWarnings(True)
    return log_file

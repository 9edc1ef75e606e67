# src/notnow/cli/main.py

"""
CLI entrypoint.

Initializes logging, opens the configured task database, reports what was
loaded (load problems plus one line per view) and closes it again. The exit
code tells a wrapper script whether the database is healthy:

- 0: opened cleanly
- 1: opened, but some records could not be loaded
- 2: another instance holds the lock
- 3: the database could not be opened (I/O error)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from ..config import get_settings
from ..errors import AlreadyRunning, StoreIoError
from ..logging_setup import setup_logging
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_LOAD_PROBLEMS = 1
EXIT_ALREADY_RUNNING = 2
EXIT_IO_ERROR = 3


def check_database(settings: Any) -> int:
    config_dir = settings.config_dir
    try:
        store = TaskStore.open(
            config_dir,
            force=bool(getattr(settings, "force", False)),
            undo_depth=int(getattr(settings, "undo_depth", 0)),
            read_only_files=bool(getattr(settings, "read_only_files", True)),
        )
    except AlreadyRunning as exc:
        logger.error("%s", exc)
        return EXIT_ALREADY_RUNNING
    except StoreIoError:
        logger.exception("Failed to open task database at %s", config_dir)
        return EXIT_IO_ERROR

    with store:
        for problem in store.report:
            logger.warning("Load problem: %s: %s", problem.path, problem.reason)

        for name in store.view_names():
            tasks = store.view_tasks(name)
            done = sum(1 for t in tasks if t.complete)
            logger.info("View %r: %s task(s), %s complete", name, len(tasks), done)

        logger.info(
            "Database %s: %s task(s), %s tag(s), %s problem(s)",
            config_dir,
            len(store.tasks()),
            len(store.tags),
            len(store.report),
        )
        return EXIT_OK if store.report.ok else EXIT_LOAD_PROBLEMS


def main(settings: Any = None) -> int:
    settings = settings if settings is not None else get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "log_dir", ".local/notnow")
    try:
        setup_logging(log_dir=log_dir, console_level=console_level)
    except OSError as exc:
        print(f"notnow: cannot set up logging in {log_dir}: {exc}", file=sys.stderr)
        return EXIT_IO_ERROR

    return check_database(settings)


if __name__ == "__main__":
    sys.exit(main())

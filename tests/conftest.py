# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from notnow.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the CLI and the store.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment.
    """
    return SimpleNamespace(
        log_level="DEBUG",
        log_dir=tmp_path / "logs",
        config_dir=tmp_path / "notnow",
        force=False,
        undo_depth=0,
        read_only_files=True,
    )


@pytest.fixture()
def config_dir(settings: SimpleNamespace) -> Path:
    return settings.config_dir


@pytest.fixture()
def store(config_dir: Path) -> Iterator[TaskStore]:
    """A freshly opened store on an empty config root; closed after the test."""
    s = TaskStore.open(config_dir)
    try:
        yield s
    finally:
        s.close()

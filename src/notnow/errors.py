# src/notnow/errors.py

"""
Error taxonomy of the task database.

- StoreIoError: filesystem trouble (fatal for open, retryable for save)
- AlreadyRunning: another instance holds the lock file
- DecodeError / MalformedRecord: a persisted record could not be read
- InvalidOperation: a request that is refused without touching any state
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class NotNowError(Exception):
    """Base class of all errors raised by the task database."""


class StoreIoError(NotNowError, OSError):
    """An I/O operation on the task directory failed."""


class SaveError(StoreIoError):
    """Some records could not be written; they stay dirty in memory."""

    def __init__(self, failed: Iterable[tuple[Path, OSError]]) -> None:
        self.failed = list(failed)
        paths = ", ".join(str(p) for p, _ in self.failed)
        super().__init__(f"failed to save {len(self.failed)} record(s): {paths}")


class AlreadyRunning(NotNowError):
    """The task directory is locked by another instance."""

    def __init__(self, lock_path: Path) -> None:
        self.lock_path = lock_path
        super().__init__(f"another instance is already running (lock: {lock_path})")


class DecodeError(NotNowError):
    """A persisted record could not be converted into objects."""


class MalformedRecord(DecodeError):
    """The record is structurally broken or lacks a required field."""


class InvalidOperation(NotNowError):
    """A refused request; state is left untouched."""


class NothingToUndo(InvalidOperation):
    def __init__(self) -> None:
        super().__init__("nothing to undo")


class NothingToRedo(InvalidOperation):
    def __init__(self) -> None:
        super().__init__("nothing to redo")


class UnknownTask(InvalidOperation):
    def __init__(self, task_id: object) -> None:
        self.task_id = task_id
        super().__init__(f"no task with id {task_id}")


class UnknownView(InvalidOperation):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"no view named {name!r}")


class DuplicateView(InvalidOperation):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"a view named {name!r} already exists")

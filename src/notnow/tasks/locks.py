# src/notnow/tasks/locks.py

from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path
from typing import IO

from ..errors import AlreadyRunning, StoreIoError

logger = logging.getLogger(__name__)


class InstanceLock:
    """
    Exclusive, non-blocking instance lock on a file (`fcntl.flock`).

    Prevents two processes from working on the same config root. `force=True`
    takes the lock over: the lock file is replaced by a new one (new inode)
    which is then locked, so the previous holder keeps a lock on a file that
    is no longer reachable. On release the file is only removed while it is
    still the one we locked.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self, force: bool = False) -> None:
        if self._handle is not None:
            return
        try:
            import fcntl  # type: ignore
        except ModuleNotFoundError:
            raise RuntimeError("Instance locks require fcntl (not available on this platform).") from None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if force:
                with contextlib.suppress(FileNotFoundError):
                    self.path.unlink()
                    logger.warning("Taking over instance lock %s", self.path)
            handle = self.path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise StoreIoError(f"failed to open lock file {self.path}: {exc}") from exc

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            handle.close()
            raise AlreadyRunning(self.path) from exc

        with contextlib.suppress(OSError):
            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()

        self._handle = handle
        logger.debug("Acquired instance lock %s", self.path)

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None

        if self._owns_path(handle):
            with contextlib.suppress(FileNotFoundError):
                self.path.unlink()
        else:
            logger.info("Lock file %s was taken over; leaving it in place", self.path)

        try:
            import fcntl  # type: ignore

            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError:
            logger.debug("Failed to unlock %s", self.path, exc_info=True)
        finally:
            handle.close()
        logger.debug("Released instance lock %s", self.path)

    def _owns_path(self, handle: IO[str]) -> bool:
        try:
            ours = os.fstat(handle.fileno())
            current = os.stat(self.path)
        except OSError:
            return False
        return (ours.st_dev, ours.st_ino) == (current.st_dev, current.st_ino)

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

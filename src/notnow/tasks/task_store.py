# src/notnow/tasks/task_store.py

"""
File-backed task database (Vdir layout).

Layout below the config root:
- notnow.json    views, colors, toggle tag
- ui-state.json  selected view and per-view selection (a cache)
- tasks/         one iCalendar file per task, named by UUID, plus the
                 metadata record named by the all-zero UUID
- notnow.lock    instance lock, held while the store is open

The store is the only place that touches the filesystem. All mutations go
through the undo log; `save()` writes just what changed since the last save.
"""

from __future__ import annotations

import contextlib
import logging
import os
import stat
import weakref
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import (
    DecodeError,
    DuplicateView,
    InvalidOperation,
    SaveError,
    StoreIoError,
    UnknownTask,
)
from .ical import decode_task, encode_task, normalize_newlines, utc_now_stamp
from .locks import InstanceLock
from .meta import (
    TasksMeta,
    UiConfig,
    UiState,
    ViewConfig,
    config_to_json,
    decode_meta,
    encode_meta,
    load_config,
    load_ui_state,
    ui_state_to_json,
)
from .ordering import TaskId
from .tags import TASKS_META_ID, TagRegistry, new_id, normalize_tag
from .task_models import Polarity, TagLit, Task
from .task_state import TASK_FIELDS, TaskState
from .undo import (
    AddTask,
    AddView,
    MoveTask,
    MoveView,
    Op,
    PasteTask,
    RemoveTask,
    RemoveView,
    RenameView,
    UndoLog,
    UpdateTask,
)
from .views import DEFAULT_VIEW_NAME, View, recompute_membership

logger = logging.getLogger(__name__)

CONFIG_FILE = "notnow.json"
UI_STATE_FILE = "ui-state.json"
TASKS_DIR = "tasks"
LOCK_FILE = "notnow.lock"


@dataclass(frozen=True, slots=True)
class LoadProblem:
    path: Path
    reason: str


@dataclass(slots=True)
class LoadReport:
    """Non-fatal problems found while opening the database."""

    loaded: int = 0
    problems: list[LoadProblem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def add(self, path: Path, reason: str) -> None:
        logger.warning("Skipping %s: %s", path, reason)
        self.problems.append(LoadProblem(path, reason))

    def __iter__(self) -> Iterator[LoadProblem]:
        return iter(self.problems)

    def __len__(self) -> int:
        return len(self.problems)


def _close_resources(lock: InstanceLock, read_only: dict[Path, int]) -> None:
    for path, mode in list(read_only.items()):
        try:
            os.chmod(path, mode)
        except FileNotFoundError:
            pass
        except OSError:
            logger.debug("Failed to restore permissions of %s", path, exc_info=True)
    read_only.clear()
    lock.release()


class TaskStore:
    """
    An open task database.

    Use `TaskStore.open(...)`; the instance holds the lock until `close()`
    (or until it is garbage collected). Queries hand out copies of tasks, so
    changes always go through one of the mutation methods.
    """

    def __init__(self, config_dir: Path, *, undo_depth: int = 0, read_only_files: bool = True) -> None:
        self.root = Path(config_dir)
        self.config_path = self.root / CONFIG_FILE
        self.ui_state_path = self.root / UI_STATE_FILE
        self.tasks_dir = self.root / TASKS_DIR
        self.lock_path = self.root / LOCK_FILE

        self.report = LoadReport()
        self._state = TaskState()
        self._undo = UndoLog(undo_depth)
        self._lock = InstanceLock(self.lock_path)
        self._read_only_files = read_only_files
        # modes to restore on close for files we made read-only
        self._read_only: dict[Path, int] = {}
        self._paths: dict[TaskId, Path] = {}
        self._colors: dict[str, str] = {}
        self._toggle_tag: str | None = None
        self._clipboard: Task | None = None
        self._closed = False
        self._finalizer = weakref.finalize(self, _close_resources, self._lock, self._read_only)

    @classmethod
    def open(
        cls,
        config_dir: str | Path,
        *,
        force: bool = False,
        undo_depth: int = 0,
        read_only_files: bool = True,
    ) -> TaskStore:
        store = cls(Path(config_dir), undo_depth=undo_depth, read_only_files=read_only_files)
        try:
            store.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            store._closed = True
            raise StoreIoError(f"failed to create {store.root}: {exc}") from exc

        store._lock.acquire(force=force)
        try:
            store._load()
        except BaseException:
            store.close()
            raise
        return store

    # ---- lifecycle ----

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._finalizer()
        logger.info("TaskStore closed root=%s", self.root)

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> TaskStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---- loading ----

    def _load(self) -> None:
        try:
            self.tasks_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreIoError(f"failed to create {self.tasks_dir}: {exc}") from exc

        config, config_present = load_config(self.config_path)
        self._colors = dict(config.colors)
        self._toggle_tag = config.toggle_tag

        meta, meta_present = self._load_meta()
        tasks = self._load_tasks()

        listed = [tasks.pop(i) for i in dict.fromkeys(meta.ids) if i in tasks]
        rest = sorted(tasks.values(), key=lambda t: self._paths[t.id].name)

        view_configs = config.views or [ViewConfig(DEFAULT_VIEW_NAME)]
        tags = TagRegistry(meta.tags)
        for vc in view_configs:
            for lit in vc.lits:
                tags.register_tag(lit.tag)
        if self._toggle_tag:
            tags.register_tag(self._toggle_tag)

        self._state = state = TaskState(
            [*listed, *rest],
            tags=tags,
            views=[View(name=vc.name, lits=vc.lits) for vc in view_configs],
        )

        orders_changed = False
        for view in state.views:
            for task_id in meta.orders.get(view.name, []):
                task = state.tasks.get(task_id)
                if task is not None and task_id not in view.order and view.matches(task):
                    view.order.append(task_id)
            if recompute_membership(view, state.tasks, state.order):
                orders_changed = True

        state.meta_changed = (
            not meta_present or orders_changed or bool(rest) or len(listed) != len(meta.ids)
        )
        state.config_changed = not config_present or not config.views
        self._restore_ui_state(load_ui_state(self.ui_state_path))

        if self._read_only_files:
            for path in [*self._paths.values(), self.tasks_dir / str(TASKS_META_ID), self.config_path]:
                self._make_read_only(path)

        self.report.loaded = len(state.tasks)
        logger.info(
            "TaskStore ready root=%s tasks=%s views=%s problems=%s",
            self.root,
            len(state.tasks),
            len(state.views),
            len(self.report),
        )

    def _load_meta(self) -> tuple[TasksMeta, bool]:
        path = self.tasks_dir / str(TASKS_META_ID)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return TasksMeta(), False
        except OSError as exc:
            self.report.add(path, f"unreadable metadata record: {exc}")
            return TasksMeta(), False
        try:
            return decode_meta(raw), True
        except DecodeError as exc:
            self.report.add(path, str(exc))
            return TasksMeta(), False

    def _load_tasks(self) -> dict[TaskId, Task]:
        try:
            entries = sorted(self.tasks_dir.iterdir())
        except OSError as exc:
            raise StoreIoError(f"failed to list {self.tasks_dir}: {exc}") from exc

        tasks: dict[TaskId, Task] = {}
        for path in entries:
            name = path.name
            if name.startswith(".") or name == str(TASKS_META_ID) or not path.is_file():
                continue
            try:
                raw = path.read_bytes()
            except OSError as exc:
                self.report.add(path, f"unreadable: {exc}")
                continue
            try:
                task = decode_task(raw)
            except DecodeError as exc:
                self.report.add(path, str(exc))
                continue
            if task.id == TASKS_META_ID:
                self.report.add(path, "task uses the reserved metadata id")
                continue
            if task.id in tasks:
                self.report.add(path, f"duplicate UID {task.id} (already loaded from {self._paths[task.id].name})")
                continue
            tasks[task.id] = task
            self._paths[task.id] = path
        return tasks

    def _restore_ui_state(self, ui: UiState) -> None:
        state = self._state
        if ui.selected_view is not None and ui.selected_view in state.views:
            state.selected_view = state.views.index(ui.selected_view)
        for view in state.views:
            view.selected = ui.selected_tasks.get(view.name, 0)
            view.clamp_selection()

    # ---- queries ----

    @property
    def tags(self) -> TagRegistry:
        return self._state.tags

    @property
    def colors(self) -> dict[str, str]:
        return dict(self._colors)

    @property
    def toggle_tag(self) -> str | None:
        return self._toggle_tag

    @property
    def can_undo(self) -> bool:
        return self._undo.can_undo

    @property
    def can_redo(self) -> bool:
        return self._undo.can_redo

    @property
    def is_dirty(self) -> bool:
        """True while there are changes that `save()` has not persisted."""
        return self._state.has_unsaved_changes

    def get_task(self, task_id: TaskId) -> Task:
        return self._state.get(task_id).copy()

    def tasks(self) -> list[Task]:
        return [t.copy() for t in self._state.ordered_tasks()]

    def view_names(self) -> list[str]:
        return self._state.views.names()

    def views(self) -> list[ViewConfig]:
        return [ViewConfig(v.name, v.lits) for v in self._state.views]

    def view_tasks(self, name: str) -> list[Task]:
        return [t.copy() for t in self._state.view_tasks(name)]

    def view_literals(self, name: str) -> tuple[TagLit, ...]:
        return self._state.views.get(name).lits

    @property
    def selected_view(self) -> str | None:
        names = self._state.views.names()
        return names[self._state.selected_view] if names else None

    def select_view(self, name: str) -> None:
        index = self._state.views.index(name)
        if index != self._state.selected_view:
            self._state.selected_view = index
            self._state.ui_changed = True

    def selection(self, name: str) -> int:
        return self._state.views.get(name).selected

    def select(self, name: str, index: int) -> int:
        """Select the task at `index` of view `name`; returns the clamped index."""
        view = self._state.views.get(name)
        before = view.selected
        view.selected = index
        view.clamp_selection()
        if view.selected != before:
            self._state.ui_changed = True
        return view.selected

    # ---- task mutations ----

    def _apply(self, op: Op) -> None:
        self._undo.apply(op, self._state)

    def add_task(
        self,
        summary: str,
        *,
        details: str = "",
        tags: Iterable[str] | None = None,
        view: str | None = None,
        after: TaskId | None = None,
    ) -> Task:
        """
        Create a task and return a copy of it.

        With `view` and `after` the task is placed right after that task in
        the view and, unless `tags` are given, inherits its tags. With just a
        `view` it gets the view's positive tags so that it shows up there.
        """
        summary = normalize_newlines(summary or "")
        if not summary.strip():
            raise ValueError("summary is required")

        anchor: tuple[str, TaskId] | None = None
        if view is not None:
            target = self._state.views.get(view)
            if after is not None:
                if after not in target.order:
                    raise UnknownTask(after)
                anchor = (view, after)
                if tags is None:
                    tags = self._state.get(after).tags
            elif tags is None:
                tags = {lit.tag for lit in target.lits if lit.polarity is Polarity.POS}

        task = Task(
            id=new_id(),
            summary=summary,
            details=normalize_newlines(details),
            tags={normalize_tag(normalize_newlines(t)) for t in (tags or ())},
        )
        self._apply(AddTask(task, anchor))
        logger.debug("Task added id=%s view=%s", task.id, view)
        return self.get_task(task.id)

    def remove_task(self, task_id: TaskId) -> None:
        self._state.get(task_id)
        self._apply(RemoveTask(task_id))
        logger.debug("Task removed id=%s", task_id)

    def update_task(self, task: Task) -> bool:
        """
        Store the edited copy `task` (as returned by a query).

        Only changed fields are recorded. An empty summary removes the task.
        Returns False if nothing changed.
        """
        return self._update(task.id, {name: getattr(task, name) for name in TASK_FIELDS})

    def _update(self, task_id: TaskId, fields: dict[str, Any]) -> bool:
        current = self._state.get(task_id)
        for name in ("summary", "details"):
            if name in fields:
                fields[name] = normalize_newlines(str(fields[name]))
        if "summary" in fields and not fields["summary"].strip():
            self._apply(RemoveTask(task_id))
            logger.debug("Task removed through empty summary id=%s", task_id)
            return True
        if "tags" in fields:
            fields["tags"] = {normalize_tag(normalize_newlines(t)) for t in fields["tags"]}

        before: dict[str, Any] = {}
        after: dict[str, Any] = {}
        for name, value in fields.items():
            old = getattr(current, name)
            if old != value:
                before[name] = old
                after[name] = value
        if not after:
            return False
        self._apply(UpdateTask(task_id, before, after))
        return True

    def set_summary(self, task_id: TaskId, summary: str) -> bool:
        return self._update(task_id, {"summary": summary})

    def set_details(self, task_id: TaskId, details: str) -> bool:
        return self._update(task_id, {"details": details})

    def set_tags(self, task_id: TaskId, tags: Iterable[str]) -> bool:
        return self._update(task_id, {"tags": set(tags)})

    def toggle_complete(self, task_id: TaskId) -> bool:
        """Flip completion; returns the new state."""
        complete = not self._state.get(task_id).complete
        self._update(
            task_id,
            {"complete": complete, "completed_at": utc_now_stamp() if complete else None},
        )
        return complete

    def toggle_configured_tag(self, task_id: TaskId) -> bool:
        """Add or remove the configured toggle tag; returns whether the task now has it."""
        tag = self._toggle_tag
        if tag is None:
            raise InvalidOperation("no toggle tag configured")
        tags = set(self._state.get(task_id).tags)
        tags.symmetric_difference_update({tag})
        self._update(task_id, {"tags": tags})
        return tag in tags

    def _move(self, view: str, task_id: TaskId, how: str, index: int = 0) -> bool:
        self._state.get(task_id)
        order = self._state.views.get(view).order
        if task_id not in order:
            raise InvalidOperation(f"task {task_id} is not shown in view {view!r}")

        if how == "up":
            possible = order.predecessor(task_id) is not None
        elif how == "down":
            possible = order.successor(task_id) is not None
        else:
            possible = max(0, min(index, len(order) - 1)) != order.index(task_id)
        if not possible:
            return False
        self._apply(MoveTask(view, task_id, how, index))
        return True

    def move_up(self, view: str, task_id: TaskId) -> bool:
        return self._move(view, task_id, "up")

    def move_down(self, view: str, task_id: TaskId) -> bool:
        return self._move(view, task_id, "down")

    def move_to(self, view: str, task_id: TaskId, index: int) -> bool:
        return self._move(view, task_id, "to", index)

    def copy_task(self, task_id: TaskId) -> None:
        """Put a snapshot of the task on the clipboard (not undoable)."""
        self._clipboard = self._state.get(task_id).copy()

    def paste_task(self, view: str | None = None, after: TaskId | None = None) -> Task:
        """Insert a clone of the clipboard task under a fresh id."""
        if self._clipboard is None:
            raise InvalidOperation("clipboard is empty")
        anchor: tuple[str, TaskId] | None = None
        if view is not None and after is not None:
            if after not in self._state.views.get(view).order:
                raise UnknownTask(after)
            anchor = (view, after)

        clone = self._clipboard.copy()
        clone.id = new_id()
        self._apply(PasteTask(clone, anchor))
        return self.get_task(clone.id)

    # ---- view mutations ----

    def add_view(self, name: str, lits: Iterable[TagLit] = (), index: int | None = None) -> None:
        name = name.strip()
        if not name:
            raise ValueError("view name is required")
        if name in self._state.views:
            raise DuplicateView(name)
        lits = tuple(TagLit(normalize_tag(lit.tag), lit.polarity) for lit in lits)
        self._apply(AddView(name, lits, index))

    def remove_view(self, name: str) -> None:
        self._state.views.get(name)
        self._apply(RemoveView(name))

    def rename_view(self, old: str, new: str) -> None:
        new = new.strip()
        if not new:
            raise ValueError("view name is required")
        self._state.views.get(old)
        if new == old:
            return
        if new in self._state.views:
            raise DuplicateView(new)
        self._apply(RenameView(old, new))

    def move_view(self, name: str, index: int) -> bool:
        current = self._state.views.index(name)
        if max(0, min(index, len(self._state.views) - 1)) == current:
            return False
        self._apply(MoveView(name, index))
        return True

    # ---- undo / redo ----

    def undo(self) -> str:
        return self._undo.undo(self._state).name

    def redo(self) -> str:
        return self._undo.redo(self._state).name

    # ---- saving ----

    def save(self) -> int:
        """
        Persist everything that changed since the last save.

        Returns the number of files written or removed. Records whose write
        failed stay dirty; the remaining writes still happen and a SaveError
        naming the failures is raised at the end.
        """
        if self._closed:
            raise InvalidOperation("store is closed")

        state = self._state
        failed: list[tuple[Path, OSError]] = []
        count = 0

        for task_id in [i for i in state.order if i in state.dirty]:
            path = self._paths.get(task_id, self.tasks_dir / str(task_id))
            try:
                self._write_file(path, encode_task(state.tasks[task_id]))
            except OSError as exc:
                logger.error("Failed to write %s: %s", path, exc)
                failed.append((path, exc))
                continue
            self._paths[task_id] = path
            state.dirty.discard(task_id)
            count += 1

        for task_id in list(state.removed):
            path = self._paths.get(task_id)
            if path is not None:
                try:
                    path.unlink(missing_ok=True)
                except OSError as exc:
                    logger.error("Failed to remove %s: %s", path, exc)
                    failed.append((path, exc))
                    continue
                self._read_only.pop(path, None)
                del self._paths[task_id]
                count += 1
            state.removed.discard(task_id)

        views_changed = state.config_changed
        if state.meta_dirty:
            if self._save_text(self.tasks_dir / str(TASKS_META_ID), encode_meta(self._tasks_meta()), failed):
                state.mark_saved_meta()
                count += 1

        if state.config_changed:
            if self._save_text(self.config_path, config_to_json(self._ui_config()), failed):
                state.config_changed = False
                count += 1

        if state.ui_changed or views_changed:
            if self._save_text(self.ui_state_path, ui_state_to_json(self._ui_state()), failed, read_only=False):
                state.ui_changed = False
                count += 1

        if failed:
            raise SaveError(failed)
        logger.info("Saved root=%s files=%s", self.root, count)
        return count

    def _tasks_meta(self) -> TasksMeta:
        state = self._state
        return TasksMeta(
            tags=list(state.tags),
            ids=list(state.order),
            orders={v.name: list(v.order) for v in state.views},
        )

    def _ui_config(self) -> UiConfig:
        return UiConfig(views=self.views(), colors=dict(self._colors), toggle_tag=self._toggle_tag)

    def _ui_state(self) -> UiState:
        return UiState(
            selected_view=self.selected_view,
            selected_tasks={v.name: v.selected for v in self._state.views},
        )

    def _save_text(
        self,
        path: Path,
        text: str,
        failed: list[tuple[Path, OSError]],
        *,
        read_only: bool = True,
    ) -> bool:
        try:
            self._write_file(path, text, read_only=read_only)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            failed.append((path, exc))
            return False
        return True

    def _write_file(self, path: Path, text: str, *, read_only: bool = True) -> None:
        """Write to a hidden temporary file next to `path`, fsync, then rename into place."""
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8", newline="") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise
        if read_only and self._read_only_files:
            self._make_read_only(path)

    def _make_read_only(self, path: Path) -> None:
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
            os.chmod(path, mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))
        except FileNotFoundError:
            return
        except OSError:
            logger.debug("Failed to make %s read-only", path, exc_info=True)
            return
        self._read_only.setdefault(path, mode | stat.S_IWUSR)

# src/notnow/tasks/undo.py

"""
Undo/redo log and the reversible operations on a `TaskState`.

Every user-visible mutation is one `Op`. `exec` performs (or re-performs) the
change and captures whatever `undo` needs; `undo` restores the exact previous
state, positions included. Operations are only ever undone in LIFO order, so
the neighbours recorded at `exec` time are guaranteed to exist again at `undo`
time.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Mapping
from typing import Any

from ..errors import NothingToRedo, NothingToUndo
from .ordering import TaskId
from .task_models import TagLit, Task
from .task_state import Placement, TaskState
from .views import View

logger = logging.getLogger(__name__)


class Op(ABC):
    name = "op"

    @abstractmethod
    def exec(self, state: TaskState) -> None: ...

    @abstractmethod
    def undo(self, state: TaskState) -> None: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class UndoLog:
    """
    Two stacks: `applied` (history) and `undone` (redoable).

    `max_depth` > 0 bounds the history; the oldest entries fall off first.
    0 means unbounded.
    """

    def __init__(self, max_depth: int = 0) -> None:
        if max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        self._applied: deque[Op] = deque(maxlen=max_depth or None)
        self._undone: list[Op] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._applied)

    @property
    def can_redo(self) -> bool:
        return bool(self._undone)

    def __len__(self) -> int:
        return len(self._applied)

    def apply(self, op: Op, state: TaskState) -> None:
        op.exec(state)
        self._applied.append(op)
        self._undone.clear()
        logger.debug("Applied %s", op.name)

    def undo(self, state: TaskState) -> Op:
        if not self._applied:
            raise NothingToUndo()
        op = self._applied.pop()
        op.undo(state)
        self._undone.append(op)
        logger.debug("Undid %s", op.name)
        return op

    def redo(self, state: TaskState) -> Op:
        if not self._undone:
            raise NothingToRedo()
        op = self._undone.pop()
        op.exec(state)
        self._applied.append(op)
        logger.debug("Redid %s", op.name)
        return op

    def clear(self) -> None:
        self._applied.clear()
        self._undone.clear()


# ---- task operations ----


class AddTask(Op):
    """Insert a new task; with `anchor` it goes right after a task of a view (paste)."""

    name = "add task"

    def __init__(self, task: Task, anchor: tuple[str, TaskId] | None = None) -> None:
        self._task = task.copy()
        self._anchor = anchor

    def exec(self, state: TaskState) -> None:
        state.insert(self._task.copy(), anchor=self._anchor)

    def undo(self, state: TaskState) -> None:
        state.detach(self._task.id)


class PasteTask(AddTask):
    name = "paste task"


class RemoveTask(Op):
    name = "remove task"

    def __init__(self, task_id: TaskId) -> None:
        self._task_id = task_id
        self._snapshot: Task | None = None
        self._placement: Placement | None = None

    def exec(self, state: TaskState) -> None:
        task, self._placement = state.detach(self._task_id)
        self._snapshot = task.copy()

    def undo(self, state: TaskState) -> None:
        if self._snapshot is None:
            raise RuntimeError("remove task was not executed")
        state.insert(self._snapshot.copy(), placement=self._placement)


class UpdateTask(Op):
    """Field-level delta; `before` and `after` only hold the changed fields."""

    name = "update task"

    def __init__(self, task_id: TaskId, before: Mapping[str, Any], after: Mapping[str, Any]) -> None:
        self._task_id = task_id
        self._before = _copy_fields(before)
        self._after = _copy_fields(after)
        self._views: dict[str, TaskId | None] = {}

    def exec(self, state: TaskState) -> None:
        self._views = state.view_placement(self._task_id)
        state.apply_fields(self._task_id, _copy_fields(self._after))

    def undo(self, state: TaskState) -> None:
        state.apply_fields(self._task_id, _copy_fields(self._before))
        if "tags" in self._before:
            state.restore_views(self._task_id, self._views)


def _copy_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {k: set(v) if k == "tags" else v for k, v in fields.items()}


class MoveTask(Op):
    """Reorder one task within one view: `up`, `down` or `to` an index."""

    name = "move task"

    def __init__(self, view: str, task_id: TaskId, how: str, index: int = 0) -> None:
        if how not in ("up", "down", "to"):
            raise ValueError(f"invalid move {how!r}")
        self._view = view
        self._task_id = task_id
        self._how = how
        self._index = index
        self._prev: TaskId | None = None

    def exec(self, state: TaskState) -> None:
        order = state.views.get(self._view).order
        self._prev = order.predecessor(self._task_id)
        if self._how == "up":
            order.move_up(self._task_id)
        elif self._how == "down":
            order.move_down(self._task_id)
        else:
            order.move_to(self._task_id, self._index)
        state.meta_changed = True

    def undo(self, state: TaskState) -> None:
        order = state.views.get(self._view).order
        order.remove(self._task_id)
        order.insert_after(self._task_id, self._prev)
        state.meta_changed = True


# ---- view operations ----


class AddView(Op):
    name = "add view"

    def __init__(self, name: str, lits: tuple[TagLit, ...], index: int | None = None) -> None:
        self._name = name
        self._lits = lits
        self._index = index

    def exec(self, state: TaskState) -> None:
        for lit in self._lits:
            state.tags.register_tag(lit.tag)
        view = View(name=self._name, lits=self._lits)
        state.views.add_view(view, self._index)
        state.recompute_view(view)
        _views_changed(state)

    def undo(self, state: TaskState) -> None:
        state.views.remove_view(self._name)
        _views_changed(state)


class RemoveView(Op):
    name = "remove view"

    def __init__(self, name: str) -> None:
        self._name = name
        self._removed: tuple[int, View] | None = None

    def exec(self, state: TaskState) -> None:
        self._removed = state.views.remove_view(self._name)
        _views_changed(state)

    def undo(self, state: TaskState) -> None:
        if self._removed is None:
            raise RuntimeError("remove view was not executed")
        index, view = self._removed
        state.views.add_view(view, index)
        _views_changed(state)


class RenameView(Op):
    name = "rename view"

    def __init__(self, old: str, new: str) -> None:
        self._old = old
        self._new = new

    def exec(self, state: TaskState) -> None:
        state.views.rename_view(self._old, self._new)
        _views_changed(state)

    def undo(self, state: TaskState) -> None:
        state.views.rename_view(self._new, self._old)
        _views_changed(state)


class MoveView(Op):
    name = "move view"

    def __init__(self, name: str, index: int) -> None:
        self._name = name
        self._index = index
        self._previous = 0

    def exec(self, state: TaskState) -> None:
        self._previous = state.views.reorder_views(self._name, self._index)
        _views_changed(state)

    def undo(self, state: TaskState) -> None:
        state.views.reorder_views(self._name, self._previous)
        _views_changed(state)


def _views_changed(state: TaskState) -> None:
    state.clamp_selected_view()
    state.config_changed = True
    state.meta_changed = True

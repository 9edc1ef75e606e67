# src/notnow/tasks/task_state.py

"""
In-memory task database.

`TaskState` owns the task arena (id -> Task), the canonical order of all tasks,
the views and the tag registry, plus the dirty bookkeeping the store needs for
partial saves. It only offers primitive, position-exact mutations; everything a
user can do is expressed as an operation in `undo.py` built on top of these.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors import UnknownTask
from .ordering import LinkedOrder, TaskId
from .tags import TagRegistry
from .task_models import Task
from .views import View, ViewSet, recompute_membership

logger = logging.getLogger(__name__)

TASK_FIELDS = frozenset({"summary", "details", "complete", "completed_at", "tags"})


@dataclass(frozen=True, slots=True)
class Placement:
    """Where a task sat: its predecessor in the canonical order and per view."""

    canonical: TaskId | None
    views: Mapping[str, TaskId | None] = field(default_factory=dict)


class TaskState:
    def __init__(
        self,
        tasks: Iterable[Task] = (),
        *,
        tags: TagRegistry | None = None,
        views: Iterable[View] = (),
    ) -> None:
        self.tags = tags if tags is not None else TagRegistry()
        self.tasks: dict[TaskId, Task] = {}
        self.order = LinkedOrder()
        self.views = ViewSet(views)
        self.selected_view = 0

        # Records to write / files to delete on the next save.
        self.dirty: set[TaskId] = set()
        self.removed: set[TaskId] = set()
        self.meta_changed = False
        self.config_changed = False
        self.ui_changed = False

        for task in tasks:
            task.tags = self.tags.register_all(task.tags)
            self.tasks[task.id] = task
            self.order.append(task.id)

    # ---- queries ----

    def get(self, task_id: TaskId) -> Task:
        try:
            return self.tasks[task_id]
        except KeyError:
            raise UnknownTask(task_id) from None

    def ordered_tasks(self) -> list[Task]:
        return [self.tasks[i] for i in self.order]

    def view_tasks(self, name: str) -> list[Task]:
        return [self.tasks[i] for i in self.views.get(name).order]

    def placement(self, task_id: TaskId) -> Placement:
        return Placement(
            canonical=self.order.predecessor(task_id),
            views=self.view_placement(task_id),
        )

    def view_placement(self, task_id: TaskId) -> dict[str, TaskId | None]:
        return {v.name: v.order.predecessor(task_id) for v in self.views if task_id in v.order}

    @property
    def meta_dirty(self) -> bool:
        return self.meta_changed or self.tags.changed

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self.dirty or self.removed or self.meta_dirty or self.config_changed)

    def mark_saved_meta(self) -> None:
        self.meta_changed = False
        self.tags.changed = False

    # ---- primitives ----

    def insert(
        self,
        task: Task,
        placement: Placement | None = None,
        anchor: tuple[str, TaskId] | None = None,
    ) -> None:
        """
        Add `task`.

        With a `placement` the task goes back exactly where it was; with an
        `anchor` (view name, task id) it is linked right after that task in the
        view (and in the canonical order); otherwise it is appended everywhere.
        """
        if task.id in self.tasks:
            raise ValueError(f"task {task.id} already exists")
        task.tags = self.tags.register_all(task.tags)
        self.tasks[task.id] = task

        if placement is not None:
            self.order.insert_after(task.id, placement.canonical)
        elif anchor is not None and anchor[1] in self.order:
            self.order.insert_after(task.id, anchor[1])
        else:
            self.order.append(task.id)

        for view in self.views:
            if not view.matches(task):
                continue
            if placement is not None and view.name in placement.views:
                view.order.insert_after(task.id, placement.views[view.name])
            elif anchor is not None and anchor[0] == view.name and anchor[1] in view.order:
                view.order.insert_after(task.id, anchor[1])
            else:
                view.order.append(task.id)
            view.clamp_selection()

        self.removed.discard(task.id)
        self.dirty.add(task.id)
        self.meta_changed = True

    def detach(self, task_id: TaskId) -> tuple[Task, Placement]:
        """Remove a task from the arena and every order."""
        task = self.get(task_id)
        placement = self.placement(task_id)
        self.order.remove(task_id)
        for view in self.views:
            view.order.discard(task_id)
            view.clamp_selection()
        del self.tasks[task_id]

        self.dirty.discard(task_id)
        self.removed.add(task_id)
        self.meta_changed = True
        return task, placement

    def apply_fields(self, task_id: TaskId, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - TASK_FIELDS
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")

        task = self.get(task_id)
        for name, value in fields.items():
            if name == "tags":
                value = self.tags.register_all(value)
            setattr(task, name, value)
        self.dirty.add(task_id)

        if "tags" in fields:
            self.refresh_membership(task_id)

    def refresh_membership(self, task_id: TaskId) -> None:
        """Re-evaluate one task against all views (leavers unlinked, joiners appended)."""
        task = self.get(task_id)
        for view in self.views:
            member = task_id in view.order
            wanted = view.matches(task)
            if member and not wanted:
                view.order.remove(task_id)
            elif wanted and not member:
                view.order.append(task_id)
            else:
                continue
            view.clamp_selection()
            self.meta_changed = True

    def restore_views(self, task_id: TaskId, views: Mapping[str, TaskId | None]) -> None:
        """Put a task back at the recorded per-view positions (and nowhere else)."""
        for view in self.views:
            view.order.discard(task_id)
            if view.name in views:
                view.order.insert_after(task_id, views[view.name])
            view.clamp_selection()
        self.meta_changed = True

    def recompute_all(self) -> None:
        for view in self.views:
            if recompute_membership(view, self.tasks, self.order):
                self.meta_changed = True

    def recompute_view(self, view: View) -> None:
        recompute_membership(view, self.tasks, self.order)

    def clamp_selected_view(self) -> None:
        n = len(self.views)
        self.selected_view = 0 if n == 0 else max(0, min(self.selected_view, n - 1))

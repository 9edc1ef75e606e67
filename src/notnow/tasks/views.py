# src/notnow/tasks/views.py

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

from ..errors import DuplicateView, UnknownView
from .ordering import LinkedOrder, TaskId
from .task_models import TagLit, Task

logger = logging.getLogger(__name__)

DEFAULT_VIEW_NAME = "all"


def matches(tags: set[str] | frozenset[str], lits: Iterable[TagLit]) -> bool:
    """Conjunctive filter: every literal has to be satisfied."""
    return all(lit.satisfied_by(tags) for lit in lits)


@dataclass(slots=True)
class View:
    """A named tag filter together with its own manual task order."""

    name: str
    lits: tuple[TagLit, ...] = ()
    order: LinkedOrder = field(default_factory=LinkedOrder)
    selected: int = 0

    def matches(self, task: Task) -> bool:
        return matches(task.tags, self.lits)

    def task_ids(self) -> list[TaskId]:
        return list(self.order)

    def clamp_selection(self) -> None:
        n = len(self.order)
        self.selected = 0 if n == 0 else max(0, min(self.selected, n - 1))


def recompute_membership(
    view: View,
    tasks: Mapping[TaskId, Task],
    canonical_order: Iterable[TaskId],
) -> bool:
    """
    Bring `view.order` in line with the view's filter.

    Members that stopped matching are unlinked (the remaining ones keep their
    relative order and adjacency); newly matching tasks are appended at the end,
    in canonical order. Returns True if the order changed.
    """
    changed = False
    for task_id in list(view.order):
        task = tasks.get(task_id)
        if task is None or not view.matches(task):
            view.order.remove(task_id)
            changed = True

    for task_id in canonical_order:
        if task_id in view.order:
            continue
        task = tasks.get(task_id)
        if task is not None and view.matches(task):
            view.order.append(task_id)
            changed = True

    view.clamp_selection()
    return changed


class ViewSet:
    """The ordered collection of views (tab order). Names are unique."""

    def __init__(self, views: Iterable[View] = ()) -> None:
        self._views: list[View] = []
        for view in views:
            self.add_view(view)

    def __iter__(self) -> Iterator[View]:
        return iter(self._views)

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, name: object) -> bool:
        return any(v.name == name for v in self._views)

    def names(self) -> list[str]:
        return [v.name for v in self._views]

    def index(self, name: str) -> int:
        for idx, view in enumerate(self._views):
            if view.name == name:
                return idx
        raise UnknownView(name)

    def get(self, name: str) -> View:
        return self._views[self.index(name)]

    def add_view(self, view: View, index: int | None = None) -> int:
        if view.name in self:
            raise DuplicateView(view.name)
        if index is None or index >= len(self._views):
            self._views.append(view)
            return len(self._views) - 1
        index = max(0, index)
        self._views.insert(index, view)
        return index

    def remove_view(self, name: str) -> tuple[int, View]:
        index = self.index(name)
        return index, self._views.pop(index)

    def rename_view(self, old: str, new: str) -> None:
        view = self.get(old)
        if new != old and new in self:
            raise DuplicateView(new)
        view.name = new

    def reorder_views(self, name: str, index: int) -> int:
        """Move view `name` to `index` (clamped); returns its previous index."""
        current, view = self.remove_view(name)
        index = max(0, min(index, len(self._views)))
        self._views.insert(index, view)
        return current

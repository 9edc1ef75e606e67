# src/notnow/tasks/ordering.py

"""
Manual task ordering.

Each view keeps its own `LinkedOrder`: a doubly linked list addressed by task
id (id -> [predecessor, successor]) instead of dense integer ranks. Moving a
task only re-links its neighbours, so no renumbering pass is ever needed and
keys never grow. The display sequence is a traversal from the head.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator

TaskId = uuid.UUID

_PREV = 0
_NEXT = 1


class LinkedOrder:
    def __init__(self, ids: Iterable[TaskId] = ()) -> None:
        self._links: dict[TaskId, list[TaskId | None]] = {}
        self._head: TaskId | None = None
        self._tail: TaskId | None = None
        for task_id in ids:
            self.append(task_id)

    # ---- queries ----

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._links

    def __len__(self) -> int:
        return len(self._links)

    def __iter__(self) -> Iterator[TaskId]:
        cur = self._head
        while cur is not None:
            yield cur
            cur = self._links[cur][_NEXT]

    def __repr__(self) -> str:
        return f"LinkedOrder({[str(i) for i in self]!r})"

    @property
    def first(self) -> TaskId | None:
        return self._head

    @property
    def last(self) -> TaskId | None:
        return self._tail

    def predecessor(self, task_id: TaskId) -> TaskId | None:
        return self._links[task_id][_PREV]

    def successor(self, task_id: TaskId) -> TaskId | None:
        return self._links[task_id][_NEXT]

    def index(self, task_id: TaskId) -> int:
        if task_id not in self._links:
            raise ValueError(f"{task_id} is not in the order")
        for idx, cur in enumerate(self):
            if cur == task_id:
                return idx
        raise AssertionError("broken links")  # pragma: no cover

    def at(self, index: int) -> TaskId:
        if index < 0:
            index += len(self)
        if not 0 <= index < len(self):
            raise IndexError(index)
        for idx, cur in enumerate(self):
            if idx == index:
                return cur
        raise AssertionError("broken links")  # pragma: no cover

    # ---- structural changes ----

    def insert_after(self, task_id: TaskId, anchor: TaskId | None) -> None:
        """Link `task_id` right after `anchor` (`None` inserts at the head)."""
        if task_id in self._links:
            raise ValueError(f"{task_id} is already in the order")
        if anchor is None:
            nxt = self._head
            self._links[task_id] = [None, nxt]
            self._head = task_id
        else:
            nxt = self._links[anchor][_NEXT]
            self._links[task_id] = [anchor, nxt]
            self._links[anchor][_NEXT] = task_id
        if nxt is None:
            self._tail = task_id
        else:
            self._links[nxt][_PREV] = task_id

    def insert_before(self, task_id: TaskId, anchor: TaskId | None) -> None:
        """Link `task_id` right before `anchor` (`None` appends)."""
        if anchor is None:
            self.insert_after(task_id, self._tail)
        else:
            self.insert_after(task_id, self._links[anchor][_PREV])

    def append(self, task_id: TaskId) -> None:
        self.insert_after(task_id, self._tail)

    def remove(self, task_id: TaskId) -> TaskId | None:
        """Unlink `task_id` and return its former predecessor."""
        prev, nxt = self._links.pop(task_id)
        if prev is None:
            self._head = nxt
        else:
            self._links[prev][_NEXT] = nxt
        if nxt is None:
            self._tail = prev
        else:
            self._links[nxt][_PREV] = prev
        return prev

    def discard(self, task_id: TaskId) -> None:
        if task_id in self._links:
            self.remove(task_id)

    # ---- moves ----

    def move_up(self, task_id: TaskId) -> bool:
        prev = self._links[task_id][_PREV]
        if prev is None:
            return False
        self.remove(task_id)
        self.insert_before(task_id, prev)
        return True

    def move_down(self, task_id: TaskId) -> bool:
        nxt = self._links[task_id][_NEXT]
        if nxt is None:
            return False
        self.remove(task_id)
        self.insert_after(task_id, nxt)
        return True

    def move_to(self, task_id: TaskId, index: int) -> bool:
        """Move `task_id` so that it ends up at `index` (clamped)."""
        current = self.index(task_id)
        index = max(0, min(index, len(self) - 1))
        if index == current:
            return False
        self.remove(task_id)
        if index == 0:
            self.insert_after(task_id, None)
        else:
            self.insert_after(task_id, self.at(index - 1))
        return True

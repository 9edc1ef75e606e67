# src/notnow/tasks/tags.py

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator

# Reserved id of the metadata record in the tasks directory.
TASKS_META_ID = uuid.UUID(int=0)


def new_id() -> uuid.UUID:
    """Allocate a fresh task identifier (random 128 bit, never the meta id)."""
    while True:
        task_id = uuid.uuid4()
        if task_id != TASKS_META_ID:
            return task_id


def normalize_tag(name: str) -> str:
    name = str(name).strip()
    if not name:
        raise ValueError("tag name is required")
    return name


class TagRegistry:
    """
    The universe of tag names known to one open database.

    Tags are created implicitly on first use. The registry only grows during a
    session; `changed` is set whenever a new name was added so the owner knows
    the metadata record has to be written again.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names: dict[str, None] = {}
        for name in names:
            self._names.setdefault(normalize_tag(name), None)
        self.changed = False

    def register_tag(self, name: str) -> str:
        name = normalize_tag(name)
        if name not in self._names:
            self._names[name] = None
            self.changed = True
        return name

    def register_all(self, names: Iterable[str]) -> set[str]:
        return {self.register_tag(n) for n in names}

    def known_tags(self) -> set[str]:
        return set(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"TagRegistry({list(self._names)!r})"

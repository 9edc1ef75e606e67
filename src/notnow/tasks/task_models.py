# src/notnow/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import StrEnum


class Polarity(StrEnum):
    """Whether a view literal requires its tag to be present or absent."""

    POS = "pos"
    NEG = "neg"

    @classmethod
    def from_config(cls, raw: str | None) -> Polarity:
        if not raw:
            return cls.POS
        try:
            return cls(str(raw).lower())
        except ValueError:
            raise ValueError(f"invalid literal polarity {raw!r}") from None


@dataclass(frozen=True, slots=True)
class TagLit:
    tag: str
    polarity: Polarity = Polarity.POS

    def satisfied_by(self, tags: set[str] | frozenset[str]) -> bool:
        return (self.tag in tags) == (self.polarity is Polarity.POS)

    @classmethod
    def pos(cls, tag: str) -> TagLit:
        return cls(tag, Polarity.POS)

    @classmethod
    def neg(cls, tag: str) -> TagLit:
        return cls(tag, Polarity.NEG)


@dataclass(slots=True)
class Task:
    """
    A single task.

    Notes:
    - `completed_at` is the iCalendar COMPLETED timestamp (UTC, basic format)
      and is only meaningful while `complete` is set.
    - `extra` holds unfolded VTODO content lines we do not interpret (including
      nested components such as VALARM); `calendar_extra` holds the same for the
      enclosing VCALENDAR. Both are written back unchanged.
    - `params` keeps property parameters found on known properties, as
      (NAME, "PARAM=VALUE;...") pairs, e.g. ("SUMMARY", "LANGUAGE=de").
    """

    id: uuid.UUID
    summary: str
    details: str = ""
    complete: bool = False
    tags: set[str] = field(default_factory=set)
    completed_at: str | None = None
    extra: tuple[str, ...] = ()
    calendar_extra: tuple[str, ...] = ()
    params: tuple[tuple[str, str], ...] = ()

    def copy(self) -> Task:
        return replace(self, tags=set(self.tags))

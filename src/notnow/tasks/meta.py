# src/notnow/tasks/meta.py

"""
Schema-specific (JSON) records next to the iCalendar task files:

- the metadata record `tasks/00000000-0000-0000-0000-000000000000`
  (tag registry, canonical task order, per-view manual orders),
- `notnow.json` (views, colors, toggle tag),
- `ui-state.json` (selected view and per-view selection).
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import MalformedRecord
from .task_models import Polarity, TagLit

logger = logging.getLogger(__name__)

META_VERSION = 1

DEFAULT_COLORS: dict[str, str] = {
    "more_tasks_fg": "#000000",
    "more_tasks_bg": "#00d700",
    "selected_view_fg": "#ffffff",
    "selected_view_bg": "#585858",
    "unselected_view_fg": "#ffffff",
    "unselected_view_bg": "#262626",
    "unselected_task_fg": "#000000",
    "unselected_task_bg": "reset",
    "selected_task_fg": "#ffffff",
    "selected_task_bg": "#585858",
    "task_not_started_fg": "#fe0d0c",
    "task_not_started_bg": "reset",
    "task_done_fg": "#00d700",
    "task_done_bg": "reset",
    "dialog_fg": "#000000",
    "dialog_bg": "#dadada",
    "in_out_success_fg": "#000000",
    "in_out_success_bg": "#00d700",
    "in_out_error_fg": "#000000",
    "in_out_error_bg": "#ff0000",
}

_COLOR_RE = re.compile(r"^(reset|#[0-9a-fA-F]{6})$")


# ---- metadata record ----


@dataclass(slots=True)
class TasksMeta:
    tags: list[str] = field(default_factory=list)
    ids: list[uuid.UUID] = field(default_factory=list)
    orders: dict[str, list[uuid.UUID]] = field(default_factory=dict)


def encode_meta(meta: TasksMeta) -> str:
    doc = {
        "version": META_VERSION,
        "tags": list(meta.tags),
        "ids": [str(i) for i in meta.ids],
        "orders": {name: [str(i) for i in ids] for name, ids in meta.orders.items()},
    }
    return json.dumps(doc, ensure_ascii=False, indent=2) + "\n"


def decode_meta(data: str | bytes) -> TasksMeta:
    try:
        doc = json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedRecord(f"metadata record is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise MalformedRecord("metadata record is not a JSON object")

    tags = doc.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise MalformedRecord("metadata 'tags' must be a list of strings")

    orders_raw = doc.get("orders", {})
    if not isinstance(orders_raw, dict):
        raise MalformedRecord("metadata 'orders' must be an object")

    return TasksMeta(
        tags=[t for t in tags if t.strip()],
        ids=_parse_ids(doc.get("ids", []), "ids"),
        orders={str(name): _parse_ids(ids, f"orders.{name}") for name, ids in orders_raw.items()},
    )


def _parse_ids(raw: Any, what: str) -> list[uuid.UUID]:
    if not isinstance(raw, list):
        raise MalformedRecord(f"metadata '{what}' must be a list")
    try:
        return [uuid.UUID(str(i)) for i in raw]
    except ValueError as exc:
        raise MalformedRecord(f"metadata '{what}' holds an invalid id: {exc}") from exc


# ---- notnow.json ----


@dataclass(frozen=True, slots=True)
class ViewConfig:
    name: str
    lits: tuple[TagLit, ...] = ()


@dataclass(slots=True)
class UiConfig:
    views: list[ViewConfig] = field(default_factory=list)
    colors: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COLORS))
    toggle_tag: str | None = None


def config_to_json(config: UiConfig) -> str:
    doc = {
        "colors": dict(config.colors),
        "toggle_tag": config.toggle_tag,
        "views": [
            {
                "name": v.name,
                "lits": [{"tag": lit.tag, "polarity": lit.polarity.value} for lit in v.lits],
            }
            for v in config.views
        ],
    }
    return json.dumps(doc, ensure_ascii=False, indent=2) + "\n"


def config_from_json(data: str | bytes) -> UiConfig:
    """Parse notnow.json; raises ValueError on anything structurally wrong."""
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("configuration is not a JSON object")

    views: list[ViewConfig] = []
    seen: set[str] = set()
    for raw in doc.get("views", []) or []:
        name = str(raw["name"]).strip()
        if not name:
            raise ValueError("view without a name")
        if name in seen:
            raise ValueError(f"duplicate view {name!r}")
        seen.add(name)
        lits = tuple(
            TagLit(str(lit["tag"]).strip(), Polarity.from_config(lit.get("polarity")))
            for lit in raw.get("lits", []) or []
        )
        if any(not lit.tag for lit in lits):
            raise ValueError(f"view {name!r} has a literal without a tag")
        views.append(ViewConfig(name=name, lits=lits))

    colors = dict(DEFAULT_COLORS)
    for key, value in (doc.get("colors") or {}).items():
        if key not in DEFAULT_COLORS:
            logger.debug("Ignoring unknown color %r", key)
            continue
        if isinstance(value, str) and _COLOR_RE.match(value):
            colors[key] = value.lower()
        else:
            logger.warning("Invalid color %r for %s; using default", value, key)

    toggle_tag = doc.get("toggle_tag")
    if toggle_tag is not None:
        toggle_tag = str(toggle_tag).strip() or None

    return UiConfig(views=views, colors=colors, toggle_tag=toggle_tag)


def load_config(path: Path) -> tuple[UiConfig, bool]:
    """
    Load notnow.json.

    Returns (config, present). A missing file gives the defaults; an unreadable
    or unparsable one also gives the defaults, with a warning.
    """
    try:
        raw = path.read_text("utf-8")
    except FileNotFoundError:
        return UiConfig(), False
    except OSError:
        logger.exception("Failed to read configuration %s; using defaults", path)
        return UiConfig(), True
    try:
        return config_from_json(raw), True
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Invalid configuration in %s (%s); using defaults", path, exc)
        return UiConfig(), True


# ---- ui-state.json ----


@dataclass(slots=True)
class UiState:
    selected_view: str | None = None
    selected_tasks: dict[str, int] = field(default_factory=dict)


def ui_state_to_json(state: UiState) -> str:
    doc = {"selected_view": state.selected_view, "selected_tasks": dict(state.selected_tasks)}
    return json.dumps(doc, ensure_ascii=False, indent=2) + "\n"


def load_ui_state(path: Path) -> UiState:
    """Best-effort: the state is a cache and can always be regenerated."""
    try:
        doc = json.loads(path.read_text("utf-8"))
    except FileNotFoundError:
        return UiState()
    except (OSError, ValueError):
        logger.debug("Discarding unreadable UI state %s", path, exc_info=True)
        return UiState()
    if not isinstance(doc, dict):
        return UiState()

    selected_view = doc.get("selected_view")
    selected_tasks: dict[str, int] = {}
    raw = doc.get("selected_tasks")
    if isinstance(raw, dict):
        for name, idx in raw.items():
            if isinstance(idx, int) and not isinstance(idx, bool) and idx >= 0:
                selected_tasks[str(name)] = idx
    return UiState(
        selected_view=selected_view if isinstance(selected_view, str) else None,
        selected_tasks=selected_tasks,
    )

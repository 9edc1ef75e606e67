# src/notnow/tasks/ical.py

"""
Task <-> iCalendar VTODO conversion (RFC 5545 subset).

Each task file holds one VCALENDAR with exactly one VTODO. Known properties:
UID, SUMMARY, DESCRIPTION, STATUS, COMPLETED, CATEGORIES (plus DTSTAMP, which
is regenerated on every write). Anything else, including nested components
such as VALARM and foreign calendar-level components such as VTIMEZONE, is kept
as raw unfolded content lines on the task and written back unchanged, so files
touched by other calendar tools survive a load/save cycle.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from ..errors import MalformedRecord
from .task_models import Task

PRODID = "-//notnow//notnow//EN"
CRLF = "\r\n"
MAX_LINE_OCTETS = 75

STATUS_COMPLETED = "COMPLETED"
STATUS_NEEDS_ACTION = "NEEDS-ACTION"

_KNOWN_TODO_PROPS = frozenset(
    {"UID", "SUMMARY", "DESCRIPTION", "STATUS", "COMPLETED", "CATEGORIES", "DTSTAMP"}
)
_KNOWN_CALENDAR_PROPS = frozenset({"VERSION", "PRODID"})


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def utc_now_stamp() -> str:
    return format_timestamp(datetime.now(UTC))


# ---- TEXT values ----


def normalize_newlines(value: str) -> str:
    """Map CRLF and lone CR to LF; TEXT values can only carry LF."""
    return value.replace("\r\n", "\n").replace("\r", "\n")


def escape_text(value: str) -> str:
    return (
        normalize_newlines(value)
        .replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def unescape_text(value: str) -> str:
    out: list[str] = []
    it = iter(value)
    for ch in it:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(it, "")
        if nxt in ("n", "N"):
            out.append("\n")
        else:
            # \\ \; \, and any unknown escape: keep the escaped character
            out.append(nxt)
    return "".join(out)


def split_list(value: str) -> list[str]:
    """Split a TEXT list on unescaped commas, unescaping every item."""
    items: list[str] = []
    cur: list[str] = []
    escaped = False
    for ch in value:
        if escaped:
            cur.append("\\" + ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ",":
            items.append(unescape_text("".join(cur)))
            cur = []
        else:
            cur.append(ch)
    items.append(unescape_text("".join(cur)))
    return items


# ---- content lines ----


def fold_line(line: str) -> str:
    """Fold a content line so that no physical line exceeds 75 octets."""
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return line
    parts: list[str] = []
    cur = ""
    cur_len = 0
    limit = MAX_LINE_OCTETS
    for ch in line:
        size = len(ch.encode("utf-8"))
        if cur_len + size > limit:
            parts.append(cur)
            # continuation lines start with a space, which counts against the limit
            cur, cur_len, limit = ch, size, MAX_LINE_OCTETS - 1
        else:
            cur += ch
            cur_len += size
    parts.append(cur)
    return (CRLF + " ").join(parts)


def unfold_lines(text: str) -> list[str]:
    lines: list[str] = []
    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        elif raw.strip():
            lines.append(raw)
    return lines


def split_content_line(line: str) -> tuple[str, str, str]:
    """Split `NAME;PARAMS:VALUE` into (upper-cased name, params, value)."""
    in_quotes = False
    name_end = None
    for idx, ch in enumerate(line):
        if ch == '"':
            in_quotes = not in_quotes
        elif not in_quotes and ch in ";:" and name_end is None:
            name_end = idx
            if ch == ":":
                return line[:idx].upper(), "", line[idx + 1 :]
        elif not in_quotes and ch == ":":
            if name_end is None:
                raise MalformedRecord(f"invalid content line: {line[:40]!r}")
            return line[:name_end].upper(), line[name_end + 1 : idx], line[idx + 1 :]
    raise MalformedRecord(f"invalid content line: {line[:40]!r}")


# ---- encode ----


def encode_task(task: Task, now: datetime | None = None) -> str:
    stamp = format_timestamp(now) if now is not None else utc_now_stamp()
    params = dict(task.params)

    def prop(name: str, value: str) -> str:
        p = params.get(name)
        return f"{name};{p}:{value}" if p else f"{name}:{value}"

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        *task.calendar_extra,
        "BEGIN:VTODO",
        prop("UID", str(task.id)),
        f"DTSTAMP:{stamp}",
        prop("SUMMARY", escape_text(task.summary)),
    ]
    if task.details:
        lines.append(prop("DESCRIPTION", escape_text(task.details)))

    extra = list(task.extra)
    has_foreign_status = any(_prop_name(line) == "STATUS" for line in extra)
    if task.complete:
        # a foreign COMPLETED kept while the task was open is superseded
        extra = [line for line in extra if _prop_name(line) not in ("STATUS", "COMPLETED")]
        lines.append(prop("STATUS", STATUS_COMPLETED))
        if task.completed_at:
            lines.append(prop("COMPLETED", task.completed_at))
    elif not has_foreign_status:
        lines.append(prop("STATUS", STATUS_NEEDS_ACTION))

    if task.tags:
        cats = ",".join(escape_text(t) for t in sorted(task.tags))
        lines.append(prop("CATEGORIES", cats))

    lines.extend(extra)
    lines += ["END:VTODO", "END:VCALENDAR"]
    return "".join(fold_line(line) + CRLF for line in lines)


def _prop_name(line: str) -> str:
    try:
        return split_content_line(line)[0]
    except MalformedRecord:
        return ""


# ---- decode ----


def decode_task(data: str | bytes) -> Task:
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedRecord(f"record is not valid UTF-8: {exc}") from exc

    lines = unfold_lines(data.lstrip("\ufeff"))
    if not lines or lines[0].strip().upper() != "BEGIN:VCALENDAR":
        raise MalformedRecord("record does not start with BEGIN:VCALENDAR")
    if lines[-1].strip().upper() != "END:VCALENDAR":
        raise MalformedRecord("record does not end with END:VCALENDAR")

    todo_props: list[tuple[str, str, str, str]] = []
    todo_extra: list[str] = []
    calendar_extra: list[str] = []
    todos = 0
    # component nesting below VCALENDAR, e.g. ["VTODO", "VALARM"]
    stack: list[str] = []

    for line in lines[1:-1]:
        name, params, value = split_content_line(line)
        if name == "BEGIN":
            comp = value.strip().upper()
            if not stack and comp == "VTODO":
                todos += 1
                if todos > 1:
                    raise MalformedRecord("record contains more than one VTODO")
                stack.append(comp)
                continue
            stack.append(comp)
        elif name == "END":
            comp = value.strip().upper()
            if not stack or stack[-1] != comp:
                raise MalformedRecord(f"unbalanced END:{comp}")
            stack.pop()
            if not stack and comp == "VTODO":
                continue

        if stack and stack[0] == "VTODO":
            if len(stack) == 1 and name in _KNOWN_TODO_PROPS:
                todo_props.append((name, params, value, line))
            else:
                todo_extra.append(line)
        elif not stack and name in _KNOWN_CALENDAR_PROPS:
            continue
        else:
            calendar_extra.append(line)

    if stack:
        raise MalformedRecord(f"unterminated component {stack[-1]}")
    if todos == 0:
        raise MalformedRecord("record contains no VTODO")

    return _task_from_props(todo_props, todo_extra, calendar_extra)


def _task_from_props(
    props: list[tuple[str, str, str, str]],
    extra: list[str],
    calendar_extra: list[str],
) -> Task:
    uid: str | None = None
    summary = ""
    details = ""
    complete = False
    completed_at: str | None = None
    tags: set[str] = set()
    completed_line: str | None = None
    kept_params: dict[str, str] = {}

    for name, params, value, line in props:
        if name == "UID":
            uid = value.strip()
        elif name == "SUMMARY":
            summary = unescape_text(value)
        elif name == "DESCRIPTION":
            details = unescape_text(value)
        elif name == "STATUS":
            status = value.strip().upper()
            if status == STATUS_COMPLETED:
                complete = True
            elif status != STATUS_NEEDS_ACTION:
                extra.append(line)
                continue
        elif name == "COMPLETED":
            completed_at = value.strip() or None
            completed_line = line
        elif name == "CATEGORIES":
            tags.update(t.strip() for t in split_list(value) if t.strip())
        else:
            continue
        if params:
            kept_params.setdefault(name, params)

    if not complete and completed_line is not None:
        # COMPLETED on an open task belongs to the other tool; keep it verbatim
        extra.append(completed_line)
        kept_params.pop("COMPLETED", None)

    if not uid:
        raise MalformedRecord("VTODO has no UID")
    try:
        task_id = uuid.UUID(uid)
    except ValueError as exc:
        raise MalformedRecord(f"UID {uid!r} is not a UUID") from exc

    return Task(
        id=task_id,
        summary=summary,
        details=details,
        complete=complete,
        tags=tags,
        completed_at=completed_at if complete else None,
        extra=tuple(extra),
        calendar_extra=tuple(calendar_extra),
        params=tuple(sorted(kept_params.items())),
    )

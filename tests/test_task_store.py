# tests/test_task_store.py

from __future__ import annotations

import json
import os
import stat
import uuid
from pathlib import Path

import pytest

from notnow.errors import (
    AlreadyRunning,
    DuplicateView,
    InvalidOperation,
    NothingToRedo,
    NothingToUndo,
    SaveError,
    UnknownTask,
)
from notnow.tasks.tags import TASKS_META_ID
from notnow.tasks.task_models import TagLit
from notnow.tasks.task_store import TaskStore

from .fakes import make_task, snapshot, write_task_file

META_NAME = str(TASKS_META_ID)


def _is_read_only(path: Path) -> bool:
    return not stat.S_IMODE(path.stat().st_mode) & (stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH)


def test_open_empty_directory_creates_defaults(store: TaskStore, config_dir: Path) -> None:
    assert (config_dir / "tasks").is_dir()
    assert (config_dir / "notnow.lock").exists()
    assert store.view_names() == ["all"]
    assert store.selected_view == "all"
    assert store.tasks() == []
    assert store.report.ok
    assert store.is_dirty

    assert store.save() == 3
    assert (config_dir / "tasks" / META_NAME).exists()
    assert (config_dir / "notnow.json").exists()
    assert (config_dir / "ui-state.json").exists()
    assert not store.is_dirty

    # nothing changed: nothing written
    assert store.save() == 0


def test_idempotent_save_after_mutations(store: TaskStore) -> None:
    store.save()
    task = store.add_task("Write report", tags=["work"])
    store.set_details(task.id, "quarterly")

    # task file plus metadata record
    assert store.save() == 2
    assert store.save() == 0


def test_buy_milk_scenario(store: TaskStore, config_dir: Path) -> None:
    store.save()
    store.add_view("errands", [TagLit.pos("errand")])
    milk = store.add_task("Buy milk", tags=["errand"])
    store.add_task("Read book", tags=["home"])

    assert [t.summary for t in store.view_tasks("errands")] == ["Buy milk"]
    assert "errand" in store.tags

    store.save()
    task_file = config_dir / "tasks" / str(milk.id)
    assert task_file.exists()

    assert store.set_summary(milk.id, "") is True
    assert store.view_tasks("errands") == []
    assert milk.id not in [t.id for t in store.view_tasks("all")]
    with pytest.raises(UnknownTask):
        store.get_task(milk.id)

    store.save()
    assert not task_file.exists()

    assert store.undo() == "remove task"
    assert [t.id for t in store.view_tasks("errands")] == [milk.id]
    assert store.get_task(milk.id).summary == "Buy milk"
    assert store.is_dirty

    store.save()
    assert task_file.exists()


def test_deleting_an_unsaved_task_writes_nothing(store: TaskStore, config_dir: Path) -> None:
    store.save()
    task = store.add_task("Temporary")
    store.remove_task(task.id)

    # only the metadata record changed
    assert store.save() == 1
    assert not (config_dir / "tasks" / str(task.id)).exists()


def test_delete_via_empty_summary_restores_positions(store: TaskStore) -> None:
    a = store.add_task("a", tags=["x"])
    b = store.add_task("b", tags=["x"])
    c = store.add_task("c", tags=["x"])
    store.add_view("x", [TagLit.pos("x")])
    store.move_to("x", c.id, 0)
    before = snapshot(store)

    edited = store.get_task(b.id)
    edited.summary = "   "
    assert store.update_task(edited) is True
    assert [t.id for t in store.view_tasks("x")] == [c.id, a.id]

    store.undo()
    assert snapshot(store) == before
    assert [t.id for t in store.view_tasks("x")] == [c.id, a.id, b.id]


def test_undo_redo_inverse_law(store: TaskStore) -> None:
    a = store.add_task("a", tags=["work"])
    b = store.add_task("b", tags=["work", "urgent"])
    c = store.add_task("c", tags=["home"])
    store.add_view("work", [TagLit.pos("work")])
    store.add_view("calm", [TagLit.neg("urgent")])
    store.copy_task(b.id)

    ops = [
        lambda: store.set_summary(a.id, "a2"),
        lambda: store.set_details(c.id, "details\nmore"),
        lambda: store.set_tags(c.id, ["work", "urgent"]),
        lambda: store.set_tags(b.id, []),
        lambda: store.toggle_complete(a.id),
        lambda: store.remove_task(b.id),
        lambda: store.set_summary(c.id, ""),
        lambda: store.move_down("all", a.id),
        lambda: store.move_to("work", b.id, 0),
        lambda: store.add_task("d", view="work", after=a.id),
        lambda: store.paste_task("calm", after=a.id),
        lambda: store.add_view("urgent", [TagLit.pos("urgent")], index=0),
        lambda: store.remove_view("calm"),
        lambda: store.rename_view("work", "job"),
        lambda: store.move_view("all", 2),
    ]
    for op in ops:
        pre = snapshot(store)
        op()
        post = snapshot(store)
        assert post != pre

        store.undo()
        assert snapshot(store) == pre
        store.redo()
        assert snapshot(store) == post

        # keep the database unchanged for the next operation
        store.undo()

    with pytest.raises(NothingToRedo):
        # the last undo left one redo; a fresh op clears it
        store.set_summary(a.id, "fresh")
        store.redo()


def test_undo_on_fresh_store_is_refused(store: TaskStore) -> None:
    assert not store.can_undo and not store.can_redo
    with pytest.raises(NothingToUndo):
        store.undo()
    with pytest.raises(NothingToRedo):
        store.redo()


def test_moves_past_boundaries_push_nothing(store: TaskStore) -> None:
    first = store.add_task("first")
    last = store.add_task("last")

    assert store.move_up("all", first.id) is False
    assert store.move_down("all", last.id) is False
    assert store.move_to("all", last.id, 5) is False
    assert store.move_view("all", 3) is False

    # the most recent undoable operation is still the second insert
    assert store.undo() == "add task"
    assert [t.summary for t in store.tasks()] == ["first"]


def test_add_task_placement_and_tag_inheritance(store: TaskStore) -> None:
    store.add_view("work", [TagLit.pos("work"), TagLit.neg("done")])
    a = store.add_task("a", tags=["work", "x"])
    b = store.add_task("b", tags=["work"])

    new = store.add_task("after a", view="work", after=a.id)
    assert new.tags == {"work", "x"}
    assert [t.id for t in store.view_tasks("work")] == [a.id, new.id, b.id]

    plain = store.add_task("in view", view="work")
    assert plain.tags == {"work"}
    assert store.view_tasks("work")[-1].id == plain.id

    with pytest.raises(ValueError):
        store.add_task("   ")
    with pytest.raises(UnknownTask):
        store.add_task("x", view="work", after=uuid.UUID(int=5))


def test_paste_clones_under_new_id(store: TaskStore) -> None:
    with pytest.raises(InvalidOperation):
        store.paste_task()

    a = store.add_task("a", tags=["t"])
    b = store.add_task("b", tags=["t"])
    store.set_details(a.id, "notes")
    store.copy_task(a.id)
    # later edits do not leak into the clipboard
    store.set_summary(a.id, "a changed")

    clone = store.paste_task("all", after=a.id)
    assert clone.id != a.id
    assert (clone.summary, clone.details, clone.tags) == ("a", "notes", {"t"})
    assert [t.id for t in store.tasks()] == [a.id, clone.id, b.id]

    assert store.undo() == "paste task"
    assert [t.id for t in store.tasks()] == [a.id, b.id]


def test_toggle_complete_and_configured_tag(config_dir: Path) -> None:
    config_dir.mkdir(parents=True)
    (config_dir / "notnow.json").write_text(
        json.dumps({"toggle_tag": "waiting", "views": [{"name": "all", "lits": []}]}), "utf-8"
    )
    with TaskStore.open(config_dir) as store:
        assert store.toggle_tag == "waiting"
        assert "waiting" in store.tags
        task = store.add_task("ping")

        assert store.toggle_complete(task.id) is True
        done = store.get_task(task.id)
        assert done.complete and done.completed_at and done.completed_at.endswith("Z")
        assert store.toggle_complete(task.id) is False
        assert store.get_task(task.id).completed_at is None

        assert store.toggle_configured_tag(task.id) is True
        assert store.get_task(task.id).tags == {"waiting"}
        assert store.toggle_configured_tag(task.id) is False
        assert store.get_task(task.id).tags == set()


def test_toggle_tag_requires_configuration(store: TaskStore) -> None:
    task = store.add_task("x")
    with pytest.raises(InvalidOperation):
        store.toggle_configured_tag(task.id)


def test_view_operations(store: TaskStore) -> None:
    store.add_view("work", [TagLit.pos("work")])
    with pytest.raises(DuplicateView):
        store.add_view("work")
    with pytest.raises(ValueError):
        store.add_view("  ")

    store.add_view("home", [TagLit.pos("home")], index=0)
    assert store.view_names() == ["home", "all", "work"]

    store.rename_view("work", "job")
    assert store.view_literals("job") == (TagLit.pos("work"),)
    with pytest.raises(DuplicateView):
        store.rename_view("job", "home")

    assert store.move_view("home", 5) is True
    assert store.view_names() == ["all", "job", "home"]

    store.remove_view("job")
    assert store.view_names() == ["all", "home"]

    store.undo()
    store.undo()
    assert store.view_names() == ["home", "all", "job"]


def test_reopen_preserves_orders_selection_and_foreign_data(config_dir: Path) -> None:
    foreign = make_task("from phone", "home", extra=("X-PHONE-APP:1",))
    write_task_file(config_dir / "tasks", foreign, name="phone-export.ics")

    with TaskStore.open(config_dir) as store:
        store.add_view("home", [TagLit.pos("home")])
        a = store.add_task("a", tags=["home"])
        b = store.add_task("b", tags=["home"])
        store.move_to("home", b.id, 0)
        store.select_view("home")
        store.select("home", 2)
        store.set_details(foreign.id, "edited here")
        store.save()

    assert (config_dir / "tasks" / "phone-export.ics").exists()

    with TaskStore.open(config_dir) as store:
        assert store.view_names() == ["all", "home"]
        assert [t.id for t in store.view_tasks("home")] == [b.id, foreign.id, a.id]
        assert [t.id for t in store.tasks()] == [foreign.id, a.id, b.id]
        assert store.selected_view == "home"
        assert store.selection("home") == 2
        reloaded = store.get_task(foreign.id)
        assert reloaded.details == "edited here"
        assert reloaded.extra == ("X-PHONE-APP:1",)
        assert not store.is_dirty
        assert store.save() == 0


def test_files_are_read_only_while_open(config_dir: Path) -> None:
    store = TaskStore.open(config_dir)
    task = store.add_task("guarded")
    store.save()

    task_file = config_dir / "tasks" / str(task.id)
    assert _is_read_only(task_file)
    assert _is_read_only(config_dir / "tasks" / META_NAME)
    assert not _is_read_only(config_dir / "ui-state.json")

    # rewriting a read-only file still works
    store.set_summary(task.id, "guarded twice")
    assert store.save() == 1

    store.close()
    assert not _is_read_only(task_file)
    assert not (config_dir / "notnow.lock").exists()


def test_writable_files_when_disabled(config_dir: Path) -> None:
    with TaskStore.open(config_dir, read_only_files=False) as store:
        task = store.add_task("open")
        store.save()
        assert not _is_read_only(config_dir / "tasks" / str(task.id))


def test_second_instance_and_force(config_dir: Path) -> None:
    first = TaskStore.open(config_dir)
    with pytest.raises(AlreadyRunning):
        TaskStore.open(config_dir)

    second = TaskStore.open(config_dir, force=True)
    first.close()
    # the first instance must not remove the lock it lost
    assert (config_dir / "notnow.lock").exists()
    with pytest.raises(AlreadyRunning):
        TaskStore.open(config_dir)

    second.close()
    TaskStore.open(config_dir).close()


def test_corrupt_task_file_is_reported(config_dir: Path) -> None:
    tasks_dir = config_dir / "tasks"
    good = make_task("good")
    write_task_file(tasks_dir, good)
    broken = write_task_file(tasks_dir, make_task("broken"))
    broken.write_bytes(broken.read_bytes()[:40])
    dup = write_task_file(tasks_dir, good, name="zz-copy-of-good")
    (tasks_dir / ".hidden.tmp").write_text("ignored", "utf-8")

    with TaskStore.open(config_dir) as store:
        assert [t.id for t in store.tasks()] == [good.id]
        assert not store.report.ok
        assert {p.path for p in store.report} == {broken, dup}
        assert store.report.loaded == 1


def test_corrupt_config_and_metadata_fall_back(config_dir: Path) -> None:
    tasks_dir = config_dir / "tasks"
    task = make_task("survivor")
    write_task_file(tasks_dir, task)
    (tasks_dir / META_NAME).write_text("{broken", "utf-8")
    (config_dir / "notnow.json").write_text("[1, 2", "utf-8")

    with TaskStore.open(config_dir) as store:
        assert store.view_names() == ["all"]
        assert [t.summary for t in store.tasks()] == ["survivor"]
        assert [p.path.name for p in store.report] == [META_NAME]
        store.save()

    with TaskStore.open(config_dir) as store:
        assert store.report.ok


def test_failed_write_keeps_changes_dirty(store: TaskStore, config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store.save()
    ok = store.add_task("ok")
    bad = store.add_task("bad")
    real_replace = os.replace

    def flaky_replace(src, dst):
        if Path(dst).name == str(bad.id):
            raise OSError(28, "No space left on device")
        return real_replace(src, dst)

    monkeypatch.setattr("notnow.tasks.task_store.os.replace", flaky_replace)
    with pytest.raises(SaveError) as info:
        store.save()

    assert [p.name for p, _ in info.value.failed] == [str(bad.id)]
    assert isinstance(info.value, OSError)
    assert (config_dir / "tasks" / str(ok.id)).exists()
    assert not (config_dir / "tasks" / str(bad.id)).exists()
    assert not list((config_dir / "tasks").glob(".*.tmp"))
    assert store.is_dirty

    monkeypatch.undo()
    assert store.save() == 1
    assert not store.is_dirty


def test_closed_store_refuses_to_save(config_dir: Path) -> None:
    store = TaskStore.open(config_dir)
    store.close()
    store.close()
    assert store.closed
    with pytest.raises(InvalidOperation):
        store.save()


def test_update_task_without_changes(store: TaskStore) -> None:
    task = store.add_task("same", tags=["a"])
    assert store.update_task(store.get_task(task.id)) is False
    assert store.undo() == "add task"


def test_tag_edit_joining_several_views_appends_to_each(store: TaskStore) -> None:
    store.add_view("work", [TagLit.pos("work")])
    store.add_view("urgent", [TagLit.pos("urgent")])
    store.add_view("plain", [TagLit.neg("work")])
    w1 = store.add_task("w1", tags=["work"])
    u1 = store.add_task("u1", tags=["urgent"])
    t = store.add_task("t", tags=[])
    p2 = store.add_task("p2", tags=[])

    def ids(view: str) -> list[uuid.UUID]:
        return [task.id for task in store.view_tasks(view)]

    before = {name: ids(name) for name in store.view_names()}
    assert before["plain"] == [u1.id, t.id, p2.id]

    store.set_tags(t.id, ["work", "urgent"])
    after = {name: ids(name) for name in store.view_names()}
    assert after["work"] == [w1.id, t.id]
    assert after["urgent"] == [u1.id, t.id]
    assert after["plain"] == [u1.id, p2.id]
    assert after["all"] == before["all"]

    store.undo()
    assert {name: ids(name) for name in store.view_names()} == before

    store.redo()
    assert {name: ids(name) for name in store.view_names()} == after


def test_carriage_returns_survive_save_and_reopen(config_dir: Path) -> None:
    with TaskStore.open(config_dir) as store:
        keep = store.add_task("keep")
        pasted = store.add_task("pasted\rfrom windows", details="line1\r\nline2")
        assert store.get_task(pasted.id).summary == "pasted\nfrom windows"
        assert store.get_task(pasted.id).details == "line1\nline2"

        store.set_details(keep.id, "a\rb")
        assert store.get_task(keep.id).details == "a\nb"
        # same text after normalization: nothing to record
        assert store.set_details(keep.id, "a\r\nb") is False
        store.save()

    with TaskStore.open(config_dir) as store:
        assert store.report.ok
        assert [(t.summary, t.details) for t in store.tasks()] == [
            ("keep", "a\nb"),
            ("pasted\nfrom windows", "line1\nline2"),
        ]

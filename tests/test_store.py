# tests/test_store.py

from __future__ import annotations

import json

import pytest

from kanban_sync.board.identity import DeviceIdentity, IdGenerator
from kanban_sync.board.models import (
    EntityKind,
    Snapshot,
    Task,
    TaskPriority,
    TaskStatus,
)
from kanban_sync.board.persistence import NEXT_TASK_ID_KEY, TASKS_KEY
from kanban_sync.board.reconcile import SyncGuard
from kanban_sync.board.store import ChangeEvent, ChangeSource, LocalStore, SortBy, TaskFilters
from kanban_sync.errors import PersistenceError

from .fakes import FakeClock, FakeMonotonic, MemoryPersistence


def _fresh_store(clock: FakeClock, device_id: str = "device-654321") -> LocalStore:
    persistence = MemoryPersistence()
    identity = DeviceIdentity(persistence, configured_id=device_id, now_ms=clock.now_ms)
    identity.resolve()
    s = LocalStore(
        persistence,
        IdGenerator(identity, now_ms=clock.now_ms),
        guard=SyncGuard(clock=FakeMonotonic()),
        clock=clock,
    )
    s.load()
    return s


def test_add_task_defaults_and_write_through(store: LocalStore, persistence, clock) -> None:
    task = store.add_task("  Buy milk  ", tags=["home", "home", " "])

    assert task.title == "Buy milk"
    assert task.status == TaskStatus.TODO
    assert task.priority == TaskPriority.MEDIUM
    assert task.tags == ["home"]
    assert task.created_at == clock.now
    assert task.updated_at == clock.now
    assert task.deleted is False

    stored = json.loads(persistence.get(TASKS_KEY))
    assert [t["id"] for t in stored] == [task.id]
    assert stored[0]["created_at"] == "2024-03-01T09:00:00.000Z"
    assert persistence.get(NEXT_TASK_ID_KEY) == "2"


def test_add_task_requires_title(store: LocalStore) -> None:
    with pytest.raises(ValueError):
        store.add_task("   ")


def test_pending_reason_only_kept_while_pending(store: LocalStore, clock) -> None:
    task = store.add_task("Call plumber")

    clock.advance(minutes=1)
    moved = store.update_task_status(task.id, "pending", "waiting for callback")
    assert moved is not None
    assert moved.status == TaskStatus.PENDING
    assert moved.pending_reason == "waiting for callback"
    assert moved.updated_at == clock.now

    clock.advance(minutes=1)
    done = store.update_task_status(task.id, TaskStatus.DONE)
    assert done is not None
    assert done.pending_reason is None


def test_update_task_rejects_unknown_fields(store: LocalStore) -> None:
    task = store.add_task("x")
    with pytest.raises(ValueError):
        store.update_task(task.id, id=5)
    with pytest.raises(ValueError):
        store.update_task(task.id, deleted=True)


def test_update_and_delete_ignore_tombstones(store: LocalStore) -> None:
    task = store.add_task("gone soon")
    assert store.delete_task(task.id) is True

    assert store.delete_task(task.id) is False
    assert store.update_task(task.id, title="back?") is None
    assert store.get_task(task.id) is None
    assert store.get_tasks() == []


def test_delete_task_cascades_to_children(store: LocalStore, clock) -> None:
    task = store.add_task("Plan trip")
    other = store.add_task("Unrelated")
    notes = [store.add_note(task.id, f"note {i}") for i in range(2)]
    subtasks = [store.add_subtask(task.id, f"step {i}") for i in range(3)]
    other_note = store.add_note(other.id, "keep me")

    clock.advance(hours=2)
    assert store.delete_task(task.id)

    deleted_at = next(t for t in store.all_tasks() if t.id == task.id).deleted_at
    assert deleted_at == clock.now

    children = [n for n in store.all_notes() if n.task_id == task.id] + [
        s for s in store.all_subtasks() if s.task_id == task.id
    ]
    assert len(children) == len(notes) + len(subtasks)
    assert all(c.deleted and c.deleted_at == deleted_at for c in children)

    assert store.get_notes_by_task_id(task.id) == []
    assert store.get_subtasks_by_task_id(task.id) == []
    assert [n.id for n in store.get_notes_by_task_id(other.id)] == [other_note.id]


def test_subtask_and_note_updates(store: LocalStore, clock) -> None:
    task = store.add_task("Paint fence")
    sub = store.add_subtask(task.id, "buy paint")
    note = store.add_note(task.id, "white?")

    clock.advance(seconds=5)
    updated = store.update_subtask(sub.id, completed=True)
    assert updated is not None and updated.completed
    assert updated.updated_at == clock.now

    edited = store.update_note(note.id, content="white, two coats")
    assert edited is not None and edited.content == "white, two coats"

    assert store.delete_subtask(sub.id)
    assert store.get_subtask(sub.id) is None
    assert store.delete_note(note.id)
    assert store.get_notes() == []


def test_filters_and_sorting(store: LocalStore, clock) -> None:
    a = store.add_task("Alpha report", priority="low", tags=["work"])
    clock.advance(minutes=1)
    b = store.add_task("beta groceries", priority="urgent", tags=["home"], due_date="2024-03-05")
    clock.advance(minutes=1)
    c = store.add_task("Gamma taxes", priority="high", tags=["home", "money"], due_date="2024-03-02")
    store.update_task_status(c.id, "in_progress")

    assert [t.id for t in store.get_tasks()] == [c.id, b.id, a.id]
    assert [t.id for t in store.get_tasks(TaskFilters(priority="urgent"))] == [b.id]
    assert [t.id for t in store.get_tasks(TaskFilters(status="in_progress"))] == [c.id]
    assert [t.id for t in store.get_tasks(TaskFilters(search="GROCER"))] == [b.id]
    assert {t.id for t in store.get_tasks(TaskFilters(include_tags=["home"]))} == {b.id, c.id}
    assert [t.id for t in store.get_tasks(TaskFilters(exclude_tags=["home"]))] == [a.id]

    by_priority = store.get_tasks(TaskFilters(sort_by=SortBy.PRIORITY))
    assert [t.id for t in by_priority] == [b.id, c.id, a.id]

    by_due = store.get_tasks(TaskFilters(sort_by=SortBy.DUE_DATE))
    assert [t.id for t in by_due] == [c.id, b.id, a.id]

    by_title = store.get_tasks(TaskFilters(sort_by=SortBy.TITLE))
    assert [t.title for t in by_title] == ["Alpha report", "beta groceries", "Gamma taxes"]

    assert store.get_tags() == ["home", "money", "work"]
    store.delete_task(c.id)
    assert store.get_tags() == ["home", "work"]


def test_reload_from_persistence(store: LocalStore, persistence, clock) -> None:
    task = store.add_task("Persist me", tags=["x"])
    store.add_note(task.id, "hello")

    identity = DeviceIdentity(persistence, configured_id="device-123456", now_ms=clock.now_ms)
    identity.resolve()
    reloaded = LocalStore(persistence, IdGenerator(identity, now_ms=clock.now_ms), clock=clock)
    reloaded.load()

    assert reloaded.all_tasks() == store.all_tasks()
    assert reloaded.all_notes() == store.all_notes()
    assert reloaded.ids.counters[EntityKind.TASK] == 2
    assert reloaded.device_id == "device-123456"


def test_corrupted_collection_loads_as_empty(persistence, clock) -> None:
    persistence.set(TASKS_KEY, "{not json")
    identity = DeviceIdentity(persistence, configured_id="device-1", now_ms=clock.now_ms)
    s = LocalStore(persistence, IdGenerator(identity), clock=clock)
    s.load()
    assert s.all_tasks() == []


def test_persistence_failure_propagates_to_caller(store: LocalStore, persistence) -> None:
    persistence.fail_writes = True
    with pytest.raises(PersistenceError):
        store.add_task("will not be saved")


def test_change_listeners_see_local_events(store: LocalStore) -> None:
    events: list[ChangeEvent] = []

    def broken(_: ChangeEvent) -> None:
        raise RuntimeError("listener bug")

    store.add_change_listener(broken)
    store.add_change_listener(events.append)

    task = store.add_task("Listen")
    store.add_note(task.id, "n")

    assert [(e.source, e.kind) for e in events] == [
        (ChangeSource.LOCAL, EntityKind.TASK),
        (ChangeSource.LOCAL, EntityKind.NOTE),
    ]

    store.remove_change_listener(events.append)
    store.remove_change_listener(events.append)
    store.add_task("Unheard")
    assert len(events) == 2


def test_local_change_marks_guard(store: LocalStore, guard: SyncGuard, mono) -> None:
    assert guard.last_local_change is None
    store.add_task("edit")
    assert guard.last_local_change == mono()


def test_import_within_debounce_window_is_skipped(store: LocalStore, mono, clock) -> None:
    local = store.add_task("Local edit")
    before = store.all_tasks()

    incoming = Snapshot(tasks=[Task(id=99, title="Remote", created_at=clock.now, updated_at=clock.now)])

    mono.advance(9.5)
    result = store.import_snapshot(incoming)
    assert result.success is False
    assert result.skipped is True
    assert "recent local changes" in result.message
    assert store.all_tasks() == before

    mono.advance(1.0)
    result = store.import_snapshot(incoming)
    assert result.success is True
    assert {t.id for t in store.all_tasks()} == {local.id, 99}


def test_import_skipped_while_suspended(store: LocalStore, guard: SyncGuard, clock) -> None:
    incoming = Snapshot(tasks=[Task(id=7, title="Remote", updated_at=clock.now)])

    with guard.suspend():
        result = store.import_snapshot(incoming)
    assert result.skipped is True
    assert store.all_tasks() == []

    assert store.import_snapshot(incoming).success is True


def test_import_does_not_mark_local_change(store: LocalStore, guard: SyncGuard, clock) -> None:
    events: list[ChangeEvent] = []
    store.add_change_listener(events.append)

    store.import_snapshot(Snapshot(tasks=[Task(id=1, title="r", updated_at=clock.now)]))

    assert guard.last_local_change is None
    assert [e.source for e in events] == [ChangeSource.SYNC]


def test_export_import_round_trip_into_empty_store(store: LocalStore, clock) -> None:
    t1 = store.add_task("One", description="first", tags=["a"], due_date="2024-04-01")
    clock.advance(seconds=1)
    t2 = store.add_task("Two", priority="urgent")
    store.add_note(t1.id, "note")
    store.add_subtask(t2.id, "sub", completed=True)
    clock.advance(seconds=1)
    store.delete_task(t2.id)

    wire = json.loads(json.dumps(store.export_snapshot().to_dict()))
    target = _fresh_store(FakeClock())
    result = target.import_snapshot(Snapshot.from_dict(wire), clear_existing=True)

    assert result.success
    assert target.all_tasks() == store.all_tasks()
    assert target.all_notes() == store.all_notes()
    assert target.all_subtasks() == store.all_subtasks()
    assert target.ids.counters == store.ids.counters


def test_purge_persists_only_when_something_removed(store: LocalStore, persistence) -> None:
    store.add_task("keep")
    writes = persistence.writes

    counts = store.purge(lambda e: False)
    assert counts.total == 0
    assert persistence.writes == writes

    counts = store.purge(lambda e: True)
    assert counts.as_dict() == {"tasks": 1, "notes": 0, "subtasks": 0}
    assert persistence.writes > writes
    assert store.all_tasks() == []

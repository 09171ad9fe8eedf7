# src/kanban_sync/board/store.py

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..core.ports import Clock, PersistenceAdapter
from .identity import IdGenerator
from .models import (
    EPOCH,
    NOTE_EDITABLE,
    SUBTASK_EDITABLE,
    TASK_EDITABLE,
    EntityKind,
    Note,
    Snapshot,
    Subtask,
    Task,
    TaskPriority,
    TaskStatus,
    clean_tags,
    parse_ts,
    truncate_ms,
    utc_now,
)
from .persistence import (
    NEXT_NOTE_ID_KEY,
    NEXT_SUBTASK_ID_KEY,
    NEXT_TASK_ID_KEY,
    NOTES_KEY,
    SUBTASKS_KEY,
    TASKS_KEY,
)
from .reconcile import ImportResult, SyncGuard, merge_snapshots

logger = logging.getLogger(__name__)


class ChangeSource(StrEnum):
    LOCAL = "local"  # user mutation: should be pushed
    SYNC = "sync"  # inbound merge: must not be pushed back by the import itself
    MAINTENANCE = "maintenance"  # sweeper / integrity repair


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    source: ChangeSource
    kind: EntityKind | None = None


ChangeListener = Callable[[ChangeEvent], None]


class SortBy(StrEnum):
    CREATED_AT = "created_at"
    PRIORITY = "priority"
    DUE_DATE = "due_date"
    TITLE = "title"


@dataclass(slots=True)
class TaskFilters:
    priority: str | None = None
    status: str | None = None
    search: str | None = None
    include_tags: Sequence[str] = ()
    exclude_tags: Sequence[str] = ()
    sort_by: str = SortBy.CREATED_AT


@dataclass(slots=True)
class PurgeCounts:
    tasks: int = 0
    notes: int = 0
    subtasks: int = 0

    @property
    def total(self) -> int:
        return self.tasks + self.notes + self.subtasks

    def as_dict(self) -> dict[str, int]:
        return {"tasks": self.tasks, "notes": self.notes, "subtasks": self.subtasks}


def _created(task: Task) -> datetime:
    return task.created_at or EPOCH


def _due(task: Task) -> datetime | None:
    return parse_ts(task.due_date)


class LocalStore:
    """
    In-memory board state, write-through to a local key-value persistence.

    Concurrency model: single-threaded and cooperative. Every mutation updates
    the in-memory collections first, then persists synchronously, then
    notifies listeners. A persistence failure propagates to the caller.

    Returned entities are the live objects; treat them as read-only and go
    through update_* to change them.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        ids: IdGenerator,
        *,
        guard: SyncGuard | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._persistence = persistence
        self._ids = ids
        self._guard = guard if guard is not None else SyncGuard()
        self._clock = clock

        self._tasks: list[Task] = []
        self._notes: list[Note] = []
        self._subtasks: list[Subtask] = []
        self._listeners: list[ChangeListener] = []

    # ---- wiring ----

    @property
    def guard(self) -> SyncGuard:
        return self._guard

    @property
    def ids(self) -> IdGenerator:
        return self._ids

    @property
    def device_id(self) -> str:
        return self._ids.device_id

    def _now(self) -> datetime:
        return truncate_ms(self._clock())

    # ---- persistence ----

    def _read_collection(self, key: str) -> list[dict[str, Any]]:
        raw = self._persistence.get(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.exception("Corrupted JSON under %s; treating as empty", key)
            return []
        return data if isinstance(data, list) else []

    def _read_counter(self, key: str) -> int:
        raw = self._persistence.get(key)
        try:
            return max(1, int(raw)) if raw else 1
        except ValueError:
            return 1

    def load(self) -> None:
        """Load collections and counters from persistence."""
        snapshot = Snapshot.from_dict(
            {
                "tasks": self._read_collection(TASKS_KEY),
                "notes": self._read_collection(NOTES_KEY),
                "subtasks": self._read_collection(SUBTASKS_KEY),
            }
        )
        self._tasks = snapshot.tasks
        self._notes = snapshot.notes
        self._subtasks = snapshot.subtasks
        self._ids.set_counters(
            {
                EntityKind.TASK: self._read_counter(NEXT_TASK_ID_KEY),
                EntityKind.NOTE: self._read_counter(NEXT_NOTE_ID_KEY),
                EntityKind.SUBTASK: self._read_counter(NEXT_SUBTASK_ID_KEY),
            }
        )
        logger.info(
            "LocalStore loaded tasks=%d notes=%d subtasks=%d",
            len(self._tasks),
            len(self._notes),
            len(self._subtasks),
        )

    def persist(self) -> None:
        counters = self._ids.counters
        self._persistence.set(TASKS_KEY, json.dumps([t.to_dict() for t in self._tasks]))
        self._persistence.set(NOTES_KEY, json.dumps([n.to_dict() for n in self._notes]))
        self._persistence.set(SUBTASKS_KEY, json.dumps([s.to_dict() for s in self._subtasks]))
        self._persistence.set(NEXT_TASK_ID_KEY, str(counters[EntityKind.TASK]))
        self._persistence.set(NEXT_NOTE_ID_KEY, str(counters[EntityKind.NOTE]))
        self._persistence.set(NEXT_SUBTASK_ID_KEY, str(counters[EntityKind.SUBTASK]))

    def _commit(self, source: ChangeSource, kind: EntityKind | None) -> None:
        if source == ChangeSource.LOCAL:
            self._guard.mark_local_change()
        self.persist()
        self._notify(ChangeEvent(source=source, kind=kind))

    # ---- listeners ----

    def add_change_listener(self, callback: ChangeListener) -> None:
        self._listeners.append(callback)

    def remove_change_listener(self, callback: ChangeListener) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def _notify(self, event: ChangeEvent) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Change listener failed (event=%s)", event)

    # ---- lookups ----

    def _find_task(self, task_id: int) -> Task | None:
        for t in self._tasks:
            if t.id == task_id and not t.deleted:
                return t
        return None

    def _find_note(self, note_id: int) -> Note | None:
        for n in self._notes:
            if n.id == note_id and not n.deleted:
                return n
        return None

    def _find_subtask(self, subtask_id: int) -> Subtask | None:
        for s in self._subtasks:
            if s.id == subtask_id and not s.deleted:
                return s
        return None

    @staticmethod
    def _check_fields(changes: dict[str, Any], allowed: frozenset[str], label: str) -> None:
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"cannot update {label} field(s): {', '.join(sorted(unknown))}")

    # ---- tasks ----

    def add_task(
        self,
        title: str,
        *,
        description: str = "",
        status: TaskStatus | str = TaskStatus.TODO,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        tags: Iterable[str] | None = None,
        pending_reason: str | None = None,
        due_date: str | None = None,
    ) -> Task:
        if not title or not title.strip():
            raise ValueError("title is required")

        now = self._now()
        status = TaskStatus(status)
        task = Task(
            id=self._ids.next_id(EntityKind.TASK),
            title=title.strip(),
            description=(description or "").strip(),
            status=status,
            priority=TaskPriority(priority),
            tags=clean_tags(tags),
            pending_reason=pending_reason if status == TaskStatus.PENDING else None,
            due_date=due_date or None,
            created_at=now,
            updated_at=now,
        )
        self._tasks.append(task)
        self._commit(ChangeSource.LOCAL, EntityKind.TASK)
        logger.debug("Task added id=%s title=%r", task.id, task.title)
        return task

    def update_task(self, task_id: int, **changes: Any) -> Task | None:
        self._check_fields(changes, TASK_EDITABLE, "task")
        task = self._find_task(task_id)
        if task is None:
            logger.debug("update_task: id=%s not found", task_id)
            return None

        if "title" in changes:
            task.title = str(changes["title"] or "").strip()
        if "description" in changes:
            task.description = str(changes["description"] or "")
        if "priority" in changes:
            task.priority = TaskPriority(changes["priority"])
        if "tags" in changes:
            task.tags = clean_tags(changes["tags"])
        if "due_date" in changes:
            task.due_date = changes["due_date"] or None
        if "pending_reason" in changes:
            task.pending_reason = changes["pending_reason"] or None
        if "status" in changes:
            task.status = TaskStatus(changes["status"])
        if task.status != TaskStatus.PENDING:
            task.pending_reason = None

        task.updated_at = self._now()
        self._commit(ChangeSource.LOCAL, EntityKind.TASK)
        return task

    def update_task_status(
        self, task_id: int, status: TaskStatus | str, pending_reason: str | None = None
    ) -> Task | None:
        status = TaskStatus(status)
        if status == TaskStatus.PENDING and pending_reason:
            return self.update_task(task_id, status=status, pending_reason=pending_reason)
        return self.update_task(task_id, status=status)

    def delete_task(self, task_id: int) -> bool:
        task = self._find_task(task_id)
        if task is None:
            return False

        now = self._now()
        task.deleted = True
        task.deleted_at = now
        task.updated_at = now

        cascaded = 0
        for child in (*self._notes, *self._subtasks):
            if child.task_id == task_id and not child.deleted:
                child.deleted = True
                child.deleted_at = now
                child.updated_at = now
                cascaded += 1

        self._commit(ChangeSource.LOCAL, EntityKind.TASK)
        logger.debug("Task %s deleted (cascaded to %d children)", task_id, cascaded)
        return True

    # ---- notes ----

    def add_note(self, task_id: int | None, content: str) -> Note:
        now = self._now()
        note = Note(
            id=self._ids.next_id(EntityKind.NOTE),
            task_id=int(task_id) if task_id is not None else None,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self._notes.append(note)
        self._commit(ChangeSource.LOCAL, EntityKind.NOTE)
        return note

    def update_note(self, note_id: int, **changes: Any) -> Note | None:
        self._check_fields(changes, NOTE_EDITABLE, "note")
        note = self._find_note(note_id)
        if note is None:
            return None

        if "content" in changes:
            note.content = str(changes["content"] or "")
        if "task_id" in changes:
            note.task_id = int(changes["task_id"]) if changes["task_id"] is not None else None

        note.updated_at = self._now()
        self._commit(ChangeSource.LOCAL, EntityKind.NOTE)
        return note

    def delete_note(self, note_id: int) -> bool:
        note = self._find_note(note_id)
        if note is None:
            return False
        now = self._now()
        note.deleted = True
        note.deleted_at = now
        note.updated_at = now
        self._commit(ChangeSource.LOCAL, EntityKind.NOTE)
        return True

    # ---- subtasks ----

    def add_subtask(self, task_id: int | None, title: str, *, completed: bool = False) -> Subtask:
        if not title or not title.strip():
            raise ValueError("title is required")
        now = self._now()
        subtask = Subtask(
            id=self._ids.next_id(EntityKind.SUBTASK),
            task_id=int(task_id) if task_id is not None else None,
            title=title.strip(),
            completed=bool(completed),
            created_at=now,
            updated_at=now,
        )
        self._subtasks.append(subtask)
        self._commit(ChangeSource.LOCAL, EntityKind.SUBTASK)
        return subtask

    def update_subtask(self, subtask_id: int, **changes: Any) -> Subtask | None:
        self._check_fields(changes, SUBTASK_EDITABLE, "subtask")
        subtask = self._find_subtask(subtask_id)
        if subtask is None:
            logger.debug("update_subtask: id=%s not found", subtask_id)
            return None

        if "title" in changes:
            subtask.title = str(changes["title"] or "").strip()
        if "completed" in changes:
            subtask.completed = bool(changes["completed"])
        if "task_id" in changes:
            subtask.task_id = int(changes["task_id"]) if changes["task_id"] is not None else None

        subtask.updated_at = self._now()
        self._commit(ChangeSource.LOCAL, EntityKind.SUBTASK)
        return subtask

    def delete_subtask(self, subtask_id: int) -> bool:
        subtask = self._find_subtask(subtask_id)
        if subtask is None:
            return False
        now = self._now()
        subtask.deleted = True
        subtask.deleted_at = now
        subtask.updated_at = now
        self._commit(ChangeSource.LOCAL, EntityKind.SUBTASK)
        return True

    # ---- queries (tombstones excluded) ----

    def get_task(self, task_id: int) -> Task | None:
        return self._find_task(task_id)

    def get_tasks(self, filters: TaskFilters | None = None) -> list[Task]:
        f = filters or TaskFilters()
        tasks = [t for t in self._tasks if not t.deleted]

        if f.priority:
            tasks = [t for t in tasks if t.priority == f.priority]
        if f.status:
            tasks = [t for t in tasks if t.status == f.status]
        if f.search:
            term = f.search.lower()
            tasks = [
                t for t in tasks if term in t.title.lower() or term in t.description.lower()
            ]
        if f.include_tags:
            wanted = set(f.include_tags)
            tasks = [t for t in tasks if wanted.intersection(t.tags)]
        if f.exclude_tags:
            unwanted = set(f.exclude_tags)
            tasks = [t for t in tasks if not unwanted.intersection(t.tags)]

        return self._sort_tasks(tasks, SortBy(f.sort_by))

    @staticmethod
    def _sort_tasks(tasks: list[Task], sort_by: SortBy) -> list[Task]:
        if sort_by == SortBy.PRIORITY:
            return sorted(tasks, key=lambda t: (t.priority.rank, _due(t) or _created(t)))

        if sort_by == SortBy.DUE_DATE:
            dated = [t for t in tasks if _due(t) is not None]
            undated = [t for t in tasks if _due(t) is None]
            dated.sort(key=lambda t: _due(t) or EPOCH)
            undated.sort(key=_created, reverse=True)
            return dated + undated

        if sort_by == SortBy.TITLE:
            return sorted(tasks, key=lambda t: (t.title.casefold(), t.title))

        return sorted(tasks, key=_created, reverse=True)

    def get_notes(self) -> list[Note]:
        return [n for n in self._notes if not n.deleted]

    def get_notes_by_task_id(self, task_id: int) -> list[Note]:
        return [n for n in self._notes if n.task_id == task_id and not n.deleted]

    def get_subtask(self, subtask_id: int) -> Subtask | None:
        return self._find_subtask(subtask_id)

    def get_subtasks(self, task_id: int) -> list[Subtask]:
        return [s for s in self._subtasks if s.task_id == task_id and not s.deleted]

    def get_subtasks_by_task_id(self, task_id: int) -> list[Subtask]:
        return self.get_subtasks(task_id)

    def get_tags(self) -> list[str]:
        tags: set[str] = set()
        for t in self._tasks:
            if not t.deleted:
                tags.update(t.tags)
        return sorted(tags)

    def counts(self) -> dict[str, int]:
        return {
            "tasks": sum(1 for t in self._tasks if not t.deleted),
            "notes": sum(1 for n in self._notes if not n.deleted),
            "subtasks": sum(1 for s in self._subtasks if not s.deleted),
            "deleted_tasks": sum(1 for t in self._tasks if t.deleted),
            "deleted_notes": sum(1 for n in self._notes if n.deleted),
            "deleted_subtasks": sum(1 for s in self._subtasks if s.deleted),
        }

    # ---- full collections (tombstones included) ----

    def all_tasks(self) -> list[Task]:
        return list(self._tasks)

    def all_notes(self) -> list[Note]:
        return list(self._notes)

    def all_subtasks(self) -> list[Subtask]:
        return list(self._subtasks)

    # ---- snapshot exchange ----

    def export_snapshot(self) -> Snapshot:
        """Deep copy of everything, tombstones and counters included."""
        counters = self._ids.counters
        return Snapshot(
            tasks=copy.deepcopy(self._tasks),
            notes=copy.deepcopy(self._notes),
            subtasks=copy.deepcopy(self._subtasks),
            next_task_id=counters[EntityKind.TASK],
            next_note_id=counters[EntityKind.NOTE],
            next_subtask_id=counters[EntityKind.SUBTASK],
            device_id=self._ids.device_id,
        )

    def import_snapshot(self, snapshot: Snapshot, *, clear_existing: bool = False) -> ImportResult:
        """
        Merge `snapshot` into the store.

        clear_existing only changes how id counters are reconciled (adopt vs
        max); collections are always merged so unsynced local edits survive.
        The merged state is persisted locally and never pushed from here.
        """
        reason = self._guard.check()
        if reason is not None:
            logger.info("Skipping import: %s", reason)
            return ImportResult(success=False, skipped=True, message=f"Import skipped: {reason}")

        local = Snapshot(
            tasks=self._tasks,
            notes=self._notes,
            subtasks=self._subtasks,
            next_task_id=self._ids.counters[EntityKind.TASK],
            next_note_id=self._ids.counters[EntityKind.NOTE],
            next_subtask_id=self._ids.counters[EntityKind.SUBTASK],
        )
        report = merge_snapshots(local, snapshot, clear_existing=clear_existing)

        self._tasks = report.tasks.items
        self._notes = report.notes.items
        self._subtasks = report.subtasks.items
        self._ids.set_counters(report.counters)

        self._commit(ChangeSource.SYNC, None)
        stats = report.stats()
        logger.info(
            "Import completed (clear_existing=%s) tasks=%s notes=%s subtasks=%s",
            clear_existing,
            stats["tasks"],
            stats["notes"],
            stats["subtasks"],
        )
        return ImportResult(success=True, message="Import completed", stats=stats)

    # ---- maintenance ----

    def purge(self, predicate: Callable[[Task | Note | Subtask], bool]) -> PurgeCounts:
        """
        Hard-remove every entity matching `predicate` (tombstones included).

        Persists and notifies only if something was removed.
        """
        tasks = [t for t in self._tasks if not predicate(t)]
        notes = [n for n in self._notes if not predicate(n)]
        subtasks = [s for s in self._subtasks if not predicate(s)]

        counts = PurgeCounts(
            tasks=len(self._tasks) - len(tasks),
            notes=len(self._notes) - len(notes),
            subtasks=len(self._subtasks) - len(subtasks),
        )
        if counts.total == 0:
            return counts

        self._tasks, self._notes, self._subtasks = tasks, notes, subtasks
        self._commit(ChangeSource.MAINTENANCE, None)
        logger.info("Purged %s", counts.as_dict())
        return counts

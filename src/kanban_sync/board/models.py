# src/kanban_sync/board/models.py

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    DONE = "done"

    @classmethod
    def from_raw(cls, raw: Any) -> TaskStatus:
        if not raw:
            return cls.TODO
        try:
            return cls(str(raw))
        except ValueError:
            return cls.TODO


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_raw(cls, raw: Any) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(str(raw))
        except ValueError:
            return cls.MEDIUM

    @property
    def rank(self) -> int:
        """Sort rank: urgent first, low last."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.URGENT: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.MEDIUM: 3,
    TaskPriority.LOW: 4,
}


class EntityKind(StrEnum):
    TASK = "task"
    NOTE = "note"
    SUBTASK = "subtask"


# ---- timestamps ----


def truncate_ms(dt: datetime) -> datetime:
    """Drop sub-millisecond precision (the wire format carries milliseconds only)."""
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    return truncate_ms(datetime.now(UTC))


def format_ts(dt: datetime | None) -> str | None:
    """Format as ISO-8601 UTC with milliseconds and a Z suffix."""
    if dt is None:
        return None
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_ts(raw: Any) -> datetime | None:
    """
    Parse a wire timestamp.

    Accepts ISO strings (Z suffix, offsets, naive = UTC), datetimes and
    epoch milliseconds. Anything unparseable becomes None.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
        try:
            dt = datetime.fromtimestamp(float(raw) / 1000.0, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(raw, str):
        try:
            dt = datetime.fromisoformat(raw.strip())
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return truncate_ms(dt.astimezone(UTC))


# ---- field coercion helpers ----


def _require_id(raw: Mapping[str, Any]) -> int:
    try:
        return int(raw["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"entity record has no usable id: {raw.get('id')!r}") from e


def _optional_int(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _text(raw: Any) -> str:
    return "" if raw is None else str(raw)


def clean_tags(raw: Any) -> list[str]:
    """Normalise tags to a list of unique non-empty strings (first occurrence wins)."""
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, Iterable):
        items = raw
    else:
        return []

    out: list[str] = []
    seen: set[str] = set()
    for item in items:
        tag = str(item).strip()
        if tag and tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out


def _extra(raw: Mapping[str, Any], known: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in raw.items() if k not in known}


# ---- entities ----

TASK_FIELDS = frozenset(
    {
        "id",
        "title",
        "description",
        "status",
        "priority",
        "tags",
        "pending_reason",
        "due_date",
        "created_at",
        "updated_at",
        "deleted",
        "deleted_at",
    }
)
NOTE_FIELDS = frozenset(
    {"id", "task_id", "content", "created_at", "updated_at", "deleted", "deleted_at"}
)
SUBTASK_FIELDS = frozenset(
    {"id", "task_id", "title", "completed", "created_at", "updated_at", "deleted", "deleted_at"}
)

# Fields callers may change through update_* (ids and bookkeeping are owned by the store).
TASK_EDITABLE = frozenset(
    {"title", "description", "status", "priority", "tags", "pending_reason", "due_date"}
)
NOTE_EDITABLE = frozenset({"task_id", "content"})
SUBTASK_EDITABLE = frozenset({"task_id", "title", "completed"})


@dataclass(slots=True)
class Task:
    id: int
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: list[str] = field(default_factory=list)
    pending_reason: str | None = None
    due_date: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted: bool = False
    deleted_at: datetime | None = None

    # Unknown keys from other clients, written back unchanged.
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "status": self.status.value,
                "priority": self.priority.value,
                "tags": list(self.tags),
                "pending_reason": self.pending_reason,
                "due_date": self.due_date,
                "created_at": format_ts(self.created_at),
                "updated_at": format_ts(self.updated_at),
                "deleted": self.deleted,
                "deleted_at": format_ts(self.deleted_at),
            }
        )
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Task:
        return cls(
            id=_require_id(raw),
            title=_text(raw.get("title")),
            description=_text(raw.get("description")),
            status=TaskStatus.from_raw(raw.get("status")),
            priority=TaskPriority.from_raw(raw.get("priority")),
            tags=clean_tags(raw.get("tags")),
            pending_reason=raw.get("pending_reason") or None,
            due_date=raw.get("due_date") or None,
            created_at=parse_ts(raw.get("created_at")),
            updated_at=parse_ts(raw.get("updated_at")),
            deleted=bool(raw.get("deleted", False)),
            deleted_at=parse_ts(raw.get("deleted_at")),
            extra=_extra(raw, TASK_FIELDS),
        )


@dataclass(slots=True)
class Note:
    id: int
    task_id: int | None
    content: str = ""

    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted: bool = False
    deleted_at: datetime | None = None

    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "task_id": self.task_id,
                "content": self.content,
                "created_at": format_ts(self.created_at),
                "updated_at": format_ts(self.updated_at),
                "deleted": self.deleted,
                "deleted_at": format_ts(self.deleted_at),
            }
        )
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Note:
        return cls(
            id=_require_id(raw),
            task_id=_optional_int(raw.get("task_id")),
            content=_text(raw.get("content")),
            created_at=parse_ts(raw.get("created_at")),
            updated_at=parse_ts(raw.get("updated_at")),
            deleted=bool(raw.get("deleted", False)),
            deleted_at=parse_ts(raw.get("deleted_at")),
            extra=_extra(raw, NOTE_FIELDS),
        )


@dataclass(slots=True)
class Subtask:
    id: int
    task_id: int | None
    title: str = ""
    completed: bool = False

    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted: bool = False
    deleted_at: datetime | None = None

    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "task_id": self.task_id,
                "title": self.title,
                "completed": self.completed,
                "created_at": format_ts(self.created_at),
                "updated_at": format_ts(self.updated_at),
                "deleted": self.deleted,
                "deleted_at": format_ts(self.deleted_at),
            }
        )
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Subtask:
        return cls(
            id=_require_id(raw),
            task_id=_optional_int(raw.get("task_id")),
            title=_text(raw.get("title")),
            completed=bool(raw.get("completed", False)),
            created_at=parse_ts(raw.get("created_at")),
            updated_at=parse_ts(raw.get("updated_at")),
            deleted=bool(raw.get("deleted", False)),
            deleted_at=parse_ts(raw.get("deleted_at")),
            extra=_extra(raw, SUBTASK_FIELDS),
        )


Entity = Task | Note | Subtask


def _decode_records(raw: Any, factory: Any, label: str) -> list[Any]:
    if not isinstance(raw, list):
        return []
    out = []
    for rec in raw:
        if not isinstance(rec, Mapping):
            logger.warning("Skipping non-object %s record: %r", label, rec)
            continue
        try:
            out.append(factory(rec))
        except ValueError:
            logger.warning("Skipping malformed %s record id=%r", label, rec.get("id"))
    return out


def _counter(raw: Any) -> int:
    value = _optional_int(raw)
    return value if value is not None and value > 0 else 0


@dataclass(slots=True)
class Snapshot:
    """
    Full state exchanged with a cloud provider.

    Counters of 0 mean "not present in the source document".
    """

    tasks: list[Task] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)

    next_task_id: int = 0
    next_note_id: int = 0
    next_subtask_id: int = 0

    last_sync: str | None = None
    device_id: str | None = None
    version: int = 1

    def counters(self) -> dict[EntityKind, int]:
        return {
            EntityKind.TASK: self.next_task_id,
            EntityKind.NOTE: self.next_note_id,
            EntityKind.SUBTASK: self.next_subtask_id,
        }

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "tasks": [t.to_dict() for t in self.tasks],
            "notes": [n.to_dict() for n in self.notes],
            "subtasks": [s.to_dict() for s in self.subtasks],
            "nextTaskId": self.next_task_id,
            "nextNoteId": self.next_note_id,
            "nextSubtaskId": self.next_subtask_id,
            "version": self.version,
        }
        if self.last_sync is not None:
            out["lastSync"] = self.last_sync
        if self.device_id is not None:
            out["deviceId"] = self.device_id
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Snapshot:
        # Older server exports spell the subtask collection "subTasks".
        subtasks_raw = raw.get("subtasks")
        if subtasks_raw is None:
            subtasks_raw = raw.get("subTasks")

        last_sync = raw.get("lastSync")
        device_id = raw.get("deviceId")
        return cls(
            tasks=_decode_records(raw.get("tasks"), Task.from_dict, "task"),
            notes=_decode_records(raw.get("notes"), Note.from_dict, "note"),
            subtasks=_decode_records(subtasks_raw, Subtask.from_dict, "subtask"),
            next_task_id=_counter(raw.get("nextTaskId")),
            next_note_id=_counter(raw.get("nextNoteId")),
            next_subtask_id=_counter(raw.get("nextSubtaskId")),
            last_sync=str(last_sync) if last_sync else None,
            device_id=str(device_id) if device_id else None,
            version=_optional_int(raw.get("version")) or 1,
        )

# src/kanban_sync/board/reconcile.py

"""
Reconciliation engine.

Merges an incoming snapshot into local collections with last-writer-wins on
the effective timestamp of each entity:

- unknown id            -> adopt incoming (tombstones included)
- incoming >= local     -> incoming replaces local (ties go to incoming)
- incoming <  local     -> keep local

Counters are adopted (clear_existing) or maxed (merge) so that ids generated
after the merge never reuse a counter value already seen.

The guard (SyncGuard) is the concurrency control for the cooperative model:
an import is declined while a local edit is in flight (suspended) or shortly
after one (debounce window).
"""

from __future__ import annotations

import contextlib
import copy
import logging
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from .models import EPOCH, EntityKind, Note, Snapshot, Subtask, Task

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 10.0

E = TypeVar("E", Task, Note, Subtask)


def effective_timestamp(entity: Task | Note | Subtask) -> datetime:
    return entity.updated_at or entity.created_at or EPOCH


def incoming_wins(local: Task | Note | Subtask, incoming: Task | Note | Subtask) -> bool:
    """Ties favour the incoming entity."""
    return effective_timestamp(incoming) >= effective_timestamp(local)


@dataclass(slots=True)
class MergeOutcome(Generic[E]):
    items: list[E]
    adopted: int = 0
    replaced: int = 0
    kept: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": len(self.items),
            "deleted": sum(1 for i in self.items if i.deleted),
            "adopted": self.adopted,
            "replaced": self.replaced,
            "kept": self.kept,
        }


def merge_entities(local: Sequence[E], incoming: Sequence[E]) -> MergeOutcome[E]:
    """
    Union of local and incoming keyed by id.

    Local order is preserved; ids only present in incoming are appended in
    incoming order. Returned items are the original objects (no copies).
    """
    by_id: dict[int, E] = {}
    for item in local:
        by_id[item.id] = item

    outcome: MergeOutcome[E] = MergeOutcome(items=[])
    for inc in incoming:
        existing = by_id.get(inc.id)
        if existing is None:
            by_id[inc.id] = inc
            outcome.adopted += 1
        elif incoming_wins(existing, inc):
            by_id[inc.id] = inc
            outcome.replaced += 1
        else:
            outcome.kept += 1

    outcome.items = list(by_id.values())
    return outcome


def reconcile_counters(
    local: Mapping[EntityKind, int],
    incoming: Mapping[EntityKind, int],
    *,
    clear_existing: bool,
) -> dict[EntityKind, int]:
    out: dict[EntityKind, int] = {}
    for kind in EntityKind:
        mine = int(local.get(kind, 1) or 1)
        theirs = int(incoming.get(kind, 0) or 0)
        if clear_existing:
            out[kind] = theirs if theirs > 0 else mine
        else:
            out[kind] = max(mine, theirs, 1)
    return out


@dataclass(slots=True)
class MergeReport:
    tasks: MergeOutcome[Task]
    notes: MergeOutcome[Note]
    subtasks: MergeOutcome[Subtask]
    counters: dict[EntityKind, int]

    def stats(self) -> dict[str, Any]:
        return {
            "tasks": self.tasks.as_dict(),
            "notes": self.notes.as_dict(),
            "subtasks": self.subtasks.as_dict(),
            "counters": {k.value: v for k, v in self.counters.items()},
        }


def merge_snapshots(local: Snapshot, incoming: Snapshot, *, clear_existing: bool) -> MergeReport:
    """
    Merge two snapshots; incoming entities are deep-copied so the result never
    aliases the caller's objects.
    """
    incoming = copy.deepcopy(incoming)
    report = MergeReport(
        tasks=merge_entities(local.tasks, incoming.tasks),
        notes=merge_entities(local.notes, incoming.notes),
        subtasks=merge_entities(local.subtasks, incoming.subtasks),
        counters=reconcile_counters(
            local.counters(), incoming.counters(), clear_existing=clear_existing
        ),
    )
    logger.debug("Merge result: %s", report.stats())
    return report


@dataclass(slots=True)
class ImportResult:
    success: bool
    message: str
    skipped: bool = False
    stats: dict[str, Any] = field(default_factory=dict)


class SyncGuard:
    """
    Import guard shared by the orchestrator (owner) and the store (reader).

    - suspended: raised while a local edit is in flight; imports are skipped.
    - debounce: imports are skipped within `debounce_seconds` of the last
      local change.
    """

    def __init__(
        self,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self._clock = clock
        self._suspend_depth = 0
        self._suspended_until: float | None = None
        self.last_local_change: float | None = None

    @property
    def suspended(self) -> bool:
        if self._suspend_depth > 0:
            return True
        return self._suspended_until is not None and self._clock() < self._suspended_until

    def mark_local_change(self) -> None:
        self.last_local_change = self._clock()

    def seconds_since_local_change(self) -> float | None:
        if self.last_local_change is None:
            return None
        return self._clock() - self.last_local_change

    @contextlib.contextmanager
    def suspend(self) -> Iterator[None]:
        self._suspend_depth += 1
        try:
            yield
        finally:
            self._suspend_depth -= 1

    def suspend_for(self, seconds: float) -> None:
        until = self._clock() + max(0.0, float(seconds))
        if self._suspended_until is None or until > self._suspended_until:
            self._suspended_until = until

    def resume(self) -> None:
        self._suspended_until = None

    def check(self) -> str | None:
        """Return the reason an import must be skipped right now, or None."""
        if self.suspended:
            return "sync suspended while a local edit is in flight"
        age = self.seconds_since_local_change()
        if age is not None and age < self.debounce_seconds:
            return f"recent local changes ({age:.1f}s ago)"
        return None

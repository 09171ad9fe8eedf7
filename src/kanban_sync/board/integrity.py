# src/kanban_sync/board/integrity.py

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import Note, Subtask, Task
from .store import LocalStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IntegrityReport:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    duplicate_ids: dict[str, list[int]] = field(default_factory=dict)
    orphaned_notes: int = 0
    orphaned_subtasks: int = 0
    stats: dict[str, int] = field(default_factory=dict)


def _duplicates(ids: Iterable[int]) -> list[int]:
    return sorted(i for i, n in Counter(ids).items() if n > 1)


def validate_integrity(store: LocalStore) -> IntegrityReport:
    """
    Check the store for duplicate ids and orphaned children.

    - duplicates are reported only: there is no way to tell which copy wins
    - orphans (task_id pointing at no task, deleted or not) are removed
    """
    issues: list[str] = []
    duplicate_ids: dict[str, list[int]] = {}

    for label, items in (
        ("task", store.all_tasks()),
        ("note", store.all_notes()),
        ("subtask", store.all_subtasks()),
    ):
        dups = _duplicates(i.id for i in items)
        if dups:
            duplicate_ids[label] = dups
            issues.append(f"Duplicate {label} IDs found: {', '.join(map(str, dups))}")

    task_ids = {t.id for t in store.all_tasks()}
    orphaned_notes = sum(
        1 for n in store.all_notes() if n.task_id is not None and n.task_id not in task_ids
    )
    orphaned_subtasks = sum(
        1 for s in store.all_subtasks() if s.task_id is not None and s.task_id not in task_ids
    )
    if orphaned_notes:
        issues.append(f"{orphaned_notes} orphaned notes found")
    if orphaned_subtasks:
        issues.append(f"{orphaned_subtasks} orphaned subtasks found")

    if orphaned_notes or orphaned_subtasks:

        def orphan(entity: Task | Note | Subtask) -> bool:
            return (
                isinstance(entity, (Note, Subtask))
                and entity.task_id is not None
                and entity.task_id not in task_ids
            )

        removed = store.purge(orphan)
        logger.warning("Removed orphaned data: %s", removed.as_dict())

    if duplicate_ids:
        logger.warning("Integrity check found duplicates: %s", duplicate_ids)

    return IntegrityReport(
        is_valid=not issues,
        issues=issues,
        duplicate_ids=duplicate_ids,
        orphaned_notes=orphaned_notes,
        orphaned_subtasks=orphaned_subtasks,
        stats=store.counts(),
    )

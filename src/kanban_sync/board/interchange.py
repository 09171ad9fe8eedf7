# src/kanban_sync/board/interchange.py

"""
Backup / restore documents.

The export carries both layouts seen in the wild so either kind of importer
can read it:
- "database": server layout, subtasks under "subTasks", plus tags
- "data": mobile layout, subtasks under "subtasks", plus id counters
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ..errors import InterchangeError
from .models import Snapshot, format_ts, utc_now
from .store import LocalStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
APP_NAME = "Kanban Todo Board"


def build_export_document(store: LocalStore, *, app_name: str = APP_NAME) -> dict[str, Any]:
    snap = store.export_snapshot()
    tasks = [t.to_dict() for t in snap.tasks]
    notes = [n.to_dict() for n in snap.notes]
    subtasks = [s.to_dict() for s in snap.subtasks]
    tags = store.get_tags()
    exported_at = format_ts(utc_now())

    return {
        "exportDate": exported_at,
        "version": EXPORT_VERSION,
        "app_name": app_name,
        "database": {
            "tasks": tasks,
            "notes": notes,
            "subTasks": subtasks,
            "tags": tags,
        },
        "metadata": {
            "totalTasks": len(tasks),
            "totalNotes": len(notes),
            "totalSubTasks": len(subtasks),
            "totalTags": len(tags),
        },
        "data": {
            "tasks": tasks,
            "notes": notes,
            "subtasks": subtasks,
            "nextTaskId": snap.next_task_id,
            "nextNoteId": snap.next_note_id,
            "nextSubtaskId": snap.next_subtask_id,
        },
        "exported_at": exported_at,
    }


def parse_import_document(doc: Any) -> Snapshot:
    """
    Accept {"data": {...}}, {"database": {...}} or a bare snapshot.

    Subtasks are read from "subtasks" or "subTasks" in any layout.
    """
    if not isinstance(doc, Mapping):
        raise InterchangeError("import document must be a JSON object")

    body: Any
    if isinstance(doc.get("data"), Mapping):
        body = doc["data"]
    elif isinstance(doc.get("database"), Mapping):
        body = doc["database"]
    elif "tasks" in doc:
        body = doc
    else:
        raise InterchangeError('invalid import format: expected "data" or "database" property')

    if not isinstance(body.get("tasks", []), list):
        raise InterchangeError('"tasks" must be a list')

    return Snapshot.from_dict(body)


def write_export(store: LocalStore, path: str | Path) -> Path:
    path = Path(path)
    doc = build_export_document(store)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), "utf-8")
    os.replace(tmp, path)
    with contextlib.suppress(OSError):
        # Personal data: keep the backup private on disk.
        os.chmod(path, 0o600)
    logger.info("Exported %s to %s", doc["metadata"], path)
    return path


def read_import(path: str | Path) -> Snapshot:
    path = Path(path)
    try:
        doc = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as e:
        raise InterchangeError(f"{path} is not valid JSON: {e}") from e
    return parse_import_document(doc)

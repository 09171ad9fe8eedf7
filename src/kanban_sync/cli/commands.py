# src/kanban_sync/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from ..board.integrity import validate_integrity
from ..board.interchange import read_import, write_export
from ..board.models import Task, TaskPriority, TaskStatus
from ..board.store import SortBy, TaskFilters
from ..core.state import AppState
from ..errors import InterchangeError

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, /sync, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Handlers may be plain functions or coroutines.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            result = cast(CommandHandler3, handler)(state, args, emit)
        else:
            result = cast(CommandHandler2, handler)(state, args)

        if inspect.isawaitable(result):
            return await result
        return result

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def _parse_id(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


def _split_markers(args: list[str]) -> tuple[list[str], list[str], str | None]:
    """
    Split "#tag" and "!priority" markers out of free text.

    Returns (words, tags, priority).
    """
    words: list[str] = []
    tags: list[str] = []
    priority: str | None = None
    for a in args:
        if a.startswith("#") and len(a) > 1:
            tags.append(a[1:])
        elif a.startswith("!") and a[1:].lower() in {p.value for p in TaskPriority}:
            priority = a[1:].lower()
        else:
            words.append(a)
    return words, tags, priority


def _format_task(task: Task) -> str:
    tags = f" [{', '.join('#' + t for t in task.tags)}]" if task.tags else ""
    due = f" due {task.due_date}" if task.due_date else ""
    reason = f" ({task.pending_reason})" if task.pending_reason else ""
    return f"{task.id} [{task.status.value}{reason}] !{task.priority.value} {task.title}{tags}{due}"


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add Buy milk #home !high
    """
    words, tags, priority = _split_markers(args)
    title = " ".join(words).strip()
    if not title:
        return "Usage: /add <title> [#tag ...] [!low|!medium|!high|!urgent]"

    task = state.store.add_task(title, tags=tags, priority=priority or TaskPriority.MEDIUM)
    return f"Added: {_format_task(task)}"


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list [todo|in_progress|pending|done] [#tag] [-#tag] [!priority] [sort=priority|due_date|title]
    """
    filters = TaskFilters()
    include: list[str] = []
    exclude: list[str] = []
    search: list[str] = []

    for a in args:
        low = a.lower()
        if low in {s.value for s in TaskStatus}:
            filters.status = low
        elif a.startswith("-#") and len(a) > 2:
            exclude.append(a[2:])
        elif a.startswith("#") and len(a) > 1:
            include.append(a[1:])
        elif a.startswith("!") and low[1:] in {p.value for p in TaskPriority}:
            filters.priority = low[1:]
        elif low.startswith("sort="):
            try:
                filters.sort_by = SortBy(low[len("sort="):])
            except ValueError:
                return f"Unknown sort: {low[len('sort='):]}. Use: {', '.join(s.value for s in SortBy)}"
        else:
            search.append(a)

    filters.include_tags = include
    filters.exclude_tags = exclude
    filters.search = " ".join(search) or None

    tasks = state.store.get_tasks(filters)
    if not tasks:
        return "No tasks."
    return "\n".join(_format_task(t) for t in tasks)


def cmd_show(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    if task_id is None:
        return "Usage: /show <task_id>"

    task = state.store.get_task(task_id)
    if task is None:
        return f"Task {task_id} not found."

    lines = [_format_task(task)]
    if task.description:
        lines.append(f"  {task.description}")
    lines.append(f"  created {_ts_local(task.created_at)}, updated {_ts_local(task.updated_at)}")

    subtasks = state.store.get_subtasks_by_task_id(task_id)
    if subtasks:
        lines.append("  Subtasks:")
        for s in subtasks:
            lines.append(f"    {s.id} [{'x' if s.completed else ' '}] {s.title}")

    notes = state.store.get_notes_by_task_id(task_id)
    if notes:
        lines.append("  Notes:")
        for n in notes:
            lines.append(f"    {n.id} {_ts_local(n.created_at)}: {n.content}")

    return "\n".join(lines)


def cmd_move(state: AppState, args: list[str]) -> str:
    """
    /move <task_id> <todo|in_progress|pending|done> [reason...]
    """
    task_id = _parse_id(args[0]) if args else None
    if task_id is None or len(args) < 2:
        return "Usage: /move <task_id> <todo|in_progress|pending|done> [reason]"

    try:
        status = TaskStatus(args[1].lower())
    except ValueError:
        return f"Unknown status: {args[1]}"

    reason = " ".join(args[2:]).strip() or None
    task = state.store.update_task_status(task_id, status, reason)
    if task is None:
        return f"Task {task_id} not found."
    return f"Moved: {_format_task(task)}"


_EDIT_FIELDS = {
    "title": "title",
    "description": "description",
    "desc": "description",
    "priority": "priority",
    "due": "due_date",
    "tags": "tags",
}


def cmd_edit(state: AppState, args: list[str]) -> str:
    """
    /edit <task_id> title|description|priority|due|tags <value...>
    """
    task_id = _parse_id(args[0]) if args else None
    if task_id is None or len(args) < 2:
        return "Usage: /edit <task_id> title|description|priority|due|tags <value>"

    field_name = _EDIT_FIELDS.get(args[1].lower())
    if field_name is None:
        return f"Unknown field: {args[1]}. Use: {', '.join(sorted(_EDIT_FIELDS))}"

    rest = args[2:]
    value: Any
    if field_name == "tags":
        value = [t.lstrip("#") for t in rest]
    elif field_name == "priority":
        try:
            value = TaskPriority((rest[0] if rest else "").lower().lstrip("!"))
        except ValueError:
            return f"Unknown priority: {' '.join(rest)}"
    else:
        value = " ".join(rest).strip()
        if field_name == "title" and not value:
            return "Title cannot be empty."

    task = state.store.update_task(task_id, **{field_name: value})
    if task is None:
        return f"Task {task_id} not found."
    return f"Updated: {_format_task(task)}"


def cmd_delete(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    if task_id is None:
        return "Usage: /delete <task_id>"
    if not state.store.delete_task(task_id):
        return f"Task {task_id} not found."
    return f"Deleted task {task_id} (with its notes and subtasks)."


def cmd_note(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    content = " ".join(args[1:]).strip()
    if task_id is None or not content:
        return "Usage: /note <task_id> <text>"
    if state.store.get_task(task_id) is None:
        return f"Task {task_id} not found."
    note = state.store.add_note(task_id, content)
    return f"Note {note.id} added to task {task_id}."


def cmd_sub(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    title = " ".join(args[1:]).strip()
    if task_id is None or not title:
        return "Usage: /sub <task_id> <title>"
    if state.store.get_task(task_id) is None:
        return f"Task {task_id} not found."
    subtask = state.store.add_subtask(task_id, title)
    return f"Subtask {subtask.id} added to task {task_id}."


def cmd_toggle(state: AppState, args: list[str]) -> str:
    subtask_id = _parse_id(args[0]) if args else None
    if subtask_id is None:
        return "Usage: /toggle <subtask_id>"
    subtask = state.store.get_subtask(subtask_id)
    if subtask is None:
        return f"Subtask {subtask_id} not found."
    updated = state.store.update_subtask(subtask_id, completed=not subtask.completed)
    assert updated is not None
    return f"Subtask {subtask_id} {'completed' if updated.completed else 'reopened'}."


def cmd_tags(state: AppState, args: list[str]) -> str:
    tags = state.store.get_tags()
    if not tags:
        return "No tags."
    return " ".join(f"#{t}" for t in tags)


async def cmd_sync(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /sync         -> pull + merge + push now
    /sync resync  -> forget what was seen and adopt the cloud counters
    """
    if state.provider is None:
        return "Cloud sync is not configured (set KANBAN_SYNC_PROVIDER)."

    if emit:
        with contextlib.suppress(Exception):
            emit(f"[SYNC] Syncing with {state.provider.name}...")

    if args and args[0].lower() == "resync":
        outcome = await state.orchestrator.resync()
    else:
        outcome = await state.orchestrator.request_sync()
    await state.orchestrator.flush()

    lines = [outcome.message]
    if outcome.integrity is not None and outcome.integrity.issues:
        lines.extend(f"  ! {issue}" for issue in outcome.integrity.issues)
    return "\n".join(lines)


def cmd_status(state: AppState, args: list[str]) -> str:
    status = state.orchestrator.status()
    counts = state.store.counts()
    return (
        "Status:\n"
        f"  Device: {state.device_id}\n"
        f"  Provider: {status.provider or 'none (local only)'}\n"
        f"  Sync: {status.state.value}, {'online' if status.online else 'offline'}\n"
        f"  Last sync: {status.last_sync or '-'}\n"
        f"  Unshared changes: {'yes' if status.dirty or status.push_pending else 'no'}\n"
        f"  Last error: {status.last_error or '-'}\n"
        f"  Tasks: {counts['tasks']} (+{counts['deleted_tasks']} deleted), "
        f"notes: {counts['notes']}, subtasks: {counts['subtasks']}"
    )


def cmd_check(state: AppState, args: list[str]) -> str:
    report = validate_integrity(state.store)
    if report.is_valid:
        return "Data integrity OK."
    return "Integrity issues:\n" + "\n".join(f"  - {i}" for i in report.issues)


def cmd_export(state: AppState, args: list[str]) -> str:
    if args:
        path = Path(args[0]).expanduser()
    else:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = Path(state.settings.data_dir) / f"kanban-export-{stamp}.json"
    try:
        written = write_export(state.store, path)
    except OSError as e:
        logger.exception("Export to %s failed", path)
        return f"Export failed: {e}"
    return f"Exported to {written}"


def cmd_import(state: AppState, args: list[str]) -> str:
    """
    /import <path>            -> merge a backup into the board
    /import <path> --replace  -> merge and adopt the backup's id counters
    """
    if not args:
        return "Usage: /import <path> [--replace]"

    path = Path(args[0]).expanduser()
    clear_existing = "--replace" in args[1:]
    try:
        snapshot = read_import(path)
    except FileNotFoundError:
        return f"File not found: {path}"
    except (InterchangeError, OSError) as e:
        return f"Import failed: {e}"

    result = state.store.import_snapshot(snapshot, clear_existing=clear_existing)
    if not result.success:
        return result.message
    # Imported data is shared like any local change.
    state.orchestrator.request_push()
    tasks = result.stats.get("tasks", {})
    return f"{result.message}: {tasks.get('adopted', 0)} new, {tasks.get('replaced', 0)} updated tasks."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [#tag] [!priority].")
registry.register("list", cmd_list, help_text="List tasks: /list [status] [#tag] [-#tag] [!priority] [sort=...].", aliases=["ls"])
registry.register("show", cmd_show, help_text="Show a task with its notes and subtasks.")
registry.register("move", cmd_move, help_text="Change status: /move <id> <status> [reason].")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <id> <field> <value>.")
registry.register("delete", cmd_delete, help_text="Delete a task (and its notes/subtasks).", aliases=["rm"])
registry.register("note", cmd_note, help_text="Add a note: /note <task_id> <text>.")
registry.register("sub", cmd_sub, help_text="Add a subtask: /sub <task_id> <title>.")
registry.register("toggle", cmd_toggle, help_text="Toggle a subtask: /toggle <subtask_id>.")
registry.register("tags", cmd_tags, help_text="List all tags in use.")
registry.register("sync", cmd_sync, help_text="Sync now: /sync | /sync resync.")
registry.register("status", cmd_status, help_text="Show device, sync and board status.")
registry.register("check", cmd_check, help_text="Validate data integrity (removes orphans).")
registry.register("export", cmd_export, help_text="Export a backup: /export [path].")
registry.register("import", cmd_import, help_text="Import a backup: /import <path> [--replace].")

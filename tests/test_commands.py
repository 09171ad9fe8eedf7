# tests/test_commands.py

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from kanban_sync.board.models import TaskStatus
from kanban_sync.cli.bootstrap import create_app
from kanban_sync.cli.commands import CommandRegistry, registry
from kanban_sync.core.state import AppState


@pytest.fixture()
def state(settings: SimpleNamespace):
    app = create_app(settings=settings)
    yield app
    app.persistence.close()


@pytest.mark.asyncio
async def test_command_registry_routes_2_and_3_params(state: AppState) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    emitted: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return "h2 " + ",".join(args)

    async def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert await reg.handle(state, "/a x y") == "h2 x,y"
    assert await reg.handle(state, "/BEE", emit=emitted.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert emitted == ["note"]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state: AppState) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_help_lists_commands(state: AppState) -> None:
    reply = await registry.handle(state, "/help")
    assert "/add" in reply and "/sync" in reply and "/import" in reply


@pytest.mark.asyncio
async def test_add_list_move_show(state: AppState) -> None:
    reply = await registry.handle(state, "/add Buy milk #home !high")
    assert reply.startswith("Added:")
    task = state.store.get_tasks()[0]
    assert task.title == "Buy milk"
    assert task.tags == ["home"]
    assert task.priority.value == "high"

    await registry.handle(state, "/add Write report #work")

    listing = await registry.handle(state, "/list #home")
    assert "Buy milk" in listing and "Write report" not in listing
    assert "Write report" in await registry.handle(state, "/ls -#home")
    assert await registry.handle(state, "/list done") == "No tasks."

    reply = await registry.handle(state, f"/move {task.id} pending waiting for the shop")
    assert "(waiting for the shop)" in reply
    assert state.store.get_task(task.id).status == TaskStatus.PENDING

    await registry.handle(state, f"/note {task.id} oat milk")
    await registry.handle(state, f"/sub {task.id} check fridge")
    shown = await registry.handle(state, f"/show {task.id}")
    assert "oat milk" in shown and "check fridge" in shown


@pytest.mark.asyncio
async def test_edit_toggle_delete(state: AppState) -> None:
    await registry.handle(state, "/add Water plants")
    task = state.store.get_tasks()[0]

    await registry.handle(state, f"/edit {task.id} desc the ferns too")
    assert state.store.get_task(task.id).description == "the ferns too"
    assert "Unknown field" in await registry.handle(state, f"/edit {task.id} colour green")
    assert "Title cannot be empty" in await registry.handle(state, f"/edit {task.id} title")

    await registry.handle(state, f"/sub {task.id} kitchen")
    subtask = state.store.get_subtasks(task.id)[0]
    assert "completed" in await registry.handle(state, f"/toggle {subtask.id}")
    assert state.store.get_subtask(subtask.id).completed

    assert "Deleted" in await registry.handle(state, f"/rm {task.id}")
    assert state.store.get_task(task.id) is None
    assert "not found" in await registry.handle(state, f"/delete {task.id}")


@pytest.mark.asyncio
async def test_invalid_arguments_get_usage(state: AppState) -> None:
    assert (await registry.handle(state, "/add")).startswith("Usage:")
    assert (await registry.handle(state, "/move abc done")).startswith("Usage:")
    assert "Unknown status" in await registry.handle(state, "/move 1 later")
    assert "Unknown sort" in await registry.handle(state, "/list sort=colour")


@pytest.mark.asyncio
async def test_sync_and_status_when_local_only(state: AppState) -> None:
    assert "not configured" in await registry.handle(state, "/sync")

    status = await registry.handle(state, "/status")
    assert "device-test-000111" in status
    assert "none (local only)" in status


@pytest.mark.asyncio
async def test_sync_with_folder_provider(settings: SimpleNamespace, tmp_path: Path) -> None:
    cloud_dir = tmp_path / "cloud"
    cloud_dir.mkdir()
    settings.sync_provider = "folder"
    settings.sync_folder = cloud_dir
    app = create_app(settings=settings)
    try:
        emitted: list[str] = []
        app.store.add_task("Buy milk")

        reply = await registry.handle(app, "/sync", emit=emitted.append)

        assert reply == "no remote data"
        assert emitted == ["[SYNC] Syncing with folder..."]
        blob = json.loads((cloud_dir / "kanban-data.json").read_text("utf-8"))
        assert [t["title"] for t in blob["tasks"]] == ["Buy milk"]
        assert blob["deviceId"] == "device-test-000111"
    finally:
        await app.orchestrator.aclose()
        app.persistence.close()


@pytest.mark.asyncio
async def test_export_then_import_into_another_board(state: AppState, settings: SimpleNamespace, tmp_path: Path) -> None:
    await registry.handle(state, "/add Buy milk #home")
    path = tmp_path / "backup.json"

    assert "Exported to" in await registry.handle(state, f"/export {path}")
    assert path.exists()

    # the same board edited a moment ago refuses to merge
    assert "Import skipped" in await registry.handle(state, f"/import {path}")

    other_settings = SimpleNamespace(**vars(settings))
    other_settings.data_dir = tmp_path / "other"
    other_settings.db_path = tmp_path / "other" / "board.sqlite3"
    other_settings.device_id = "device-other-222333"
    other = create_app(settings=other_settings)
    try:
        reply = await registry.handle(other, f"/import {path}")
        assert reply == "Import completed: 1 new, 0 updated tasks."
        assert [t.title for t in other.store.get_tasks()] == ["Buy milk"]
    finally:
        other.persistence.close()

    assert "File not found" in await registry.handle(state, f"/import {tmp_path / 'missing.json'}")


@pytest.mark.asyncio
async def test_check_reports_clean_board(state: AppState) -> None:
    await registry.handle(state, "/add Buy milk")
    assert await registry.handle(state, "/check") == "Data integrity OK."


@pytest.mark.asyncio
async def test_console_loop_plain_text_adds_a_task(
    state: AppState, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    from kanban_sync.connectors import console_connector

    lines = iter(["Buy milk #home", "", "/move abc", "/list", "/exit", "never read"])

    async def scripted(prompt: str) -> str:
        return next(lines)

    monkeypatch.setattr(console_connector, "_ainput", scripted)

    await console_connector.run_console_loop(state)

    assert [t.title for t in state.store.get_tasks()] == ["Buy milk"]
    out = capsys.readouterr().out
    assert "Added:" in out
    assert "Usage: /move" in out
    assert next(lines) == "never read"

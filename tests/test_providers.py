# tests/test_providers.py

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

from kanban_sync.board.models import Snapshot, Task
from kanban_sync.sync.providers import (
    FolderSyncProvider,
    HttpKeyValueProvider,
    build_provider,
)
from kanban_sync.sync.retry import RetryPolicy

from .fakes import T0, FakeClock, FakeSleep, MemoryCloudProvider, SharedCloud


def _snapshot() -> Snapshot:
    return Snapshot(
        tasks=[Task(id=1, title="Buy milk", created_at=T0, updated_at=T0)],
        next_task_id=2,
        next_note_id=1,
        next_subtask_id=1,
    )


class _KvServer:
    """In-memory key-value HTTP endpoint for httpx.MockTransport."""

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.fail_with: int | None = None
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)
        key = request.url.path
        if request.method == "GET":
            if key not in self.values:
                return httpx.Response(404)
            return httpx.Response(200, content=self.values[key])
        if request.method == "PUT":
            self.values[key] = request.content
            return httpx.Response(204)
        return httpx.Response(405)


def _http_provider(server: _KvServer, clock: FakeClock, sleep: FakeSleep | None = None) -> HttpKeyValueProvider:
    client = httpx.AsyncClient(base_url="https://kv.test/v1", transport=httpx.MockTransport(server))
    return HttpKeyValueProvider(
        "https://kv.test/v1",
        client=client,
        device_id="device-a",
        clock=clock,
        sleep=sleep or FakeSleep(),
    )


# ---- folder ----


@pytest.mark.asyncio
async def test_folder_save_stamps_and_load_round_trips(tmp_path: Path) -> None:
    clock = FakeClock()
    provider = FolderSyncProvider(tmp_path, device_id="device-a", clock=clock, sleep=FakeSleep())

    assert await provider.load() is None
    assert await provider.save(_snapshot()) is True

    raw = json.loads(provider.path.read_text("utf-8"))
    assert raw["lastSync"] == "2024-03-01T09:00:00.000Z"
    assert raw["deviceId"] == "device-a"
    assert raw["syncId"] == f"device-a-{clock.now_ms()}"
    assert raw["nextTaskId"] == 2
    assert provider.last_known_sync == "2024-03-01T09:00:00.000Z"
    # atomic replace leaves no temp files behind
    assert [p.name for p in tmp_path.iterdir()] == ["kanban-data.json"]

    loaded = await provider.load()
    assert loaded is not None
    assert loaded.tasks == _snapshot().tasks
    assert loaded.device_id == "device-a"
    assert loaded.last_sync == "2024-03-01T09:00:00.000Z"


@pytest.mark.asyncio
async def test_folder_availability(tmp_path: Path) -> None:
    ok = FolderSyncProvider(tmp_path, device_id="d")
    availability = await ok.check_availability()
    assert availability.available
    assert list(tmp_path.iterdir()) == []

    missing = FolderSyncProvider(tmp_path / "not-mounted", device_id="d")
    availability = await missing.check_availability()
    assert not availability.available
    assert "not accessible" in availability.reason


@pytest.mark.asyncio
async def test_folder_corrupted_blob_loads_as_none(tmp_path: Path) -> None:
    provider = FolderSyncProvider(tmp_path, key="board", device_id="d", sleep=FakeSleep())
    (tmp_path / "board.json").write_text("{truncated", "utf-8")
    assert await provider.load() is None

    (tmp_path / "board.json").write_text("[1, 2]", "utf-8")
    assert await provider.load() is None


# ---- contract helpers (shared by every backend) ----


@pytest.mark.asyncio
async def test_check_for_updates_compares_last_sync() -> None:
    clock = FakeClock()
    cloud = SharedCloud()
    provider = MemoryCloudProvider(cloud, device_id="device-a", clock=clock)

    empty = await provider.check_for_updates(None)
    assert not empty.has_updates and empty.data is None

    await provider.save(_snapshot())
    stamped = provider.last_known_sync

    newer = await provider.check_for_updates("2024-03-01T08:00:00.000Z")
    assert newer.has_updates
    assert newer.cloud_sync == stamped
    assert newer.data is not None and len(newer.data.tasks) == 1

    same = await provider.check_for_updates(stamped)
    assert not same.has_updates

    never_synced = await provider.check_for_updates(None)
    assert never_synced.has_updates


@pytest.mark.asyncio
async def test_save_retries_with_backoff_then_reports_failure() -> None:
    sleep = FakeSleep()
    cloud = SharedCloud(fail_writes=5)
    provider = MemoryCloudProvider(cloud, device_id="d", sleep=sleep)

    assert await provider.save(_snapshot()) is False
    assert sleep.calls == [2.0, 4.0]
    assert cloud.blob is None

    cloud.fail_writes = 1
    assert await provider.save(_snapshot()) is True
    assert cloud.writes == 1


@pytest.mark.asyncio
async def test_load_failure_returns_none() -> None:
    sleep = FakeSleep()
    cloud = SharedCloud(offline=True)
    provider = MemoryCloudProvider(cloud, device_id="d", sleep=sleep)

    assert await provider.load() is None
    assert cloud.reads == 3
    assert sleep.calls == [2.0, 2.0]


# ---- http ----


@pytest.mark.asyncio
async def test_http_provider_put_then_get() -> None:
    server = _KvServer()
    clock = FakeClock()
    provider = _http_provider(server, clock)

    assert await provider.load() is None
    assert await provider.save(_snapshot()) is True

    put = next(r for r in server.requests if r.method == "PUT")
    assert put.url.path == "/v1/kanban-data"
    assert put.headers["Content-Type"] == "application/json"

    loaded = await provider.load()
    assert loaded is not None
    assert [t.title for t in loaded.tasks] == ["Buy milk"]
    assert loaded.last_sync == "2024-03-01T09:00:00.000Z"

    await provider.aclose()


@pytest.mark.asyncio
async def test_http_provider_errors_are_contained() -> None:
    server = _KvServer()
    server.fail_with = 503
    sleep = FakeSleep()
    provider = _http_provider(server, FakeClock(), sleep)

    assert await provider.save(_snapshot()) is False
    assert await provider.load() is None
    assert len(server.requests) == 6

    availability = await provider.check_availability()
    assert not availability.available
    assert "503" in availability.reason


@pytest.mark.asyncio
async def test_http_probe_treats_empty_store_as_available() -> None:
    server = _KvServer()
    provider = _http_provider(server, FakeClock())
    assert (await provider.check_availability()).available

    server.fail_with = 401
    assert not (await provider.check_availability()).available


# ---- selection ----


@pytest.mark.asyncio
async def test_build_provider_selection(tmp_path: Path) -> None:
    base = dict(
        sync_folder=None,
        sync_url=None,
        sync_token=None,
        sync_key="board",
        http_timeout_seconds=3.0,
        retry_attempts=4,
        retry_delay_seconds=0.5,
    )

    assert build_provider(SimpleNamespace(sync_provider="none", **base), device_id="d") is None
    assert build_provider(SimpleNamespace(sync_provider="folder", **base), device_id="d") is None
    assert build_provider(SimpleNamespace(sync_provider="ftp", **base), device_id="d") is None

    folder = build_provider(
        SimpleNamespace(**{**base, "sync_provider": "folder", "sync_folder": tmp_path}),
        device_id="d",
    )
    assert isinstance(folder, FolderSyncProvider)
    assert folder.path == tmp_path / "board.json"
    assert folder._write_policy == RetryPolicy(attempts=4, delay_seconds=0.5, backoff=2.0)

    http = build_provider(
        SimpleNamespace(
            **{**base, "sync_provider": "http", "sync_url": "https://kv.test", "sync_token": "s3cret"}
        ),
        device_id="d",
    )
    assert isinstance(http, HttpKeyValueProvider)
    assert http._client.headers["Authorization"] == "Bearer s3cret"
    await http.aclose()

# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from kanban_sync.board.identity import DeviceIdentity, IdGenerator
from kanban_sync.board.reconcile import SyncGuard
from kanban_sync.board.store import LocalStore

from .fakes import FakeClock, FakeMonotonic, MemoryPersistence, SharedCloud


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="Kanban Todo Board",
        log_level="DEBUG",
        console_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "board.sqlite3",
        device_id="device-test-000111",
        # Sync: local only unless a test opts in
        sync_provider="none",
        sync_folder=None,
        sync_url=None,
        sync_token=None,
        sync_key="kanban-data",
        http_timeout_seconds=5.0,
        poll_interval_seconds=5.0,
        startup_timeout_seconds=1.0,
        debounce_seconds=10.0,
        retry_attempts=3,
        retry_delay_seconds=0.0,
        retention_days=30,
        sweep_interval_hours=24.0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def mono() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture()
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture()
def guard(mono: FakeMonotonic) -> SyncGuard:
    return SyncGuard(debounce_seconds=10.0, clock=mono)


@pytest.fixture()
def store(persistence: MemoryPersistence, guard: SyncGuard, clock: FakeClock) -> LocalStore:
    """
    LocalStore on in-memory persistence with deterministic clocks.

    Device id ends in 6 digits so id fragments are predictable.
    """
    identity = DeviceIdentity(persistence, configured_id="device-123456", now_ms=clock.now_ms)
    identity.resolve()
    ids = IdGenerator(identity, now_ms=clock.now_ms)
    s = LocalStore(persistence, ids, guard=guard, clock=clock)
    s.load()
    return s


@pytest.fixture()
def cloud() -> SharedCloud:
    return SharedCloud()

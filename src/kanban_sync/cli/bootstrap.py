# src/kanban_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState
  (persistence, identity, store, guard, provider, orchestrator, sweeper).

Nothing is started here; cli.main owns the event loop and background tasks.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..board.identity import DeviceIdentity, IdGenerator
from ..board.persistence import SqliteKeyValueStore
from ..board.reconcile import SyncGuard
from ..board.store import LocalStore
from ..board.sweeper import RetentionSweeper
from ..config import get_settings
from ..core.state import AppState
from ..sync.orchestrator import SyncOrchestrator
from ..sync.providers import build_provider

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_app(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings and load the local board.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    persistence = SqliteKeyValueStore(settings.db_path)

    identity = DeviceIdentity(persistence, configured_id=getattr(settings, "device_id", None))
    device_id = identity.resolve()
    ids = IdGenerator(identity)

    # Shared: the orchestrator drives it, the store consults it before imports.
    guard = SyncGuard(debounce_seconds=float(getattr(settings, "debounce_seconds", 10.0)))

    store = LocalStore(persistence, ids, guard=guard)
    store.load()

    provider = build_provider(settings, device_id=device_id)

    orchestrator = SyncOrchestrator(
        store,
        provider,
        persistence=persistence,
        guard=guard,
        poll_interval_seconds=float(getattr(settings, "poll_interval_seconds", 20.0)),
        startup_timeout_seconds=float(getattr(settings, "startup_timeout_seconds", 8.0)),
    )

    sweeper = RetentionSweeper(
        store,
        retention=timedelta(days=int(getattr(settings, "retention_days", 30))),
    )

    logger.info(
        "App wired: device=%s provider=%s db=%s",
        device_id,
        provider.name if provider is not None else "none",
        settings.db_path,
    )

    return AppState(
        settings=settings,
        persistence=persistence,
        identity=identity,
        ids=ids,
        guard=guard,
        store=store,
        orchestrator=orchestrator,
        sweeper=sweeper,
        provider=provider,
    )

# src/kanban_sync/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .ports import CloudSyncProvider, PersistenceAdapter

if TYPE_CHECKING:
    from ..board.identity import DeviceIdentity, IdGenerator
    from ..board.reconcile import SyncGuard
    from ..board.store import LocalStore
    from ..board.sweeper import RetentionSweeper
    from ..sync.orchestrator import SyncOrchestrator


@dataclass
class AppState:
    """
    Explicitly wired application objects, built once by the composition root.

    Connectors and commands receive this object instead of reaching for
    module-level singletons.
    """

    settings: Any

    persistence: PersistenceAdapter
    identity: DeviceIdentity
    ids: IdGenerator
    guard: SyncGuard
    store: LocalStore
    orchestrator: SyncOrchestrator
    sweeper: RetentionSweeper

    # None = local-only deployment.
    provider: CloudSyncProvider | None = None

    @property
    def device_id(self) -> str:
        return self.ids.device_id

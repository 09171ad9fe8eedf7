# src/kanban_sync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The store and the orchestrator depend on Protocols instead of concrete
implementations. This keeps persistence and cloud backends swappable and lets
tests drive the reconciliation logic with in-memory fakes.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..board.models import Snapshot
    from ..sync.providers import Availability, UpdateCheck

Clock = Callable[[], datetime]
# Returns timezone-aware UTC "now".

Sleep = Callable[[float], Awaitable[None]]
# asyncio.sleep-compatible; injectable so retries run without real timers.


class PersistenceAdapter(Protocol):
    """
    Durable local key-value storage.

    Always available; a failure here is fatal to the mutating operation that
    triggered it.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class CloudSyncProvider(Protocol):
    """
    Opaque remote storage for one snapshot record.

    At-least-once, no transactions, may be stale or slow. None of the methods
    raise for ordinary failures: save() returns False, load() returns None.
    """

    name: str
    last_known_sync: str | None

    async def save(self, snapshot: Snapshot) -> bool: ...

    async def load(self) -> Snapshot | None: ...

    async def check_availability(self) -> Availability: ...

    async def check_for_updates(self, local_last_sync: str | None) -> UpdateCheck: ...

    async def aclose(self) -> None: ...

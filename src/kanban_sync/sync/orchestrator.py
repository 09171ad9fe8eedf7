# src/kanban_sync/sync/orchestrator.py

"""
Sync orchestrator: decides WHEN to pull and push.

- pull: provider.load() -> freshness check -> store.import_snapshot()
- push: on every local change, the full snapshot goes to provider.save()

Both directions are coalesced: at most one sync and one push in flight; a
request that arrives meanwhile is folded into exactly one follow-up run.
Nothing here raises into callers: provider failures are logged and exposed
through status().
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..board.integrity import IntegrityReport, validate_integrity
from ..board.models import Snapshot, parse_ts
from ..board.persistence import LAST_SEEN_SYNC_KEY
from ..board.reconcile import ImportResult, SyncGuard
from ..board.store import ChangeEvent, ChangeSource, LocalStore
from ..core.ports import CloudSyncProvider, PersistenceAdapter, Sleep

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 20.0
DEFAULT_STARTUP_TIMEOUT_SECONDS = 8.0


class SyncState(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncReason(StrEnum):
    STARTUP = "startup"
    MANUAL = "manual"
    POLL = "poll"
    ONLINE = "online"
    FOREGROUND = "foreground"
    RESYNC = "resync"


@dataclass(slots=True)
class SyncOutcome:
    reason: str
    pulled: bool = False
    skipped: str | None = None
    coalesced: bool = False
    error: str | None = None
    result: ImportResult | None = None
    integrity: IntegrityReport | None = None

    @property
    def message(self) -> str:
        if self.error:
            return f"Sync failed: {self.error}"
        if self.pulled:
            return "Remote changes merged"
        return self.skipped or "Nothing to do"


@dataclass(slots=True, frozen=True)
class SyncStatus:
    state: SyncState
    provider: str | None
    online: bool
    last_sync: str | None
    last_error: str | None
    push_in_flight: bool
    push_pending: bool
    dirty: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "provider": self.provider,
            "online": self.online,
            "last_sync": self.last_sync,
            "last_error": self.last_error,
            "push_in_flight": self.push_in_flight,
            "push_pending": self.push_pending,
            "dirty": self.dirty,
        }


class SyncOrchestrator:
    def __init__(
        self,
        store: LocalStore,
        provider: CloudSyncProvider | None,
        *,
        persistence: PersistenceAdapter,
        guard: SyncGuard | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        startup_timeout_seconds: float = DEFAULT_STARTUP_TIMEOUT_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._provider = provider
        self._persistence = persistence
        self._guard = guard if guard is not None else store.guard
        self._poll_interval = max(1.0, float(poll_interval_seconds))
        self._startup_timeout = max(0.0, float(startup_timeout_seconds))
        self._sleep = sleep

        self._state = SyncState.IDLE
        self._rerun = False
        self._rerun_clear = False

        self._push_task: asyncio.Task[None] | None = None
        self._push_pending = False
        self._dirty = False

        self._online = provider is not None
        self._last_sync: str | None = None
        self._last_error: str | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._started = False

        self._seen_sync, self._seen_device = self._load_last_seen()

    # ---- wiring ----

    @property
    def provider(self) -> CloudSyncProvider | None:
        return self._provider

    @property
    def guard(self) -> SyncGuard:
        return self._guard

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_seen(self) -> tuple[str | None, str | None]:
        return self._seen_sync, self._seen_device

    @contextlib.contextmanager
    def suspend(self) -> Iterator[None]:
        """Hold off imports while a multi-step local edit is in progress."""
        with self._guard.suspend():
            yield

    def suspend_for(self, seconds: float) -> None:
        self._guard.suspend_for(seconds)

    # ---- freshness marker ----

    def _load_last_seen(self) -> tuple[str | None, str | None]:
        try:
            raw = self._persistence.get(LAST_SEEN_SYNC_KEY)
        except Exception:
            logger.exception("Failed to read last seen sync marker")
            return None, None
        if not raw:
            return None, None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupted last seen sync marker: %r", raw)
            return None, None
        if not isinstance(data, dict):
            return None, None
        return data.get("lastSync"), data.get("deviceId")

    def _mark_seen(self, last_sync: str | None, device_id: str | None) -> None:
        self._seen_sync, self._seen_device = last_sync, device_id
        self._last_sync = last_sync
        try:
            self._persistence.set(
                LAST_SEEN_SYNC_KEY,
                json.dumps({"lastSync": last_sync, "deviceId": device_id}),
            )
        except Exception:
            logger.exception("Failed to persist last seen sync marker")

    def forget_last_seen(self) -> None:
        self._mark_seen(None, None)

    def is_newer(self, snapshot: Snapshot) -> bool:
        """
        Has this device not yet merged `snapshot`?

        Missing timestamps count as newer; equal timestamps count as newer
        when they come from a different device than the one last seen.
        """
        if snapshot.last_sync is None or self._seen_sync is None:
            return True
        remote = parse_ts(snapshot.last_sync)
        seen = parse_ts(self._seen_sync)
        if remote is None or seen is None:
            return True
        if remote > seen:
            return True
        return remote == seen and snapshot.device_id != self._seen_device

    # ---- lifecycle ----

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def start(self) -> SyncOutcome | None:
        """
        Register for store changes and run the first sync.

        The first sync races startup_timeout; on timeout the app proceeds with
        local data while the pull finishes in the background.
        """
        if not self._started:
            self._store.add_change_listener(self._on_store_change)
            self._started = True

        if self._provider is None:
            logger.info("No cloud provider configured; running local-only")
            return None

        task = self._spawn(self.request_sync(SyncReason.STARTUP), "kanban-sync-startup")
        done, _ = await asyncio.wait({task}, timeout=self._startup_timeout)
        if task in done:
            return task.result()

        logger.warning(
            "Startup sync did not finish within %.1fs; continuing with local data",
            self._startup_timeout,
        )
        return None

    async def aclose(self) -> None:
        if self._started:
            self._store.remove_change_listener(self._on_store_change)
            self._started = False

        await self.flush()

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self._provider is not None:
            try:
                await self._provider.aclose()
            except Exception:
                logger.exception("Failed to close sync provider %s", self._provider.name)

    # ---- pull ----

    async def request_sync(
        self, reason: str = SyncReason.MANUAL, *, clear_existing: bool = False
    ) -> SyncOutcome:
        if self._provider is None:
            return SyncOutcome(reason=reason, skipped="cloud sync not configured")

        if self._state == SyncState.SYNCING:
            self._rerun = True
            self._rerun_clear = self._rerun_clear or clear_existing
            logger.debug("Sync already running; coalescing request (reason=%s)", reason)
            return SyncOutcome(reason=reason, coalesced=True, skipped="sync already in progress")

        self._state = SyncState.SYNCING
        try:
            while True:
                self._rerun = False
                outcome = await self._sync_once(reason, clear_existing=clear_existing)
                if not self._rerun:
                    return outcome
                clear_existing, self._rerun_clear = self._rerun_clear, False
                logger.debug("Running coalesced follow-up sync")
        finally:
            self._state = SyncState.IDLE

    async def resync(self) -> SyncOutcome:
        """Forget what was seen and merge the cloud snapshot, adopting its counters."""
        self.forget_last_seen()
        return await self.request_sync(SyncReason.RESYNC, clear_existing=True)

    async def _sync_once(self, reason: str, *, clear_existing: bool) -> SyncOutcome:
        assert self._provider is not None
        outcome = SyncOutcome(reason=reason)
        manual = reason in (SyncReason.MANUAL, SyncReason.RESYNC)

        try:
            if manual:
                validate_integrity(self._store)

            snapshot = await self._provider.load()
            if snapshot is None:
                outcome.skipped = "no remote data"
            elif not self.is_newer(snapshot):
                outcome.skipped = "remote snapshot already merged"
            else:
                result = self._store.import_snapshot(snapshot, clear_existing=clear_existing)
                outcome.result = result
                if result.success:
                    outcome.pulled = True
                    self._mark_seen(snapshot.last_sync, snapshot.device_id)
                    logger.info(
                        "Pulled snapshot lastSync=%s from device=%s (reason=%s)",
                        snapshot.last_sync,
                        snapshot.device_id,
                        reason,
                    )
                else:
                    outcome.skipped = result.message

            if manual:
                outcome.integrity = validate_integrity(self._store)
        except Exception as e:
            logger.exception("Sync failed (reason=%s)", reason)
            self._last_error = str(e) or type(e).__name__
            outcome.error = self._last_error
            return outcome

        if outcome.skipped:
            logger.debug("Sync (reason=%s): %s", reason, outcome.skipped)

        if manual or self._dirty:
            self.request_push()
        return outcome

    # ---- push ----

    def _on_store_change(self, event: ChangeEvent) -> None:
        if event.source == ChangeSource.LOCAL:
            self.request_push()

    def request_push(self) -> None:
        """Schedule a push of the full snapshot; bursts collapse into one trailing push."""
        if self._provider is None:
            return

        if self._push_task is not None and not self._push_task.done():
            self._push_pending = True
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called outside the event loop; the next online/foreground event pushes.
            self._dirty = True
            return

        self._push_pending = False
        self._push_task = loop.create_task(self._push_loop(), name="kanban-sync-push")

    async def _push_loop(self) -> None:
        while True:
            self._push_pending = False
            await self._push_once()
            if not self._push_pending:
                return
            logger.debug("Changes arrived during push; pushing again")

    async def _push_once(self) -> bool:
        assert self._provider is not None
        snapshot = self._store.export_snapshot()
        try:
            ok = await self._provider.save(snapshot)
        except Exception:
            logger.exception("Provider %s raised during save", self._provider.name)
            ok = False

        if not ok:
            self._dirty = True
            self._online = False
            self._last_error = "push failed; local changes not yet shared"
            logger.warning("Push failed; will retry when the provider is reachable again")
            return False

        self._dirty = False
        self._online = True
        self._last_error = None
        # Our own write must not come back as "new" on the next pull.
        self._mark_seen(self._provider.last_known_sync, self._store.device_id)
        return True

    async def flush(self) -> None:
        """Wait until no push is in flight (shutdown, tests)."""
        while self._push_task is not None and not self._push_task.done():
            task = self._push_task
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            except Exception:
                logger.exception("Push task failed")

    # ---- triggers ----

    async def notify_online(self) -> SyncOutcome:
        if not self._online:
            logger.info("Network back online")
        self._online = True
        return await self.request_sync(SyncReason.ONLINE)

    async def notify_foreground(self) -> SyncOutcome:
        return await self.request_sync(SyncReason.FOREGROUND)

    async def poll_once(self) -> SyncOutcome | None:
        if self._provider is None:
            return None
        if self._guard.suspended:
            logger.debug("Polling skipped: sync suspended")
            return None

        if not self._online:
            availability = await self._provider.check_availability()
            if not availability.available:
                logger.debug("Still offline: %s", availability.reason)
                return None
            return await self.notify_online()

        return await self.request_sync(SyncReason.POLL)

    async def run_polling(self) -> None:
        """
        Periodic pull loop.

        To stop polling, cancel the coroutine/task.
        """
        if self._provider is None:
            logger.info("Sync polling disabled: no cloud provider")
            return

        logger.info("Sync polling every %.1fs via %s", self._poll_interval, self._provider.name)
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Sync polling iteration failed")
            await self._sleep(self._poll_interval)

    # ---- status ----

    def status(self) -> SyncStatus:
        push_in_flight = self._push_task is not None and not self._push_task.done()
        return SyncStatus(
            state=self._state,
            provider=self._provider.name if self._provider is not None else None,
            online=self._online,
            last_sync=self._last_sync or self._seen_sync,
            last_error=self._last_error,
            push_in_flight=push_in_flight,
            push_pending=self._push_pending,
            dirty=self._dirty,
        )

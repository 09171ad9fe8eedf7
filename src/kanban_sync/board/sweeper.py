# src/kanban_sync/board/sweeper.py

"""
Retention sweeper.

Tombstones are kept long enough for every device to learn about a deletion,
then hard-purged. Entities without deleted_at are never swept.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from ..core.ports import Clock
from .models import Note, Subtask, Task, utc_now
from .store import LocalStore, PurgeCounts

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)
DEFAULT_SWEEP_INTERVAL_SECONDS = 24 * 60 * 60.0


class RetentionSweeper:
    def __init__(
        self,
        store: LocalStore,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._retention = retention
        self._clock = clock

    @property
    def retention(self) -> timedelta:
        return self._retention

    def sweep(self) -> PurgeCounts:
        cutoff = self._clock() - self._retention

        def expired(entity: Task | Note | Subtask) -> bool:
            # Keep anything deleted after the cutoff.
            return entity.deleted and entity.deleted_at is not None and entity.deleted_at <= cutoff

        counts = self._store.purge(expired)
        if counts.total:
            logger.info("Retention sweep removed %s (cutoff=%s)", counts.as_dict(), cutoff)
        else:
            logger.debug("Retention sweep: nothing older than %s", cutoff)
        return counts

    async def run_forever(self, *, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """
        Sweep now, then every interval_seconds.

        To stop the sweeper, cancel the coroutine/task.
        """
        sleep_s = max(1.0, float(interval_seconds))
        while True:
            try:
                self.sweep()
            except Exception:
                logger.exception("Retention sweep failed")
            await asyncio.sleep(sleep_s)

# src/kanban_sync/sync/retry.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from ..core.ports import Sleep

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """
    Bounded retry: `attempts` tries, `delay_seconds` between them, the delay
    multiplied by `backoff` after each failure (1.0 = fixed delay).
    """

    attempts: int = 3
    delay_seconds: float = 2.0
    backoff: float = 1.0

    def delay_for(self, failed_attempt: int) -> float:
        return max(0.0, self.delay_seconds) * (max(1.0, self.backoff) ** (failed_attempt - 1))


@dataclass(slots=True)
class RetryOutcome(Generic[T]):
    ok: bool
    value: T | None = None
    attempts: int = 0
    error: BaseException | None = None


async def retry_async(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = "operation",
) -> RetryOutcome[T]:
    """
    Run `op` until it returns without raising or attempts run out.

    Errors are captured in the outcome, not raised (cancellation still
    propagates).
    """
    attempts = max(1, int(policy.attempts))
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            value = await op()
            if attempt > 1:
                logger.info("%s succeeded on attempt %d", label, attempt)
            return RetryOutcome(ok=True, value=value, attempts=attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            logger.warning("%s attempt %d/%d failed: %s", label, attempt, attempts, e)
            if attempt < attempts:
                await sleep(policy.delay_for(attempt))

    return RetryOutcome(ok=False, attempts=attempts, error=last_error)

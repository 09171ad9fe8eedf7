# src/kanban_sync/board/identity.py

"""
Conflict-free entity ids without a central authority.

An id is the decimal concatenation of:
- current epoch milliseconds,
- a fixed-width (6 digit) fragment derived from the device identifier,
- the per-kind counter, zero-padded to 3 digits.

Two devices only collide if they share the device fragment, the millisecond
and the counter value at the same time.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
import string
import time
from collections.abc import Callable, Mapping

from ..core.ports import PersistenceAdapter
from ..errors import PersistenceError
from .models import EntityKind
from .persistence import DEVICE_ID_KEY

logger = logging.getLogger(__name__)

DEVICE_FRAGMENT_WIDTH = 6
COUNTER_WIDTH = 3

_ALPHABET = string.ascii_lowercase + string.digits
_NON_DIGITS = re.compile(r"\D")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def device_fragment(device_id: str) -> str:
    """
    Fixed-width numeric fragment of a device id.

    Uses the last digits of the id; ids with too few digits (e.g. hex uuids
    that happen to be mostly letters) fall back to a digest of the whole id.
    """
    digits = _NON_DIGITS.sub("", device_id)
    if len(digits) >= DEVICE_FRAGMENT_WIDTH:
        return digits[-DEVICE_FRAGMENT_WIDTH:]
    digest = int(hashlib.sha256(device_id.encode("utf-8")).hexdigest(), 16)
    return str(digest % 10**DEVICE_FRAGMENT_WIDTH).zfill(DEVICE_FRAGMENT_WIDTH)


class DeviceIdentity:
    """
    Per-installation device identifier, resolved once and cached.

    Resolution order:
    - explicitly configured id (platform-provided stable id),
    - id persisted by a previous run,
    - new random id, persisted for the next run.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter | None = None,
        *,
        configured_id: str | None = None,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._persistence = persistence
        self._configured_id = (configured_id or "").strip() or None
        self._now_ms = now_ms
        self._device_id: str | None = None

    @property
    def device_id(self) -> str | None:
        return self._device_id

    def resolve(self) -> str:
        if self._device_id is not None:
            return self._device_id

        if self._configured_id:
            self._device_id = self._configured_id
            logger.info("Device id (configured): %s", self._device_id)
            return self._device_id

        if self._persistence is not None:
            try:
                stored = self._persistence.get(DEVICE_ID_KEY)
                if stored:
                    self._device_id = stored
                    logger.info("Device id (persisted): %s", stored)
                    return stored

                new_id = f"device-{self._now_ms()}-{_random_suffix()}"
                self._persistence.set(DEVICE_ID_KEY, new_id)
                self._device_id = new_id
                logger.info("Device id (new): %s", new_id)
                return new_id
            except PersistenceError:
                logger.exception("Could not read/persist device id; using a process-local one")

        self._device_id = f"device-{self._now_ms()}-{_random_suffix()}"
        logger.warning("Using non-persistent device id %s", self._device_id)
        return self._device_id

    def ensure(self) -> str:
        """Return the device id, inventing an emergency one if resolve() never ran."""
        if self._device_id is None:
            self._device_id = f"fallback-{self._now_ms()}-{_random_suffix()}"
            logger.error("Device id not initialised; generated fallback %s", self._device_id)
        return self._device_id


class IdGenerator:
    """Device-derived id generator with one counter per entity kind."""

    def __init__(
        self,
        identity: DeviceIdentity,
        *,
        counters: Mapping[EntityKind, int] | None = None,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._identity = identity
        self._now_ms = now_ms
        self._counters: dict[EntityKind, int] = {kind: 1 for kind in EntityKind}
        if counters:
            self.set_counters(counters)

    @property
    def device_id(self) -> str:
        return self._identity.ensure()

    @property
    def counters(self) -> dict[EntityKind, int]:
        return dict(self._counters)

    def set_counters(self, counters: Mapping[EntityKind, int]) -> None:
        for kind, value in counters.items():
            self._counters[EntityKind(kind)] = max(1, int(value))

    def raise_counters(self, counters: Mapping[EntityKind, int]) -> None:
        for kind, value in counters.items():
            k = EntityKind(kind)
            self._counters[k] = max(self._counters[k], int(value))

    def next_id(self, kind: EntityKind) -> int:
        fragment = device_fragment(self._identity.ensure())
        counter = self._counters[kind]
        self._counters[kind] = counter + 1

        new_id = int(f"{self._now_ms()}{fragment}{str(counter).zfill(COUNTER_WIDTH)}")
        logger.debug("Generated %s id=%s counter=%s", kind.value, new_id, counter)
        return new_id

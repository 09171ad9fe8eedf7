# src/kanban_sync/sync/providers.py

"""
Cloud sync providers.

All providers store ONE record: the full snapshot as a JSON blob, overwritten
on every save. BlobSyncProvider implements the CloudSyncProvider contract
(stamping, retries, "never raise") on top of three primitives that concrete
backends supply:

- _read_blob()  -> str | None   (None = nothing stored yet)
- _write_blob(blob)
- _probe()                      (raises when the backend is unreachable)

Backends:
- FolderSyncProvider: a file in a folder synced by the OS (iCloud Drive,
  Dropbox, a network share)
- HttpKeyValueProvider: GET/PUT against a remote key-value endpoint
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from ..board.models import EPOCH, Snapshot, format_ts, parse_ts, utc_now
from ..core.ports import Clock, CloudSyncProvider, Sleep
from ..errors import ProviderError
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

DEFAULT_SYNC_KEY = "kanban-data"

DEFAULT_READ_POLICY = RetryPolicy(attempts=3, delay_seconds=2.0)
DEFAULT_WRITE_POLICY = RetryPolicy(attempts=3, delay_seconds=2.0, backoff=2.0)


@dataclass(slots=True, frozen=True)
class Availability:
    available: bool
    reason: str


@dataclass(slots=True)
class UpdateCheck:
    has_updates: bool
    data: Snapshot | None = None
    cloud_sync: str | None = None
    current_sync: str | None = None


class BlobSyncProvider:
    name = "blob"

    def __init__(
        self,
        *,
        device_id: str,
        read_policy: RetryPolicy = DEFAULT_READ_POLICY,
        write_policy: RetryPolicy = DEFAULT_WRITE_POLICY,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
    ) -> None:
        self.device_id = device_id
        self.last_known_sync: str | None = None
        self._read_policy = read_policy
        self._write_policy = write_policy
        self._sleep = sleep
        self._clock = clock

    # ---- backend primitives ----

    async def _read_blob(self) -> str | None:
        raise NotImplementedError

    async def _write_blob(self, blob: str) -> None:
        raise NotImplementedError

    async def _probe(self) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return

    # ---- contract ----

    def _stamp(self, snapshot: Snapshot) -> dict[str, Any]:
        now = self._clock()
        payload = snapshot.to_dict()
        payload["lastSync"] = format_ts(now)
        payload["deviceId"] = self.device_id
        payload["syncId"] = f"{self.device_id}-{int(now.timestamp() * 1000)}"
        return payload

    async def save(self, snapshot: Snapshot) -> bool:
        try:
            payload = self._stamp(snapshot)
            blob = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("%s: snapshot is not serialisable", self.name)
            return False

        outcome = await retry_async(
            lambda: self._write_blob(blob),
            self._write_policy,
            sleep=self._sleep,
            label=f"{self.name} save",
        )
        if not outcome.ok:
            logger.error("%s: save failed after %d attempts: %s", self.name, outcome.attempts, outcome.error)
            return False

        self.last_known_sync = payload["lastSync"]
        logger.info(
            "%s: saved tasks=%d notes=%d subtasks=%d lastSync=%s",
            self.name,
            len(snapshot.tasks),
            len(snapshot.notes),
            len(snapshot.subtasks),
            self.last_known_sync,
        )
        return True

    async def load(self) -> Snapshot | None:
        outcome = await retry_async(
            self._read_blob,
            self._read_policy,
            sleep=self._sleep,
            label=f"{self.name} load",
        )
        if not outcome.ok:
            logger.error("%s: load failed after %d attempts: %s", self.name, outcome.attempts, outcome.error)
            return None

        blob = outcome.value
        if not blob:
            logger.debug("%s: no data stored yet", self.name)
            return None

        try:
            raw = json.loads(blob)
        except json.JSONDecodeError:
            logger.exception("%s: stored blob is not valid JSON", self.name)
            return None
        if not isinstance(raw, dict):
            logger.error("%s: stored blob is not a JSON object", self.name)
            return None

        snapshot = Snapshot.from_dict(raw)
        if snapshot.last_sync:
            self.last_known_sync = snapshot.last_sync
        logger.debug(
            "%s: loaded tasks=%d lastSync=%s deviceId=%s",
            self.name,
            len(snapshot.tasks),
            snapshot.last_sync,
            snapshot.device_id,
        )
        return snapshot

    async def check_availability(self) -> Availability:
        try:
            await self._probe()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("%s: not available: %s", self.name, e)
            return Availability(available=False, reason=f"{self.name} not accessible: {e}")
        return Availability(available=True, reason=f"{self.name} accessible")

    async def check_for_updates(self, local_last_sync: str | None) -> UpdateCheck:
        cloud = await self.load()
        if cloud is None:
            return UpdateCheck(has_updates=False, current_sync=local_last_sync)

        cloud_ts = parse_ts(cloud.last_sync)
        current_ts = parse_ts(local_last_sync) or EPOCH
        return UpdateCheck(
            has_updates=cloud_ts is not None and cloud_ts > current_ts,
            data=cloud,
            cloud_sync=cloud.last_sync,
            current_sync=local_last_sync,
        )


class FolderSyncProvider(BlobSyncProvider):
    """Snapshot stored as <folder>/<key>.json; the folder is synced by the OS."""

    name = "folder"

    def __init__(self, folder: str | Path, *, key: str = DEFAULT_SYNC_KEY, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._folder = Path(folder).expanduser()
        self._key = key

    @property
    def path(self) -> Path:
        return self._folder / f"{self._key}.json"

    def _read_sync(self) -> str | None:
        try:
            return self.path.read_text("utf-8")
        except FileNotFoundError:
            return None

    def _write_sync(self, blob: str) -> None:
        self._folder.mkdir(parents=True, exist_ok=True)
        # Unique temp name: several devices may write into the same synced folder.
        tmp = self._folder / f".{self._key}.{uuid.uuid4().hex}.tmp"
        try:
            tmp.write_text(blob, "utf-8")
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def _probe_sync(self) -> None:
        if not self._folder.is_dir():
            raise ProviderError(f"sync folder {self._folder} does not exist")
        probe = self._folder / f".probe-{uuid.uuid4().hex}"
        marker = json.dumps({"test": True, "deviceId": self.device_id})
        try:
            probe.write_text(marker, "utf-8")
            if probe.read_text("utf-8") != marker:
                raise ProviderError("probe data not persisted")
        finally:
            if probe.exists():
                probe.unlink()

    async def _read_blob(self) -> str | None:
        return await asyncio.to_thread(self._read_sync)

    async def _write_blob(self, blob: str) -> None:
        await asyncio.to_thread(self._write_sync, blob)

    async def _probe(self) -> None:
        await asyncio.to_thread(self._probe_sync)


class HttpKeyValueProvider(BlobSyncProvider):
    """
    Snapshot stored under {base_url}/{key} of a key-value HTTP service.

    GET returns the blob (404 = nothing stored yet), PUT replaces it.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        key: str = DEFAULT_SYNC_KEY,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._key = key
        self._owns_client = client is None
        if client is None:
            headers = {"Authorization": f"Bearer {token}"} if token else {}
            client = httpx.AsyncClient(
                base_url=base_url,
                headers=headers,
                timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
            )
        self._client = client

    def _check(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise ProviderError(
                f"{response.request.method} {response.request.url.path} -> HTTP {response.status_code}"
            )

    async def _read_blob(self) -> str | None:
        response = await self._client.get(f"/{self._key}")
        if response.status_code == 404:
            return None
        self._check(response)
        return response.text

    async def _write_blob(self, blob: str) -> None:
        response = await self._client.put(
            f"/{self._key}",
            content=blob.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        self._check(response)

    async def _probe(self) -> None:
        response = await self._client.get(f"/{self._key}")
        # Reachable and authorised; an empty store is fine.
        if response.status_code != 404:
            self._check(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_provider(settings: Any, *, device_id: str) -> CloudSyncProvider | None:
    """Pick the one provider configured for this deployment (None = local only)."""
    kind = str(getattr(settings, "sync_provider", "none") or "none").strip().lower()
    read_policy = RetryPolicy(
        attempts=int(getattr(settings, "retry_attempts", 3)),
        delay_seconds=float(getattr(settings, "retry_delay_seconds", 2.0)),
    )
    write_policy = RetryPolicy(
        attempts=read_policy.attempts,
        delay_seconds=read_policy.delay_seconds,
        backoff=2.0,
    )
    key = str(getattr(settings, "sync_key", DEFAULT_SYNC_KEY) or DEFAULT_SYNC_KEY)

    if kind in ("", "none", "off", "local"):
        logger.info("Cloud sync disabled (local-only mode)")
        return None

    if kind == "folder":
        folder = getattr(settings, "sync_folder", None)
        if not folder:
            logger.error("KANBAN_SYNC_PROVIDER=folder but KANBAN_SYNC_FOLDER is not set; sync disabled")
            return None
        logger.info("Cloud sync via folder %s", folder)
        return FolderSyncProvider(
            folder,
            key=key,
            device_id=device_id,
            read_policy=read_policy,
            write_policy=write_policy,
        )

    if kind == "http":
        url = (getattr(settings, "sync_url", "") or "").strip()
        if not url:
            logger.error("KANBAN_SYNC_PROVIDER=http but KANBAN_SYNC_URL is not set; sync disabled")
            return None
        logger.info("Cloud sync via HTTP key-value store %s", url)
        return HttpKeyValueProvider(
            url,
            key=key,
            token=getattr(settings, "sync_token", None),
            timeout_seconds=float(getattr(settings, "http_timeout_seconds", 10.0)),
            device_id=device_id,
            read_policy=read_policy,
            write_policy=write_policy,
        )

    logger.error("Unknown sync provider %r; sync disabled", kind)
    return None

"""
sync.py — Periodic reconciliation between this process and the shared copy.

Policy depends on where the shared copy lives (backend.mode):

  server  the durable store is local. Whenever both the in-memory and the
          durable session exist they are merged; the merge is written back
          only when it differs from the durable copy.
  client  the shared copy is on the server. A merge happens only when the
          remote last_saved is strictly newer than ours. An equal or older
          remote triggers no write unless our own last write never reached
          the server (manager.pending_write). A session that exists only
          locally is kept and not pushed, so a cook cleared elsewhere is not
          resurrected.

At most one sync is in flight: the guard is set before the first await and
released in `finally`. Calls made while SYNCING, or sooner than
min_interval after the previous sync, return immediately unless forced.
Failures are logged and recorded in last_error; the next tick retries.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from grillmon.session.backends import SessionBackend, SyncMode
from grillmon.session.history import HISTORY_RETENTION, MAX_HISTORY_READINGS
from grillmon.session.manager import SessionManager
from grillmon.session.merge import merge_sessions, sessions_equivalent
from grillmon.session.schemas import GrillSession, Provenance

logger = logging.getLogger(__name__)

SYNC_INTERVAL = timedelta(seconds=10)
SYNC_MIN_INTERVAL = timedelta(seconds=5)


class SyncState(str, Enum):
    idle = "IDLE"
    syncing = "SYNCING"


class SyncStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    state: SyncState
    mode: SyncMode
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    session_id: Optional[str] = None


class SyncOrchestrator:
    def __init__(
        self,
        manager: SessionManager,
        backend: Optional[SessionBackend] = None,
        interval: timedelta = SYNC_INTERVAL,
        min_interval: timedelta = SYNC_MIN_INTERVAL,
        clock: Optional[Callable[[], datetime]] = None,
        retention: timedelta = HISTORY_RETENTION,
        max_readings: int = MAX_HISTORY_READINGS,
    ) -> None:
        self.manager = manager
        self.backend = backend or manager.backend
        self.interval = interval
        self.min_interval = min_interval
        self.retention = retention
        self.max_readings = max_readings
        self._clock = clock or manager.clock
        self.state = SyncState.idle
        self.last_sync_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # One reconciliation pass
    # ------------------------------------------------------------------

    async def sync_now(self, force: bool = False) -> Optional[GrillSession]:
        """Run one sync pass; returns the canonical session afterwards."""
        if self.state is SyncState.syncing:
            logger.debug("Sync already in flight — skipping")
            return self.manager.current
        if (
            not force
            and self.last_sync_at is not None
            and self._clock() - self.last_sync_at < self.min_interval
        ):
            return self.manager.current

        self.state = SyncState.syncing
        try:
            if self.backend.mode is SyncMode.server:
                await self._sync_server()
            else:
                await self._sync_client()
            self.last_error = None
        except Exception as exc:
            logger.warning("Session sync failed: %s", exc, exc_info=True)
            self.last_error = str(exc)
        finally:
            self.state = SyncState.idle
            self.last_sync_at = self._clock()
        return self.manager.current

    async def _sync_server(self) -> None:
        durable = await self.backend.load()
        if durable is None:
            # nothing durable to reconcile against; keep what we hold
            return
        # read after the load so edits made while it ran are included
        local = self.manager.current
        if local is None:
            await self.manager.adopt(durable, Provenance.remote)
            return
        await self._merge_and_write(local, durable)

    async def _sync_client(self) -> None:
        remote = await self.backend.load()
        if remote is None:
            return
        local = self.manager.current
        if local is None:
            await self.manager.adopt(remote, Provenance.remote)
            return

        if remote.last_saved <= local.last_saved:
            if self.manager.pending_write:
                logger.info("Retrying unsent session write session_id=%s", local.id)
                await self.manager.save()
            return

        await self._merge_and_write(local, remote)

    async def _merge_and_write(self, local: GrillSession, shared: GrillSession) -> None:
        merged = self._merge(local, shared)
        if sessions_equivalent(merged, shared):
            await self.manager.adopt(shared, Provenance.remote)
            return

        result = await self.backend.save(merged)
        canonical = result.session if result.ok and result.session is not None else merged
        if not result.ok:
            logger.info("Merged session not written status=%s session_id=%s",
                        result.status.value, merged.id)
        self.manager.pending_write = not result.ok

        current = self.manager.current
        if current is None:
            logger.info("Session cleared during sync session_id=%s", merged.id)
            return
        if current is not local:
            # edited while the merge was being written: those edits win, and
            # the shared copy is behind until the next pass writes them
            latest = current.model_copy(
                update={"last_saved": max(current.last_saved, canonical.last_saved)}
            )
            canonical = self._merge(latest, canonical)
            self.manager.pending_write = True

        provenance = Provenance.local if sessions_equivalent(canonical, local) else Provenance.remote
        await self.manager.adopt(canonical, provenance)
        logger.info("Session reconciled session_id=%s provenance=%s", merged.id, provenance.value)

    def _merge(self, first: GrillSession, second: GrillSession) -> GrillSession:
        return merge_sessions(
            first, second, now=self._clock(),
            retention=self.retention, max_readings=self.max_readings,
        )

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="session-sync")
            logger.info("Session sync started mode=%s interval=%ss",
                        self.backend.mode.value, self.interval.total_seconds())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session sync stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval.total_seconds())
            await self.sync_now()

    def status(self) -> SyncStatus:
        current = self.manager.current
        return SyncStatus(
            state=self.state,
            mode=self.backend.mode,
            last_sync_at=self.last_sync_at,
            last_error=self.last_error,
            session_id=current.id if current else None,
        )

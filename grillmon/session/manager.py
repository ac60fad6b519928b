"""
manager.py — The one current cook session of this process.

SessionManager is created once per process (server or device) with its
storage dependencies injected, and shared by every consumer in that process.

Write path (mutate / save / create_session):
  1. apply the change in memory, stamp last_saved, notify listeners (local)
  2. write the backend (durable store or server)
  3. mirror the result into the local cache
  The write succeeds if EITHER store accepted it. A worst-case interleaving
  can leave the two briefly divergent; the next sync cycle reconciles them.

Field helpers (select_meat, set_target, record_readings, start_cook, ...)
all go through ensure_exists() first, so an update made before any session
was loaded or created is never silently dropped.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Mapping, Optional

from grillmon.cache import LocalSessionCache
from grillmon.meats import MeatType, is_ambient_channel, is_concrete, meat_info
from grillmon.session.backends import SessionBackend
from grillmon.session.history import HISTORY_RETENTION, append_reading, utc_now
from grillmon.session.merge import sessions_equivalent
from grillmon.session.schemas import GrillSession, Provenance
from grillmon.store import SESSION_MAX_AGE

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[GrillSession], Provenance], None]

# Fields a caller may replace through mutate(); id and last_saved are owned here
MUTABLE_FIELDS = frozenset(
    {"start_time", "is_active", "selected_meats", "sensor_targets", "temperature_history"}
)


class SessionManager:
    def __init__(
        self,
        backend: SessionBackend,
        cache: LocalSessionCache,
        clock: Callable[[], datetime] = utc_now,
        max_age: timedelta = SESSION_MAX_AGE,
        retention: timedelta = HISTORY_RETENTION,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.clock = clock
        self.max_age = max_age
        self.retention = retention
        self.device_id: Optional[str] = None
        # True while the latest local change has not reached the backend
        self.pending_write = False
        self._current: Optional[GrillSession] = None
        self._listeners: List[Listener] = []

    async def initialize(self) -> str:
        """Resolve this device's identity and bind it to the backend."""
        self.device_id = await self.cache.get_device_id()
        self.backend.bind_device(self.device_id)
        return self.device_id

    # ------------------------------------------------------------------
    # Current session
    # ------------------------------------------------------------------

    @property
    def current(self) -> Optional[GrillSession]:
        return self._current

    def get_current(self) -> Optional[GrillSession]:
        return self._current

    async def create_session(self) -> GrillSession:
        """Start a brand-new cook. Any previous in-memory session is dropped."""
        session = GrillSession.new(self.clock())
        self._current = session
        logger.info("Created session session_id=%s", session.id)
        self._notify(session, Provenance.local)
        await self._persist(session)
        return self._current or session

    async def ensure_exists(self) -> GrillSession:
        """Current session, else the stored one, else a new one."""
        if self._current is not None:
            return self._current
        loaded = await self.load()
        if loaded is not None:
            return loaded
        return await self.create_session()

    async def mutate(self, **fields) -> bool:
        """
        Replace top-level session fields, restamp last_saved and persist.
        Returns False when there is no current session or neither store
        accepted the write.
        """
        if self._current is None:
            logger.warning("mutate() without a current session; call ensure_exists() first")
            return False

        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot mutate session fields: {', '.join(sorted(unknown))}")

        data = self._current.model_dump()
        data.update(fields)
        data["last_saved"] = self.clock()
        updated = GrillSession.model_validate(data)

        self._current = updated
        self._notify(updated, Provenance.local)
        return await self._persist(updated)

    async def load(self) -> Optional[GrillSession]:
        """
        Explicit load: shared copy first, local cache as the offline fallback.
        Expired sessions are treated as absent. Returns None if nothing found.
        """
        session = await self.backend.load()
        provenance = Provenance.remote
        if session is None:
            session = await self.cache.get_session()
            provenance = Provenance.local
            if session is not None and session.is_expired(self.clock(), self.max_age):
                logger.info("Discarding expired cached session session_id=%s", session.id)
                await self.cache.delete_session()
                session = None

        if session is None:
            logger.info("No session found")
            return None

        self._current = session
        if provenance is Provenance.remote:
            await self.cache.set_session(session)
        logger.info("Loaded session session_id=%s source=%s", session.id, provenance.value)
        self._notify(session, provenance)
        return session

    async def save(self) -> bool:
        """Explicit save of the current session."""
        if self._current is None:
            return False
        self._current = self._current.model_copy(update={"last_saved": self.clock()})
        return await self._persist(self._current)

    async def clear(self) -> bool:
        """
        End the cook: delete the shared and cached copies, rotate the device
        identity and drop the in-memory session. Returns whether the shared
        copy was deleted.
        """
        cleared = await self.backend.clear()
        if not await self.cache.delete_session():
            logger.warning("Local cache still holds the cleared session")
        self.device_id = await self.cache.rotate_device_id()
        self.backend.bind_device(self.device_id)

        previous, self._current = self._current, None
        self.pending_write = False
        logger.info("Cleared session session_id=%s", previous.id if previous else None)
        self._notify(None, Provenance.local)
        return cleared

    def discard(self) -> None:
        """Forget the in-memory session without touching any store."""
        if self._current is not None:
            self._current = None
            self._notify(None, Provenance.remote)

    async def adopt(self, session: Optional[GrillSession], provenance: Provenance) -> bool:
        """
        Install a reconciled session as canonical (used by sync). Listeners
        are notified only if the content actually changed.
        """
        previous = self._current
        self._current = session
        if session is not None:
            await self.cache.set_session(session)
        if sessions_equivalent(previous, session):
            return False
        self._notify(session, provenance)
        return True

    # ------------------------------------------------------------------
    # Field helpers
    # ------------------------------------------------------------------

    async def select_meat(self, channel: int, meat: MeatType | str) -> bool:
        """Select a meat for a probe; an unset target gets the meat's recommended temp."""
        session = await self.ensure_exists()
        meat = MeatType(meat)
        fields = {"selected_meats": {**session.selected_meats, channel: meat}}
        if is_concrete(meat) and not session.sensor_targets.get(channel):
            fields["sensor_targets"] = {
                **session.sensor_targets,
                channel: meat_info(meat).recommended_temp,
            }
        return await self.mutate(**fields)

    async def set_target(self, channel: int, temperature: float) -> bool:
        session = await self.ensure_exists()
        return await self.mutate(sensor_targets={**session.sensor_targets, channel: temperature})

    async def record_readings(self, readings: Mapping[int, float]) -> bool:
        """Append one reading per channel, stamped now, to the session history."""
        session = await self.ensure_exists()
        now = self.clock()
        history = dict(session.temperature_history)
        for channel, temperature in readings.items():
            history[channel] = append_reading(history.get(channel, []), temperature, now, self.retention)
        return await self.mutate(temperature_history=history)

    async def start_cook(self) -> bool:
        session = await self.ensure_exists()
        return await self.mutate(is_active=True, start_time=session.start_time or self.clock())

    async def stop_cook(self) -> bool:
        await self.ensure_exists()
        return await self.mutate(is_active=False)

    async def auto_start(self, readings: Mapping[int, float]) -> bool:
        """Start the cook once any meat probe reports a temperature above zero."""
        session = await self.ensure_exists()
        if session.is_active:
            return False
        if any(not is_ambient_channel(ch) and temp > 0 for ch, temp in readings.items()):
            logger.info("Meat probe active, starting cook session_id=%s", session.id)
            return await self.start_cook()
        return False

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, session: Optional[GrillSession], provenance: Provenance) -> None:
        for listener in list(self._listeners):
            try:
                listener(session, provenance)
            except Exception:
                logger.exception("Session listener failed provenance=%s", provenance.value)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, session: GrillSession) -> bool:
        result = await self.backend.save(session)
        if result.ok and result.session is not None and self._current is session:
            # keep the stamp the shared copy was written with
            self._current = result.session
        self.pending_write = not result.ok
        if not result.ok:
            logger.info("Backend write not accepted session_id=%s status=%s",
                        session.id, result.status.value)

        current = self._current
        if current is None or current.id != session.id:
            # cleared or superseded while the write was in flight
            return result.ok

        cached = await self.cache.set_session(current)
        if not (result.ok or cached):
            logger.error("Session write failed on both stores session_id=%s", session.id)
        return result.ok or cached

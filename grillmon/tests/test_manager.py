"""
SessionManager tests — lifecycle, field helpers, dual-write persistence,
cache fallback and change listeners.
"""
from __future__ import annotations

from typing import Optional

import pytest

from grillmon.cache import FileSessionCache
from grillmon.meats import MeatType
from grillmon.session.backends import FileSessionBackend, SyncMode
from grillmon.session.manager import SessionManager
from grillmon.session.schemas import GrillSession, Provenance
from grillmon.store import DurableSessionStore
from grillmon.tests.fakes import FakeClock, MemoryBackend, make_session


class BrokenCache(FileSessionCache):
    async def set_session(self, session: GrillSession) -> bool:
        return False


def _collect(manager: SessionManager) -> list:
    events: list[tuple[Optional[str], Provenance]] = []
    manager.subscribe(lambda s, p: events.append((s.id if s else None, p)))
    return events


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ensure_exists_creates_and_persists(manager, store) -> None:
    session = await manager.ensure_exists()

    assert manager.current is session
    assert session.is_active is False
    assert store.load().id == session.id
    assert (await manager.cache.get_session()).id == session.id


@pytest.mark.asyncio
async def test_ensure_exists_prefers_stored_session(manager, store) -> None:
    store.save(make_session(0, session_id="stored"))
    session = await manager.ensure_exists()
    assert session.id == "stored"


@pytest.mark.asyncio
async def test_target_survives_reload_from_durable_store(manager, store, clock) -> None:
    await manager.create_session()
    assert await manager.set_target(0, 250.0) is True

    reloaded = DurableSessionStore(store.root, clock=clock).load()
    assert reloaded.sensor_targets[0] == 250.0


@pytest.mark.asyncio
async def test_create_session_replaces_current(manager) -> None:
    first = await manager.create_session()
    second = await manager.create_session()
    assert first.id != second.id
    assert manager.get_current().id == second.id


@pytest.mark.asyncio
async def test_mutate_without_session_returns_false(manager) -> None:
    assert await manager.mutate(is_active=True) is False


@pytest.mark.asyncio
async def test_mutate_rejects_owned_fields(manager) -> None:
    await manager.create_session()
    with pytest.raises(ValueError):
        await manager.mutate(last_saved=None)


@pytest.mark.asyncio
async def test_mutate_stamps_last_saved_from_clock(manager, clock) -> None:
    await manager.create_session()
    clock.advance(seconds=30)
    await manager.mutate(is_active=True)
    assert manager.current.last_saved == clock()


@pytest.mark.asyncio
async def test_explicit_load_returns_none_when_nothing_stored(manager) -> None:
    assert await manager.load() is None
    assert manager.current is None


@pytest.mark.asyncio
async def test_save_without_session_is_false(manager) -> None:
    assert await manager.save() is False


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_select_meat_fills_unset_target_with_recommendation(manager) -> None:
    await manager.select_meat(2, MeatType.beef_brisket)
    assert manager.current.selected_meats[2] is MeatType.beef_brisket
    assert manager.current.sensor_targets[2] == 95.0


@pytest.mark.asyncio
async def test_select_meat_keeps_existing_target(manager) -> None:
    await manager.set_target(3, 68.0)
    await manager.select_meat(3, "chicken_thigh")
    assert manager.current.sensor_targets[3] == 68.0


@pytest.mark.asyncio
async def test_record_readings_appends_per_channel(manager, clock) -> None:
    await manager.record_readings({0: 110.0, 2: 35.0})
    clock.advance(seconds=5)
    await manager.record_readings({0: 112.0, 2: 36.5})

    history = manager.current.temperature_history
    assert [r.temperature for r in history[0]] == [110.0, 112.0]
    assert [r.temperature for r in history[2]] == [35.0, 36.5]
    assert history[2][-1].timestamp == clock()


@pytest.mark.asyncio
async def test_auto_start_ignores_ambient_channels(manager) -> None:
    assert await manager.auto_start({0: 150.0, 1: 140.0, 2: 0.0}) is False
    assert manager.current.is_active is False


@pytest.mark.asyncio
async def test_auto_start_on_warm_meat_probe(manager, clock) -> None:
    assert await manager.auto_start({0: 150.0, 3: 21.0}) is True
    assert manager.current.is_active is True
    assert manager.current.start_time == clock()
    # already running
    assert await manager.auto_start({3: 25.0}) is False


@pytest.mark.asyncio
async def test_stop_cook(manager) -> None:
    await manager.start_cook()
    await manager.stop_cook()
    assert manager.current.is_active is False
    assert manager.current.start_time is not None


# ---------------------------------------------------------------------------
# Persistence paths
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_write_succeeds_if_only_cache_accepts(cache, clock) -> None:
    backend = MemoryBackend(SyncMode.client, clock)
    backend.fail_saves = True
    manager = SessionManager(backend, cache, clock=clock)

    await manager.create_session()
    assert await manager.set_target(1, 200.0) is True
    assert manager.pending_write is True
    assert (await cache.get_session()).sensor_targets[1] == 200.0


@pytest.mark.asyncio
async def test_write_fails_if_neither_store_accepts(tmp_path, clock) -> None:
    backend = MemoryBackend(SyncMode.client, clock)
    backend.fail_saves = True
    manager = SessionManager(backend, BrokenCache(tmp_path / "c.json"), clock=clock)

    await manager.create_session()
    assert await manager.set_target(1, 200.0) is False


@pytest.mark.asyncio
async def test_load_falls_back_to_cache(cache, clock) -> None:
    await cache.set_session(make_session(0, session_id="offline"))
    manager = SessionManager(MemoryBackend(SyncMode.client, clock), cache, clock=clock)
    events = _collect(manager)

    loaded = await manager.load()

    assert loaded.id == "offline"
    assert events == [("offline", Provenance.local)]


@pytest.mark.asyncio
async def test_load_ignores_expired_cached_session(cache, clock) -> None:
    await cache.set_session(make_session(0))
    clock.advance(hours=25)
    manager = SessionManager(MemoryBackend(SyncMode.client, clock), cache, clock=clock)

    assert await manager.load() is None
    assert await cache.get_session() is None


@pytest.mark.asyncio
async def test_clear_removes_everything_and_rotates_device(manager, store, cache) -> None:
    device_id = await manager.initialize()
    await manager.select_meat(2, MeatType.pork_ribs)
    events = _collect(manager)

    assert await manager.clear() is True

    assert manager.current is None
    assert store.load() is None
    assert await cache.get_session() is None
    assert manager.device_id != device_id
    assert events == [(None, Provenance.local)]


@pytest.mark.asyncio
async def test_initialize_binds_device_id_to_records(manager, store) -> None:
    device_id = await manager.initialize()
    await manager.create_session()
    assert f'"deviceId": "{device_id}"' in store.current_path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Listeners
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_listeners_get_local_changes_and_can_unsubscribe(manager) -> None:
    events: list = []
    unsubscribe = manager.subscribe(lambda s, p: events.append(p))

    await manager.create_session()
    unsubscribe()
    await manager.set_target(0, 180.0)

    assert events == [Provenance.local]


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_mutation(manager) -> None:
    def boom(session, provenance):
        raise RuntimeError("listener bug")

    manager.subscribe(boom)
    events = _collect(manager)

    assert await manager.set_target(0, 180.0) is True
    assert events  # later listeners still ran


@pytest.mark.asyncio
async def test_adopt_notifies_only_on_content_change(manager) -> None:
    await manager.create_session()
    current = manager.current
    events = _collect(manager)

    restamped = current.model_copy(update={"last_saved": current.last_saved.replace(year=2030)})
    assert await manager.adopt(restamped, Provenance.remote) is False
    changed = current.model_copy(update={"is_active": True})
    assert await manager.adopt(changed, Provenance.remote) is True

    assert events == [(current.id, Provenance.remote)]
    assert manager.current is changed


@pytest.mark.asyncio
async def test_server_backend_round_trip(tmp_path) -> None:
    clock = FakeClock()
    store = DurableSessionStore(tmp_path / "s", clock=clock)
    backend = FileSessionBackend(store)
    result = await backend.save(make_session(0))
    assert result.ok
    assert (await backend.load()).id == "cook-1"
    assert await backend.clear() is True
    assert await backend.load() is None

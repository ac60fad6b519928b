"""
Device client tests — build_device wiring and the display-only polling loop
against the app over ASGI.
"""
from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from grillmon.cache import FileSessionCache
from grillmon.client import build_device, run_device
from grillmon.config import Settings
from grillmon.main import app
from grillmon.sensors.feed import MOCK_CHANNELS
from grillmon.session.backends import RemoteSessionBackend, SyncMode


def _device_settings(tmp_path) -> Settings:
    return Settings(
        local_cache_backend="file",
        local_cache_path=str(tmp_path / "device" / "cache.json"),
        reading_interval_seconds=0.01,
    )


@pytest.mark.asyncio
async def test_build_device_wires_client_mode(tmp_path) -> None:
    device = await build_device(_device_settings(tmp_path))
    try:
        assert isinstance(device.manager.backend, RemoteSessionBackend)
        assert isinstance(device.manager.cache, FileSessionCache)
        assert device.sync.backend.mode is SyncMode.client
    finally:
        await device.close()


@pytest.mark.asyncio
async def test_run_device_never_persists_mock_readings(api_client, tmp_path) -> None:
    http = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    device = await build_device(_device_settings(tmp_path), client=http)

    await run_device(device, iterations=2)

    stored = app.state.session_store.load()
    assert stored is not None
    assert stored.is_active is False
    assert stored.temperature_history == {}
    # mock curves still reach the display
    assert sorted(device.display) == list(range(MOCK_CHANNELS))
    assert all(series.values for series in device.display.values())


@pytest.mark.asyncio
async def test_posted_sample_is_recorded_once_with_a_device_polling(api_client, tmp_path) -> None:
    await api_client.post(
        "/api/data",
        json=[{"id": 3, "currentTemp": 55.5, "targetTemp": 93, "history": [54.0, 55.5]}],
    )
    http = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    device = await build_device(_device_settings(tmp_path), client=http)

    await run_device(device, iterations=3)

    stored = app.state.session_store.load()
    assert stored.is_active is True
    assert [r.temperature for r in stored.temperature_history[3]] == [55.5]
    assert sorted(device.display) == [3]
    assert device.display[3].values[-1] == 55.5

"""
End-to-end API tests for /api/session — GET / PUT / DELETE and the device
side RemoteSessionBackend talking to the app over ASGI.
"""
from __future__ import annotations

import json
import math

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from grillmon.main import app
from grillmon.meats import MeatType
from grillmon.session.backends import RemoteSessionBackend
from grillmon.session.manager import SessionManager
from grillmon.store import WriteStatus
from grillmon.tests.fakes import make_session, reading


def _wire_session(**overrides) -> dict:
    session = make_session(
        0,
        session_id="cook-api",
        meats={2: MeatType.beef_brisket},
        targets={0: 225.0, 2: 95.0},
        history={2: [reading(41.0, 0), reading(42.5, 5)]},
        is_active=True,
    ).to_wire()
    session.update(overrides)
    return session


# ---------------------------------------------------------------------------
# GET / PUT round trip
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_on_empty_store_is_404_with_null_session(api_client: AsyncClient) -> None:
    response = await api_client.get("/api/session")
    assert response.status_code == 404
    assert response.json() == {"session": None, "message": "No session found"}


@pytest.mark.asyncio
async def test_put_then_get_returns_same_session(api_client: AsyncClient) -> None:
    sent = _wire_session()

    put = await api_client.put("/api/session", json={"session": sent})
    assert put.status_code == 200, put.text
    body = put.json()
    assert body["saved"] is True
    assert "lastSync" in body

    got = await api_client.get("/api/session")
    assert got.status_code == 200
    returned = got.json()["session"]

    for key in ("id", "startTime", "isActive", "selectedMeats", "sensorTargets", "temperatureHistory"):
        assert returned[key] == sent[key], key
    assert returned["lastSaved"] == body["session"]["lastSaved"]


@pytest.mark.asyncio
async def test_put_without_session_id_is_400(api_client: AsyncClient) -> None:
    session = _wire_session()
    del session["id"]

    response = await api_client.put("/api/session", json={"session": session})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_put_malformed_session_is_422(api_client: AsyncClient) -> None:
    response = await api_client.put(
        "/api/session",
        json={"session": _wire_session(selectedMeats={"2": "tofu"})},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_put_while_store_is_locked_is_500(api_client: AsyncClient) -> None:
    store = app.state.session_store
    assert store.acquire_lock()
    try:
        response = await api_client.put("/api/session", json={"session": _wire_session()})
    finally:
        store.release_lock()

    assert response.status_code == 500
    assert "busy" in response.json()["error"]["message"]


@pytest.mark.asyncio
async def test_put_records_device_header(api_client: AsyncClient) -> None:
    await api_client.put(
        "/api/session",
        json={"session": _wire_session()},
        headers={"X-Device-Id": "device-tablet"},
    )
    record = json.loads(app.state.session_store.current_path.read_text(encoding="utf-8"))
    assert record["deviceId"] == "device-tablet"


@pytest.mark.asyncio
async def test_put_is_picked_up_by_server_session(api_client: AsyncClient) -> None:
    await api_client.put("/api/session", json={"session": _wire_session()})
    current = app.state.session_manager.current
    assert current is not None
    assert current.id == "cook-api"
    assert current.selected_meats[2] is MeatType.beef_brisket


@pytest.mark.asyncio
async def test_nan_temperature_survives_round_trip(api_client: AsyncClient) -> None:
    history = {"3": [{"temperature": float("nan"), "timestamp": "2026-07-01T12:00:00Z"}]}
    # NaN is not valid strict JSON, so encode the body by hand
    body = json.dumps({"session": _wire_session(temperatureHistory=history)})
    put = await api_client.put(
        "/api/session", content=body, headers={"Content-Type": "application/json"}
    )
    assert put.status_code == 200, put.text

    got = await api_client.get("/api/session")
    assert math.isnan(got.json()["session"]["temperatureHistory"]["3"][0]["temperature"])


# ---------------------------------------------------------------------------
# DELETE
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_clears_record_backups_and_server_session(api_client: AsyncClient) -> None:
    await api_client.put("/api/session", json={"session": _wire_session()})
    await api_client.put("/api/session", json={"session": _wire_session(isActive=False)})

    response = await api_client.delete("/api/session")

    assert response.status_code == 200
    body = response.json()
    assert body["cleared"] is True
    assert body["message"] == "Session cleared successfully"
    assert (await api_client.get("/api/session")).status_code == 404
    assert app.state.session_store.list_backups() == []
    assert app.state.session_manager.current is None


@pytest.mark.asyncio
async def test_delete_is_idempotent(api_client: AsyncClient) -> None:
    assert (await api_client.delete("/api/session")).status_code == 200
    assert (await api_client.delete("/api/session")).status_code == 200


@pytest.mark.asyncio
async def test_sync_status(api_client: AsyncClient) -> None:
    response = await api_client.get("/api/session/sync")
    assert response.status_code == 200
    assert response.json()["state"] == "IDLE"
    assert response.json()["mode"] == "server"


# ---------------------------------------------------------------------------
# Device backend over HTTP
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_remote_backend_against_app(api_client: AsyncClient, cache) -> None:
    remote = RemoteSessionBackend(AsyncClient(transport=ASGITransport(app=app), base_url="http://test"))
    device = SessionManager(remote, cache)
    await device.initialize()

    assert await remote.load() is None
    await device.select_meat(4, MeatType.lamb_chops)

    stored = app.state.session_store.load()
    assert stored.selected_meats[4] is MeatType.lamb_chops
    assert stored.sensor_targets[4] == 63.0
    assert device.current.last_saved == stored.last_saved

    result = await remote.save(stored)
    assert result.status is WriteStatus.saved
    assert await remote.clear() is True
    assert await remote.load() is None
    await remote.close()


@pytest.mark.asyncio
async def test_remote_backend_reports_unreachable_server(cache) -> None:
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    remote = RemoteSessionBackend(AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://x"))
    assert await remote.load() is None
    assert (await remote.save(make_session(0))).status is WriteStatus.failed
    assert await remote.clear() is False
    await remote.close()


@pytest.mark.asyncio
async def test_health_reports_current_session(api_client: AsyncClient) -> None:
    assert (await api_client.get("/api/health")).json()["sessionId"] is None

    await api_client.put("/api/session", json={"session": _wire_session()})

    body = (await api_client.get("/api/health")).json()
    assert body["status"] == "ok"
    assert body["sessionId"] == "cook-api"

"""
Test configuration for Grill Monitor tests.

Shared fixtures:
  - clock        controllable UTC clock injected into store / manager / sync
  - store        DurableSessionStore under tmp_path
  - cache        FileSessionCache under tmp_path
  - manager      server-mode SessionManager (file backend + file cache)
  - api_client   httpx AsyncClient against the FastAPI app (ASGI, no server);
                 startup() runs with tmp-path settings and the sync loop off
"""
from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from grillmon.cache import FileSessionCache
from grillmon.config import Settings
from grillmon.session.backends import FileSessionBackend
from grillmon.session.manager import SessionManager
from grillmon.store import DurableSessionStore
from grillmon.tests.fakes import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> DurableSessionStore:
    store = DurableSessionStore(tmp_path / "sessions", clock=clock)
    store.initialize()
    return store


@pytest.fixture
def cache(tmp_path) -> FileSessionCache:
    return FileSessionCache(tmp_path / "local" / "cache.json")


@pytest.fixture
def manager(store, cache, clock) -> SessionManager:
    return SessionManager(FileSessionBackend(store), cache, clock=clock)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        environment="development",
        session_dir_development=str(tmp_path / "server" / "sessions"),
        local_cache_backend="file",
        local_cache_path=str(tmp_path / "server" / "cache.json"),
        sensor_upstream_url="",
    )


@pytest_asyncio.fixture
async def api_client(test_settings):
    """Async httpx client using ASGI transport — no live server needed."""
    from grillmon.main import app, shutdown, startup

    await startup(app, test_settings, start_sync=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await shutdown(app)

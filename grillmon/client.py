"""
client.py — Grill Monitor device process.

A device (tablet, phone, second laptop) keeps its own SessionManager backed
by the server over HTTP, a local cache for offline use, and a client-mode
SyncOrchestrator. It polls the sensor feed for display only: the server is
the one writer of temperature history (it ingests POST /api/data), and the
device merges the live samples with the shared history into chart series.
Mock sensors fill in when the feed is down and are never persisted.

Start with: grillmon-client
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

import httpx

from grillmon.cache import open_local_cache
from grillmon.config import Settings, settings
from grillmon.sensors.feed import SensorFeedClient
from grillmon.sensors.schemas import Sensor
from grillmon.session.backends import RemoteSessionBackend
from grillmon.session.history import ChartSeries, chart_series, merge_live_with_session, utc_now
from grillmon.session.manager import SessionManager
from grillmon.session.schemas import GrillSession, Provenance
from grillmon.session.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Device:
    manager: SessionManager
    sync: SyncOrchestrator
    feed: SensorFeedClient
    reading_interval: float
    display: Dict[int, ChartSeries] = field(default_factory=dict)

    def refresh_display(self, sensors: List[Sensor]) -> None:
        """Chart data per probe: the live window merged with the shared session history."""
        session = self.manager.current
        history = session.temperature_history if session else {}
        now = utc_now()
        self.display = {
            sensor.id: chart_series(
                merge_live_with_session(sensor.history, history.get(sensor.id, []), now=now), now
            )
            for sensor in sensors
        }

    async def close(self) -> None:
        await self.sync.stop()
        await self.manager.backend.close()
        await self.manager.cache.close()


async def build_device(config: Settings = settings, client: Optional[httpx.AsyncClient] = None) -> Device:
    """Wire the HTTP backend, local cache, manager and client-mode sync."""
    client = client or httpx.AsyncClient(base_url=config.server_url, timeout=config.http_timeout_seconds)
    cache = await open_local_cache(
        config.local_cache_backend,
        config.local_cache_path,
        config.redis_url,
    )
    manager = SessionManager(
        RemoteSessionBackend(client),
        cache,
        max_age=timedelta(hours=config.session_max_age_hours),
        retention=timedelta(hours=config.history_retention_hours),
    )
    sync = SyncOrchestrator(
        manager,
        interval=timedelta(seconds=config.sync_interval_seconds),
        min_interval=timedelta(seconds=config.sync_min_interval_seconds),
        retention=timedelta(hours=config.history_retention_hours),
        max_readings=config.history_max_readings,
    )
    return Device(manager, sync, SensorFeedClient(client), config.reading_interval_seconds)


def _log_change(session: Optional[GrillSession], provenance: Provenance) -> None:
    if provenance is Provenance.remote:
        logger.info("Session updated by another device session_id=%s",
                    session.id if session else None)


async def run_device(device: Device, iterations: Optional[int] = None) -> None:
    """
    Load or create the session, start sync, then refresh the display from the
    sensor feed every reading interval. Runs forever unless `iterations` is given.
    """
    await device.manager.initialize()
    unsubscribe = device.manager.subscribe(_log_change)
    await device.manager.ensure_exists()
    device.sync.start()

    count = 0
    try:
        while iterations is None or count < iterations:
            device.refresh_display(await device.feed.fetch_or_mock())
            count += 1
            if iterations is None or count < iterations:
                await asyncio.sleep(device.reading_interval)
    finally:
        unsubscribe()
        await device.close()


def main() -> None:
    """Console entry point: grillmon-client"""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )

    async def _run() -> None:
        device = await build_device(settings)
        logger.info("Device client started server=%s", settings.server_url)
        await run_device(device)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Device client stopped")

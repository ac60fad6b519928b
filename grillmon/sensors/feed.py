"""
feed.py — Sensor snapshots: ingestion, upstream polling, client fetch, mocks.

  SensorSnapshotSlot  latest POSTed snapshot, in memory only
  fetch_upstream()    poll a Node-RED style upstream that serves Sensor[]
  SensorFeedClient    device-side reader of GET /api/data
  create_mock_sensors deterministic stand-in when no feed is reachable
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from grillmon.meats import default_target_for
from grillmon.sensors.schemas import Sensor, UpstreamStatus
from grillmon.session.history import MAX_CHART_HISTORY_MINUTES, generate_mock_history, utc_now

logger = logging.getLogger(__name__)

DATA_PATH = "/api/data"
MOCK_CHANNELS = 7


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

def parse_sensor_payload(body: Any) -> List[Sensor]:
    """
    Accept a single sensor object or a non-empty array of them.
    Raises ValueError on any other shape or on an invalid sensor.
    """
    if isinstance(body, dict):
        items = [body]
    elif isinstance(body, list) and body:
        items = body
    else:
        raise ValueError("Invalid sensor data format")
    return [Sensor.model_validate(item) for item in items]


def filter_valid_sensors(items: Any) -> List[Sensor]:
    """Keep the well-formed sensors of a feed, dropping the rest with a warning."""
    if not isinstance(items, list):
        return []
    valid = []
    for item in items:
        try:
            valid.append(Sensor.model_validate(item))
        except ValidationError:
            continue
    if len(valid) != len(items):
        logger.warning("Dropped %d invalid sensor entries", len(items) - len(valid))
    return valid


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------

class SensorSnapshotSlot:
    """Latest POSTed snapshot. Not persisted; a restart starts empty."""

    def __init__(self) -> None:
        self._sensors: List[Sensor] = []
        self._updated_at: Optional[datetime] = None

    def set(self, sensors: List[Sensor], now: Optional[datetime] = None) -> None:
        self._sensors = list(sensors)
        self._updated_at = now or utc_now()

    def get(self) -> Tuple[List[Sensor], Optional[datetime]]:
        return list(self._sensors), self._updated_at


@dataclass
class UpstreamResult:
    sensors: List[Sensor]
    status: UpstreamStatus
    error: Optional[str] = None


async def fetch_upstream(client: httpx.AsyncClient, base_url: str) -> UpstreamResult:
    """GET {base_url}/sensors. Never raises; failures come back as status=error."""
    if not base_url:
        return UpstreamResult([], UpstreamStatus.unavailable)

    url = f"{base_url.rstrip('/')}/sensors"
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("Sensor upstream unreachable url=%s: %s", url, exc)
        return UpstreamResult([], UpstreamStatus.error, str(exc) or type(exc).__name__)

    if response.status_code != 200:
        logger.warning("Sensor upstream returned status=%d", response.status_code)
        return UpstreamResult([], UpstreamStatus.error,
                              f"Upstream returned status {response.status_code}")
    try:
        body = response.json()
    except ValueError:
        return UpstreamResult([], UpstreamStatus.error, "Upstream returned invalid JSON")

    return UpstreamResult(filter_valid_sensors(body), UpstreamStatus.available)


# ---------------------------------------------------------------------------
# Device side
# ---------------------------------------------------------------------------

def create_mock_sensors(
    now: Optional[datetime] = None,
    channels: int = MOCK_CHANNELS,
    window_minutes: int = MAX_CHART_HISTORY_MINUTES,
) -> List[Sensor]:
    """Deterministic heating curves for every channel, ending at `now`."""
    now = now or utc_now()
    sensors = []
    for channel in range(channels):
        readings = generate_mock_history(channel, duration_minutes=window_minutes, current_temp=0, now=now)
        history = [r.temperature for r in readings]
        sensors.append(
            Sensor(
                id=channel,
                current_temp=history[-1],
                target_temp=default_target_for(channel),
                history=history,
            )
        )
    return sensors


class SensorFeedClient:
    """Reads GET /api/data from the server."""

    def __init__(self, client: httpx.AsyncClient, path: str = DATA_PATH) -> None:
        self._client = client
        self._path = path

    async def fetch(self) -> List[Sensor]:
        """Valid sensors of the feed; [] on 404, bad payloads or transport errors."""
        try:
            response = await self._client.get(self._path)
        except httpx.HTTPError as exc:
            logger.warning("Sensor feed fetch failed: %s", exc)
            return []

        if response.status_code != 200:
            logger.warning("Sensor feed returned status=%d", response.status_code)
            return []
        try:
            body = response.json()
        except ValueError:
            logger.warning("Sensor feed returned invalid JSON")
            return []

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            logger.warning("Sensor feed payload has no data array")
            return []
        return filter_valid_sensors(data)

    async def fetch_or_mock(self, now: Optional[datetime] = None) -> List[Sensor]:
        sensors = await self.fetch()
        if sensors:
            return sensors
        logger.debug("No live sensor data — using mock sensors")
        return create_mock_sensors(now)

"""
Sensor feed HTTP routes — GET  /api/data
                           POST /api/data

GET prefers the configured upstream, falls back to the last POSTed snapshot,
and answers 404 (with debug info) when neither has data.

POST stores the snapshot and appends each probe's current temperature to the
server's cook session, starting the cook once a meat probe warms up.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, ValidationError

from grillmon.sensors.feed import fetch_upstream, parse_sensor_payload
from grillmon.sensors.schemas import (
    DataSource,
    DebugInfo,
    SensorFeedMissing,
    SensorFeedResponse,
    SensorPostResponse,
    UpstreamStatus,
)

router = APIRouter(prefix="/api", tags=["sensors"])
logger = logging.getLogger(__name__)


def _json(model: BaseModel, status_code: int = 200) -> Response:
    return Response(
        content=model.model_dump_json(by_alias=True),
        status_code=status_code,
        media_type="application/json",
    )


@router.get("/data")
async def get_sensor_data(request: Request) -> Response:
    state = request.app.state
    now = state.clock()

    upstream = await fetch_upstream(state.http_client, state.sensor_upstream_url)
    if upstream.status is UpstreamStatus.available:
        debug = DebugInfo(
            data_source=DataSource.upstream,
            last_update=now,
            upstream_status=upstream.status,
        )
        return _json(SensorFeedResponse(data=upstream.sensors, debug=debug))

    sensors, updated_at = state.sensor_slot.get()
    debug = DebugInfo(
        data_source=DataSource.posted,
        last_update=updated_at or now,
        error=upstream.error,
        upstream_status=upstream.status,
    )
    if sensors:
        return _json(SensorFeedResponse(data=sensors, debug=debug))

    debug.error = "No data from the upstream or from posted snapshots"
    return _json(SensorFeedMissing(debug=debug), status_code=404)


@router.post("/data")
async def post_sensor_data(request: Request) -> Response:
    """
    Accepts one sensor object or an array of them.
      200: {status: "ok", received: <count>}
      400: invalid JSON or sensor shape
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    try:
        sensors = parse_sensor_payload(body)
    except (ValueError, ValidationError) as exc:
        logger.info("Rejected sensor payload: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid sensor data format")

    state = request.app.state
    state.sensor_slot.set(sensors, state.clock())
    logger.debug("Sensor snapshot received channels=%s", [s.id for s in sensors])

    manager = getattr(state, "session_manager", None)
    if manager is not None:
        readings = {s.id: s.current_temp for s in sensors}
        if not await manager.record_readings(readings):
            logger.warning("Readings not persisted channels=%s", sorted(readings))
        await manager.auto_start(readings)

    return _json(SensorPostResponse(received=len(sensors)))

"""
Weather HTTP route — GET /api/weather

Forecast for the configured grill location. Upstream failures surface as
502 BAD_GATEWAY in the standard error envelope.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response

from grillmon.weather.schemas import WeatherResponse
from grillmon.weather.service import WeatherUnavailableError, fetch_forecast

router = APIRouter(prefix="/api", tags=["weather"])
logger = logging.getLogger(__name__)


@router.get("/weather")
async def get_weather(request: Request) -> Response:
    state = request.app.state
    location = state.weather_location
    try:
        weather = await fetch_forecast(
            state.http_client,
            location.latitude,
            location.longitude,
            location.timezone,
            now=state.clock(),
        )
    except WeatherUnavailableError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    body = WeatherResponse(location=location.label, weather=weather)
    return Response(content=body.model_dump_json(by_alias=True), media_type="application/json")

"""
Weather tests — Open-Meteo mapping (httpx.MockTransport) and GET /api/weather.
"""
from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
from httpx import AsyncClient

from grillmon.main import app
from grillmon.weather.service import WeatherUnavailableError, fetch_forecast, map_weather_code

# 10:30 UTC is 12:30 in Vienna (CEST)
NOW = datetime(2026, 7, 1, 10, 30, tzinfo=timezone.utc)


def _open_meteo_payload() -> dict:
    times = [f"2026-07-01T{hour:02d}:00" for hour in range(24)]
    return {
        "utc_offset_seconds": 7200,
        "current_weather": {"temperature": 24.3, "windspeed": 11.5, "weathercode": 2},
        "hourly": {
            "time": times,
            "temperature_2m": [15.0 + h * 0.5 for h in range(24)],
            "precipitation_probability": [None if h == 14 else h for h in range(24)],
            "weathercode": [0 if h < 14 else 61 for h in range(24)],
        },
    }


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "code, condition",
    [(0, "sunny"), (2, "cloudy"), (45, "overcast"), (63, "rainy"), (81, "rainy"), (95, "cloudy")],
)
def test_map_weather_code(code: int, condition: str) -> None:
    assert map_weather_code(code) == condition


@pytest.mark.asyncio
async def test_fetch_forecast_maps_current_and_next_hours() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=_open_meteo_payload())

    async with _client(handler) as client:
        weather = await fetch_forecast(client, 47.6833, 13.0933, "Europe/Vienna", now=NOW)

    assert seen["latitude"] == "47.6833"
    assert seen["timezone"] == "Europe/Vienna"
    assert weather.current.temperature == 24.3
    assert weather.current.condition == "cloudy"
    assert weather.current.wind_speed == 11.5
    assert weather.current.humidity == 50
    assert [h.time for h in weather.hourly] == [f"2026-07-01T{h}:00" for h in range(13, 19)]
    assert weather.hourly[0].condition == "sunny"
    assert weather.hourly[1].condition == "rainy"
    assert weather.hourly[1].precipitation_chance == 0


@pytest.mark.asyncio
async def test_fetch_forecast_uses_last_hours_when_none_are_in_future() -> None:
    late = datetime(2026, 7, 2, 8, 0, tzinfo=timezone.utc)
    async with _client(lambda r: httpx.Response(200, json=_open_meteo_payload())) as client:
        weather = await fetch_forecast(client, 47.6833, 13.0933, "Europe/Vienna", now=late)
    assert [h.time[-5:] for h in weather.hourly] == ["18:00", "19:00", "20:00", "21:00", "22:00", "23:00"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [httpx.Response(500), httpx.Response(200, json={"hourly": {}}), httpx.Response(200, text="nope")],
)
async def test_fetch_forecast_failures_raise(response) -> None:
    async with _client(lambda r: response) as client:
        with pytest.raises(WeatherUnavailableError):
            await fetch_forecast(client, 0.0, 0.0, "UTC", now=NOW)


@pytest.mark.asyncio
async def test_weather_endpoint(api_client: AsyncClient) -> None:
    await app.state.http_client.aclose()
    app.state.http_client = _client(lambda r: httpx.Response(200, json=_open_meteo_payload()))

    response = await api_client.get("/api/weather")

    assert response.status_code == 200
    body = response.json()
    assert body["location"] == "Hallein, Salzburg, Austria"
    assert body["weather"]["current"]["windSpeed"] == 11.5
    assert len(body["weather"]["hourly"]) <= 6


@pytest.mark.asyncio
async def test_weather_endpoint_upstream_failure_is_502(api_client: AsyncClient) -> None:
    await app.state.http_client.aclose()
    app.state.http_client = _client(lambda r: httpx.Response(500))

    response = await api_client.get("/api/weather")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "BAD_GATEWAY"

"""
service.py — Open-Meteo forecast client.

fetch_forecast() asks for current weather plus the hourly temperature,
precipitation probability and weather code, and returns the current
conditions with the next few hours of forecast.

Open-Meteo serves hourly times as naive local times in the requested
timezone, together with that zone's utc_offset_seconds; the offset is
applied to find the first future hour.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import NamedTuple, Optional

import httpx

from grillmon.session.history import utc_now
from grillmon.weather.schemas import CurrentWeather, HourlyForecast, WeatherData

logger = logging.getLogger(__name__)

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
HOURLY_FIELDS = "temperature_2m,precipitation_probability,weathercode"
FORECAST_HOURS = 6

# Not part of the free API
HUMIDITY_PLACEHOLDER = 50.0
VISIBILITY_PLACEHOLDER = 10.0

_RAIN_CODES = frozenset({51, 53, 55, 56, 57, 61, 63, 65, 66, 67, 80, 81, 82})


class WeatherLocation(NamedTuple):
    latitude: float
    longitude: float
    timezone: str
    label: str


class WeatherUnavailableError(Exception):
    """Upstream forecast could not be fetched or parsed."""


def map_weather_code(code: int) -> str:
    """WMO weather code → dashboard condition name."""
    if code == 0:
        return "sunny"
    if code in (1, 2, 3):
        return "cloudy"
    if code in (45, 48):
        return "overcast"
    if code in _RAIN_CODES:
        return "rainy"
    return "cloudy"


def _first_future_index(times: list[str], tz: dt_timezone, now: datetime, hours: int) -> int:
    for i, raw in enumerate(times):
        if datetime.fromisoformat(raw).replace(tzinfo=tz) > now:
            return i
    return max(len(times) - hours, 0)


async def fetch_forecast(
    client: httpx.AsyncClient,
    latitude: float,
    longitude: float,
    timezone: str,
    now: Optional[datetime] = None,
    hours: int = FORECAST_HOURS,
) -> WeatherData:
    """Current weather and the next `hours` hourly entries. Raises WeatherUnavailableError."""
    params = {
        "latitude": latitude,
        "longitude": longitude,
        "current_weather": "true",
        "hourly": HOURLY_FIELDS,
        "timezone": timezone,
    }
    try:
        response = await client.get(OPEN_METEO_URL, params=params)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Weather fetch failed: %s", exc)
        raise WeatherUnavailableError("Failed to fetch weather") from exc

    try:
        current_raw = data["current_weather"]
        current = CurrentWeather(
            temperature=current_raw["temperature"],
            condition=map_weather_code(current_raw["weathercode"]),
            wind_speed=current_raw["windspeed"],
            humidity=HUMIDITY_PLACEHOLDER,
            visibility=VISIBILITY_PLACEHOLDER,
        )

        hourly_raw = data.get("hourly") or {}
        times = hourly_raw.get("time") or []
        offset = dt_timezone(timedelta(seconds=data.get("utc_offset_seconds") or 0))
        start = _first_future_index(times, offset, now or utc_now(), hours)
        hourly = [
            HourlyForecast(
                time=times[i],
                temperature=hourly_raw["temperature_2m"][i],
                condition=map_weather_code(hourly_raw["weathercode"][i]),
                precipitation_chance=hourly_raw["precipitation_probability"][i] or 0,
            )
            for i in range(start, min(start + hours, len(times)))
        ]
    except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("Unexpected weather payload: %s", exc)
        raise WeatherUnavailableError("Unexpected weather payload") from exc

    return WeatherData(current=current, hourly=hourly)

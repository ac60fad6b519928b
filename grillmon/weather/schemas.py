"""
schemas.py — Weather Pydantic v2 data contracts (GET /api/weather).
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _WeatherModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CurrentWeather(_WeatherModel):
    temperature: float          # °C
    condition: str
    wind_speed: float
    humidity: float             # placeholder, not in the free API
    visibility: float           # placeholder, not in the free API


class HourlyForecast(_WeatherModel):
    time: str                   # local ISO time as served by Open-Meteo
    temperature: float
    condition: str
    precipitation_chance: float


class WeatherData(_WeatherModel):
    current: CurrentWeather
    hourly: List[HourlyForecast]


class WeatherResponse(_WeatherModel):
    location: str
    weather: WeatherData

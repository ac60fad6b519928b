"""
schemas.py — Sensor feed Pydantic v2 data contracts.

Defines:
  - Sensor               (one probe: id, currentTemp, targetTemp, history)
  - DebugInfo            (where GET /api/data got its data from)
  - SensorFeedResponse   (200 body of GET /api/data)
  - SensorFeedMissing    (404 body of GET /api/data)
  - SensorPostResponse   (200 body of POST /api/data)

Sensor validation is strict: ids must be integers and temperatures numbers.
Payloads from the probe hardware that send strings are rejected, not coerced.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DataSource(str, Enum):
    upstream = "upstream"   # polled from sensor_upstream_url
    posted = "posted"       # last snapshot POSTed to /api/data
    mock = "mock"           # generated locally (device client fallback)


class UpstreamStatus(str, Enum):
    available = "available"
    unavailable = "unavailable"   # not configured
    error = "error"               # configured but failed


class Sensor(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=True,
        ser_json_inf_nan="constants",
    )

    id: int
    current_temp: float
    target_temp: float
    history: List[float] = Field(default_factory=list)


class DebugInfo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data_source: DataSource
    last_update: datetime
    error: Optional[str] = None
    upstream_status: UpstreamStatus = UpstreamStatus.unavailable


class SensorFeedResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data: List[Sensor]
    debug: DebugInfo


class SensorFeedMissing(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error: str = "No sensor data available"
    debug: DebugInfo


class SensorPostResponse(BaseModel):
    status: str = "ok"
    received: int

"""
schemas.py — Session Pydantic v2 data contracts.

Defines:
  - GrillSession             (the central cook-session entity)
  - Provenance               (local / remote tag on change notifications)
  - SessionResponse, SessionSavedResponse, SessionMissingResponse,
    SessionClearedResponse   (wire envelopes of /api/session)

WIRE FORMAT: camelCase (startTime, isActive, selectedMeats, sensorTargets,
temperatureHistory, lastSaved). Python code uses snake_case; both are
accepted on input. Channel ids are JSON object keys, so they travel as
strings and are parsed back to int.

LEGACY RECORDS: schema version 1 stored each channel's history as a bare
list of numbers. Those lists are migrated to timestamped readings on
validation, anchored at the record's lastSaved.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from grillmon.meats import MeatType
from grillmon.session.history import (
    TemperatureReading,
    UtcDatetime,
    migrate_legacy_history,
    utc_now,
)

SCHEMA_VERSION = 2

_DATETIME_ADAPTER = TypeAdapter(UtcDatetime)


class Provenance(str, Enum):
    local = "local"      # originated from this device's own mutation path
    remote = "remote"    # pulled in from another device's write


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        ser_json_inf_nan="constants",
    )


# ---------------------------------------------------------------------------
# GrillSession
# ---------------------------------------------------------------------------

class GrillSession(_WireModel):
    """
    One cook: selected meats, target temperatures and temperature history.

    selected_meats: channel → meat; MeatType.none means "nothing selected".
    sensor_targets: channel → target °C; 0 means "no target set".
    last_saved:     stamped by whoever writes the session (manager, store,
                    merge), never taken from a caller. Doubles as the
                    conflict-ordering clock between devices.
    """

    id: str
    start_time: Optional[UtcDatetime] = None
    is_active: bool = False
    selected_meats: Dict[int, MeatType] = Field(default_factory=dict)
    sensor_targets: Dict[int, float] = Field(default_factory=dict)
    temperature_history: Dict[int, List[TemperatureReading]] = Field(default_factory=dict)
    last_saved: UtcDatetime = Field(default_factory=utc_now)

    @classmethod
    def new(cls, now: Optional[datetime] = None) -> "GrillSession":
        """Fresh, inactive session with a newly generated id."""
        return cls(id=str(uuid.uuid4()), last_saved=now or utc_now())

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_history(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        key = "temperatureHistory" if "temperatureHistory" in data else "temperature_history"
        history = data.get(key)
        if not isinstance(history, dict):
            return data

        legacy = {
            channel: readings
            for channel, readings in history.items()
            if isinstance(readings, list) and readings and all(_is_number(v) for v in readings)
        }
        if not legacy:
            return data

        raw_end = data.get("lastSaved", data.get("last_saved"))
        try:
            end_time = _DATETIME_ADAPTER.validate_python(raw_end) if raw_end is not None else None
        except ValueError:
            end_time = None

        migrated = dict(history)
        for channel, values in legacy.items():
            migrated[channel] = migrate_legacy_history(values, end_time)
        return {**data, key: migrated}

    @field_validator("temperature_history")
    @classmethod
    def _sort_history(
        cls, value: Dict[int, List[TemperatureReading]]
    ) -> Dict[int, List[TemperatureReading]]:
        return {
            channel: sorted(readings, key=lambda r: r.timestamp)
            for channel, readings in value.items()
        }

    def to_wire(self) -> dict:
        """camelCase JSON-compatible dict (channel keys become strings)."""
        return self.model_dump(mode="json", by_alias=True)

    def content(self) -> str:
        """Canonical JSON of everything except last_saved — used to detect real changes."""
        return json.dumps(
            self.model_dump(mode="json", by_alias=True, exclude={"last_saved"}),
            sort_keys=True,
        )

    def is_expired(self, now: datetime, max_age: timedelta) -> bool:
        return now - self.last_saved > max_age


# ---------------------------------------------------------------------------
# Wire envelopes: /api/session
# ---------------------------------------------------------------------------

class SessionPutRequest(_WireModel):
    session: GrillSession


class SessionResponse(_WireModel):
    session: Optional[GrillSession]
    last_sync: UtcDatetime


class SessionSavedResponse(_WireModel):
    session: GrillSession
    saved: bool = True
    last_sync: UtcDatetime


class SessionMissingResponse(_WireModel):
    session: None = None
    message: str = "No session found"


class SessionClearedResponse(_WireModel):
    cleared: bool = True
    message: str = "Session cleared successfully"
    last_sync: UtcDatetime

"""
history.py — Temperature reading model and history utilities.

Two sources of temperature data meet here:
  - the live sensor feed: a short rolling window of bare numbers (last ~15
    samples) with no timestamps of its own
  - the persistent session history: timestamped readings kept for up to 24h

Every function is pure: inputs are never mutated, outputs are new lists
sorted ascending by timestamp. Temperatures are passed through unvalidated
(NaN / negative values included); validation belongs to ingestion.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Annotated, Iterable, List, Optional, Sequence

from pydantic import AfterValidator, BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
HISTORY_CLEANUP_HOURS = 24                 # keep detailed history for 24 hours
MAX_CHART_HISTORY_MINUTES = 30             # charts show the last 30 minutes
TEMPERATURE_READING_INTERVAL_SECONDS = 5   # nominal spacing of live samples
MAX_HISTORY_READINGS = 17280               # 24h at one reading per 5s

HISTORY_RETENTION = timedelta(hours=HISTORY_CLEANUP_HOURS)
READING_INTERVAL = timedelta(seconds=TEMPERATURE_READING_INTERVAL_SECONDS)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# ---------------------------------------------------------------------------
# TemperatureReading
# ---------------------------------------------------------------------------

class TemperatureReading(BaseModel):
    """One timestamped probe reading. Immutable."""
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    temperature: float
    timestamp: UtcDatetime


class ChartSeries(BaseModel):
    """Display-ready arrays derived from a reading sequence."""
    values: List[float] = []
    labels: List[str] = []
    timestamps: List[datetime] = []


def _by_time(reading: TemperatureReading) -> datetime:
    return reading.timestamp


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def append_reading(
    history: Sequence[TemperatureReading],
    temperature: float,
    now: Optional[datetime] = None,
    retention: timedelta = HISTORY_RETENTION,
) -> List[TemperatureReading]:
    """
    Add a reading stamped `now`, re-sort, and drop readings older than
    `now - retention`. No count cap: age is the only retention policy here.
    """
    now = ensure_utc(now) if now is not None else utc_now()
    updated = sorted([*history, TemperatureReading(temperature=temperature, timestamp=now)], key=_by_time)
    cutoff = now - retention
    return [r for r in updated if r.timestamp >= cutoff]


def migrate_legacy_history(
    values: Sequence[float],
    end_time: Optional[datetime] = None,
    interval: timedelta = READING_INTERVAL,
) -> List[TemperatureReading]:
    """
    Convert a bare list of numbers into readings spaced `interval` apart,
    the last one stamped `end_time`. Best-effort reconstruction, not exact.
    """
    end_time = ensure_utc(end_time) if end_time is not None else utc_now()
    count = len(values)
    return [
        TemperatureReading(
            temperature=value,
            timestamp=end_time - (count - 1 - index) * interval,
        )
        for index, value in enumerate(values)
    ]


def merge_histories(
    existing: Iterable[TemperatureReading],
    incoming: Iterable[TemperatureReading],
) -> List[TemperatureReading]:
    """
    Union two reading sequences keyed by exact timestamp.

    On a timestamp collision the incoming reading wins, so the output never
    holds two readings for the same instant.
    """
    combined: dict[datetime, TemperatureReading] = {}
    for reading in existing:
        combined[reading.timestamp] = reading
    for reading in incoming:
        combined[reading.timestamp] = reading
    return sorted(combined.values(), key=_by_time)


def trim_history(
    history: Sequence[TemperatureReading],
    retention: timedelta = HISTORY_RETENTION,
    max_readings: int = MAX_HISTORY_READINGS,
) -> List[TemperatureReading]:
    """
    Apply both retention ceilings: age relative to the newest reading, then
    count (newest readings kept).
    """
    if not history:
        return []
    ordered = sorted(history, key=_by_time)
    cutoff = ordered[-1].timestamp - retention
    recent = [r for r in ordered if r.timestamp >= cutoff]
    if max_readings >= 0 and len(recent) > max_readings:
        recent = recent[len(recent) - max_readings:]
    return recent


def chart_series(
    history: Sequence[TemperatureReading],
    now: Optional[datetime] = None,
) -> ChartSeries:
    """Values plus relative-minute labels ("now", "-1m", ...) for charting."""
    if not history:
        return ChartSeries()
    now = ensure_utc(now) if now is not None else utc_now()

    labels = []
    for reading in history:
        # round half up, matching the dashboard's labels
        minutes_ago = math.floor((now - reading.timestamp).total_seconds() / 60 + 0.5)
        labels.append("now" if minutes_ago <= 0 else f"-{minutes_ago}m")

    return ChartSeries(
        values=[r.temperature for r in history],
        labels=labels,
        timestamps=[r.timestamp for r in history],
    )


def merge_live_with_session(
    live_samples: Sequence[float],
    session_history: Sequence[TemperatureReading],
    window_minutes: float = MAX_CHART_HISTORY_MINUTES,
    now: Optional[datetime] = None,
    interval: timedelta = READING_INTERVAL,
) -> List[TemperatureReading]:
    """
    Combine the live feed window with the persisted session history for chart
    display. Live samples are anchored at `now`; session history is limited to
    the trailing window; live readings win on identical timestamps.

    An empty live feed returns the session history unmodified, an empty
    session history returns the live-derived readings.
    """
    if not live_samples:
        return list(session_history)

    now = ensure_utc(now) if now is not None else utc_now()
    live = migrate_legacy_history(live_samples, now, interval)
    if not session_history:
        return live

    cutoff = now - timedelta(minutes=window_minutes)
    combined: dict[datetime, TemperatureReading] = {
        r.timestamp: r for r in session_history if r.timestamp >= cutoff
    }
    for reading in live:
        combined[reading.timestamp] = reading
    return sorted(combined.values(), key=_by_time)


# ---------------------------------------------------------------------------
# Mock data: offline / development fallback
# ---------------------------------------------------------------------------

def _deterministic_random(seed: float) -> float:
    # sin-hash: same seed, same value, so mock charts are stable across reloads
    x = math.sin(seed) * 10000
    return x - math.floor(x)


def generate_mock_history(
    channel: int,
    duration_minutes: int = 30,
    current_temp: float = 25,
    now: Optional[datetime] = None,
    ambient_channel_limit: int = 2,
) -> List[TemperatureReading]:
    """
    Deterministic heating-curve history, one reading per 5 seconds.
    Ambient/grill channels heat fast toward `current_temp` (or 180), meat
    channels climb slowly toward `current_temp` (or 65).
    """
    now = ensure_utc(now) if now is not None else utc_now()
    start = now - timedelta(minutes=duration_minutes)
    steps = duration_minutes * 12
    readings = []

    for i in range(steps + 1):
        progress = i / steps if steps else 1.0
        noise = _deterministic_random(channel * 1000 + i) - 0.5
        if channel < ambient_channel_limit:
            target = current_temp or 180
            temperature = max(20.0, target * (1 - math.exp(-progress * 3)) + noise * 10)
        else:
            target = current_temp or 65
            temperature = max(15.0, 20 + (target - 20) * (1 - math.exp(-progress * 2)) + noise * 3)
        readings.append(
            TemperatureReading(
                temperature=round(temperature, 1),
                timestamp=start + i * READING_INTERVAL,
            )
        )
    return readings

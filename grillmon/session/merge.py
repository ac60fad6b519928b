"""
merge.py — Field-level reconciliation of two divergent session snapshots.

merge_sessions() is pure and total: any two well-formed sessions produce a
result, including disjoint channel sets and empty maps. The only value it
invents is last_saved, which is stamped to `now` because a merge counts as a
new write.

Rules:
  1. base  = snapshot with the later last_saved (tie → first argument)
     other = the remaining snapshot
  2. selected_meats      base if concrete, else other if concrete, else none
  3. sensor_targets      base if non-zero, else other if non-zero, else 0
  4. temperature_history union by timestamp, trimmed to the retention caps
  5. id, start_time, is_active come from base unchanged
  6. last_saved = now

Clock skew between devices only changes which side is "base" for the scalar
fields; no concrete meat or target is ever lost to a stale default.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from grillmon.meats import MeatType, is_concrete
from grillmon.session.history import (
    HISTORY_RETENTION,
    MAX_HISTORY_READINGS,
    merge_histories,
    trim_history,
    utc_now,
)
from grillmon.session.schemas import GrillSession


def pick_base(first: GrillSession, second: GrillSession) -> tuple[GrillSession, GrillSession]:
    """Return (base, other); the first argument wins ties."""
    if second.last_saved > first.last_saved:
        return second, first
    return first, second


def _merge_meats(base: dict[int, MeatType], other: dict[int, MeatType]) -> dict[int, MeatType]:
    merged = {}
    for channel in sorted(base.keys() | other.keys()):
        mine, theirs = base.get(channel), other.get(channel)
        if is_concrete(mine):
            merged[channel] = mine
        elif is_concrete(theirs):
            merged[channel] = theirs
        else:
            merged[channel] = MeatType.none
    return merged


def _merge_targets(base: dict[int, float], other: dict[int, float]) -> dict[int, float]:
    merged = {}
    for channel in sorted(base.keys() | other.keys()):
        mine, theirs = base.get(channel, 0.0), other.get(channel, 0.0)
        if mine:
            merged[channel] = mine
        elif theirs:
            merged[channel] = theirs
        else:
            merged[channel] = 0.0
    return merged


def merge_sessions(
    first: GrillSession,
    second: GrillSession,
    now: Optional[datetime] = None,
    retention: timedelta = HISTORY_RETENTION,
    max_readings: int = MAX_HISTORY_READINGS,
) -> GrillSession:
    """Reconcile two snapshots of the same cook into one."""
    base, other = pick_base(first, second)

    history = {}
    for channel in sorted(base.temperature_history.keys() | other.temperature_history.keys()):
        combined = merge_histories(
            other.temperature_history.get(channel, []),
            base.temperature_history.get(channel, []),
        )
        history[channel] = trim_history(combined, retention, max_readings)

    return base.model_copy(
        update={
            "selected_meats": _merge_meats(base.selected_meats, other.selected_meats),
            "sensor_targets": _merge_targets(base.sensor_targets, other.sensor_targets),
            "temperature_history": history,
            "last_saved": now or utc_now(),
        }
    )


def sessions_equivalent(a: Optional[GrillSession], b: Optional[GrillSession]) -> bool:
    """Same content, ignoring last_saved. Two absent sessions are equivalent."""
    if a is None or b is None:
        return a is b
    return a.content() == b.content()

"""
meats.py — Meat catalogue and per-channel defaults.

Channel contract (shared with the sensor hardware and the dashboard):
  - channels 0..1  → ambient / grill probes, default target 180 °C
  - channels 2..   → meat probes,            default target 70 °C

Recommended core temperatures are in °C.
"""
from enum import Enum
from typing import NamedTuple


AMBIENT_CHANNEL_LIMIT = 2
DEFAULT_AMBIENT_TARGET = 180.0
DEFAULT_MEAT_TARGET = 70.0


class MeatType(str, Enum):
    none = "none"
    beef_brisket = "beef_brisket"
    beef_ribs = "beef_ribs"
    beef_tenderloin = "beef_tenderloin"
    pork_shoulder = "pork_shoulder"
    pork_ribs = "pork_ribs"
    pork_tenderloin = "pork_tenderloin"
    chicken_breast = "chicken_breast"
    chicken_thigh = "chicken_thigh"
    lamb_chops = "lamb_chops"


class MeatInfo(NamedTuple):
    label: str
    image: str
    recommended_temp: float


MEAT_CATALOGUE: dict[MeatType, MeatInfo] = {
    MeatType.beef_brisket: MeatInfo("Beef Brisket", "/images/beef_brisket.jpg", 95.0),
    MeatType.beef_ribs: MeatInfo("Beef Ribs", "/images/beef_ribs.jpg", 96.0),
    MeatType.beef_tenderloin: MeatInfo("Beef Tenderloin", "/images/beef_tenderloin.jpg", 54.0),
    MeatType.pork_shoulder: MeatInfo("Pork Shoulder", "/images/pork_shoulder.jpg", 93.0),
    MeatType.pork_ribs: MeatInfo("Pork Ribs", "/images/pork_ribs.jpg", 90.0),
    MeatType.pork_tenderloin: MeatInfo("Pork Tenderloin", "/images/pork_tenderloin.jpg", 63.0),
    MeatType.chicken_breast: MeatInfo("Chicken Breast", "/images/chicken_breast.jpg", 74.0),
    MeatType.chicken_thigh: MeatInfo("Chicken Thigh", "/images/chicken_thigh.jpg", 80.0),
    MeatType.lamb_chops: MeatInfo("Lamb Chops", "/images/lamb_chops.jpg", 63.0),
}


def is_ambient_channel(channel: int) -> bool:
    return channel < AMBIENT_CHANNEL_LIMIT


def default_target_for(channel: int) -> float:
    """Default target temperature implied by the channel id range."""
    return DEFAULT_AMBIENT_TARGET if is_ambient_channel(channel) else DEFAULT_MEAT_TARGET


def is_concrete(meat: "MeatType | str | None") -> bool:
    """True for an actual meat selection, False for None / "none"."""
    return meat is not None and MeatType(meat) is not MeatType.none


def meat_info(meat: MeatType | str) -> MeatInfo:
    """Catalogue entry; unknown values fall back to their raw name."""
    try:
        return MEAT_CATALOGUE[MeatType(meat)]
    except (KeyError, ValueError):
        return MeatInfo(str(getattr(meat, "value", meat)), "", 0.0)

"""Safety zones for an estimated BAC.

The zone is a step function of BAC; each zone carries fixed advisory copy and
color tokens for whatever renders it. Educational only, never a guarantee of
safe or legal driving.
"""

from dataclasses import dataclass
from enum import Enum

MILD_UPPER_BAC = 0.06
CAUTION_UPPER_BAC = 0.10
DANGER_BAC = 0.15


class Zone(str, Enum):
    SOBER = "SOBER"
    MILD = "MILD"
    CAUTION = "CAUTION"
    HIGH = "HIGH"
    DANGER = "DANGER"


@dataclass(frozen=True)
class ZoneStyle:
    color: str
    background: str
    advice: str


ZONE_STYLES = {
    Zone.SOBER: ZoneStyle("#2E7D4F", "#0D1F14", "ALL CLEAR. STAY HYDRATED."),
    Zone.MILD: ZoneStyle("#2E7D4F", "#0D1F14", "MILD EFFECTS. DRINK WATER."),
    Zone.CAUTION: ZoneStyle("#B8860B", "#1F1A08", "COORDINATION AFFECTED. NO DRIVING."),
    Zone.HIGH: ZoneStyle("#ff4000", "#7A1E0E", "SIGNIFICANTLY IMPAIRED. STOP NOW."),
    Zone.DANGER: ZoneStyle("#F0EBE1", "#ff4000", "SEEK HELP IMMEDIATELY."),
}


def classify(bac: float) -> Zone:
    if bac <= 0:
        return Zone.SOBER
    if bac < MILD_UPPER_BAC:
        return Zone.MILD
    if bac < CAUTION_UPPER_BAC:
        return Zone.CAUTION
    if bac < DANGER_BAC:
        return Zone.HIGH
    return Zone.DANGER


def zone_payload(bac: float) -> dict:
    """Zone label plus its presentation tokens."""
    zone = classify(bac)
    style = ZONE_STYLES[zone]
    return {
        "zone": zone.value,
        "color": style.color,
        "background": style.background,
        "advice": style.advice,
    }

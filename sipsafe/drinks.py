"""Drink events and alcohol content helpers for BAC tracking.

US standard drink = 14 g ethanol.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# US standard drink in grams of pure ethanol.
STANDARD_DRINK_GRAMS = 14.0

# Ethanol density (g/mL) for volume x ABV -> grams.
ETHANOL_DENSITY = 0.789

# Serving used when a drink has no ABV to back-compute a volume from.
DEFAULT_VOLUME_ML = 355

# Estimated ABV (%) of a custom mixed drink by base spirit and perceived strength.
CUSTOM_ABV = {
    "vodka": {"light": 7.0, "medium": 10.0, "strong": 13.0},
    "rum": {"light": 7.0, "medium": 10.0, "strong": 13.0},
    "tequila": {"light": 8.0, "medium": 12.0, "strong": 16.0},
    "gin": {"light": 8.0, "medium": 12.0, "strong": 16.0},
    "whiskey": {"light": 10.0, "medium": 14.0, "strong": 18.0},
    "bourbon": {"light": 10.0, "medium": 14.0, "strong": 18.0},
    "scotch": {"light": 10.0, "medium": 14.0, "strong": 18.0},
    "brandy": {"light": 8.0, "medium": 12.0, "strong": 16.0},
    "wine": {"light": 9.0, "medium": 12.0, "strong": 14.5},
    "beer": {"light": 3.5, "medium": 5.0, "strong": 7.0},
}
CUSTOM_ABV_FALLBACK = 10.0

_CATEGORY_BY_LABEL = {
    "BEER": "beer",
    "WINE": "wine",
    "SHOT": "spirits",
    "COCKTAIL": "cocktail",
    "SELTZER": "cider",
    "CIDER": "cider",
}

_last_id = 0
_id_lock = threading.Lock()


def new_event_id() -> str:
    """Creation-time token, strictly increasing within the process."""
    global _last_id
    with _id_lock:
        candidate = time.time_ns() // 1000
        _last_id = candidate if candidate > _last_id else _last_id + 1
        return str(_last_id)


@dataclass(frozen=True)
class DrinkEvent:
    """One logged drink.

    Carries either ``standard_drinks`` or a raw ``volume_ml`` / ``abv_percent``
    pair; ``ethanol_grams`` normalizes both.
    """

    label: str
    timestamp: datetime
    standard_drinks: Optional[float] = None
    volume_ml: Optional[float] = None
    abv_percent: Optional[float] = None
    bac_at_log: float = 0.0
    id: str = field(default_factory=new_event_id)

    @property
    def ethanol_grams(self) -> float:
        if self.volume_ml is not None and self.abv_percent is not None:
            return grams_from_volume_abv(self.volume_ml, self.abv_percent)
        if self.standard_drinks is not None:
            return self.standard_drinks * STANDARD_DRINK_GRAMS
        return 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "timestamp": self.timestamp.isoformat(),
            "standard_drinks": self.standard_drinks,
            "volume_ml": self.volume_ml,
            "abv_percent": self.abv_percent,
            "bac_at_log": round(self.bac_at_log, 4),
        }


def grams_from_volume_abv(volume_ml: float, abv_percent: float) -> float:
    """Convert millilitres and ABV (0 to 100) to grams of ethanol."""
    return pure_alcohol_ml(volume_ml, abv_percent) * ETHANOL_DENSITY


def pure_alcohol_ml(volume_ml: float, abv_percent: float) -> float:
    return volume_ml * (abv_percent / 100.0)


def standard_drinks_from_volume(volume_ml: float, abv_percent: float) -> float:
    return grams_from_volume_abv(volume_ml, abv_percent) / STANDARD_DRINK_GRAMS


def volume_ml_from_standard_drinks(standard_drinks: float, abv_percent: Optional[float]) -> int:
    """Serving volume that holds ``standard_drinks`` at the given ABV."""
    if not abv_percent:
        return DEFAULT_VOLUME_ML
    return round((standard_drinks * STANDARD_DRINK_GRAMS * 100) / (ETHANOL_DENSITY * abv_percent))


def label_to_category(label: str) -> str:
    return _CATEGORY_BY_LABEL.get(label.strip().upper(), "cocktail")


def estimate_custom_abv(spirit: Optional[str], strength: Optional[str]) -> float:
    """Estimated ABV (%) for a mixed drink; unknown inputs fall back to 10%."""
    by_strength = CUSTOM_ABV.get((spirit or "").strip().lower())
    if by_strength is None:
        return CUSTOM_ABV_FALLBACK
    return by_strength.get((strength or "").strip().lower(), CUSTOM_ABV_FALLBACK)

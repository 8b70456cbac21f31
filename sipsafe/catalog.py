"""
Drink catalog: quick-log options plus a seeded list of common brands.
Accuracy varies by brand/source.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from sipsafe.drinks import standard_drinks_from_volume, volume_ml_from_standard_drinks


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    category: str  # beer, wine, spirits, cocktail, cider, non-alcoholic
    abv: float  # percent, e.g. 5.0
    serving_ml: float
    brand: Optional[str] = None

    @property
    def standard_drinks(self) -> float:
        return round(standard_drinks_from_volume(self.serving_ml, self.abv), 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "abv": self.abv,
            "serving_ml": self.serving_ml,
            "standard_drinks": self.standard_drinks,
            "brand": self.brand or "",
        }


def _quick(label: str, standard_drinks: float, abv: float, category: str) -> CatalogEntry:
    serving = volume_ml_from_standard_drinks(standard_drinks, abv)
    return CatalogEntry(id=label.lower(), name=label, category=category, abv=abv, serving_ml=serving)


# One-tap options, sized by standard drinks.
QUICK_OPTIONS: List[CatalogEntry] = [
    _quick("BEER", 1.0, 5.0, "beer"),
    _quick("WINE", 1.0, 12.0, "wine"),
    _quick("SHOT", 1.0, 40.0, "spirits"),
    _quick("COCKTAIL", 1.5, 15.0, "cocktail"),
    _quick("SELTZER", 0.8, 5.0, "cider"),
    _quick("CIDER", 1.0, 5.0, "cider"),
]

CATALOG: List[CatalogEntry] = [
    CatalogEntry("bud-light", "Bud Light", "beer", 4.2, 355, "Budweiser"),
    CatalogEntry("ipa", "IPA", "beer", 6.5, 355, "Generic"),
    CatalogEntry("chardonnay", "Chardonnay", "wine", 13.0, 148, "Generic"),
    CatalogEntry("cabernet", "Cabernet", "wine", 14.0, 148, "Generic"),
    CatalogEntry("vodka-shot", "Vodka Shot", "spirits", 40.0, 44, "Generic"),
    CatalogEntry("whiskey", "Whiskey", "spirits", 40.0, 44, "Generic"),
    CatalogEntry("margarita", "Margarita", "cocktail", 15.0, 200, "Generic"),
    CatalogEntry("white-claw", "White Claw", "cider", 5.0, 355, "White Claw"),
    CatalogEntry("hard-seltzer", "Hard Seltzer", "cider", 5.0, 355, "Generic"),
]

_BY_ID: Dict[str, CatalogEntry] = {e.id: e for e in QUICK_OPTIONS + CATALOG}


def get_entry(entry_id: str) -> Optional[CatalogEntry]:
    return _BY_ID.get((entry_id or "").strip().lower())


def search(query: str = "") -> List[CatalogEntry]:
    """Quick options first, then brands; case-insensitive substring match on the name."""
    q = (query or "").strip().lower()
    entries = QUICK_OPTIONS + CATALOG
    if not q:
        return list(entries)
    return [e for e in entries if q in e.name.lower()]


def list_by_category() -> Dict[str, List[dict]]:
    out: Dict[str, List[dict]] = {}
    for e in CATALOG:
        out.setdefault(e.category, []).append(e.to_dict())
    return out

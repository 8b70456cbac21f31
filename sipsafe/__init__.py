"""
SipSafe core: Widmark BAC estimation, live session tracking, and consumption analytics.
Use from project root: python -m sipsafe.main
"""

from sipsafe.drinks import (
    STANDARD_DRINK_GRAMS,
    DrinkEvent,
    estimate_custom_abv,
    pure_alcohol_ml,
)
from sipsafe.calculations import (
    DEFAULT_PROFILE,
    PhysiologicalProfile,
    estimate_bac,
    format_time_to_sober,
    hours_to_sober,
    resolve_profile,
)
from sipsafe.zones import Zone, classify
from sipsafe.session import DrinkOutcome, Reading, SessionTracker
from sipsafe.analytics import AnalyticsResult, AnalyticsService, DrinkLogRecord, get_analytics

__all__ = [
    "DrinkEvent",
    "PhysiologicalProfile",
    "DEFAULT_PROFILE",
    "resolve_profile",
    "estimate_bac",
    "hours_to_sober",
    "format_time_to_sober",
    "Zone",
    "classify",
    "SessionTracker",
    "DrinkOutcome",
    "Reading",
    "AnalyticsResult",
    "AnalyticsService",
    "DrinkLogRecord",
    "get_analytics",
    "estimate_custom_abv",
    "pure_alcohol_ml",
    "STANDARD_DRINK_GRAMS",
]

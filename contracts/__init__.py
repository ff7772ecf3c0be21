"""
Plane Tracker Contracts Package

Provides shared constants and validation for upstream and storage records.
"""

from contracts.constants import *
from contracts.validation import (
    Position,
    AircraftId,
    Sighting,
    WatchList,
    SunTimes,
    DaylightWindow,
    FeedResult,
    validate_adsbx_record,
    validate_opensky_state,
    validate_sun_times,
    validate_watch_list,
)

__all__ = [
    # Constants
    "QUOTA_TIERS",
    "INTERVAL_LONG_SECONDS",
    "INTERVAL_MEDIUM_SECONDS",
    "INTERVAL_SHORT_SECONDS",
    "MIN_REQUESTS_TO_POLL",
    "FETCH_MAX_ATTEMPTS",
    "FETCH_RETRY_DELAY_SECONDS",
    "MAX_PIPELINE_RESTARTS",
    "PROVIDER_ADSBX",
    "PROVIDER_OPENSKY",
    # Models
    "Position",
    "AircraftId",
    "Sighting",
    "WatchList",
    "SunTimes",
    "DaylightWindow",
    "FeedResult",
    # Validators
    "validate_adsbx_record",
    "validate_opensky_state",
    "validate_sun_times",
    "validate_watch_list",
]

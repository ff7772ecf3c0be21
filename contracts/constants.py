"""
Shared constants for the Plane Tracker services.

This module provides a single source of truth for:
- Quota tiers and poll intervals
- Fetch retry bounds
- Upstream providers and storage vocabulary

All services should import from this module to ensure consistency.
"""

# Quota tiers: (remaining requests upper bound, poll interval in seconds).
# Ordered from the lowest quota to the highest; the first matching bound wins.
QUOTA_TIER_LOW = 25
QUOTA_TIER_MEDIUM = 200

INTERVAL_LONG_SECONDS = 4 * 60 * 60     # 4 hours
INTERVAL_MEDIUM_SECONDS = 30 * 60       # 30 minutes
INTERVAL_SHORT_SECONDS = 5 * 60         # 5 minutes

QUOTA_TIERS = (
    (QUOTA_TIER_LOW, INTERVAL_LONG_SECONDS),
    (QUOTA_TIER_MEDIUM, INTERVAL_MEDIUM_SECONDS),
)

# Polling is skipped when the remaining quota is at or below this value
MIN_REQUESTS_TO_POLL = 5

# Fetch retry policy (slow fixed backoff, not exponential)
FETCH_MAX_ATTEMPTS = 10
FETCH_RETRY_DELAY_SECONDS = 120

# Supervisor restart bound before the process reports permanent failure
MAX_PIPELINE_RESTARTS = 5

# Fallback daylight window (local hours)
FALLBACK_SUNRISE_HOUR = 9
FALLBACK_SUNSET_HOUR = 20

# Health check: alert when nothing was recorded for this long
HEALTH_CHECK_MAX_AGE_SECONDS = 24 * 60 * 60

# Initial request count seeded into storage (above the medium tier)
INITIAL_REQUEST_COUNT = 250

# Data Providers
PROVIDER_ADSBX = "adsbx"
PROVIDER_OPENSKY = "opensky"

# Upstream response headers carrying quota / cooldown signals
HEADER_REQUESTS_REMAINING = "x-ratelimit-requests-remaining"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_OPENSKY_RETRY_AFTER = "X-Rate-Limit-Retry-After-Seconds"

# Storage log levels
LOG_LEVEL_INFO = "INFO"
LOG_LEVEL_WARN = "WARN"
LOG_LEVEL_ERROR = "ERROR"

# Settings table keys
SETTING_REQUEST_COUNT = "request_count"
SETTING_TYPE_CODE = "type_code"
SETTING_REG_NUM = "reg_num"
SETTING_HEX_CODE = "hex_code"

# Notification subjects
SUBJECT_STARTUP = "Plane Tracker is running"
SUBJECT_NEW_AIRCRAFT = "New planes spotted"
SUBJECT_NOT_RESPONDING = "Plane Tracker is not responding"
SUBJECT_STOPPED = "Plane Tracker stopped"

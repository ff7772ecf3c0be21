"""
Prometheus metrics for the tracker service.
"""

from prometheus_client import Counter, Gauge

POLLS_TOTAL = Counter(
    'tracker_polls_total',
    'Upstream poll attempts',
    ['provider', 'status']
)

FETCH_RETRIES = Counter(
    'tracker_fetch_retries_total',
    'Aircraft fetch retries after a failed attempt'
)

SIGHTINGS_PROCESSED = Counter(
    'tracker_sightings_processed_total',
    'Sightings classified and recorded',
    ['provider']
)

SIGHTINGS_REJECTED = Counter(
    'tracker_sightings_rejected_total',
    'Upstream records dropped at the feed boundary',
    ['reason']  # invalid, no_identity, on_ground
)

NOTABLE_FLAGGED = Counter(
    'tracker_notable_flagged_total',
    'New appearances of notable aircraft'
)

NOTIFICATIONS = Counter(
    'tracker_notifications_total',
    'Emails sent by outcome',
    ['status']
)

PIPELINE_RESTARTS = Counter(
    'tracker_pipeline_restarts_total',
    'Supervisor restarts after a fatal cycle'
)

POLL_INTERVAL = Gauge(
    'tracker_poll_interval_seconds',
    'Current tier-based poll interval'
)

QUOTA_REMAINING = Gauge(
    'tracker_quota_remaining',
    'Remaining upstream requests reported by the aircraft feed'
)

DAYLIGHT = Gauge(
    'tracker_daylight',
    '1 while inside the daylight window'
)

"""
Aircraft fetch with bounded retry and quota bookkeeping.
"""

import time
import logging
from typing import Callable

from contracts.constants import LOG_LEVEL_ERROR, LOG_LEVEL_WARN, LOG_LEVEL_INFO
from contracts.validation import Sighting
from tracker.errors import RetryExhausted, StorageError, UpstreamError
from tracker.metrics import FETCH_RETRIES, SIGHTINGS_REJECTED

logger = logging.getLogger(__name__)


class AircraftFetcher:
    """
    Wraps ``AircraftFeed.fetch`` with a fixed-delay retry loop.

    RateLimited is not retried here; it propagates to the caller, which
    hands the cooldown to the scheduler.
    """

    def __init__(self, feed, scheduler, storage, recorder, config,
                 sleep: Callable[[float], None] = time.sleep):
        self.feed = feed
        self.scheduler = scheduler
        self.storage = storage
        self.recorder = recorder
        self.config = config
        self.sleep = sleep

    def fetch_aircraft(self) -> list[Sighting]:
        """
        Returns the usable, airborne sightings around the reference point.

        Raises:
            RetryExhausted: after ``fetch_max_attempts`` consecutive failures
            RateLimited: when the feed asks for a cooldown
        """
        max_attempts = self.config.fetch_max_attempts
        attempt = 0
        while True:
            try:
                result = self.feed.fetch(self.config.lat, self.config.lon, self.config.radius_nm)
                break
            except UpstreamError as e:
                attempt += 1
                self.scheduler.state.retry_count = attempt
                self.recorder.record(LOG_LEVEL_ERROR, "getAircraft", str(e))
                if attempt >= max_attempts:
                    self.recorder.record(LOG_LEVEL_ERROR, "getAircraft",
                                         f"getAircraft failed after {attempt} attempts.")
                    raise RetryExhausted(attempt) from e
                FETCH_RETRIES.inc()
                self.recorder.record(LOG_LEVEL_WARN, "getAircraft", f"Retrying. Attempt {attempt}.")
                self.sleep(self.config.fetch_retry_delay_seconds)

        self.scheduler.state.retry_count = 0

        if result.quota_remaining is not None:
            self.scheduler.observe_quota(result.quota_remaining)
            try:
                self.storage.set_request_count(result.quota_remaining)
            except StorageError as e:
                logger.warning(f"Could not persist request count: {e}")

        sightings = []
        for sighting in result.records:
            if not sighting.is_usable:
                SIGHTINGS_REJECTED.labels(reason="no_identity").inc()
                continue
            if sighting.on_ground:
                SIGHTINGS_REJECTED.labels(reason="on_ground").inc()
                continue
            sightings.append(sighting)

        self.recorder.record(LOG_LEVEL_INFO, "getAircraft", f"Success. Retrieved {len(sightings)} records.")
        return sightings

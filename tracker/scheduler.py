"""
Quota-adaptive poll scheduling.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from contracts.constants import INTERVAL_SHORT_SECONDS, QUOTA_TIERS
from tracker.metrics import POLL_INTERVAL, QUOTA_REMAINING

logger = logging.getLogger(__name__)


def interval_for_quota(remaining: int) -> int:
    """Map a remaining-request count onto its tier interval (seconds)."""
    for bound, interval in QUOTA_TIERS:
        if remaining <= bound:
            return interval
    return INTERVAL_SHORT_SECONDS


@dataclass
class SchedulerState:
    interval_seconds: int = INTERVAL_SHORT_SECONDS
    remaining: Optional[int] = None
    day: Optional[int] = None
    retry_count: int = 0
    cooldown_seconds: Optional[int] = None
    quota_changed: bool = False


class QuotaScheduler:
    """
    Owns the poll interval.

    The interval is always one of the tier values, except for a single
    cycle after ``handle_rate_limited`` where the server-dictated cooldown
    is used instead.
    """

    def __init__(self, state: Optional[SchedulerState] = None):
        self.state = state or SchedulerState()
        POLL_INTERVAL.set(self.state.interval_seconds)

    @property
    def interval_seconds(self) -> int:
        return self.state.interval_seconds

    @property
    def remaining(self) -> Optional[int]:
        return self.state.remaining

    def _set_interval(self, seconds: int) -> bool:
        if seconds == self.state.interval_seconds:
            return False
        self.state.interval_seconds = seconds
        self.state.quota_changed = True
        POLL_INTERVAL.set(seconds)
        logger.info(f"Changing frequency to {seconds / 60:g} minutes")
        return True

    def observe_quota(self, remaining: int) -> bool:
        """
        Record the latest remaining-request count.

        Returns True only when this moves the interval to a different tier;
        re-observing the same tier has no side effects.
        """
        self.state.remaining = remaining
        QUOTA_REMAINING.set(remaining)
        return self._set_interval(interval_for_quota(remaining))

    def take_quota_change(self) -> bool:
        """Return and clear the pending tier-change flag."""
        changed = self.state.quota_changed
        self.state.quota_changed = False
        return changed

    def handle_rate_limited(self, retry_after_seconds: int):
        """Use the server cooldown for the next wait only."""
        self.state.cooldown_seconds = max(0, int(retry_after_seconds))
        logger.warning(f"Rate limited, next check in {self.state.cooldown_seconds}s")

    def on_day_rollover(self, new_day: int) -> bool:
        """
        Advance the day marker. A smaller day-of-month than before means a
        new month, and with it a fresh quota: reset to the shortest tier.
        """
        previous = self.state.day
        self.state.day = new_day
        if previous is not None and new_day < previous:
            logger.info("New month, resetting poll frequency")
            return self._set_interval(INTERVAL_SHORT_SECONDS)
        return False

    def next_wait_seconds(self) -> int:
        """Seconds to sleep before the next cycle; consumes any cooldown."""
        if self.state.cooldown_seconds is not None:
            wait = self.state.cooldown_seconds
            self.state.cooldown_seconds = None
            return wait
        return self.state.interval_seconds

    def can_poll(self, min_requests: int) -> bool:
        """Unknown quota does not block polling."""
        return self.state.remaining is None or self.state.remaining > min_requests

"""
Daylight tracking.

Holds the sunrise/sunset window for the current local day, answers "is it
daylight now" and reports day/night transitions. A failed lookup installs
the fixed 09:00-20:00 fallback window and marks it so the next rollover
check retries the real lookup.
"""

import logging
from datetime import datetime, tzinfo
from typing import Callable, Optional

from pydantic import ValidationError

from contracts.constants import FALLBACK_SUNRISE_HOUR, FALLBACK_SUNSET_HOUR
from contracts.validation import DaylightWindow
from tracker.errors import UpstreamError
from tracker.metrics import DAYLIGHT

logger = logging.getLogger(__name__)


class DaylightTracker:
    """Sunrise/sunset state for one reference location."""

    def __init__(self, feed, lat: float, lon: float, tz: tzinfo,
                 on_transition: Optional[Callable[[bool], None]] = None):
        self.feed = feed
        self.lat = lat
        self.lon = lon
        self.tz = tz
        self.on_transition = on_transition

        self.window: Optional[DaylightWindow] = None
        self.day: Optional[int] = None
        self.last_error: Optional[str] = None
        # Assume daytime until told otherwise so a night-time start still
        # emits the day -> night transition once.
        self._is_day = True

    def fallback_window(self, now: datetime) -> DaylightWindow:
        local = now.astimezone(self.tz)
        return DaylightWindow(
            sunrise=local.replace(hour=FALLBACK_SUNRISE_HOUR, minute=0, second=0, microsecond=0),
            sunset=local.replace(hour=FALLBACK_SUNSET_HOUR, minute=0, second=0, microsecond=0),
            day=local.day,
            fallback=True,
        )

    def refresh(self, now: datetime) -> DaylightWindow:
        """
        Fetch today's window. Never raises: on failure the fallback window
        is installed and ``last_error`` holds the reason.
        """
        local = now.astimezone(self.tz)
        try:
            sun = self.feed.lookup(self.lat, self.lon, local.date())
            window = DaylightWindow(sunrise=sun.sunrise, sunset=sun.sunset, day=local.day)
            self.last_error = None
        except (UpstreamError, ValidationError) as e:
            self.last_error = str(e)
            logger.warning(f"Sunrise/sunset lookup failed, using fallback window: {e}")
            window = self.fallback_window(now)

        self.window = window
        self.day = local.day
        logger.info(
            f"Daylight window {window.sunrise.isoformat()} -> {window.sunset.isoformat()}"
            f"{' (fallback)' if window.fallback else ''}"
        )
        return window

    def is_daylight(self, now: datetime) -> bool:
        window = self.window or self.fallback_window(now)
        is_day = window.contains(now)
        DAYLIGHT.set(1 if is_day else 0)

        if is_day != self._is_day:
            logger.info(f"Daylight status changed. {'Now checking traffic.' if is_day else 'Shutting down for the night.'}")
            # Only record the new state once the handler succeeds, so a
            # failed handler is retried on the next check.
            if self.on_transition is not None:
                self.on_transition(is_day)
            self._is_day = is_day
        return is_day

    def day_rolled(self, now: datetime) -> bool:
        """True on a new local calendar day, or while running on the fallback window."""
        if self.day is None or self.window is None:
            return True
        return now.astimezone(self.tz).day != self.day or self.window.fallback

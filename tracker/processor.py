"""
Tracking cycle.

One call to ``SightingProcessor.run_cycle`` is one poll: refresh the
watch-list, gate on daylight and quota, fetch, classify and record every
sighting, sweep stale "current" flags, mail the digest, then work out how
long to wait before the next cycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from contracts.constants import (
    HEALTH_CHECK_MAX_AGE_SECONDS,
    LOG_LEVEL_ERROR,
    LOG_LEVEL_INFO,
    LOG_LEVEL_WARN,
    SUBJECT_NEW_AIRCRAFT,
    SUBJECT_NOT_RESPONDING,
    SUBJECT_STARTUP,
)
from contracts.validation import Sighting
from tracker.errors import RateLimited, StorageError, UpstreamError
from tracker.metrics import NOTABLE_FLAGGED, SIGHTINGS_PROCESSED

logger = logging.getLogger(__name__)

_LEVELS = {
    LOG_LEVEL_INFO: logging.INFO,
    LOG_LEVEL_WARN: logging.WARNING,
    LOG_LEVEL_ERROR: logging.ERROR,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventRecorder:
    """Mirrors operational events into the storage log table."""

    def __init__(self, storage):
        self.storage = storage

    def record(self, level: str, category: str, message: str):
        logger.log(_LEVELS.get(level, logging.INFO), f"[{category}] {message}")
        try:
            self.storage.log(level, category, message)
        except StorageError as e:
            logger.warning(f"Could not write log entry for {category}: {e}")


def _format_distance(distance: Optional[float]) -> str:
    return "?" if distance is None else f"{distance:g}"


@dataclass
class Digest:
    lines: list[str] = field(default_factory=list)

    def add(self, line: str):
        self.lines.append(line)

    @property
    def flagged(self) -> int:
        return len(self.lines)

    @property
    def text(self) -> str:
        return "".join(self.lines)

    def __bool__(self) -> bool:
        return bool(self.lines)


@dataclass
class CycleReport:
    daylight: bool = False
    polled: bool = False
    sightings: int = 0
    flagged: int = 0
    rate_limited: bool = False
    day_rolled: bool = False
    next_wait_seconds: int = 0


class SightingProcessor:
    """Runs tracking cycles against injected feeds, storage and notifier."""

    def __init__(self, config, storage, matcher, daylight, scheduler, fetcher, notifier, recorder,
                 hex_feed=None, clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.storage = storage
        self.matcher = matcher
        self.daylight = daylight
        self.scheduler = scheduler
        self.fetcher = fetcher
        self.notifier = notifier
        self.recorder = recorder
        self.hex_feed = hex_feed
        self.clock = clock

        self.daylight.on_transition = self._on_daylight_transition

    # ------------------------------------------------------------------ setup

    def prepare(self):
        """(Re)load everything a cycle depends on. Called by the supervisor."""
        now = self.clock()
        self.refresh_daylight(now)
        self.refresh_watch_list()
        self.scheduler.state.day = now.astimezone(self.daylight.tz).day

        try:
            remaining = self.storage.get_request_count()
        except StorageError as e:
            self.recorder.record(LOG_LEVEL_WARN, "getRequestCount", str(e))
            remaining = None
        if remaining is not None:
            self.scheduler.observe_quota(remaining)

        self.notifier.send(
            SUBJECT_STARTUP,
            f"{now.astimezone(self.daylight.tz)}\n\nPlane Tracker is running. "
            f"{remaining if remaining is not None else 'Unknown'} requests remaining.",
        )

    def refresh_daylight(self, now: datetime):
        window = self.daylight.refresh(now)
        if self.daylight.last_error:
            self.recorder.record(LOG_LEVEL_ERROR, "getSunriseSunset", self.daylight.last_error)
        try:
            self.storage.log_daylight(window)
        except StorageError as e:
            logger.warning(f"Could not log daylight window: {e}")
        return window

    def refresh_watch_list(self) -> bool:
        """Reload the watch-list; a failed read keeps the current one."""
        try:
            watch_list = self.storage.get_watch_list()
        except StorageError as e:
            self.recorder.record(LOG_LEVEL_WARN, "updateNotables", f"Watch-list unavailable, keeping current list: {e}")
            return False
        if self.matcher.refresh(watch_list):
            self.recorder.record(LOG_LEVEL_INFO, "updateNotables",
                                 f"Loaded {len(watch_list)} notable types or reg nums")
            return True
        return False

    def _on_daylight_transition(self, is_day: bool):
        if not is_day:
            self.storage.mark_not_current(())
        message = "Now checking traffic." if is_day else "Shutting down for the night."
        self.recorder.record(LOG_LEVEL_INFO, "checkIsDaylight", f"Daylight status changed. {message}")

    # ------------------------------------------------------------------ cycle

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        now = self.clock()

        if self.scheduler.take_quota_change():
            self.recorder.record(LOG_LEVEL_INFO, "frequency",
                                 f"Changing frequency to {self.scheduler.interval_seconds / 60:g} minutes")

        self.refresh_watch_list()
        report.daylight = self.daylight.is_daylight(now)

        if report.daylight and self.scheduler.can_poll(self.config.min_requests_to_poll):
            self._poll(report)

        report.day_rolled = self.check_day_rollover(self.clock())
        report.next_wait_seconds = self.scheduler.next_wait_seconds()
        return report

    def _poll(self, report: CycleReport):
        try:
            sightings = self.fetcher.fetch_aircraft()
        except RateLimited as e:
            self._rate_limited(e)
            report.rate_limited = True
            return

        report.polled = True
        digest = Digest()
        decided: dict[str, bool] = {}

        for sighting in sightings:
            notable = self.matcher.classify(sighting)
            registry_type = self._registry_type(registration=sighting.registration)
            if registry_type:
                named = sighting.model_copy(update={"type_code": registry_type})
                notable = notable or self.matcher.classify(named)
                sighting = named
            if self._record(sighting, notable, decided) and notable:
                digest.add(f"{sighting.type_code or 'Unknown'} {sighting.identity} "
                           f"spotted {_format_distance(sighting.distance_nm)} miles away\n")

        if self.hex_feed is not None:
            report.rate_limited = self._track_watch_list_hexes(digest, decided) or report.rate_limited

        self.storage.mark_not_current(decided.keys())

        report.sightings = len(sightings)
        report.flagged = digest.flagged
        if digest:
            NOTABLE_FLAGGED.inc(digest.flagged)
            self.recorder.record(LOG_LEVEL_INFO, "checkLocalTraffic", f"Flagged {digest.flagged} new aircraft")
            self.notifier.send(SUBJECT_NEW_AIRCRAFT, digest.text)

    def _record(self, sighting: Sighting, notable: bool, decided: dict) -> bool:
        """
        Upsert once per identity per cycle; repeats only add history.
        Returns True on a new appearance.
        """
        key = sighting.identity
        SIGHTINGS_PROCESSED.labels(provider=sighting.source).inc()
        if key in decided:
            self.storage.append_history(sighting)
            return False
        is_new = self.storage.upsert_aircraft(sighting, notable)
        decided[key] = is_new
        return is_new

    def _registry_type(self, registration=None, hex_code=None) -> Optional[str]:
        """Registry make and model, or None. Lookup failures never abort a cycle."""
        if not registration and not hex_code:
            return None
        try:
            return self.storage.type_for(registration=registration, hex_code=hex_code)
        except StorageError as e:
            logger.warning(f"Registry lookup failed for {registration or hex_code}: {e}")
            return None

    def _rate_limited(self, error: RateLimited):
        self.scheduler.handle_rate_limited(error.retry_after_seconds)
        self.recorder.record(LOG_LEVEL_WARN, error.provider or "rateLimit",
                             f"Rate limited. Next check in {error.retry_after_seconds}s")

    def _track_watch_list_hexes(self, digest: Digest, decided: dict) -> bool:
        """
        Ask the secondary feed for watch-listed hex codes. Returns True if
        it rate limited us.
        """
        watch_list = self.matcher.watch_list
        if not watch_list.hex_codes:
            return False
        try:
            states = self.hex_feed.states_for_hexes(watch_list.hex_codes)
        except RateLimited as e:
            self._rate_limited(e)
            return True
        except UpstreamError as e:
            self.recorder.record(LOG_LEVEL_ERROR, "openSkies", str(e))
            return False

        for state in states:
            if state.on_ground:
                continue
            sighting = state.model_copy(update={
                "registration": watch_list.registration_for_hex(state.hex_code),
                "type_code": self._registry_type(hex_code=state.hex_code) or state.type_code,
            })
            if self._record(sighting, True, decided):
                where = (f"{sighting.position.lat:.4f}, {sighting.position.lon:.4f}"
                         if sighting.position else "unknown position")
                digest.add(f"{sighting.type_code or 'Unknown'} {sighting.identity} located near {where}\n")
        return False

    # ------------------------------------------------------------- day change

    def check_day_rollover(self, now: datetime) -> bool:
        """Refresh daylight (and run the health check) at most once per day."""
        if not self.daylight.day_rolled(now):
            return False
        local_day = now.astimezone(self.daylight.tz).day
        new_day = local_day != self.daylight.day
        self.scheduler.on_day_rollover(local_day)
        if new_day:
            self.health_check(now)
        self.refresh_daylight(now)
        return True

    def health_check(self, now: datetime):
        try:
            last_modified = self.storage.last_modified()
        except StorageError as e:
            self.recorder.record(LOG_LEVEL_WARN, "health_check", f"Health check skipped: {e}")
            return
        if last_modified is not None and now - last_modified > timedelta(seconds=HEALTH_CHECK_MAX_AGE_SECONDS):
            self.recorder.record(LOG_LEVEL_WARN, "health_check", "No updates in 24 hours")
            self.notifier.send(SUBJECT_NOT_RESPONDING, "No new updates in 24 hours.")

"""
Smoke test: tracking cycles end to end against in-memory fakes.

Covers:
1. Notable aircraft flagged once per appearance, with a single digest email
2. Current flags swept for absent aircraft and on nightfall
3. Rate limit cooldowns and tier changes
4. Day rollover: daylight refresh and health check
"""

from datetime import datetime, timedelta

from contracts.constants import (
    INTERVAL_LONG_SECONDS,
    INTERVAL_SHORT_SECONDS,
    LOG_LEVEL_ERROR,
    SUBJECT_NEW_AIRCRAFT,
    SUBJECT_NOT_RESPONDING,
    SUBJECT_STARTUP,
)
from contracts.validation import AircraftId, Sighting, WatchList
from fakes import (
    CHICAGO,
    FakeAircraftFeed,
    FakeDaylightFeed,
    FakeHexFeed,
    FakeStorage,
    build_pipeline,
    feed_result,
    sighting,
)
from tracker.errors import RateLimited, UpstreamError


def ship_pipeline(*responses, **kwargs):
    storage = kwargs.pop("storage", None) or FakeStorage(watch_list=WatchList(type_codes={"SHIP"}))
    pipeline = build_pipeline(storage=storage, aircraft_feed=FakeAircraftFeed(*responses), **kwargs)
    pipeline.processor.prepare()
    return pipeline


class TestNotableDigest:

    def test_startup_notice(self):
        pipeline = ship_pipeline(feed_result())

        subject, body = pipeline.notifier.sent[0]
        assert subject == SUBJECT_STARTUP
        assert "250 requests remaining" in body

    def test_new_notable_aircraft_is_mailed_once(self):
        pipeline = ship_pipeline(feed_result(sighting(reg="N1AB", type_code="SHIP", dst="3.2")))

        report = pipeline.processor.run_cycle()

        assert report.polled
        assert report.flagged == 1
        assert pipeline.notifier.sent[-1] == (SUBJECT_NEW_AIRCRAFT, "SHIP N1AB spotted 3.2 miles away\n")
        assert pipeline.storage.aircraft["N1AB"]["count"] == 1
        assert pipeline.storage.aircraft["N1AB"]["flagged"] is True

        # Still overhead next cycle: history grows, no new email
        report = pipeline.processor.run_cycle()

        assert report.flagged == 0
        assert pipeline.notifier.subjects().count(SUBJECT_NEW_AIRCRAFT) == 1
        assert pipeline.storage.aircraft["N1AB"]["count"] == 1
        assert len(pipeline.storage.history) == 2

    def test_ordinary_traffic_is_recorded_not_mailed(self):
        pipeline = ship_pipeline(feed_result(sighting(reg="N512DN", type_code="A321", icao="A4F2E1")))

        pipeline.processor.run_cycle()

        assert pipeline.storage.aircraft["N512DN"]["flagged"] is False
        assert SUBJECT_NEW_AIRCRAFT not in pipeline.notifier.subjects()

    def test_one_email_for_several_aircraft(self):
        watch_list = WatchList(type_codes={"SHIP"}, aircraft={AircraftId(registration="N8WT")})
        pipeline = ship_pipeline(
            feed_result(
                sighting(reg="N1AB", type_code="SHIP", dst="3.2"),
                sighting(reg="N8WT", type_code="C172", icao="B2C3D4", dst="12"),
                sighting(reg="N512DN", type_code="A321", icao="A4F2E1"),
            ),
            storage=FakeStorage(watch_list=watch_list),
        )

        pipeline.processor.run_cycle()

        assert pipeline.notifier.subjects().count(SUBJECT_NEW_AIRCRAFT) == 1
        assert pipeline.notifier.sent[-1][1] == (
            "SHIP N1AB spotted 3.2 miles away\n"
            "C172 N8WT spotted 12 miles away\n"
        )

    def test_reappearance_counts_again(self):
        pipeline = ship_pipeline(
            feed_result(sighting()),
            feed_result(),
            feed_result(sighting()),
        )

        pipeline.processor.run_cycle()
        pipeline.processor.run_cycle()
        assert pipeline.storage.aircraft["N1AB"]["current"] is False

        pipeline.processor.run_cycle()

        assert pipeline.storage.aircraft["N1AB"]["count"] == 2
        assert pipeline.storage.aircraft["N1AB"]["current"] is True
        assert pipeline.notifier.subjects().count(SUBJECT_NEW_AIRCRAFT) == 2

    def test_duplicate_records_in_one_response(self):
        pipeline = ship_pipeline(feed_result(sighting(dst="3.2"), sighting(dst="3.0")))

        report = pipeline.processor.run_cycle()

        assert report.flagged == 1
        assert pipeline.storage.aircraft["N1AB"]["count"] == 1
        assert len(pipeline.storage.history) == 2
        assert pipeline.storage.sweeps[-1] == {"N1AB"}

    def test_registry_type_names_the_aircraft(self):
        pipeline = ship_pipeline(feed_result(sighting(reg="N1AB", type_code="SHIP", dst="3.2")))
        pipeline.storage.registry["1AB"] = "GOODYEAR GZ-20A"

        pipeline.processor.run_cycle()

        assert pipeline.storage.registry_lookups == ["1AB"]
        assert pipeline.notifier.sent[-1] == (SUBJECT_NEW_AIRCRAFT, "GOODYEAR GZ-20A N1AB spotted 3.2 miles away\n")
        assert pipeline.storage.aircraft["N1AB"]["type_code"] == "GOODYEAR GZ-20A"

    def test_registry_type_can_make_aircraft_notable(self):
        storage = FakeStorage(watch_list=WatchList(type_codes={"BOEING B-17G"}))
        storage.registry["5017N"] = "BOEING B-17G"
        pipeline = ship_pipeline(feed_result(sighting(reg="N5017N", type_code="B17", icao="A6B1C2", dst="8")),
                                 storage=storage)

        report = pipeline.processor.run_cycle()

        assert report.flagged == 1
        assert pipeline.notifier.sent[-1][1] == "BOEING B-17G N5017N spotted 8 miles away\n"
        assert storage.aircraft["N5017N"]["flagged"] is True

    def test_registry_failure_keeps_feed_type(self):
        pipeline = ship_pipeline(feed_result(sighting()))
        pipeline.storage.fail_registry = True

        report = pipeline.processor.run_cycle()

        assert report.polled
        assert pipeline.notifier.sent[-1] == (SUBJECT_NEW_AIRCRAFT, "SHIP N1AB spotted 3.2 miles away\n")

    def test_registration_case_does_not_split_the_record(self):
        pipeline = ship_pipeline(feed_result(sighting(reg="n1ab")), feed_result(sighting(reg="N1AB")))

        pipeline.processor.run_cycle()
        pipeline.processor.run_cycle()

        assert list(pipeline.storage.aircraft) == ["N1AB"]
        assert pipeline.storage.aircraft["N1AB"]["count"] == 1
        assert pipeline.notifier.subjects().count(SUBJECT_NEW_AIRCRAFT) == 1

    def test_watch_list_change_applies_next_cycle(self):
        storage = FakeStorage(watch_list=WatchList())
        pipeline = ship_pipeline(feed_result(sighting()), feed_result(), feed_result(sighting()), storage=storage)

        pipeline.processor.run_cycle()
        assert SUBJECT_NEW_AIRCRAFT not in pipeline.notifier.subjects()

        storage.watch_list = WatchList(type_codes={"SHIP"})
        pipeline.processor.run_cycle()
        pipeline.processor.run_cycle()

        assert SUBJECT_NEW_AIRCRAFT in pipeline.notifier.subjects()
        assert "Loaded 1 notable types or reg nums" in storage.messages("updateNotables")

    def test_watch_list_read_failure_keeps_current_list(self):
        pipeline = ship_pipeline(feed_result(sighting()))
        pipeline.storage.fail_watch_list = True

        pipeline.processor.run_cycle()

        assert pipeline.matcher.watch_list.type_codes == {"SHIP"}
        assert SUBJECT_NEW_AIRCRAFT in pipeline.notifier.subjects()

    def test_log_table_failure_does_not_abort_cycle(self):
        pipeline = ship_pipeline(feed_result(sighting()))
        pipeline.storage.fail_log = True

        report = pipeline.processor.run_cycle()

        assert report.polled
        assert pipeline.storage.aircraft["N1AB"]["current"] is True


class TestSweep:

    def test_nightfall_clears_current_flags(self):
        pipeline = ship_pipeline(feed_result(sighting()))
        pipeline.processor.run_cycle()
        calls = pipeline.aircraft_feed.calls

        pipeline.clock.set(datetime(2026, 6, 15, 21, 0, tzinfo=CHICAGO))
        report = pipeline.processor.run_cycle()

        assert not report.daylight
        assert not report.polled
        assert pipeline.aircraft_feed.calls == calls
        assert pipeline.storage.aircraft["N1AB"]["current"] is False
        assert "Daylight status changed. Shutting down for the night." in pipeline.storage.messages("checkIsDaylight")

    def test_night_start_clears_stale_flags(self):
        storage = FakeStorage(watch_list=WatchList(type_codes={"SHIP"}))
        storage.aircraft["N1AB"] = {"count": 3, "current": True, "flagged": True, "type_code": "SHIP"}
        pipeline = build_pipeline(storage=storage)
        pipeline.clock.set(datetime(2026, 6, 15, 23, 0, tzinfo=CHICAGO))
        pipeline.processor.prepare()

        pipeline.processor.run_cycle()

        assert storage.aircraft["N1AB"]["current"] is False
        assert pipeline.aircraft_feed.calls == 0

    def test_low_quota_skips_poll(self):
        pipeline = ship_pipeline(feed_result(sighting()), storage=FakeStorage(request_count=5))

        report = pipeline.processor.run_cycle()

        assert report.daylight
        assert not report.polled
        assert pipeline.aircraft_feed.calls == 0
        assert report.next_wait_seconds == INTERVAL_LONG_SECONDS


class TestRateLimits:

    def test_cooldown_then_back_to_tier(self):
        pipeline = ship_pipeline(RateLimited(120, "adsbx"), feed_result(sighting(), quota=240))

        report = pipeline.processor.run_cycle()

        assert report.rate_limited
        assert not report.polled
        assert report.next_wait_seconds == 120
        assert pipeline.storage.sweeps == []
        assert pipeline.storage.aircraft == {}

        report = pipeline.processor.run_cycle()

        assert report.polled
        assert report.next_wait_seconds == INTERVAL_SHORT_SECONDS

    def test_tier_change_is_logged(self):
        pipeline = ship_pipeline(feed_result(sighting(), quota=20))

        report = pipeline.processor.run_cycle()
        assert report.next_wait_seconds == INTERVAL_LONG_SECONDS

        pipeline.processor.run_cycle()
        assert "Changing frequency to 240 minutes" in pipeline.storage.messages("frequency")


class TestWatchListHexTracking:

    def test_airborne_hex_is_flagged_under_its_registration(self):
        watch_list = WatchList(aircraft={AircraftId(registration="N9XY", hex_code="ABC123")})
        state = Sighting(hex_code="abc123", position={"lat": 44.9, "lon": -93.25}, source="opensky")
        hex_feed = FakeHexFeed(states=[state])
        pipeline = ship_pipeline(feed_result(), storage=FakeStorage(watch_list=watch_list), hex_feed=hex_feed)

        pipeline.processor.run_cycle()

        assert hex_feed.requests == [frozenset({"ABC123"})]
        assert pipeline.storage.aircraft["N9XY"]["flagged"] is True
        assert pipeline.notifier.sent[-1] == (SUBJECT_NEW_AIRCRAFT, "Unknown N9XY located near 44.9000, -93.2500\n")
        assert pipeline.storage.sweeps[-1] == {"N9XY"}

    def test_hex_type_comes_from_registry(self):
        watch_list = WatchList(aircraft={AircraftId(registration="N9XY", hex_code="ABC123")})
        storage = FakeStorage(watch_list=watch_list)
        storage.registry["ABC123"] = "PIPER J-3C-65"
        state = Sighting(hex_code="abc123", position={"lat": 44.9, "lon": -93.25}, source="opensky")
        pipeline = ship_pipeline(feed_result(), storage=storage, hex_feed=FakeHexFeed(states=[state]))

        pipeline.processor.run_cycle()

        assert pipeline.notifier.sent[-1] == (SUBJECT_NEW_AIRCRAFT, "PIPER J-3C-65 N9XY located near 44.9000, -93.2500\n")
        assert storage.aircraft["N9XY"]["type_code"] == "PIPER J-3C-65"

    def test_grounded_hex_is_ignored(self):
        watch_list = WatchList(aircraft={AircraftId(registration="N9XY", hex_code="ABC123")})
        state = Sighting(hex_code="ABC123", on_ground=True, source="opensky")
        pipeline = ship_pipeline(feed_result(), storage=FakeStorage(watch_list=watch_list),
                                 hex_feed=FakeHexFeed(states=[state]))

        pipeline.processor.run_cycle()

        assert pipeline.storage.aircraft == {}

    def test_secondary_feed_failure_is_logged(self):
        watch_list = WatchList(type_codes={"SHIP"}, aircraft={AircraftId(hex_code="ABC123")})
        pipeline = ship_pipeline(feed_result(sighting()), storage=FakeStorage(watch_list=watch_list),
                                 hex_feed=FakeHexFeed(error=UpstreamError("opensky API error: HTTP 503")))

        report = pipeline.processor.run_cycle()

        assert report.flagged == 1
        assert "opensky API error: HTTP 503" in pipeline.storage.messages("openSkies")


class TestDayRollover:

    def test_new_day_refreshes_daylight(self):
        pipeline = ship_pipeline(feed_result())
        pipeline.clock.set(datetime(2026, 6, 16, 1, 0, tzinfo=CHICAGO))

        report = pipeline.processor.run_cycle()

        assert report.day_rolled
        assert pipeline.daylight.day == 16
        assert pipeline.daylight_feed.lookups[-1].day == 16
        assert pipeline.scheduler.state.day == 16

    def test_health_check_alerts_on_stale_data(self):
        pipeline = ship_pipeline(feed_result())
        pipeline.storage.last_modified_at = pipeline.clock() - timedelta(hours=30)
        pipeline.clock.set(datetime(2026, 6, 16, 1, 0, tzinfo=CHICAGO))

        pipeline.processor.run_cycle()

        assert SUBJECT_NOT_RESPONDING in pipeline.notifier.subjects()

    def test_health_check_quiet_when_recent(self):
        pipeline = ship_pipeline(feed_result())
        pipeline.storage.last_modified_at = pipeline.clock()
        pipeline.clock.set(datetime(2026, 6, 16, 1, 0, tzinfo=CHICAGO))

        pipeline.processor.run_cycle()

        assert SUBJECT_NOT_RESPONDING not in pipeline.notifier.subjects()

    def test_month_rollover_resets_interval(self):
        pipeline = ship_pipeline(feed_result(quota=20))
        pipeline.processor.run_cycle()
        assert pipeline.scheduler.interval_seconds == INTERVAL_LONG_SECONDS

        pipeline.clock.set(datetime(2026, 7, 1, 1, 0, tzinfo=CHICAGO))
        report = pipeline.processor.run_cycle()

        assert report.next_wait_seconds == INTERVAL_SHORT_SECONDS

    def test_fallback_window_when_daylight_lookup_fails(self):
        pipeline = ship_pipeline(feed_result(sighting()),
                                 daylight_feed=FakeDaylightFeed(error=UpstreamError("sunrise-sunset timeout")))

        assert pipeline.daylight.window.fallback
        errors = [m for level, category, m in pipeline.storage.logs if category == "getSunriseSunset"]
        assert errors == ["sunrise-sunset timeout"]
        assert pipeline.storage.logs[0][0] == LOG_LEVEL_ERROR

        report = pipeline.processor.run_cycle()

        assert report.polled
        # retried every cycle until the real window arrives
        assert len(pipeline.daylight_feed.lookups) == 2

#!/usr/bin/env python3
"""
Entry point for the Plane Tracker service.
"""

import sys
import signal
import logging
import threading
from typing import Optional

from prometheus_client import start_http_server

from contracts.constants import LOG_LEVEL_ERROR
from tracker.config import TrackerConfig
from tracker.daylight import DaylightTracker
from tracker.database import Database
from tracker.errors import PipelineFailed
from tracker.feeds import AircraftFeed, DaylightFeed, OpenSkyFeed
from tracker.fetcher import AircraftFetcher
from tracker.matcher import NotableMatcher
from tracker.notifier import EmailNotifier
from tracker.processor import EventRecorder, SightingProcessor
from tracker.scheduler import QuotaScheduler
from tracker.supervisor import Supervisor

logger = logging.getLogger(__name__)


def build_supervisor(config: TrackerConfig, shutdown_event: Optional[threading.Event] = None) -> Supervisor:
    """Wire the production components together."""
    storage = Database(config.database_url)
    recorder = EventRecorder(storage)
    notifier = EmailNotifier.from_config(
        config, on_error=lambda message: recorder.record(LOG_LEVEL_ERROR, "sendMail", message)
    )
    scheduler = QuotaScheduler()
    daylight = DaylightTracker(DaylightFeed(), config.lat, config.lon, config.tz)
    fetcher = AircraftFetcher(
        AircraftFeed(config.rapidapi_key, config.rapidapi_host),
        scheduler, storage, recorder, config,
    )
    hex_feed = None
    if config.opensky_enabled:
        hex_feed = OpenSkyFeed(config.opensky_username, config.opensky_password)

    processor = SightingProcessor(
        config, storage, NotableMatcher(), daylight, scheduler, fetcher, notifier, recorder,
        hex_feed=hex_feed,
    )
    return Supervisor(
        processor, storage, notifier, recorder,
        max_restarts=config.max_pipeline_restarts,
        restart_delay_seconds=config.fetch_retry_delay_seconds,
        shutdown_event=shutdown_event,
    )


def start_metrics_server(port: int):
    """Start Prometheus metrics server in background thread."""
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")


def main() -> int:
    config = TrackerConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )

    logger.info("=" * 50)
    logger.info("Plane Tracker - Starting")
    logger.info(f"Reference point: ({config.lat}, {config.lon}) radius {config.radius_nm} nm")
    logger.info(f"Timezone: {config.timezone}")
    logger.info(f"OpenSky tracking: {'enabled' if config.opensky_enabled else 'disabled'}")
    logger.info("=" * 50)

    metrics_thread = threading.Thread(target=start_metrics_server, args=(config.metrics_port,), daemon=True)
    metrics_thread.start()

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    supervisor = build_supervisor(config, shutdown_event)
    try:
        supervisor.run()
    except PipelineFailed as e:
        logger.critical(f"Giving up: {e}")
        return 1

    logger.info("Plane Tracker shutdown complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

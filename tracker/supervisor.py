"""
Scheduling loop and pipeline supervisor.

Runs one cycle at a time and sleeps the scheduler's interval between
cycles. A cycle that ends in RetryExhausted or StorageError triggers a
full re-setup (reconnect storage, reload watch-list and daylight window);
too many consecutive restarts stop the loop for good.
"""

import logging
import threading
from typing import Optional

from contracts.constants import LOG_LEVEL_ERROR, SUBJECT_STOPPED
from tracker.errors import PipelineFailed, RetryExhausted, StorageError
from tracker.metrics import PIPELINE_RESTARTS

logger = logging.getLogger(__name__)


class Supervisor:
    def __init__(self, processor, storage, notifier, recorder, max_restarts: int,
                 restart_delay_seconds: float = 0,
                 shutdown_event: Optional[threading.Event] = None):
        self.processor = processor
        self.storage = storage
        self.notifier = notifier
        self.recorder = recorder
        self.max_restarts = max_restarts
        self.restart_delay_seconds = restart_delay_seconds
        self.shutdown_event = shutdown_event or threading.Event()
        self.restarts = 0
        self.cycles = 0

    def setup(self):
        """Acquire storage and load everything the processor needs."""
        self.storage.close()
        self.storage.connect()
        self.storage.init_schema()
        self.processor.prepare()
        logger.info("Pipeline setup complete")

    def stop(self):
        self.shutdown_event.set()

    def _restart(self, error: Exception):
        self.restarts += 1
        PIPELINE_RESTARTS.inc()
        message = f"Cycle aborted ({type(error).__name__}: {error}). Restart {self.restarts} of {self.max_restarts}."
        logger.error(message)
        self.recorder.record(LOG_LEVEL_ERROR, "supervisor", message)

        if self.restarts > self.max_restarts:
            message = f"Plane Tracker stopped after {self.max_restarts} restarts. Last error: {error}"
            logger.critical(message)
            self.recorder.record(LOG_LEVEL_ERROR, "supervisor", message)
            self.notifier.send(SUBJECT_STOPPED, message)
            raise PipelineFailed(self.max_restarts) from error

    def run(self, max_cycles: Optional[int] = None):
        """
        Loop until shutdown (or ``max_cycles`` completed cycles).

        Raises:
            PipelineFailed: when the restart budget is used up
        """
        needs_setup = True
        try:
            while not self.shutdown_event.is_set():
                try:
                    if needs_setup:
                        self.setup()
                        needs_setup = False
                    report = self.processor.run_cycle()
                except (RetryExhausted, StorageError) as e:
                    self._restart(e)
                    needs_setup = True
                    self.shutdown_event.wait(self.restart_delay_seconds)
                    continue

                self.restarts = 0
                self.cycles += 1
                logger.info(
                    f"Cycle {self.cycles} done: daylight={report.daylight} polled={report.polled} "
                    f"sightings={report.sightings} flagged={report.flagged}. "
                    f"Sleeping for {report.next_wait_seconds}s"
                )
                if max_cycles is not None and self.cycles >= max_cycles:
                    break
                self.shutdown_event.wait(report.next_wait_seconds)
        finally:
            self.storage.close()

"""
Poller for the form submission scheduler.

- Fires a tick on a fixed interval in a background thread
- Each tick: JobService.get_due_jobs() -> ExecutionQueue.process_batch()
- Single-flight: a tick that finds a previous pass still running is skipped
- A failing tick is logged and never stops future ticks

What Poller MUST NOT do:
- Execute jobs itself (ExecutionQueue's responsibility)
- Abort an in-flight batch on stop
"""

import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .entities import utc_now
from .job_service import JobService
from .queue_manager import BatchResult, ExecutionQueue


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0


class PollerState(str, Enum):
    """Poller lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class Poller:
    """
    Recurring timer that hands due jobs to the execution queue.
    """

    def __init__(
        self,
        job_service: JobService,
        queue: ExecutionQueue,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize Poller.

        Args:
            job_service: JobService for due-job queries
            queue: ExecutionQueue that runs batches
            poll_interval: Seconds between ticks
            clock: Returns the current time (recorded as last tick time)
        """
        self.job_service = job_service
        self.queue = queue
        self.poll_interval = poll_interval
        self._clock = clock

        self._state = PollerState.STOPPED
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()

        # Held for the whole duration of one processing pass
        self._processing_lock = threading.Lock()

        self._last_tick_at: Optional[datetime] = None
        self._last_result: Optional[BatchResult] = None
        self._ticks_run = 0
        self._ticks_skipped = 0

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == PollerState.RUNNING

    @property
    def is_processing(self) -> bool:
        return self._processing_lock.locked()

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self) -> bool:
        """
        Run one processing pass unless another is in flight.

        Returns:
            True if the pass ran, False if it was skipped
        """
        if not self._processing_lock.acquire(blocking=False):
            self._ticks_skipped += 1
            logger.info("Skipping tick - previous pass still processing")
            return False

        try:
            self._last_tick_at = self._clock()
            self._ticks_run += 1
            self.process_pending_jobs()
        except Exception as e:
            logger.error(f"Scheduler tick failed: {e}", exc_info=True)
        finally:
            self._processing_lock.release()

        return True

    def process_pending_jobs(self) -> Optional[BatchResult]:
        """Fetch due jobs and process them as one batch."""
        due_jobs = self.job_service.get_due_jobs()
        if not due_jobs:
            return None

        logger.info(f"Found {len(due_jobs)} pending job(s) ready to execute")
        result = self.queue.process_batch(due_jobs)
        self._last_result = result
        logger.info("All pending jobs processed")
        return result

    def trigger_processing(self) -> bool:
        """
        Manual, on-demand tick on the caller's thread.

        Subject to the same single-flight guard as timer ticks.
        """
        logger.info("Manually triggering job processing...")
        return self.tick()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Start the background timer. Idempotent.

        Returns:
            True if the poller was started, False if it was already running
        """
        with self._state_lock:
            if self._state != PollerState.STOPPED:
                logger.warning("Scheduler already running")
                return False

            # A fresh event per loop: a previous loop still finishing its batch
            # after a stop timeout keeps its own, already set, event
            self._stop_event = threading.Event()
            self._state = PollerState.RUNNING
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="form-scheduler-poller",
                daemon=True,
            )
            self._thread.start()

        logger.info(f"Scheduler started - checking every {self.poll_interval:g}s")
        return True

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        """
        Stop the timer.

        An in-flight batch is allowed to finish; waits up to `timeout` seconds
        for it before returning.
        """
        with self._state_lock:
            if self._state == PollerState.STOPPED:
                return
            self._state = PollerState.STOPPING
            self._stop_event.set()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Poller thread still finishing its batch after stop timeout")

        with self._state_lock:
            self._thread = None
            self._state = PollerState.STOPPED

        logger.info("Scheduler stopped")

    def _run_loop(self, stop_event: threading.Event) -> None:
        """Fire tick() every poll_interval seconds until `stop_event` is set."""
        logger.info("Poller loop started")
        next_fire = time.monotonic()

        while not stop_event.is_set():
            self.tick()

            next_fire += self.poll_interval
            now = time.monotonic()
            if next_fire < now:
                missed = int((now - next_fire) // self.poll_interval) + 1
                self._ticks_skipped += missed
                logger.info(f"Tick overran; skipping {missed} timer fire(s)")
                next_fire += missed * self.poll_interval

            stop_event.wait(max(0.0, next_fire - time.monotonic()))

        logger.info("Poller loop ended")

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> dict:
        """Observational snapshot; no side effects."""
        return {
            "running": self.is_running,
            "processing": self.is_processing,
            "last_tick_at": self._last_tick_at,
            "ticks_run": self._ticks_run,
            "ticks_skipped": self._ticks_skipped,
            "poll_interval": self.poll_interval,
            "queue": self.queue.get_status(),
        }

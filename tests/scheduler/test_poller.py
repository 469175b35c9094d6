"""
Poller Tests.

- Single-flight: a tick during an in-flight pass is skipped, not queued
- A failing tick is logged and never stops later ticks
- start() is idempotent; stop() lets the in-flight batch finish
"""

import threading
import time

from src.scheduler import JobService, JobStatus, Poller, PollerState

from .conftest import FIXED_DATETIME, MockSubmitter, wait_for


class TestSingleFlight:

    def test_overlapping_tick_is_skipped(
        self, poller: Poller, create_job, mock_submitter: MockSubmitter, job_service: JobService
    ):
        """
        Setup: One due job; the submitter blocks until released
        Action: Tick on a worker thread, then tick again while it is blocked
        Assertion: Second tick skipped; the job is submitted exactly once
        """
        job = create_job()
        started = threading.Event()
        release = threading.Event()

        def block(payload):
            started.set()
            release.wait(timeout=5)

        mock_submitter.on_submit = block

        worker = threading.Thread(target=poller.tick)
        worker.start()
        assert started.wait(timeout=5)

        assert poller.is_processing is True
        assert poller.tick() is False

        release.set()
        worker.join(timeout=5)

        assert len(mock_submitter.submitted) == 1
        assert poller.get_status()["ticks_skipped"] == 1
        assert job_service.get_job(job.job_id).status == JobStatus.COMPLETED

    def test_manual_trigger_respects_guard(
        self, poller: Poller, create_job, mock_submitter: MockSubmitter
    ):
        create_job()
        started = threading.Event()
        release = threading.Event()

        def block(payload):
            started.set()
            release.wait(timeout=5)

        mock_submitter.on_submit = block

        worker = threading.Thread(target=poller.trigger_processing)
        worker.start()
        assert started.wait(timeout=5)

        assert poller.trigger_processing() is False

        release.set()
        worker.join(timeout=5)
        assert len(mock_submitter.submitted) == 1

    def test_sequential_ticks_both_run(self, poller: Poller, create_job, mock_submitter):
        create_job(terminal_id="first")
        assert poller.tick() is True

        create_job(terminal_id="second")
        assert poller.tick() is True

        assert mock_submitter.submitted_terminals == ["first", "second"]


class TestTickErrors:

    def test_failing_tick_does_not_raise(self, poller: Poller, job_service: JobService, monkeypatch):
        calls = []

        def explode():
            calls.append(1)
            raise RuntimeError("unexpected")

        monkeypatch.setattr(job_service, "get_due_jobs", explode)

        assert poller.tick() is True
        assert poller.tick() is True
        assert len(calls) == 2
        assert poller.is_processing is False

    def test_tick_records_time(self, poller: Poller):
        poller.tick()

        status = poller.get_status()
        assert status["last_tick_at"] == FIXED_DATETIME
        assert status["ticks_run"] == 1

    def test_no_due_jobs(self, poller: Poller, mock_submitter):
        assert poller.process_pending_jobs() is None
        assert mock_submitter.submitted == []


class TestLifecycle:

    def test_start_is_idempotent(self, poller: Poller):
        assert poller.start() is True
        assert poller.start() is False
        assert poller.state == PollerState.RUNNING

        poller.stop(timeout=5)

        assert poller.state == PollerState.STOPPED
        assert poller.is_running is False

    def test_running_poller_processes_due_jobs(
        self, poller: Poller, create_job, job_service: JobService
    ):
        job = create_job()

        poller.start()

        assert wait_for(
            lambda: job_service.get_job(job.job_id).status == JobStatus.COMPLETED
        )

    def test_stop_waits_for_in_flight_batch(
        self, poller: Poller, create_job, mock_submitter: MockSubmitter, job_service: JobService
    ):
        """
        Setup: Running poller blocked inside a submission
        Action: stop()
        Assertion: Returns after the batch finishes; job COMPLETED, not aborted
        """
        job = create_job()
        started = threading.Event()

        def slow(payload):
            started.set()
            time.sleep(0.2)

        mock_submitter.on_submit = slow

        poller.start()
        assert started.wait(timeout=5)
        poller.stop(timeout=5)

        assert job_service.get_job(job.job_id).status == JobStatus.COMPLETED
        assert poller.is_running is False

    def test_stop_when_stopped_is_noop(self, poller: Poller):
        poller.stop(timeout=1)

        assert poller.state == PollerState.STOPPED

    def test_restart_after_stop(self, poller: Poller):
        poller.start()
        poller.stop(timeout=5)

        assert poller.start() is True
        assert poller.is_running is True

    def test_restart_after_stop_timeout_leaves_one_loop(
        self, poller: Poller, create_job, mock_submitter: MockSubmitter, job_service: JobService
    ):
        """
        Setup: Running poller blocked inside a submission
        Action: stop() times out, start() again, then the submission finishes
        Assertion: The old loop exits; exactly one poller loop keeps running
        """
        job = create_job()
        started = threading.Event()
        release = threading.Event()

        def block(payload):
            started.set()
            release.wait(timeout=5)

        mock_submitter.on_submit = block

        poller.start()
        assert started.wait(timeout=5)
        old_loop = poller._thread

        poller.stop(timeout=0.1)
        assert old_loop.is_alive()
        assert poller.start() is True

        release.set()
        old_loop.join(timeout=5)

        loops = [
            t for t in threading.enumerate()
            if t.name == "form-scheduler-poller" and t.is_alive()
        ]
        assert not old_loop.is_alive()
        assert loops == [poller._thread]
        assert job_service.get_job(job.job_id).status == JobStatus.COMPLETED
        assert len(mock_submitter.submitted) == 1

    def test_status_snapshot(self, poller: Poller):
        status = poller.get_status()

        assert status["running"] is False
        assert status["processing"] is False
        assert status["last_tick_at"] is None
        assert status["poll_interval"] == 0.05
        assert status["queue"] == {"is_processing": False, "current_job": None}

"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty database (temp file or in-memory)
  - Mocked clock at a fixed time
  - Recording submitter with controllable outcomes

Per-test fixtures:
  - Job factory that inserts directly into the store, bypassing the lead-time
    rule so past and present jobs can be set up
"""

import pytest
import tempfile
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Optional

from src.scheduler import (
    ExecutionQueue,
    FormSubmitter,
    FormTemplate,
    Job,
    JobService,
    JobStatus,
    PersistenceAdapter,
    Poller,
    RecoveryManager,
    SubmitResult,
)


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


def make_payload(terminal_id: str = "T-001", **overrides) -> dict:
    """A complete, valid form payload."""
    payload = {
        "terminal_id": terminal_id,
        "camera_condition": "ok",
        "nvr_condition": "recording",
        "submitter_name": "Kim Minsu",
        "company": "Acme Security",
        "employee_number": "E-1024",
    }
    payload.update(overrides)
    return payload


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at a fixed aware UTC time
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: float = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class MockSubmitter(FormSubmitter):
    """
    Recording submitter for tests.

    Outcomes are controlled per terminal_id; everything else succeeds.
    """

    def __init__(self):
        self.submitted: list[dict] = []
        self.fail_for: dict[str, str] = {}
        self.raise_for: dict[str, Exception] = {}
        self.on_submit: Optional[Callable[[dict], None]] = None
        self.closed = False

        self._active = 0
        self.max_concurrent = 0
        self._lock = threading.Lock()

    def submit(self, payload: dict) -> SubmitResult:
        with self._lock:
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)
        try:
            self.submitted.append(payload)
            if self.on_submit is not None:
                self.on_submit(payload)

            terminal = payload.get("terminal_id")
            if terminal in self.raise_for:
                raise self.raise_for[terminal]
            if terminal in self.fail_for:
                return SubmitResult(False, self.fail_for[terminal])
            return SubmitResult(True, "ok")
        finally:
            with self._lock:
                self._active -= 1

    @property
    def submitted_terminals(self) -> list[str]:
        return [p["terminal_id"] for p in self.submitted]

    def close(self) -> None:
        self.closed = True


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def persistence(temp_db_path: str) -> PersistenceAdapter:
    """Create a fresh PersistenceAdapter with empty database."""
    return PersistenceAdapter(temp_db_path)


@pytest.fixture
def in_memory_persistence() -> PersistenceAdapter:
    """Create an in-memory PersistenceAdapter for fast tests."""
    return PersistenceAdapter(":memory:")


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def job_service(persistence: PersistenceAdapter, mock_clock: MockClock) -> JobService:
    """JobService with default windows (60s lead / forward / backward)."""
    return JobService(persistence, clock=mock_clock.now)


@pytest.fixture
def mock_submitter() -> MockSubmitter:
    return MockSubmitter()


@pytest.fixture
def sleeps() -> list:
    """Records inter-job delays instead of sleeping."""
    return []


@pytest.fixture
def queue(job_service: JobService, mock_submitter: MockSubmitter, sleeps: list) -> ExecutionQueue:
    return ExecutionQueue(job_service, mock_submitter, inter_job_delay=3.0, sleep=sleeps.append)


@pytest.fixture
def poller(job_service: JobService, queue: ExecutionQueue, mock_clock: MockClock) -> Generator[Poller, None, None]:
    p = Poller(job_service, queue, poll_interval=0.05, clock=mock_clock.now)
    yield p
    p.stop(timeout=5)


@pytest.fixture
def recovery_manager(job_service: JobService) -> RecoveryManager:
    return RecoveryManager(job_service, stale_processing_timeout=600)


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def create_job(persistence: PersistenceAdapter, mock_clock: MockClock) -> Callable:
    """
    Factory fixture for creating jobs.

    Inserts straight into the store, so scheduled times in the past are allowed.
    `offset` is seconds relative to the mock clock.
    """

    def _create(
        offset: float = 0,
        terminal_id: str = "T-001",
        status: JobStatus = JobStatus.PENDING,
        payload: Optional[dict] = None,
        **fields,
    ) -> Job:
        now = mock_clock.now()
        job = Job.create(
            payload or make_payload(terminal_id),
            scheduled_time=now + timedelta(seconds=offset),
            now=now,
        )
        job.status = status
        for name, value in fields.items():
            setattr(job, name, value)
        return persistence.insert_job(job)

    return _create


@pytest.fixture
def create_template(persistence: PersistenceAdapter) -> Callable:
    """Factory fixture for creating templates."""

    def _create(name: str = "Site A morning check", payload: Optional[dict] = None) -> FormTemplate:
        template = FormTemplate.create(name=name, payload=payload or make_payload("T-TPL"))
        return persistence.create_template(template)

    return _create


# =============================================================================
# Assertion Helpers
# =============================================================================


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll `predicate` until it holds or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()



def assert_job_status(persistence: PersistenceAdapter, job_id: str, expected: JobStatus):
    """Assert a job has the expected status."""
    job = persistence.get_job(job_id)
    assert job is not None, f"Job {job_id} not found"
    assert job.status == expected, f"Expected {expected}, got {job.status}"

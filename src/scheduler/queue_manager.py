"""
Execution Queue for the form submission scheduler.

Runs a batch of due jobs against the submitter:
1. Claim the whole batch atomically (PENDING -> PROCESSING)
2. Drop jobs that could not be claimed (cancelled or claimed elsewhere)
3. Execute claimed jobs one at a time, earliest scheduled first
4. Re-read each job right before submitting it; one that is no longer PROCESSING
   (failed by a restart sweep, deleted) is skipped
5. Record COMPLETED / FAILED; pause between jobs so the external session settles

Claiming up front turns "N due jobs found" into a fixed work list: while job 1
is slow, the next poll cannot rediscover jobs 2..N because they are no longer
PENDING.

What ExecutionQueue MUST NOT do:
- Retry failed jobs (an operator resets them)
- Run the submitter concurrently with itself
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional

from .entities import Job, JobStatus
from .errors import StoreUnavailableError
from .job_service import JobService
from .submitter import FormSubmitter, SubmitResult


logger = logging.getLogger(__name__)

DEFAULT_INTER_JOB_DELAY = 3.0


@dataclass
class BatchResult:
    """Outcome of one process_batch call."""

    claimed: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    # claimed but whose outcome could not be recorded
    unrecorded: list[str] = field(default_factory=list)
    # claimed but no longer PROCESSING when their turn came; never submitted
    skipped: list[str] = field(default_factory=list)


class ExecutionQueue:
    """
    Serializes execution of due jobs through a single submitter.
    """

    def __init__(
        self,
        job_service: JobService,
        submitter: FormSubmitter,
        inter_job_delay: float = DEFAULT_INTER_JOB_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize ExecutionQueue.

        Args:
            job_service: JobService for claims and status updates
            submitter: The external submission action
            inter_job_delay: Seconds to wait between two jobs of a batch
            sleep: Sleep function (injectable for tests)
        """
        self.job_service = job_service
        self.submitter = submitter
        self.inter_job_delay = inter_job_delay
        self._sleep = sleep

        self._batch_lock = threading.Lock()
        self._current_job: Optional[Job] = None

    @property
    def current_job(self) -> Optional[Job]:
        """The job whose submission is in progress, if any."""
        return self._current_job

    @property
    def is_processing(self) -> bool:
        return self._batch_lock.locked()

    @contextmanager
    def exclusive(self, blocking: bool = True) -> Iterator[bool]:
        """
        Hold the submitter for the duration of the block.

        Yields True once held. With blocking=False, yields False immediately
        if a batch is running and nothing is held.
        """
        acquired = self._batch_lock.acquire(blocking=blocking)
        try:
            yield acquired
        finally:
            if acquired:
                self._batch_lock.release()

    def get_status(self) -> dict:
        job = self._current_job
        return {
            "is_processing": self.is_processing,
            "current_job": (
                {
                    "job_id": job.job_id,
                    "terminal_id": job.payload.get("terminal_id"),
                    "submitter_name": job.payload.get("submitter_name"),
                }
                if job is not None
                else None
            ),
        }

    def process_batch(self, jobs: Iterable[Job]) -> BatchResult:
        """
        Claim and execute a batch of due jobs sequentially.

        Blocks while another batch is running, so the submitter is never
        entered twice at once.

        Returns:
            BatchResult listing claimed, completed and failed job ids
        """
        jobs = sorted(jobs, key=Job.order_key)
        result = BatchResult()
        if not jobs:
            return result

        with self._batch_lock:
            logger.info(f"Processing batch of {len(jobs)} job(s)...")

            claimed = set(self.job_service.claim_jobs(job.job_id for job in jobs))
            work = [job for job in jobs if job.job_id in claimed]
            result.claimed = [job.job_id for job in work]

            if len(work) < len(jobs):
                logger.info(
                    f"{len(jobs) - len(work)} job(s) no longer pending, dropped from batch"
                )

            for index, job in enumerate(work, start=1):
                logger.info(f"[{index}/{len(work)}] Processing: {job.job_id}")

                status = self._execute(job, result)
                if status == JobStatus.COMPLETED:
                    result.completed.append(job.job_id)
                elif status == JobStatus.FAILED:
                    result.failed.append(job.job_id)
                else:
                    continue

                if index < len(work) and self.inter_job_delay > 0:
                    logger.debug(f"Waiting {self.inter_job_delay}s before next job...")
                    self._sleep(self.inter_job_delay)

            logger.info(
                f"Batch finished: {len(result.completed)} completed, "
                f"{len(result.failed)} failed, {len(result.skipped)} skipped"
            )

        return result

    def submit_now(self, payload: dict) -> SubmitResult:
        """
        Submit one payload outside any job, waiting for a running batch first.

        Nothing is persisted; the caller gets the submitter's result.
        """
        with self._batch_lock:
            logger.info(f"Immediate submission (terminal={payload.get('terminal_id')})")
            outcome = self._call_submitter(payload, "immediate submission")

        if outcome.success:
            logger.info("Immediate submission completed")
        else:
            logger.error(f"Immediate submission failed: {outcome.message}")
        return outcome

    def _call_submitter(self, payload: dict, label: str) -> SubmitResult:
        try:
            return self.submitter.submit(dict(payload))
        except Exception as e:
            logger.exception(f"Submitter raised for {label}")
            return SubmitResult(False, str(e) or type(e).__name__)

    def _still_claimed(self, job: Job) -> bool:
        """Whether the job is still PROCESSING in the store."""
        try:
            current = self.job_service.get_job(job.job_id)
        except StoreUnavailableError as e:
            # Outcome could not be recorded either; recovery fails it later
            logger.error(f"Could not re-read job {job.job_id} before submitting: {e}")
            return False

        if current is None or current.status != JobStatus.PROCESSING:
            state = "deleted" if current is None else current.status.value
            logger.warning(f"Job {job.job_id} is {state} since it was claimed; not submitting")
            return False
        return True

    def _execute(self, job: Job, result: BatchResult) -> Optional[JobStatus]:
        """Run one claimed job and record its outcome. None if it was skipped."""
        if not self._still_claimed(job):
            result.skipped.append(job.job_id)
            return None

        self._current_job = job

        try:
            outcome = self._call_submitter(job.payload, f"job {job.job_id}")

            if outcome.success:
                status, error = JobStatus.COMPLETED, None
                logger.info(f"Job {job.job_id} completed")
            else:
                status, error = JobStatus.FAILED, outcome.message or "Submission failed"
                logger.error(f"Job {job.job_id} failed: {error}")

            try:
                updated = self.job_service.update_job_status(job.job_id, status, error)
            except StoreUnavailableError as e:
                # Job stays PROCESSING until recovery reconciles it
                logger.error(f"Could not record '{status.value}' for job {job.job_id}: {e}")
                result.unrecorded.append(job.job_id)
            else:
                if updated is None:
                    result.unrecorded.append(job.job_id)

            return status

        finally:
            self._current_job = None

"""
Recovery Manager for the form submission scheduler.

Runs once at startup, before the poller:
- PROCESSING jobs older than the stale timeout were claimed by a process that
  died mid-batch. They are marked FAILED, not re-queued: the submission may
  already have happened, and re-running it would break at-most-once. An
  operator can reset them.
- PENDING jobs that fell out of the due window are reported; they are never
  picked up automatically.

Recovery is idempotent: running it twice produces the same result.
"""

import logging
from datetime import timedelta

from .entities import JobStatus, StatusUpdate
from .job_service import JobService


logger = logging.getLogger(__name__)

DEFAULT_STALE_PROCESSING_TIMEOUT = 600.0
INTERRUPTED_MESSAGE = "Interrupted by scheduler restart"


class RecoveryManager:
    """
    Handles crash recovery and startup cleanup.
    """

    def __init__(
        self,
        job_service: JobService,
        stale_processing_timeout: float = DEFAULT_STALE_PROCESSING_TIMEOUT,
    ):
        """
        Initialize RecoveryManager.

        Args:
            job_service: JobService (store access and clock)
            stale_processing_timeout: Seconds after which a PROCESSING job with
                no update is considered orphaned
        """
        self.job_service = job_service
        self.persistence = job_service.persistence
        self.stale_processing_timeout = timedelta(seconds=stale_processing_timeout)

    def recover_on_startup(self) -> dict:
        """
        Perform full recovery on scheduler startup.

        Returns:
            Recovery statistics
        """
        stats = {
            "processing_jobs_failed": 0,
            "overdue_pending_jobs": 0,
            "errors": [],
        }

        logger.info("Starting crash recovery...")

        try:
            stats["processing_jobs_failed"] = len(self._fail_orphaned_processing_jobs())
        except Exception as e:
            logger.error(f"Error recovering PROCESSING jobs: {e}")
            stats["errors"].append(f"Processing jobs: {e}")

        try:
            stats["overdue_pending_jobs"] = self._count_overdue_pending()
        except Exception as e:
            logger.error(f"Error counting overdue jobs: {e}")
            stats["errors"].append(f"Overdue jobs: {e}")

        logger.info(
            f"Recovery complete: "
            f"{stats['processing_jobs_failed']} orphaned job(s) marked failed, "
            f"{stats['overdue_pending_jobs']} overdue pending job(s)"
        )

        return stats

    def _fail_orphaned_processing_jobs(self) -> list[str]:
        now = self.job_service.now()
        stale = self.persistence.find_stale_processing_jobs(
            updated_before=now - self.stale_processing_timeout
        )

        recovered = []
        for job in stale:
            updated = self.persistence.compare_and_set_status(
                job.job_id,
                StatusUpdate(
                    expected=frozenset({JobStatus.PROCESSING}),
                    new_status=JobStatus.FAILED,
                    fields={"executed_at": now, "error_message": INTERRUPTED_MESSAGE},
                ),
                now=now,
            )
            if updated is not None:
                logger.warning(f"Job {job.job_id} was left processing; marked failed")
                recovered.append(job.job_id)

        return recovered

    def _count_overdue_pending(self) -> int:
        tolerance = self.job_service.backward_tolerance
        if tolerance is None:
            return 0

        overdue = self.persistence.count_overdue_pending(
            before=self.job_service.now() - tolerance
        )
        if overdue:
            logger.warning(
                f"{overdue} pending job(s) are past the due window and will not run; "
                f"reschedule or delete them"
            )
        return overdue

"""
Scheduler Service - Main entry point for the form submission scheduler.

This service orchestrates all scheduler components:
- PersistenceAdapter (job store)
- JobService (business rules)
- ExecutionQueue (sequential submission)
- Poller (recurring tick)
- RecoveryManager (startup sweep)

The process entry point owns the instance and injects it into the API layer;
nothing is started on import.

Usage:
    service = SchedulerService.create(settings, submitter)
    service.start()
    # ... poller runs in background ...
    service.stop()
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from src.infra.config import SchedulerSettings

from .entities import FormTemplate, Job, JobStats, utc_now
from .job_service import JobService, validate_payload
from .persistence import PersistenceAdapter
from .poller import Poller
from .queue_manager import ExecutionQueue
from .recovery import RecoveryManager
from .submitter import DisabledSubmitter, FormSubmitter, HttpFormSubmitter, SubmitResult


logger = logging.getLogger(__name__)


def build_submitter(settings: SchedulerSettings) -> FormSubmitter:
    """HTTP submitter when FORM_SUBMIT_URL is set, otherwise a disabled one."""
    if not settings.submit_url:
        logger.warning("FORM_SUBMIT_URL not set; scheduled jobs will fail until configured")
        return DisabledSubmitter()

    return HttpFormSubmitter(
        url=settings.submit_url,
        field_map=settings.field_map,
        timeout=settings.submit_timeout,
    )


class SchedulerService:
    """
    Main service that coordinates all scheduler components.

    Provides:
    - Component initialization and wiring
    - Startup with recovery
    - Graceful shutdown
    - API-friendly methods for job and template operations
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        job_service: JobService,
        queue: ExecutionQueue,
        poller: Poller,
        recovery_manager: RecoveryManager,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.persistence = persistence
        self.job_service = job_service
        self.queue = queue
        self.poller = poller
        self.recovery_manager = recovery_manager

    @classmethod
    def create(
        cls,
        settings: SchedulerSettings,
        submitter: Optional[FormSubmitter] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            settings: Scheduler settings
            submitter: Submission action (default: built from settings)
            clock: Current-time source shared by all components
            sleep: Inter-job sleep function (default: time.sleep)

        Returns:
            Configured SchedulerService
        """
        persistence = PersistenceAdapter(
            settings.db_path,
            failure_threshold=settings.store_failure_threshold,
            reset_timeout=settings.store_reset_timeout,
        )

        job_service = JobService(
            persistence,
            min_lead_time=settings.min_lead_time,
            forward_buffer=settings.forward_buffer,
            backward_tolerance=settings.backward_tolerance,
            clock=clock,
        )

        queue_kwargs = {"sleep": sleep} if sleep is not None else {}
        queue = ExecutionQueue(
            job_service,
            submitter or build_submitter(settings),
            inter_job_delay=settings.inter_job_delay,
            **queue_kwargs,
        )

        poller = Poller(
            job_service,
            queue,
            poll_interval=settings.poll_interval,
            clock=clock,
        )

        recovery_manager = RecoveryManager(
            job_service,
            stale_processing_timeout=settings.stale_processing_timeout,
        )

        return cls(
            persistence=persistence,
            job_service=job_service,
            queue=queue,
            poller=poller,
            recovery_manager=recovery_manager,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_recovery: bool = True) -> dict:
        """
        Start the poller. Idempotent.

        Args:
            run_recovery: Whether to run the startup sweep first

        Returns:
            Recovery statistics if recovery was run
        """
        if self.poller.is_running:
            logger.info("Scheduler service already running")
            return {}

        logger.info("Starting scheduler service...")

        recovery_stats = {}
        if run_recovery:
            recovery_stats = self._recover_when_idle()

        self.poller.start()
        logger.info("Scheduler service started")
        return recovery_stats

    def _recover_when_idle(self) -> dict:
        """
        Run the startup sweep while holding the submitter.

        A batch left running by an earlier stop() that timed out still owns its
        PROCESSING jobs; the sweep is skipped rather than failing them under it.
        """
        with self.queue.exclusive(blocking=False) as idle:
            if not idle:
                logger.warning("A batch is still running; skipping startup recovery")
                return {"skipped": True, "reason": "batch in progress"}
            return self.recovery_manager.recover_on_startup()

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Stop the poller; an in-flight batch is allowed to finish."""
        self.poller.stop(timeout=timeout)

    def close(self) -> None:
        """Stop the poller and release the submitter."""
        self.stop()
        self.queue.submitter.close()

    @property
    def is_running(self) -> bool:
        return self.poller.is_running

    # =========================================================================
    # Job Operations (API-friendly)
    # =========================================================================

    def create_job(self, payload: dict, scheduled_time: datetime | str) -> Job:
        """Schedule one submission. Raises ValidationError / SchedulingError."""
        return self.job_service.add_scheduled_job(payload, scheduled_time)

    def create_jobs(self, payloads: list[dict], scheduled_time: datetime | str) -> list[Job]:
        """Schedule several submissions for the same time."""
        return self.job_service.add_scheduled_jobs(payloads, scheduled_time)

    def create_job_from_template(
        self,
        template_id: str,
        scheduled_time: datetime | str,
        payload_overrides: Optional[dict] = None,
    ) -> Job:
        return self.job_service.add_job_from_template(
            template_id, scheduled_time, payload_overrides=payload_overrides
        )

    def list_jobs(self, limit: int = 50) -> list[Job]:
        return self.job_service.list_jobs(limit=limit)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.job_service.get_job(job_id)

    def cancel_job(self, job_id: str) -> bool:
        return self.job_service.cancel_job(job_id)

    def delete_job(self, job_id: str) -> bool:
        return self.job_service.delete_job(job_id)

    def reset_job(self, job_id: str) -> Job:
        return self.job_service.reset_job(job_id)

    def submit_now(self, payload: dict) -> SubmitResult:
        """
        Validate and submit one form immediately, without creating a job.

        Raises:
            ValidationError: Missing or malformed payload fields
        """
        validate_payload(payload)
        return self.queue.submit_now(payload)

    def get_stats(self) -> JobStats:
        return self.job_service.get_stats()

    def cleanup_old_jobs(self, days_old: int = 30) -> int:
        return self.job_service.cleanup_old_jobs(days_old=days_old)

    # =========================================================================
    # Scheduler Control
    # =========================================================================

    def get_scheduler_status(self) -> dict:
        """running, processing, last tick and current job (no side effects)."""
        return self.poller.get_status()

    def trigger_processing(self) -> bool:
        """Run one tick now. Returns False if a pass was already in flight."""
        return self.poller.trigger_processing()

    def check_health(self) -> dict:
        store_ok = self.persistence.check_health()
        return {
            "store": "ok" if store_ok else "unavailable",
            "store_circuit": self.persistence.breaker.state,
            "scheduler_running": self.is_running,
        }

    # =========================================================================
    # Template Operations
    # =========================================================================

    def create_template(self, name: str, payload: dict) -> FormTemplate:
        return self.job_service.create_template(name, payload)

    def get_template(self, template_id: str) -> Optional[FormTemplate]:
        return self.persistence.get_template(template_id)

    def list_templates(self) -> list[FormTemplate]:
        return self.job_service.list_templates()

    def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> FormTemplate:
        return self.job_service.update_template(template_id, name=name, payload=payload)

    def delete_template(self, template_id: str, hard: bool = False) -> bool:
        return self.job_service.delete_template(template_id, hard=hard)

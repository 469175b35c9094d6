"""
Job Service for the form submission scheduler.

Business rules around the job store:
- Payload validation and minimum lead time at creation
- Due-job window (backward tolerance / forward buffer)
- State-machine driven status updates (terminal states never change)
- Read paths degrade when the store is unreachable; write paths propagate

What JobService MUST NOT do:
- Call the submitter (ExecutionQueue's responsibility)
- Decide when to poll (Poller's responsibility)
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .entities import (
    FormTemplate,
    Job,
    JobStats,
    JobStatus,
    OUTCOME_STATUSES,
    StatusUpdate,
    ensure_utc,
    parse_iso,
    to_iso,
    utc_now,
)
from .errors import (
    DuplicateKeyError,
    InvalidTransitionError,
    JobNotFoundError,
    SchedulingError,
    StoreUnavailableError,
    TemplateNotFoundError,
    ValidationError,
)
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)

# Recommended defaults, overridable through SchedulerSettings
DEFAULT_MIN_LEAD_TIME = 60.0
DEFAULT_FORWARD_BUFFER = 60.0
DEFAULT_BACKWARD_TOLERANCE = 60.0

REQUIRED_PAYLOAD_FIELDS = (
    "terminal_id",
    "camera_condition",
    "nvr_condition",
    "submitter_name",
    "company",
    "employee_number",
)

ALLOWED_PAYLOAD_VALUES = {
    "camera_condition": ("ok", "problem"),
    "nvr_condition": ("recording", "problem"),
}


def find_missing_fields(payload: dict) -> list[str]:
    """Required fields that are absent, None, or blank."""
    missing = []
    for name in REQUIRED_PAYLOAD_FIELDS:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def find_invalid_fields(payload: dict) -> dict[str, str]:
    invalid = {}
    for name, allowed in ALLOWED_PAYLOAD_VALUES.items():
        value = payload.get(name)
        if value is not None and value not in allowed:
            invalid[name] = f"must be one of {', '.join(allowed)} (got {value!r})"
    return invalid


def validate_payload(payload: dict) -> None:
    """
    Validate a form payload.

    Raises:
        ValidationError: Listing every missing and malformed field
    """
    if not isinstance(payload, dict):
        raise ValidationError(message="Payload must be an object")

    missing = find_missing_fields(payload)
    invalid = find_invalid_fields(payload)
    if missing or invalid:
        raise ValidationError(missing_fields=missing, invalid_fields=invalid)


def coerce_datetime(value: datetime | str) -> datetime:
    """Accept datetimes (naive = UTC) or ISO-8601 strings."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return parse_iso(value)
    except (TypeError, ValueError) as e:
        raise SchedulingError(f"Invalid scheduled time: {value!r}") from e


class JobService:
    """
    Domain operations on jobs.

    Time is read through an injectable clock so tests can pin "now".
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        min_lead_time: float = DEFAULT_MIN_LEAD_TIME,
        forward_buffer: float = DEFAULT_FORWARD_BUFFER,
        backward_tolerance: Optional[float] = DEFAULT_BACKWARD_TOLERANCE,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize JobService.

        Args:
            persistence: Job store
            min_lead_time: Seconds a new job must lie in the future
            forward_buffer: Seconds ahead of now a job counts as due
            backward_tolerance: Seconds behind now a job still counts as due
                (None = no lower bound)
            clock: Returns the current aware UTC datetime
        """
        self.persistence = persistence
        self.min_lead_time = timedelta(seconds=min_lead_time)
        self.forward_buffer = timedelta(seconds=forward_buffer)
        self.backward_tolerance = (
            timedelta(seconds=backward_tolerance)
            if backward_tolerance is not None
            else None
        )
        self._clock = clock

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    # =========================================================================
    # Creation
    # =========================================================================

    def add_scheduled_job(
        self,
        payload: dict,
        scheduled_time: datetime | str,
        template_id: Optional[str] = None,
    ) -> Job:
        """
        Validate and persist a new PENDING job.

        Raises:
            ValidationError: Missing or malformed payload fields
            SchedulingError: scheduled_time earlier than now + min_lead_time
            StoreUnavailableError: Store unreachable
        """
        validate_payload(payload)
        scheduled = self._check_lead_time(coerce_datetime(scheduled_time))

        job = self._insert_with_fresh_id(payload, scheduled, template_id)

        logger.info(
            f"Job added: {job.job_id} (terminal={payload.get('terminal_id')}, "
            f"scheduled_for={to_iso(job.scheduled_time)})"
        )
        return job

    def add_scheduled_jobs(
        self,
        payloads: Iterable[dict],
        scheduled_time: datetime | str,
    ) -> list[Job]:
        """
        Schedule several payloads for the same time.

        Every payload is validated before any job is created.

        Raises:
            ValidationError: Aggregated per-form errors; nothing is created
            SchedulingError: scheduled_time violates the lead time
        """
        payloads = list(payloads)
        if not payloads:
            raise ValidationError(message="At least one payload is required")

        errors = []
        for index, payload in enumerate(payloads, start=1):
            try:
                validate_payload(payload)
            except ValidationError as e:
                errors.append(f"Form {index}: {e}")
        if errors:
            raise ValidationError(message="; ".join(errors))

        scheduled = self._check_lead_time(coerce_datetime(scheduled_time))

        jobs = [self._insert_with_fresh_id(payload, scheduled) for payload in payloads]
        logger.info(f"Batch scheduled {len(jobs)} job(s) for {to_iso(scheduled)}")
        return jobs

    def add_job_from_template(
        self,
        template_id: str,
        scheduled_time: datetime | str,
        payload_overrides: Optional[dict] = None,
    ) -> Job:
        """Create a job whose payload is a snapshot of an active template."""
        template = self.persistence.get_template(template_id)
        if template is None or not template.is_active:
            raise TemplateNotFoundError(template_id)

        payload = dict(template.payload)
        payload.update(payload_overrides or {})
        return self.add_scheduled_job(payload, scheduled_time, template_id=template_id)

    def _check_lead_time(self, scheduled: datetime) -> datetime:
        earliest = self.now() + self.min_lead_time
        if scheduled < earliest:
            raise SchedulingError(
                f"Scheduled time must be at least {int(self.min_lead_time.total_seconds())}s "
                f"in the future"
            )
        return scheduled

    def _insert_with_fresh_id(
        self,
        payload: dict,
        scheduled: datetime,
        template_id: Optional[str] = None,
    ) -> Job:
        """Insert a new job, regenerating the id once on collision."""
        job = Job.create(payload, scheduled, template_id=template_id, now=self.now())
        try:
            return self.persistence.insert_job(job)
        except DuplicateKeyError:
            logger.warning(f"job_id collision on {job.job_id}, regenerating")

        job = Job.create(payload, scheduled, template_id=template_id, now=self.now())
        return self.persistence.insert_job(job)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.persistence.get_job(job_id)

    def list_jobs(self, limit: int = 50) -> list[Job]:
        return self.persistence.list_jobs(limit=limit)

    def get_due_jobs(self) -> list[Job]:
        """
        PENDING jobs due within [now - backward_tolerance, now + forward_buffer].

        The forward buffer catches jobs that fall between two poll ticks; the
        backward tolerance catches jobs missed while the poller was briefly
        unavailable. Returns [] when the store is unreachable.
        """
        now = self.now()
        since = now - self.backward_tolerance if self.backward_tolerance is not None else None

        try:
            jobs = self.persistence.find_due_jobs(until=now + self.forward_buffer, since=since)
        except StoreUnavailableError as e:
            logger.error(f"Failed to get due jobs: {e}")
            return []

        if jobs:
            logger.info(f"Found {len(jobs)} due job(s) at {now.isoformat()}")
            for job in jobs:
                logger.debug(f"  - {job.job_id} scheduled {job.scheduled_time.isoformat()}")

        return sorted(jobs, key=Job.order_key)

    def get_stats(self) -> JobStats:
        """Counts per status plus total; zeroed with `error` set if the store is down."""
        try:
            return JobStats(counts=self.persistence.count_jobs_by_status())
        except StoreUnavailableError as e:
            logger.error(f"Failed to get stats: {e}")
            return JobStats(error=str(e))

    # =========================================================================
    # Status Transitions
    # =========================================================================

    def claim_jobs(self, job_ids: Iterable[str]) -> list[str]:
        """Atomically move PENDING jobs to PROCESSING; returns the claimed ids."""
        claimed = self.persistence.batch_compare_and_set_status(
            job_ids,
            expected=JobStatus.PENDING,
            new_status=JobStatus.PROCESSING,
            now=self.now(),
        )
        logger.info(f"Claimed {len(claimed)} job(s) for processing")
        return claimed

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_message: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Move a job to `status` if the state machine allows it.

        executed_at is set only for completed/failed; error_message is written
        when given and cleared otherwise.

        Returns:
            The updated job, or None if the job no longer exists or its current
            status does not permit the transition. A concurrent cancel or
            delete is expected and is not an error.
        """
        now = self.now()
        fields: dict = {"error_message": error_message}
        if status in OUTCOME_STATUSES:
            fields["executed_at"] = now

        job = self.persistence.compare_and_set_status(
            job_id,
            StatusUpdate.transition(status, **fields),
            now=now,
        )

        if job is None:
            logger.warning(f"Status update to '{status.value}' not applied to job {job_id}")
            return None

        logger.info(f"Job {job_id} status: {status.value}")
        return job

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a PENDING job.

        Returns False if the job is missing or no longer PENDING (already
        claimed or terminal); its status is left untouched.
        """
        job = self.persistence.compare_and_set_status(
            job_id,
            StatusUpdate.transition(JobStatus.CANCELLED),
            now=self.now(),
        )
        if job is None:
            logger.info(f"Job {job_id} not cancellable")
            return False

        logger.info(f"Job {job_id} cancelled")
        return True

    def reset_job(self, job_id: str) -> Job:
        """
        Operator action: put a FAILED job back to PENDING for another attempt.

        The due window for a reset job starts at the reset time, so it is
        picked up by the next tick even if scheduled_time is long past.

        Raises:
            JobNotFoundError: Job does not exist
            InvalidTransitionError: Job is not FAILED
        """
        now = self.now()
        job = self.persistence.compare_and_set_status(
            job_id,
            StatusUpdate.transition(
                JobStatus.PENDING,
                executed_at=None,
                error_message=None,
                requeued_at=now,
            ),
            now=now,
        )

        if job is None:
            current = self.persistence.get_job(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            raise InvalidTransitionError(job_id, current.status.value, JobStatus.PENDING.value)

        logger.info(f"Job {job_id} reset to pending")
        return job

    def delete_job(self, job_id: str) -> bool:
        deleted = self.persistence.delete_job(job_id)
        if deleted:
            logger.info(f"Job {job_id} deleted")
        return deleted

    def cleanup_old_jobs(self, days_old: int = 30) -> int:
        """Delete terminal jobs created more than `days_old` days ago."""
        cutoff = self.now() - timedelta(days=days_old)
        deleted = self.persistence.delete_terminal_jobs_before(cutoff)
        logger.info(f"Cleaned up {deleted} old job(s)")
        return deleted

    # =========================================================================
    # Templates
    # =========================================================================

    def create_template(self, name: str, payload: dict) -> FormTemplate:
        validate_payload(payload)
        return self.persistence.create_template(FormTemplate.create(name=name, payload=payload))

    def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> FormTemplate:
        if payload is not None:
            validate_payload(payload)
        return self.persistence.update_template(template_id, name=name, payload=payload)

    def list_templates(self) -> list[FormTemplate]:
        try:
            return self.persistence.list_templates()
        except StoreUnavailableError as e:
            logger.error(f"Failed to list templates: {e}")
            return []

    def delete_template(self, template_id: str, hard: bool = False) -> bool:
        if hard:
            return self.persistence.delete_template(template_id)
        return self.persistence.deactivate_template(template_id)

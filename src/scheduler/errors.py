"""
Scheduler-specific exceptions.

Caller-visible errors (ValidationError, SchedulingError) are raised
synchronously at creation time. Execution failures are never raised: they are
recorded on the job as FAILED with an error message.
"""

from typing import Iterable, Optional


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class ValidationError(SchedulerError):
    """
    Raised when a payload is missing required fields or has malformed values.

    The job is never created.
    """

    def __init__(
        self,
        missing_fields: Iterable[str] = (),
        invalid_fields: Optional[dict[str, str]] = None,
        message: Optional[str] = None,
    ):
        self.missing_fields = list(missing_fields)
        self.invalid_fields = dict(invalid_fields or {})

        if message is None:
            parts = []
            if self.missing_fields:
                parts.append(f"Missing required fields: {', '.join(self.missing_fields)}")
            for name, reason in self.invalid_fields.items():
                parts.append(f"Invalid field '{name}': {reason}")
            message = "; ".join(parts) or "Invalid payload"

        super().__init__(message)


class SchedulingError(SchedulerError):
    """Raised when scheduled_time violates the minimum lead time."""
    pass


class DuplicateKeyError(SchedulerError):
    """Raised when inserting a job whose job_id already exists."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Duplicate job_id: {job_id}")


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class TemplateNotFoundError(SchedulerError):
    """Raised when a requested form template does not exist."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"FormTemplate not found: {template_id}")


class InvalidTransitionError(SchedulerError):
    """Raised when an operator action is not valid for the job's current status."""

    def __init__(self, job_id: str, current_status: str, target_status: str):
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move job {job_id} from '{current_status}' to '{target_status}'"
        )


class StoreUnavailableError(SchedulerError):
    """
    Raised when the job store cannot be reached.

    Read paths degrade to empty results; write paths propagate it.
    """
    pass

"""
Form Submission Scheduler Core.

Deferred, at-most-once, strictly sequential execution of scheduled form
submissions:
- PersistenceAdapter: SQLite job store with atomic compare-and-set
- JobService: creation rules, due window, status transitions, stats
- ExecutionQueue: batch claim + sequential submission
- Poller: recurring single-flight tick
- RecoveryManager: startup sweep for interrupted jobs
- SchedulerService: facade owned by the process entry point
"""

from .entities import (
    JobStatus,
    Job,
    FormTemplate,
    JobStats,
    StatusUpdate,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    generate_job_id,
    utc_now,
    to_iso,
    parse_iso,
)
from .errors import (
    SchedulerError,
    ValidationError,
    SchedulingError,
    DuplicateKeyError,
    JobNotFoundError,
    TemplateNotFoundError,
    InvalidTransitionError,
    StoreUnavailableError,
)
from .persistence import PersistenceAdapter, CircuitBreaker
from .job_service import JobService, validate_payload, REQUIRED_PAYLOAD_FIELDS
from .submitter import FormSubmitter, SubmitResult, HttpFormSubmitter, DisabledSubmitter
from .queue_manager import ExecutionQueue, BatchResult
from .poller import Poller, PollerState
from .recovery import RecoveryManager
from .service import SchedulerService

__all__ = [
    # Entities
    "JobStatus",
    "Job",
    "FormTemplate",
    "JobStats",
    "StatusUpdate",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "generate_job_id",
    "utc_now",
    "to_iso",
    "parse_iso",
    # Errors
    "SchedulerError",
    "ValidationError",
    "SchedulingError",
    "DuplicateKeyError",
    "JobNotFoundError",
    "TemplateNotFoundError",
    "InvalidTransitionError",
    "StoreUnavailableError",
    # Persistence
    "PersistenceAdapter",
    "CircuitBreaker",
    # Jobs
    "JobService",
    "validate_payload",
    "REQUIRED_PAYLOAD_FIELDS",
    # Submitter
    "FormSubmitter",
    "SubmitResult",
    "HttpFormSubmitter",
    "DisabledSubmitter",
    # Queue
    "ExecutionQueue",
    "BatchResult",
    # Poller
    "Poller",
    "PollerState",
    # Recovery
    "RecoveryManager",
    # Service
    "SchedulerService",
]

"""
Scheduler Domain Entities.

- Job: One scheduled form submission with its payload and timing
- FormTemplate: Reusable payload preset ("schedule from template")
- StatusUpdate: The single atomic conditional-update primitive used by the store

Status values and allowed transitions are driven by the JobStatus enum.
Timestamps are timezone-aware UTC datetimes; they are stored as fixed-width
ISO strings so lexical order equals chronological order.
"""

import random
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """
    Job lifecycle status.

    - PENDING: Waiting for its scheduled time
    - PROCESSING: Claimed by an execution batch
    - COMPLETED: Submission succeeded
    - FAILED: Submission failed (may be reset to PENDING by an operator)
    - CANCELLED: Cancelled before it was claimed
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

# Statuses that record an execution outcome (executed_at is set).
OUTCOME_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PROCESSING: frozenset({JobStatus.PENDING}),
    JobStatus.CANCELLED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset({JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PENDING: frozenset({JobStatus.FAILED}),
}


def allowed_sources(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which `target` may be entered."""
    return ALLOWED_TRANSITIONS.get(target, frozenset())


# =============================================================================
# Time helpers
# =============================================================================

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize to fixed-width UTC ISO-8601 (sortable as text)."""
    return ensure_utc(value).strftime(_ISO_FORMAT)


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string (with 'Z' or an offset) into aware UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def parse_optional_iso(value: Optional[str]) -> Optional[datetime]:
    return parse_iso(value) if value else None


# =============================================================================
# Identifiers
# =============================================================================

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_job_id() -> str:
    """Generate a job id: job_<epoch millis>_<9 random base36 chars>."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"job_{int(time.time() * 1000)}_{suffix}"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


# =============================================================================
# Entities
# =============================================================================


@dataclass
class Job:
    """
    One scheduled instance of the form submission.

    Mutability rules:
    - job_id, payload, scheduled_time, template_id, created_at: Immutable
    - status: Changes only along ALLOWED_TRANSITIONS
    - executed_at: Set when an outcome (completed/failed) is recorded
    - error_message: Set only on failed
    - sequence: Assigned by the store on insert (tie-breaker for ordering)
    """

    job_id: str
    payload: dict
    scheduled_time: datetime
    status: JobStatus = JobStatus.PENDING
    executed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    template_id: Optional[str] = None
    requeued_at: Optional[datetime] = None
    sequence: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        payload: dict,
        scheduled_time: datetime,
        template_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Job":
        """Create a new PENDING Job with a generated ID."""
        now = now or utc_now()
        return cls(
            job_id=generate_job_id(),
            payload=dict(payload),
            scheduled_time=ensure_utc(scheduled_time),
            status=JobStatus.PENDING,
            template_id=template_id,
            created_at=now,
            updated_at=now,
        )

    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def order_key(self) -> tuple:
        """Execution order: earliest scheduled_time first, then insertion order."""
        return (self.scheduled_time, self.sequence or 0, self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "payload": dict(self.payload),
            "scheduled_time": to_iso(self.scheduled_time),
            "status": self.status.value,
            "executed_at": to_iso(self.executed_at) if self.executed_at else None,
            "error_message": self.error_message,
            "template_id": self.template_id,
            "requeued_at": to_iso(self.requeued_at) if self.requeued_at else None,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


@dataclass
class FormTemplate:
    """Reusable payload preset. Scheduling from it snapshots the payload."""

    template_id: str
    name: str
    payload: dict
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, name: str, payload: dict) -> "FormTemplate":
        now = utc_now()
        return cls(
            template_id=generate_uuid(),
            name=name,
            payload=dict(payload),
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class StatusUpdate:
    """
    Atomic conditional status change.

    Applied only while the stored status is one of `expected`. `fields` holds
    extra column values written in the same statement (executed_at,
    error_message, requeued_at).
    """

    expected: frozenset[JobStatus]
    new_status: JobStatus
    fields: dict = field(default_factory=dict)

    @classmethod
    def transition(cls, new_status: JobStatus, **fields: Any) -> "StatusUpdate":
        """Build an update whose precondition is the state machine itself."""
        return cls(
            expected=allowed_sources(new_status),
            new_status=new_status,
            fields=fields,
        )


@dataclass
class JobStats:
    """Per-status job counts. `error` is set when the store was unreachable."""

    counts: dict[JobStatus, int] = field(
        default_factory=lambda: {status: 0 for status in JobStatus}
    )
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            status.value: self.counts.get(status, 0) for status in JobStatus
        }
        result["total"] = self.total
        result["error"] = self.error
        return result

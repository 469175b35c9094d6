"""
Job API schemas.

Request and response models for /jobs endpoints. Payload contents are
validated by the scheduler core so that missing fields are reported together.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from src.scheduler import Job, JobStats


PAYLOAD_DESCRIPTION = (
    "Form data: terminal_id, camera_condition (ok|problem), "
    "nvr_condition (recording|problem), submitter_name, company, employee_number"
)


class JobCreateRequest(BaseModel):
    """Request to schedule one form submission."""

    payload: dict[str, Any] = Field(..., description=PAYLOAD_DESCRIPTION)
    scheduled_time: datetime = Field(
        ...,
        description="When to submit (ISO-8601; naive values are UTC). "
                    "Must be at least the minimum lead time in the future.",
    )


class JobBatchCreateRequest(BaseModel):
    """Request to schedule several submissions for the same time."""

    payloads: List[dict[str, Any]] = Field(..., min_length=1, description=PAYLOAD_DESCRIPTION)
    scheduled_time: datetime = Field(..., description="When to submit (ISO-8601)")


class JobResponse(BaseModel):
    """Response representing a Job."""

    job_id: str = Field(..., description="Unique job identifier")
    payload: dict = Field(default_factory=dict, description="Form data")
    scheduled_time: datetime = Field(..., description="Scheduled submission time (UTC)")
    status: str = Field(..., description="pending/processing/completed/failed/cancelled")
    executed_at: Optional[datetime] = Field(default=None, description="Outcome timestamp")
    error_message: Optional[str] = Field(default=None, description="Failure reason")
    template_id: Optional[str] = Field(default=None, description="Source template ID")
    requeued_at: Optional[datetime] = Field(
        default=None,
        description="Last operator reset; the due window is measured from here when set",
    )
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.job_id,
            payload=job.payload,
            scheduled_time=job.scheduled_time,
            status=job.status.value,
            executed_at=job.executed_at,
            error_message=job.error_message,
            template_id=job.template_id,
            requeued_at=job.requeued_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobListResponse(BaseModel):
    """Response for job list endpoint."""

    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of jobs returned")


class JobActionResponse(BaseModel):
    """Response from cancel / reset / delete."""

    job_id: str
    success: bool
    message: Optional[str] = None
    job: Optional[JobResponse] = None


class JobStatsResponse(BaseModel):
    """Job counts per status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0
    error: Optional[str] = Field(default=None, description="Set when the store was unreachable")

    @classmethod
    def from_stats(cls, stats: JobStats) -> "JobStatsResponse":
        return cls(**stats.to_dict())


class CleanupResponse(BaseModel):
    deleted: int = Field(..., description="Number of terminal jobs removed")


class SubmitNowRequest(BaseModel):
    """Request to submit one form immediately, without scheduling it."""

    payload: dict[str, Any] = Field(..., description=PAYLOAD_DESCRIPTION)


class SubmitNowResponse(BaseModel):
    """Outcome of an immediate submission. No job record is created."""

    success: bool
    message: str = Field(default="", description="Submitter message or failure reason")

"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    JobCreateRequest,
    JobBatchCreateRequest,
    JobResponse,
    JobListResponse,
    JobActionResponse,
    JobStatsResponse,
    CleanupResponse,
    SubmitNowRequest,
    SubmitNowResponse,
)
from .scheduler import (
    SchedulerStartRequest,
    SchedulerStartResponse,
    SchedulerStopRequest,
    SchedulerStopResponse,
    SchedulerStatusResponse,
    SchedulerTriggerResponse,
    HealthResponse,
)
from .templates import (
    TemplateCreateRequest,
    TemplateUpdateRequest,
    TemplateScheduleRequest,
    TemplateResponse,
    TemplateListResponse,
)

__all__ = [
    "JobCreateRequest",
    "JobBatchCreateRequest",
    "JobResponse",
    "JobListResponse",
    "JobActionResponse",
    "JobStatsResponse",
    "CleanupResponse",
    "SubmitNowRequest",
    "SubmitNowResponse",
    "SchedulerStartRequest",
    "SchedulerStartResponse",
    "SchedulerStopRequest",
    "SchedulerStopResponse",
    "SchedulerStatusResponse",
    "SchedulerTriggerResponse",
    "HealthResponse",
    "TemplateCreateRequest",
    "TemplateUpdateRequest",
    "TemplateScheduleRequest",
    "TemplateResponse",
    "TemplateListResponse",
]

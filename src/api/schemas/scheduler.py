"""
Scheduler control API schemas.

Supports /scheduler/* endpoints (start, stop, status, trigger).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SchedulerStartRequest(BaseModel):
    """Request to start the scheduler."""

    run_recovery: bool = Field(
        default=True,
        description="Whether to run the startup recovery sweep first"
    )


class SchedulerStartResponse(BaseModel):
    """Response from scheduler start."""

    success: bool
    message: str
    recovery_stats: Optional[dict] = Field(
        default=None,
        description="Recovery statistics if recovery was run"
    )


class SchedulerStopRequest(BaseModel):
    """Request to stop the scheduler."""

    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Maximum wait for an in-flight batch (seconds)"
    )


class SchedulerStopResponse(BaseModel):
    """Response from scheduler stop."""

    success: bool
    message: str


class CurrentJob(BaseModel):
    """The job whose submission is in progress."""

    job_id: str
    terminal_id: Optional[str] = None
    submitter_name: Optional[str] = None


class SchedulerStatusResponse(BaseModel):
    """Response from scheduler status endpoint."""

    running: bool = Field(..., description="Whether the poller timer is active")
    processing: bool = Field(..., description="Whether a processing pass is in flight")
    last_tick_at: Optional[datetime] = Field(default=None, description="Start of the last tick")
    ticks_run: int = Field(default=0)
    ticks_skipped: int = Field(default=0, description="Ticks skipped by the single-flight guard")
    poll_interval: float = Field(..., description="Seconds between ticks")
    current_job: Optional[CurrentJob] = Field(
        default=None,
        description="Currently executing job (null if none)"
    )

    @classmethod
    def from_status(cls, status: dict) -> "SchedulerStatusResponse":
        current = status["queue"]["current_job"]
        return cls(
            running=status["running"],
            processing=status["processing"],
            last_tick_at=status["last_tick_at"],
            ticks_run=status["ticks_run"],
            ticks_skipped=status["ticks_skipped"],
            poll_interval=status["poll_interval"],
            current_job=CurrentJob(**current) if current else None,
        )


class SchedulerTriggerResponse(BaseModel):
    """Response from a manual trigger."""

    triggered: bool
    message: str


class HealthResponse(BaseModel):
    status: str
    store: str
    store_circuit: str
    scheduler_running: bool

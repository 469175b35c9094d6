"""
Scheduler router for scheduler control APIs.

Endpoints under /scheduler/* for start, stop, status and trigger operations.
The scheduler is a system-level control plane, not a sub-resource of a job.
"""

from fastapi import APIRouter, BackgroundTasks, Depends

from src.scheduler import SchedulerService

from ..dependencies import get_scheduler_service
from ..schemas.scheduler import (
    SchedulerStartRequest,
    SchedulerStartResponse,
    SchedulerStatusResponse,
    SchedulerStopRequest,
    SchedulerStopResponse,
    SchedulerTriggerResponse,
)


router = APIRouter()


@router.post("/start", response_model=SchedulerStartResponse)
def start_scheduler(
    request: SchedulerStartRequest = SchedulerStartRequest(),
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Start the poller.

    Idempotent: If the scheduler is already running, returns success with message.
    """
    if service.is_running:
        return SchedulerStartResponse(
            success=True,
            message="Scheduler is already running",
            recovery_stats=None,
        )

    recovery_stats = service.start(run_recovery=request.run_recovery)
    return SchedulerStartResponse(
        success=True,
        message="Scheduler started successfully",
        recovery_stats=recovery_stats or None,
    )


@router.post("/stop", response_model=SchedulerStopResponse)
def stop_scheduler(
    request: SchedulerStopRequest = SchedulerStopRequest(),
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Stop the poller.

    An in-flight batch is allowed to finish; no job is interrupted.
    """
    if not service.is_running:
        return SchedulerStopResponse(success=True, message="Scheduler is not running")

    service.stop(timeout=request.timeout)
    return SchedulerStopResponse(success=True, message="Scheduler stopped")


@router.get("/status", response_model=SchedulerStatusResponse)
def get_scheduler_status(service: SchedulerService = Depends(get_scheduler_service)):
    """Observational snapshot of the poller and the execution queue."""
    return SchedulerStatusResponse.from_status(service.get_scheduler_status())


@router.post("/trigger", response_model=SchedulerTriggerResponse, status_code=202)
def trigger_processing(
    background_tasks: BackgroundTasks,
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Run one processing pass now, outside the timer.

    The pass runs after the response is sent; a pass already in flight
    makes this a no-op.
    """
    if service.get_scheduler_status()["processing"]:
        return SchedulerTriggerResponse(
            triggered=False,
            message="Processing already in progress",
        )

    background_tasks.add_task(service.trigger_processing)
    return SchedulerTriggerResponse(triggered=True, message="Processing triggered")

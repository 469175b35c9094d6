"""
Jobs router.

- POST /jobs - Schedule one form submission
- POST /jobs/batch - Schedule several submissions for the same time
- POST /jobs/submit-now - Submit one form immediately (no job record)
- GET /jobs - List jobs (newest first)
- GET /jobs/stats - Counts per status
- POST /jobs/cleanup - Delete old terminal jobs
- GET /jobs/{job_id} - Get job details
- POST /jobs/{job_id}/cancel - Cancel a PENDING job
- POST /jobs/{job_id}/reset - Put a FAILED job back to PENDING
- DELETE /jobs/{job_id} - Delete a job record

Scheduler errors (validation, lead time, not found, store down) are mapped to
HTTP status codes by the handlers registered in main.py.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from src.scheduler import SchedulerService

from ..dependencies import get_scheduler_service
from ..schemas.jobs import (
    CleanupResponse,
    JobActionResponse,
    JobBatchCreateRequest,
    JobCreateRequest,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    SubmitNowRequest,
    SubmitNowResponse,
)


router = APIRouter()


@router.post("", response_model=JobResponse, status_code=201)
def create_job(
    request: JobCreateRequest,
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Schedule a form submission.

    The job is created PENDING and runs on the first poller tick whose due
    window contains scheduled_time.
    """
    job = service.create_job(request.payload, request.scheduled_time)
    return JobResponse.from_job(job)


@router.post("/batch", response_model=JobListResponse, status_code=201)
def create_jobs(
    request: JobBatchCreateRequest,
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Schedule several forms at once.

    All payloads are validated first; if any is invalid nothing is created.
    """
    jobs = service.create_jobs(request.payloads, request.scheduled_time)
    return JobListResponse(jobs=[JobResponse.from_job(j) for j in jobs], total=len(jobs))


@router.post(
    "/submit-now",
    response_model=SubmitNowResponse,
    responses={502: {"model": SubmitNowResponse, "description": "The submitter rejected the form"}},
)
def submit_now(
    request: SubmitNowRequest,
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Submit a form right away.

    Waits for an in-flight batch to finish first; the submitter is never
    entered twice at once.
    """
    result = service.submit_now(request.payload)
    response = SubmitNowResponse(success=result.success, message=result.message)
    if not result.success:
        return JSONResponse(status_code=502, content=response.model_dump())
    return response


@router.get("", response_model=JobListResponse)
def list_jobs(
    limit: int = Query(default=50, ge=1, le=500, description="Max jobs to return"),
    service: SchedulerService = Depends(get_scheduler_service),
):
    jobs = service.list_jobs(limit=limit)
    return JobListResponse(jobs=[JobResponse.from_job(j) for j in jobs], total=len(jobs))


@router.get("/stats", response_model=JobStatsResponse)
def get_stats(service: SchedulerService = Depends(get_scheduler_service)):
    """Job counts per status. Reports an error field instead of failing."""
    return JobStatsResponse.from_stats(service.get_stats())


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup_jobs(
    days_old: int = Query(default=30, ge=1, description="Age threshold in days"),
    service: SchedulerService = Depends(get_scheduler_service),
):
    return CleanupResponse(deleted=service.cleanup_old_jobs(days_old=days_old))


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
):
    job = service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobResponse.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobActionResponse)
def cancel_job(
    job_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
):
    """
    Cancel a PENDING job.

    A job that has already been claimed for execution cannot be cancelled.
    """
    if service.cancel_job(job_id):
        return JobActionResponse(
            job_id=job_id,
            success=True,
            message="Job cancelled",
            job=JobResponse.from_job(service.get_job(job_id)),
        )

    job = service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    raise HTTPException(
        status_code=409,
        detail=f"Job is '{job.status.value}' and can no longer be cancelled",
    )


@router.post("/{job_id}/reset", response_model=JobActionResponse)
def reset_job(
    job_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
):
    """Put a FAILED job back to PENDING so the next tick runs it again."""
    job = service.reset_job(job_id)
    return JobActionResponse(
        job_id=job_id,
        success=True,
        message="Job reset to pending",
        job=JobResponse.from_job(job),
    )


@router.delete("/{job_id}", response_model=JobActionResponse)
def delete_job(
    job_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
):
    if not service.delete_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobActionResponse(job_id=job_id, success=True, message="Job deleted")

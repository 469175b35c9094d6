"""
Scheduler service dependency.
"""

from fastapi import HTTPException, Request, status

from src.scheduler import SchedulerService


def get_scheduler_service(request: Request) -> SchedulerService:
    """
    Return the SchedulerService attached to the running app.

    Raises:
        HTTPException: 503 if the service has not been initialized
    """
    service = getattr(request.app.state, "scheduler_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler service not initialized",
        )
    return service

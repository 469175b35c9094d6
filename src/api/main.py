"""
FastAPI application entry point.

Thin control plane over the form submission scheduler. The application owns
one SchedulerService, created in the lifespan (or injected by the caller) and
stored on app.state.

Usage:
    uvicorn src.api.main:app --host 127.0.0.1 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from src import __version__
from src.infra.config import SchedulerSettings, load_settings
from src.infra.logging_config import setup_logging
from src.scheduler import (
    InvalidTransitionError,
    JobNotFoundError,
    SchedulerService,
    SchedulingError,
    StoreUnavailableError,
    TemplateNotFoundError,
    ValidationError,
)

from .dependencies import get_scheduler_service
from .routers import jobs, scheduler, templates
from .schemas.scheduler import HealthResponse


logger = logging.getLogger(__name__)

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Scheduled form submissions - create, inspect, cancel, reset and delete jobs",
    },
    {
        "name": "scheduler",
        "description": "Scheduler control plane - start, stop, status and manual trigger",
    },
    {
        "name": "templates",
        "description": "Reusable form data - create templates and schedule jobs from them",
    },
]

DESCRIPTION = """
## Form Submission Scheduler API

Schedules form submissions for a future time and submits them one at a time.

### Job lifecycle
`pending` -> `processing` -> `completed` | `failed`; a pending job can be
`cancelled`; a failed job can be reset to `pending` by an operator.

### Usage
```bash
uvicorn src.api.main:app --host 127.0.0.1 --port 8000

curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"payload": {"terminal_id": "T-1", "camera_condition": "ok", ...},
       "scheduled_time": "2026-01-01T09:00:00Z"}'
```
"""


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    """Map scheduler errors to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "detail": str(exc),
                "missing_fields": exc.missing_fields,
                "invalid_fields": exc.invalid_fields,
            },
        )

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        return _error_response(400, exc)

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, exc: JobNotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(TemplateNotFoundError)
    async def template_not_found_handler(request: Request, exc: TemplateNotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
        return _error_response(409, exc)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        logger.error(f"Store unavailable while handling {request.url.path}: {exc}")
        return _error_response(503, exc)


def create_app(
    service: Optional[SchedulerService] = None,
    settings: Optional[SchedulerSettings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built SchedulerService (tests). The caller keeps ownership:
            it is neither started nor closed by the app.
        settings: Settings used when the service is built here
            (default: load_settings())
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Creates the scheduler service when none was injected, starts the
        poller if SCHEDULER_AUTOSTART is set, and closes it on shutdown.
        """
        owned = service is None
        if owned:
            app_settings = settings or load_settings()
            setup_logging(
                app_settings.log_level, app_settings.log_dir, app_settings.log_retention_days
            )
            app.state.scheduler_service = SchedulerService.create(app_settings)
            if app_settings.autostart:
                app.state.scheduler_service.start()
        else:
            app.state.scheduler_service = service

        yield

        if owned:
            app.state.scheduler_service.close()

    app = FastAPI(
        title="Form Submission Scheduler API",
        lifespan=lifespan,
        description=DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
    )

    register_exception_handlers(app)

    @app.get("/health", response_model=HealthResponse)
    def health_check(svc: SchedulerService = Depends(get_scheduler_service)):
        """Store connectivity and scheduler state. Never raises."""
        health = svc.check_health()
        return HealthResponse(
            status="ok" if health["store"] == "ok" else "degraded",
            **health,
        )

    app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
    app.include_router(scheduler.router, prefix="/scheduler", tags=["scheduler"])
    app.include_router(templates.router, prefix="/templates", tags=["templates"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)

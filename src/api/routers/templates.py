"""
Form templates router.

Templates hold reusable form data. Scheduling from a template copies its
payload into the new job, so later template edits do not touch existing jobs.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from src.scheduler import SchedulerService

from ..dependencies import get_scheduler_service
from ..schemas.jobs import JobResponse
from ..schemas.templates import (
    TemplateCreateRequest,
    TemplateListResponse,
    TemplateResponse,
    TemplateScheduleRequest,
    TemplateUpdateRequest,
)


router = APIRouter()


@router.get("", response_model=TemplateListResponse)
def list_templates(service: SchedulerService = Depends(get_scheduler_service)):
    """Active templates, newest first."""
    templates = service.list_templates()
    return TemplateListResponse(
        templates=[TemplateResponse.from_template(t) for t in templates],
        total=len(templates),
    )


@router.post("", response_model=TemplateResponse, status_code=201)
def create_template(
    request: TemplateCreateRequest,
    service: SchedulerService = Depends(get_scheduler_service),
):
    template = service.create_template(request.name, request.payload)
    return TemplateResponse.from_template(template)


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
):
    template = service.get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
    return TemplateResponse.from_template(template)


@router.put("/{template_id}", response_model=TemplateResponse)
def update_template(
    template_id: str,
    request: TemplateUpdateRequest,
    service: SchedulerService = Depends(get_scheduler_service),
):
    template = service.update_template(
        template_id, name=request.name, payload=request.payload
    )
    return TemplateResponse.from_template(template)


@router.delete("/{template_id}")
def delete_template(
    template_id: str,
    hard: bool = Query(default=False, description="Remove the row instead of deactivating"),
    service: SchedulerService = Depends(get_scheduler_service),
):
    if not service.delete_template(template_id, hard=hard):
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
    return {"template_id": template_id, "success": True}


@router.post("/{template_id}/schedule", response_model=JobResponse, status_code=201)
def schedule_from_template(
    template_id: str,
    request: TemplateScheduleRequest,
    service: SchedulerService = Depends(get_scheduler_service),
):
    job = service.create_job_from_template(
        template_id,
        request.scheduled_time,
        payload_overrides=request.payload_overrides,
    )
    return JobResponse.from_job(job)

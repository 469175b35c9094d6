"""
Form template API schemas.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from src.scheduler import FormTemplate

from .jobs import PAYLOAD_DESCRIPTION


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Display name")
    payload: dict[str, Any] = Field(..., description=PAYLOAD_DESCRIPTION)


class TemplateUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    payload: Optional[dict[str, Any]] = None


class TemplateScheduleRequest(BaseModel):
    """Schedule a job from a template's payload snapshot."""

    scheduled_time: datetime = Field(..., description="When to submit (ISO-8601)")
    payload_overrides: Optional[dict[str, Any]] = Field(
        default=None,
        description="Fields replacing the template values for this job only",
    )


class TemplateResponse(BaseModel):
    template_id: str
    name: str
    payload: dict
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_template(cls, template: FormTemplate) -> "TemplateResponse":
        return cls(
            template_id=template.template_id,
            name=template.name,
            payload=template.payload,
            is_active=template.is_active,
            created_at=template.created_at,
            updated_at=template.updated_at,
        )


class TemplateListResponse(BaseModel):
    templates: List[TemplateResponse] = Field(default_factory=list)
    total: int

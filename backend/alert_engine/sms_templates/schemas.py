"""Template request/response schemas."""

from pydantic import BaseModel, Field

from .models import TemplateCategory


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: TemplateCategory = TemplateCategory.LICENSE_EXPIRY
    body: str = Field(..., min_length=1, max_length=1600)
    is_active: bool = True


class TemplateUpdateRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    category: TemplateCategory | None = None
    body: str | None = Field(None, min_length=1, max_length=1600)
    is_active: bool | None = None


class TemplatePreviewRequest(BaseModel):
    category: TemplateCategory
    body: str = Field(..., min_length=1, max_length=1600)

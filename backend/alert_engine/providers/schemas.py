"""Provider request/response schemas."""

from pydantic import BaseModel, Field


class ProviderCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sender_id: str = Field(..., min_length=1, max_length=20)
    username: str = Field(..., min_length=1, max_length=255)
    api_key: str = Field(..., min_length=1, max_length=500)
    daily_quota: int = Field(100, ge=0, le=100000)
    priority: int = Field(100, ge=0)
    is_test_mode: bool = False
    test_numbers: list[str] = []
    is_active: bool = True


class ProviderUpdateRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    sender_id: str | None = Field(None, min_length=1, max_length=20)
    username: str | None = Field(None, min_length=1, max_length=255)
    api_key: str | None = Field(None, min_length=1, max_length=500)
    daily_quota: int | None = Field(None, ge=0, le=100000)
    priority: int | None = Field(None, ge=0)
    is_test_mode: bool | None = None
    test_numbers: list[str] | None = None
    is_active: bool | None = None


class ProviderTestRequest(BaseModel):
    to: str = Field(..., min_length=1, max_length=32)

"""Schedule request/response schemas."""

from pydantic import BaseModel, Field

from .models import ALL_STATIONS, AlertType


class ScheduleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    alert_type: AlertType = AlertType.LICENSE_EXPIRY
    template_id: str
    trigger_window_days: int | None = Field(None, ge=0, le=3650)
    frequency_days: int | None = Field(None, ge=1, le=365)
    station_filter: str = Field(ALL_STATIONS, min_length=1, max_length=50)
    provider_id: str | None = None
    is_active: bool = True


class ScheduleUpdateRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    alert_type: AlertType | None = None
    template_id: str | None = None
    trigger_window_days: int | None = Field(None, ge=0, le=3650)
    frequency_days: int | None = Field(None, ge=1, le=365)
    station_filter: str | None = Field(None, min_length=1, max_length=50)
    provider_id: str | None = None
    is_active: bool | None = None

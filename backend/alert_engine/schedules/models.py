"""Alert schedule model."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class AlertType(enum.StrEnum):
    LICENSE_EXPIRY = "LicenseExpiry"
    INVENTORY_LOW = "InventoryLow"
    SYSTEM_NOTICE = "SystemNotice"


class ScheduleStatus(enum.StrEnum):
    ACTIVE = "Active"
    PAUSED = "Paused"
    DUE = "Due"


ALL_STATIONS = "ALL"


class AlertSchedule(Base):
    """A recurring rule pairing a trigger condition, a template and an audience."""

    __tablename__ = "alert_schedules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    alert_type = Column(
        SQLEnum(AlertType, values_callable=lambda e: [c.value for c in e]),
        nullable=False,
    )
    trigger_window_days = Column(Integer, nullable=False, default=30)
    frequency_days = Column(Integer, nullable=False, default=7)
    template_id = Column(UUID(as_uuid=True), ForeignKey("message_templates.id"), nullable=False)
    provider_id = Column(
        UUID(as_uuid=True),
        ForeignKey("provider_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )  # preferred provider, falls back to priority order
    station_filter = Column(String(50), nullable=False, default=ALL_STATIONS)
    is_active = Column(Boolean, default=True, index=True)
    last_run = Column(DateTime(timezone=True), nullable=True)
    next_run = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

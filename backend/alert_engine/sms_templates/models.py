"""SMS message template model and categories."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class TemplateCategory(enum.StrEnum):
    LICENSE_EXPIRY = "License Expiry"
    INVENTORY_ALERT = "Inventory Alert"
    PAYMENT_REMINDER = "Payment Reminder"
    DELIVERY_NOTIFICATION = "Delivery Notification"
    EMERGENCY_ALERT = "Emergency Alert"
    GENERAL_NOTIFICATION = "General Notification"


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    category = Column(
        SQLEnum(TemplateCategory, values_callable=lambda e: [c.value for c in e]),
        nullable=False,
    )
    body = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

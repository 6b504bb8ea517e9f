"""Delivery history model. Rows are append-only."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class DeliveryStatus(enum.StrEnum):
    SENT = "Sent"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class DeliveryRecord(Base):
    """One delivery decision for (schedule, entity, recipient).

    Ad-hoc sends have no schedule and carry a label such as ``custom`` or
    ``provider_test`` in ``entity_id``.
    """

    __tablename__ = "delivery_records"
    __table_args__ = (Index("ix_delivery_records_schedule_entity_created", "schedule_id", "entity_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    schedule_id = Column(UUID(as_uuid=True), ForeignKey("alert_schedules.id"), nullable=True)  # None for ad-hoc sends
    entity_id = Column(String(100), nullable=False)
    recipient = Column(String(32), default="")
    rendered_body = Column(Text, default="")
    segment_count = Column(Integer, default=0)
    provider_id = Column(UUID(as_uuid=True), ForeignKey("provider_accounts.id"), nullable=True, index=True)
    provider_message_id = Column(String(100), default="")
    status = Column(
        SQLEnum(DeliveryStatus, values_callable=lambda e: [c.value for c in e]),
        nullable=False,
        index=True,
    )
    error_kind = Column(String(50), nullable=True)
    error_detail = Column(Text, default="")
    cost = Column(Float, default=0.0)
    attempts = Column(Integer, default=0)  # network attempts, each one consumed quota
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )


@event.listens_for(DeliveryRecord, "before_update")
def _reject_update(mapper, connection, target) -> None:
    raise ValueError(f"DeliveryRecord {target.id} is immutable")

"""SMS provider account model."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class ProviderAccount(Base):
    """An outbound sending identity with its own daily quota."""

    __tablename__ = "provider_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    sender_id = Column(String(20), nullable=False)  # from-number or alphanumeric sender
    username = Column(String(255), nullable=False)
    credentials = Column(Text, nullable=False)  # Fernet-encrypted API key
    is_test_mode = Column(Boolean, default=False)
    test_numbers = Column(JSON, default=list)  # E.164 allow-list used in test mode
    daily_quota = Column(Integer, nullable=False, default=100)
    used_today = Column(Integer, nullable=False, default=0)
    quota_window_started_at = Column(DateTime(timezone=True), nullable=True)
    priority = Column(Integer, nullable=False, default=100)  # lower is preferred
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

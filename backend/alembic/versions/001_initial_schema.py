"""Initial schema: message templates, provider accounts, alert schedules.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TEMPLATE_CATEGORIES = (
    "License Expiry",
    "Inventory Alert",
    "Payment Reminder",
    "Delivery Notification",
    "Emergency Alert",
    "General Notification",
)
ALERT_TYPES = ("LicenseExpiry", "InventoryLow", "SystemNotice")


def upgrade() -> None:
    op.create_table(
        "message_templates",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.Enum(*TEMPLATE_CATEGORIES, name="templatecategory"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "provider_accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("sender_id", sa.String(20), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("credentials", sa.Text(), nullable=False),
        sa.Column("is_test_mode", sa.Boolean(), server_default=sa.false()),
        sa.Column("test_numbers", sa.JSON(), nullable=True),
        sa.Column("daily_quota", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("used_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quota_window_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "alert_schedules",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("alert_type", sa.Enum(*ALERT_TYPES, name="alerttype"), nullable=False),
        sa.Column("trigger_window_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("frequency_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("template_id", UUID(as_uuid=True), sa.ForeignKey("message_templates.id"), nullable=False),
        sa.Column(
            "provider_id", UUID(as_uuid=True), sa.ForeignKey("provider_accounts.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("station_filter", sa.String(50), nullable=False, server_default="ALL"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("frequency_days >= 1", name="ck_alert_schedules_frequency"),
    )
    op.create_index("ix_alert_schedules_is_active", "alert_schedules", ["is_active"])
    op.create_index("ix_alert_schedules_next_run", "alert_schedules", ["next_run"])


def downgrade() -> None:
    op.drop_index("ix_alert_schedules_next_run", table_name="alert_schedules")
    op.drop_index("ix_alert_schedules_is_active", table_name="alert_schedules")
    op.drop_table("alert_schedules")
    op.drop_table("provider_accounts")
    op.drop_table("message_templates")
    sa.Enum(name="alerttype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="templatecategory").drop(op.get_bind(), checkfirst=True)

"""Add delivery_records ledger and audit_logs tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "delivery_records",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("schedule_id", UUID(as_uuid=True), sa.ForeignKey("alert_schedules.id"), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("recipient", sa.String(32), server_default=""),
        sa.Column("rendered_body", sa.Text(), server_default=""),
        sa.Column("segment_count", sa.Integer(), server_default="0"),
        sa.Column("provider_id", UUID(as_uuid=True), sa.ForeignKey("provider_accounts.id"), nullable=True),
        sa.Column("provider_message_id", sa.String(100), server_default=""),
        sa.Column("status", sa.Enum("Sent", "Failed", "Skipped", name="deliverystatus"), nullable=False),
        sa.Column("error_kind", sa.String(50), nullable=True),
        sa.Column("error_detail", sa.Text(), server_default=""),
        sa.Column("cost", sa.Float(), server_default="0"),
        sa.Column("attempts", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_delivery_records_schedule_entity_created",
        "delivery_records",
        ["schedule_id", "entity_id", "created_at"],
    )
    op.create_index("ix_delivery_records_status", "delivery_records", ["status"])
    op.create_index("ix_delivery_records_provider_id", "delivery_records", ["provider_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("detail", sa.Text(), server_default=""),
        sa.Column("ip_address", sa.String(45), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("delivery_records")
    sa.Enum(name="deliverystatus").drop(op.get_bind(), checkfirst=True)

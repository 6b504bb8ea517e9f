"""Allow delivery records without a schedule for test and ad-hoc sends.

Revision ID: 003
Revises: 002
Create Date: 2026-10-16
"""

from collections.abc import Sequence

from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "003"
down_revision: str | None = "002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    with op.batch_alter_table("delivery_records") as batch:
        batch.alter_column("schedule_id", existing_type=UUID(as_uuid=True), nullable=True)


def downgrade() -> None:
    op.execute("DELETE FROM delivery_records WHERE schedule_id IS NULL")
    with op.batch_alter_table("delivery_records") as batch:
        batch.alter_column("schedule_id", existing_type=UUID(as_uuid=True), nullable=False)

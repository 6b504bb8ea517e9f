"""Delivery history ledger.

The ledger is the audit source of truth: every decision a run makes is
recorded, including Failed and Skipped outcomes. ``already_alerted`` is the
only idempotency guard and looks at Sent rows exclusively.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database.base import to_uuid
from ..timeutils import ensure_utc
from .models import DeliveryRecord, DeliveryStatus

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 500


@dataclass
class HistoryFilters:
    schedule_id: UUID | None = None
    entity_id: str | None = None
    status: DeliveryStatus | None = None
    recipient: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = 100
    offset: int = 0


class HistoryLedger:
    def __init__(self, db: Session) -> None:
        self.db = db

    def already_alerted(self, schedule_id: UUID, entity_id: str, since: datetime) -> bool:
        """True iff a Sent record exists for the pair strictly after ``since``.

        An entity alerted at T is eligible again at exactly T + frequency_days.
        """
        hit = (
            self.db.query(DeliveryRecord.id)
            .filter(
                DeliveryRecord.schedule_id == schedule_id,
                DeliveryRecord.entity_id == str(entity_id),
                DeliveryRecord.status == DeliveryStatus.SENT,
                DeliveryRecord.created_at > ensure_utc(since),
            )
            .first()
        )
        return hit is not None

    def record(
        self,
        schedule_id: UUID | None,
        entity_id: str,
        status: DeliveryStatus,
        *,
        recipient: str = "",
        rendered_body: str = "",
        segment_count: int = 0,
        provider_id: UUID | None = None,
        provider_message_id: str = "",
        error_kind: str | None = None,
        error_detail: str = "",
        cost: float = 0.0,
        attempts: int = 0,
        created_at: datetime | None = None,
    ) -> DeliveryRecord:
        """Append one record. The caller commits."""
        entry = DeliveryRecord(
            schedule_id=schedule_id,
            entity_id=str(entity_id),
            recipient=recipient[:32],
            rendered_body=rendered_body,
            segment_count=segment_count,
            provider_id=provider_id,
            provider_message_id=provider_message_id,
            status=status,
            error_kind=error_kind,
            error_detail=error_detail[:2000],
            cost=cost,
            attempts=attempts,
        )
        if created_at is not None:
            entry.created_at = created_at
        self.db.add(entry)
        self.db.flush()
        logger.debug(
            "Ledger: schedule=%s entity=%s recipient=%s status=%s kind=%s",
            schedule_id, entity_id, recipient, status, error_kind,
        )
        return entry


def list_history(db: Session, filters: HistoryFilters | None = None) -> list[DeliveryRecord]:
    """Delivery records, newest first."""
    f = filters or HistoryFilters()
    query = db.query(DeliveryRecord)
    if f.schedule_id:
        query = query.filter(DeliveryRecord.schedule_id == f.schedule_id)
    if f.entity_id:
        query = query.filter(DeliveryRecord.entity_id == str(f.entity_id))
    if f.status:
        query = query.filter(DeliveryRecord.status == DeliveryStatus(f.status))
    if f.recipient:
        query = query.filter(DeliveryRecord.recipient == f.recipient)
    if f.since:
        query = query.filter(DeliveryRecord.created_at >= ensure_utc(f.since))
    if f.until:
        query = query.filter(DeliveryRecord.created_at < ensure_utc(f.until))
    limit = max(1, min(f.limit, MAX_HISTORY_LIMIT))
    return (
        query.order_by(DeliveryRecord.created_at.desc())
        .offset(max(0, f.offset))
        .limit(limit)
        .all()
    )


def summarize_history(db: Session, schedule_id: UUID | None = None, since: datetime | None = None) -> dict:
    """Counts per status plus total cost, for dashboards."""
    query = db.query(DeliveryRecord.status, func.count(DeliveryRecord.id), func.coalesce(func.sum(DeliveryRecord.cost), 0.0))
    if schedule_id:
        query = query.filter(DeliveryRecord.schedule_id == schedule_id)
    if since:
        query = query.filter(DeliveryRecord.created_at >= ensure_utc(since))
    summary = {status.value: 0 for status in DeliveryStatus}
    total_cost = 0.0
    for status, count, cost in query.group_by(DeliveryRecord.status).all():
        summary[DeliveryStatus(status).value] = count
        total_cost += float(cost or 0)
    summary["total"] = sum(summary[s.value] for s in DeliveryStatus)
    summary["total_cost"] = round(total_cost, 4)
    return summary


def record_to_dict(r: DeliveryRecord) -> dict:
    return {
        "id": str(r.id),
        "schedule_id": str(r.schedule_id) if r.schedule_id else None,
        "entity_id": r.entity_id,
        "recipient": r.recipient,
        "rendered_body": r.rendered_body,
        "segment_count": r.segment_count,
        "provider_id": str(r.provider_id) if r.provider_id else None,
        "provider_message_id": r.provider_message_id,
        "status": str(r.status),
        "error_kind": r.error_kind,
        "error_detail": r.error_detail,
        "cost": r.cost,
        "attempts": r.attempts,
        "created_at": ensure_utc(r.created_at).isoformat() if r.created_at else None,
    }


def get_record(db: Session, record_id: str | UUID | None) -> DeliveryRecord | None:
    uid = to_uuid(record_id)
    if uid is None:
        return None
    return db.get(DeliveryRecord, uid)

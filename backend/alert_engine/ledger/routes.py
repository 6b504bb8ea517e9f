"""Delivery history, ad-hoc message and audit trail routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit, get_recent_audit_logs
from ..config import settings
from ..database.base import get_db, to_uuid
from ..dependencies import get_delivery_client, get_runner
from ..errors import DeliveryError
from ..providers.client import SmsDeliveryClient
from ..providers.service import get_provider_by_id
from ..rate_limit import limiter
from ..schedules.runner import ScheduleRunner
from ..timeutils import ensure_utc
from .models import DeliveryStatus
from .schemas import MessageSendRequest
from .service import HistoryFilters, get_record, list_history, record_to_dict, summarize_history

router = APIRouter(tags=["history"])


@router.get("/history")
def history_route(
    schedule_id: str | None = None,
    entity_id: str | None = None,
    status: DeliveryStatus | None = None,
    recipient: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    if schedule_id and to_uuid(schedule_id) is None:
        return JSONResponse({"error": "Invalid schedule_id"}, status_code=400)
    filters = HistoryFilters(
        schedule_id=to_uuid(schedule_id),
        entity_id=entity_id,
        status=status,
        recipient=recipient,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return JSONResponse({"records": [record_to_dict(r) for r in list_history(db, filters)]})


@router.get("/history/summary")
def history_summary_route(
    schedule_id: str | None = None,
    since: datetime | None = None,
    db: Session = Depends(get_db),
):
    return JSONResponse(summarize_history(db, schedule_id=to_uuid(schedule_id), since=since))


@router.get("/history/{record_id}/delivery-status")
def delivery_status_route(
    record_id: str,
    db: Session = Depends(get_db),
    client: SmsDeliveryClient = Depends(get_delivery_client),
):
    """Ask the gateway whether a Sent message reached the handset."""
    record = get_record(db, record_id)
    if not record:
        return JSONResponse({"error": "Delivery record not found"}, status_code=404)
    if record.status != DeliveryStatus.SENT or not record.provider_message_id:
        return JSONResponse({"error": "Only sent messages have a delivery status"}, status_code=400)
    provider = get_provider_by_id(db, record.provider_id)
    if not provider:
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    try:
        result = client.delivery_status(provider, record.provider_message_id)
    except DeliveryError as exc:
        return JSONResponse({"error": exc.message, "kind": exc.kind}, status_code=502)
    return JSONResponse({"record_id": str(record.id), **result})


@router.post("/messages")
@limiter.limit(settings.rate_limit_run)
def send_message_route(
    request: Request,
    payload: MessageSendRequest,
    db: Session = Depends(get_db),
    runner: ScheduleRunner = Depends(get_runner),
):
    """Send an operator-written message. Delivery failures come back as a Failed record."""
    if payload.provider_id and to_uuid(payload.provider_id) is None:
        return JSONResponse({"error": "Invalid provider_id"}, status_code=400)
    record = runner.send_message(payload.to, payload.body, provider_id=payload.provider_id)
    audit(db, request, "message_send", f"record={record['id']}, status={record['status']}")
    db.commit()
    return JSONResponse({"ok": record["status"] == DeliveryStatus.SENT.value, "record": record})


@router.get("/audit")
def audit_route(action: str | None = None, limit: int = 100, db: Session = Depends(get_db)):
    logs = get_recent_audit_logs(db, action=action, limit=max(1, min(limit, 500)))
    return JSONResponse(
        {
            "logs": [
                {
                    "id": str(log.id),
                    "action": log.action,
                    "detail": log.detail,
                    "ip_address": log.ip_address,
                    "created_at": ensure_utc(log.created_at).isoformat() if log.created_at else None,
                }
                for log in logs
            ]
        }
    )

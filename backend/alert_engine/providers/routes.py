"""Provider account routes. Credentials are write-only and never returned."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..config import settings
from ..database.base import get_db
from ..dependencies import get_delivery_client, get_runner
from ..errors import DeliveryError, InvalidRecipientError
from ..ledger.models import DeliveryStatus
from ..rate_limit import limiter
from ..schedules.runner import ScheduleRunner
from .client import SmsDeliveryClient
from .models import ProviderAccount
from .schemas import ProviderCreateRequest, ProviderTestRequest, ProviderUpdateRequest
from .service import create_provider, get_provider_by_id, list_providers, update_provider, usage

router = APIRouter(prefix="/providers", tags=["providers"])

TEST_MESSAGE = "SMS alert engine test from {name}. If you received this, delivery through this account works."


def _provider_dict(p: ProviderAccount) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "sender_id": p.sender_id,
        "username": p.username,
        "is_test_mode": bool(p.is_test_mode),
        "test_numbers": list(p.test_numbers or []),
        "daily_quota": p.daily_quota,
        "priority": p.priority,
        "is_active": bool(p.is_active),
        "usage": usage(p),
    }


@router.get("")
def list_providers_route(active_only: bool = False, db: Session = Depends(get_db)):
    return JSONResponse({"providers": [_provider_dict(p) for p in list_providers(db, active_only)]})


@router.post("")
def create_provider_route(
    request: Request,
    payload: ProviderCreateRequest,
    db: Session = Depends(get_db),
):
    try:
        provider = create_provider(
            db,
            payload.name,
            payload.sender_id,
            payload.username,
            payload.api_key,
            daily_quota=payload.daily_quota,
            priority=payload.priority,
            is_test_mode=payload.is_test_mode,
            test_numbers=payload.test_numbers,
            is_active=payload.is_active,
        )
    except InvalidRecipientError as exc:
        db.rollback()
        return JSONResponse({"error": exc.message}, status_code=400)
    audit(db, request, "provider_create", f"provider={provider.id}, name={provider.name}")
    db.commit()
    return JSONResponse({"ok": True, "provider": _provider_dict(provider)}, status_code=201)


@router.get("/{provider_id}")
def get_provider_route(provider_id: str, db: Session = Depends(get_db)):
    provider = get_provider_by_id(db, provider_id)
    if not provider:
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    return JSONResponse(_provider_dict(provider))


@router.put("/{provider_id}")
def update_provider_route(
    request: Request,
    provider_id: str,
    payload: ProviderUpdateRequest,
    db: Session = Depends(get_db),
):
    provider = get_provider_by_id(db, provider_id)
    if not provider:
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    try:
        update_provider(db, provider, **payload.model_dump(exclude_unset=True))
    except InvalidRecipientError as exc:
        db.rollback()
        return JSONResponse({"error": exc.message}, status_code=400)
    audit(db, request, "provider_update", f"provider={provider_id}")
    db.commit()
    return JSONResponse({"ok": True, "provider": _provider_dict(provider)})


@router.get("/{provider_id}/usage")
def provider_usage_route(provider_id: str, db: Session = Depends(get_db)):
    provider = get_provider_by_id(db, provider_id)
    if not provider:
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    return JSONResponse(usage(provider))


@router.post("/{provider_id}/check")
def check_provider_route(
    request: Request,
    provider_id: str,
    db: Session = Depends(get_db),
    client: SmsDeliveryClient = Depends(get_delivery_client),
):
    """Verify credentials against the gateway and report the account balance."""
    provider = get_provider_by_id(db, provider_id)
    if not provider:
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    try:
        result = client.check_account(provider)
    except DeliveryError as exc:
        return JSONResponse({"ok": False, "error": exc.message, "kind": exc.kind}, status_code=502)
    audit(db, request, "provider_check", f"provider={provider_id}")
    db.commit()
    return JSONResponse(result)


@router.post("/{provider_id}/test")
@limiter.limit(settings.rate_limit_run)
def test_provider_route(
    request: Request,
    provider_id: str,
    payload: ProviderTestRequest,
    db: Session = Depends(get_db),
    runner: ScheduleRunner = Depends(get_runner),
):
    """Send a fixed test message through exactly this provider. Consumes quota like any send."""
    provider = get_provider_by_id(db, provider_id)
    if not provider:
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    body = TEST_MESSAGE.format(name=provider.name)
    record = runner.send_message(payload.to, body, provider_id=provider.id, label="provider_test")
    audit(db, request, "provider_test", f"provider={provider_id}, status={record['status']}")
    db.commit()
    return JSONResponse({"ok": record["status"] == DeliveryStatus.SENT.value, "record": record})

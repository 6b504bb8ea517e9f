"""Alert schedule routes: CRUD, toggle, status, manual run and immediate single-entity alerts."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..config import settings
from ..database.base import get_db
from ..dependencies import get_runner
from ..errors import ScheduleValidationError
from ..ledger.service import summarize_history
from ..rate_limit import limiter
from ..timeutils import ensure_utc
from .models import AlertSchedule
from .runner import ScheduleRunner
from .schemas import ScheduleCreateRequest, ScheduleUpdateRequest
from .service import (
    create_schedule,
    delete_schedule,
    get_schedule_by_id,
    list_schedules,
    require_schedule,
    schedule_status,
    toggle_schedule,
    update_schedule,
)

router = APIRouter(prefix="/schedules", tags=["schedules"])


def _iso(value) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def _schedule_dict(s: AlertSchedule) -> dict:
    return {
        "id": str(s.id),
        "name": s.name,
        "alert_type": str(s.alert_type),
        "trigger_window_days": s.trigger_window_days,
        "frequency_days": s.frequency_days,
        "template_id": str(s.template_id),
        "provider_id": str(s.provider_id) if s.provider_id else None,
        "station_filter": s.station_filter,
        "is_active": bool(s.is_active),
        "status": str(schedule_status(s)),
        "last_run": _iso(s.last_run),
        "next_run": _iso(s.next_run),
    }


@router.get("")
def list_schedules_route(active_only: bool = False, db: Session = Depends(get_db)):
    return JSONResponse({"schedules": [_schedule_dict(s) for s in list_schedules(db, active_only)]})


@router.post("")
def create_schedule_route(
    request: Request,
    payload: ScheduleCreateRequest,
    db: Session = Depends(get_db),
):
    try:
        schedule = create_schedule(
            db,
            payload.name,
            payload.alert_type,
            payload.template_id,
            trigger_window_days=payload.trigger_window_days,
            frequency_days=payload.frequency_days,
            station_filter=payload.station_filter,
            provider_id=payload.provider_id,
            is_active=payload.is_active,
        )
    except ScheduleValidationError as exc:
        db.rollback()
        return JSONResponse({"error": exc.message}, status_code=400)
    audit(db, request, "schedule_create", f"schedule={schedule.id}, name={schedule.name}")
    db.commit()
    return JSONResponse({"ok": True, "schedule": _schedule_dict(schedule)}, status_code=201)


@router.get("/{schedule_id}")
def get_schedule_route(schedule_id: str, db: Session = Depends(get_db)):
    schedule = get_schedule_by_id(db, schedule_id)
    if not schedule:
        return JSONResponse({"error": "Schedule not found"}, status_code=404)
    data = _schedule_dict(schedule)
    data["history"] = summarize_history(db, schedule_id=schedule.id)
    return JSONResponse(data)


@router.put("/{schedule_id}")
def update_schedule_route(
    request: Request,
    schedule_id: str,
    payload: ScheduleUpdateRequest,
    db: Session = Depends(get_db),
):
    schedule = get_schedule_by_id(db, schedule_id)
    if not schedule:
        return JSONResponse({"error": "Schedule not found"}, status_code=404)
    try:
        update_schedule(db, schedule, **payload.model_dump(exclude_unset=True))
    except ScheduleValidationError as exc:
        db.rollback()
        return JSONResponse({"error": exc.message}, status_code=400)
    audit(db, request, "schedule_update", f"schedule={schedule_id}")
    db.commit()
    return JSONResponse({"ok": True, "schedule": _schedule_dict(schedule)})


@router.delete("/{schedule_id}")
def delete_schedule_route(request: Request, schedule_id: str, db: Session = Depends(get_db)):
    schedule = get_schedule_by_id(db, schedule_id)
    if not schedule:
        return JSONResponse({"error": "Schedule not found"}, status_code=404)
    deleted = delete_schedule(db, schedule)
    audit(db, request, "schedule_delete", f"schedule={schedule_id}, hard={deleted}")
    db.commit()
    return JSONResponse({"ok": True, "deleted": deleted, "disabled": not deleted})


@router.post("/{schedule_id}/toggle")
def toggle_schedule_route(request: Request, schedule_id: str, db: Session = Depends(get_db)):
    schedule = get_schedule_by_id(db, schedule_id)
    if not schedule:
        return JSONResponse({"error": "Schedule not found"}, status_code=404)
    toggle_schedule(db, schedule)
    audit(db, request, "schedule_toggle", f"schedule={schedule_id}, active={schedule.is_active}")
    db.commit()
    return JSONResponse({"ok": True, "schedule": _schedule_dict(schedule)})


@router.get("/{schedule_id}/status")
def schedule_status_route(schedule_id: str, db: Session = Depends(get_db)):
    schedule = require_schedule(db, schedule_id)
    return JSONResponse({"id": str(schedule.id), "status": str(schedule_status(schedule))})


@router.post("/{schedule_id}/run")
@limiter.limit(settings.rate_limit_run)
def run_schedule_route(
    request: Request,
    schedule_id: str,
    db: Session = Depends(get_db),
    runner: ScheduleRunner = Depends(get_runner),
):
    require_schedule(db, schedule_id)
    summary = runner.run_schedule(schedule_id, force=True)
    audit(
        db, request, "schedule_run",
        f"schedule={schedule_id}, sent={summary.sent}, failed={summary.failed}, coalesced={summary.coalesced}",
    )
    db.commit()
    return JSONResponse(summary.to_dict())


@router.post("/{schedule_id}/entities/{entity_id}/run")
@limiter.limit(settings.rate_limit_run)
def run_entity_route(
    request: Request,
    schedule_id: str,
    entity_id: str,
    db: Session = Depends(get_db),
    runner: ScheduleRunner = Depends(get_runner),
):
    """Immediate alert for a single entity, outside the schedule's cadence."""
    require_schedule(db, schedule_id)
    summary = runner.run_entity(schedule_id, entity_id)
    audit(
        db, request, "entity_alert",
        f"schedule={schedule_id}, entity={entity_id}, sent={summary.sent}, failed={summary.failed}",
    )
    db.commit()
    return JSONResponse(summary.to_dict())

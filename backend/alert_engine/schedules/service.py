"""Schedule persistence, validation and clock helpers."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import to_uuid
from ..errors import ScheduleNotFoundError, ScheduleValidationError
from ..ledger.models import DeliveryRecord
from ..providers.models import ProviderAccount
from ..sms_templates.models import MessageTemplate, TemplateCategory
from ..timeutils import ensure_utc, utcnow
from .models import ALL_STATIONS, AlertSchedule, AlertType, ScheduleStatus

logger = logging.getLogger(__name__)

COMPATIBLE_CATEGORIES: dict[AlertType, frozenset[TemplateCategory]] = {
    AlertType.LICENSE_EXPIRY: frozenset({TemplateCategory.LICENSE_EXPIRY}),
    AlertType.INVENTORY_LOW: frozenset({TemplateCategory.INVENTORY_ALERT}),
    AlertType.SYSTEM_NOTICE: frozenset(
        {
            TemplateCategory.EMERGENCY_ALERT,
            TemplateCategory.GENERAL_NOTIFICATION,
            TemplateCategory.PAYMENT_REMINDER,
            TemplateCategory.DELIVERY_NOTIFICATION,
        }
    ),
}


# ── Clock ──────────────────────────────────────────────────────────────


def schedule_status(schedule: AlertSchedule, now: datetime | None = None) -> ScheduleStatus:
    """Paused, Due (next_run reached) or Active. Due is derived, never stored."""
    if not schedule.is_active:
        return ScheduleStatus.PAUSED
    now = now or utcnow()
    if ensure_utc(schedule.next_run) <= now:
        return ScheduleStatus.DUE
    return ScheduleStatus.ACTIVE


def is_due(schedule: AlertSchedule, now: datetime) -> bool:
    return schedule_status(schedule, now) is ScheduleStatus.DUE


def advance_clock(schedule: AlertSchedule, now: datetime) -> None:
    schedule.last_run = now
    schedule.next_run = now + timedelta(days=schedule.frequency_days)


def due_schedule_ids(db: Session, now: datetime) -> list[UUID]:
    rows = (
        db.query(AlertSchedule.id)
        .filter(AlertSchedule.is_active == True, AlertSchedule.next_run <= now)  # noqa: E712
        .order_by(AlertSchedule.next_run.asc())
        .all()
    )
    return [row.id for row in rows]


# ── Validation ─────────────────────────────────────────────────────────


def _validate_bounds(trigger_window_days: int, frequency_days: int) -> None:
    if frequency_days < 1:
        raise ScheduleValidationError("frequency_days must be at least 1")
    if trigger_window_days < 0:
        raise ScheduleValidationError("trigger_window_days must not be negative")


def _resolve_template(db: Session, alert_type: AlertType, template_id: str | UUID | None) -> MessageTemplate:
    template = db.get(MessageTemplate, to_uuid(template_id)) if to_uuid(template_id) else None
    if template is None:
        raise ScheduleValidationError(f"Template {template_id} not found")
    if TemplateCategory(template.category) not in COMPATIBLE_CATEGORIES[alert_type]:
        raise ScheduleValidationError(
            f"Template category {template.category} cannot be used for {alert_type} schedules"
        )
    return template


def _resolve_provider(db: Session, provider_id: str | UUID | None) -> UUID | None:
    if not provider_id:
        return None
    uid = to_uuid(provider_id)
    if uid is None or db.get(ProviderAccount, uid) is None:
        raise ScheduleValidationError(f"Provider {provider_id} not found")
    return uid


# ── Persistence ────────────────────────────────────────────────────────


def create_schedule(
    db: Session,
    name: str,
    alert_type: AlertType | str,
    template_id: str | UUID,
    trigger_window_days: int | None = None,
    frequency_days: int | None = None,
    station_filter: str = ALL_STATIONS,
    provider_id: str | UUID | None = None,
    is_active: bool = True,
    now: datetime | None = None,
) -> AlertSchedule:
    """Create a schedule. The first run is due one frequency period from now."""
    alert_type = AlertType(alert_type)
    window = settings.default_trigger_window_days if trigger_window_days is None else trigger_window_days
    frequency = settings.default_frequency_days if frequency_days is None else frequency_days
    _validate_bounds(window, frequency)
    template = _resolve_template(db, alert_type, template_id)
    now = now or utcnow()

    schedule = AlertSchedule(
        name=name,
        alert_type=alert_type,
        trigger_window_days=window,
        frequency_days=frequency,
        template_id=template.id,
        provider_id=_resolve_provider(db, provider_id),
        station_filter=(station_filter or ALL_STATIONS).strip(),
        is_active=is_active,
        last_run=None,
        next_run=now + timedelta(days=frequency),
    )
    db.add(schedule)
    db.flush()
    logger.info(
        "Schedule created: %s (%s, station=%s, window=%dd, every %dd)",
        name, alert_type, schedule.station_filter, window, frequency,
    )
    return schedule


def update_schedule(db: Session, schedule: AlertSchedule, **changes) -> AlertSchedule:
    """Apply non-None changes and re-validate.

    A new frequency re-anchors ``next_run`` on ``last_run`` so the clock
    invariant keeps holding.
    """
    changes = {k: v for k, v in changes.items() if v is not None}
    alert_type = AlertType(changes.get("alert_type", schedule.alert_type))
    window = changes.get("trigger_window_days", schedule.trigger_window_days)
    frequency = changes.get("frequency_days", schedule.frequency_days)
    _validate_bounds(window, frequency)
    template = _resolve_template(db, alert_type, changes.get("template_id", schedule.template_id))

    if "provider_id" in changes:
        schedule.provider_id = _resolve_provider(db, changes["provider_id"])
    if "name" in changes:
        schedule.name = changes["name"]
    if "station_filter" in changes:
        schedule.station_filter = changes["station_filter"].strip() or ALL_STATIONS
    if "is_active" in changes:
        schedule.is_active = changes["is_active"]

    frequency_changed = frequency != schedule.frequency_days
    schedule.alert_type = alert_type
    schedule.template_id = template.id
    schedule.trigger_window_days = window
    schedule.frequency_days = frequency
    if frequency_changed and schedule.last_run is not None:
        schedule.next_run = ensure_utc(schedule.last_run) + timedelta(days=frequency)
    db.flush()
    return schedule


def toggle_schedule(db: Session, schedule: AlertSchedule) -> AlertSchedule:
    schedule.is_active = not schedule.is_active
    db.flush()
    logger.info("Schedule %s %s", schedule.id, "resumed" if schedule.is_active else "paused")
    return schedule


def delete_schedule(db: Session, schedule: AlertSchedule) -> bool:
    """Hard-delete a schedule without history, otherwise only disable it.

    Returns True when the row was removed.
    """
    has_history = db.query(DeliveryRecord.id).filter(DeliveryRecord.schedule_id == schedule.id).first() is not None
    if has_history:
        schedule.is_active = False
        db.flush()
        logger.info("Schedule %s has delivery history, disabled instead of deleted", schedule.id)
        return False
    db.delete(schedule)
    db.flush()
    return True


def get_schedule_by_id(db: Session, schedule_id: str | UUID | None) -> AlertSchedule | None:
    uid = to_uuid(schedule_id)
    if uid is None:
        return None
    return db.get(AlertSchedule, uid)


def require_schedule(db: Session, schedule_id: str | UUID | None) -> AlertSchedule:
    schedule = get_schedule_by_id(db, schedule_id)
    if schedule is None:
        raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
    return schedule


def get_schedule_status(db: Session, schedule_id: str | UUID, now: datetime | None = None) -> ScheduleStatus:
    return schedule_status(require_schedule(db, schedule_id), now)


def list_schedules(db: Session, active_only: bool = False) -> list[AlertSchedule]:
    query = db.query(AlertSchedule)
    if active_only:
        query = query.filter(AlertSchedule.is_active == True)  # noqa: E712
    return query.order_by(AlertSchedule.next_run.asc(), AlertSchedule.name.asc()).all()

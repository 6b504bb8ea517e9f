"""Template engine: placeholder registry, save-time validation, rendering.

Bodies use ``{placeholder}`` tokens. Each category recognizes a fixed set of
placeholders; anything else is rejected when the template is saved, and any
recognized placeholder without a value fails the render instead of leaking a
literal ``{token}`` into an SMS.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from ..database.base import to_uuid
from ..errors import TemplateInUseError, TemplateRenderError, TemplateValidationError
from ..schedules.models import AlertSchedule, AlertType
from ..schedules.service import COMPATIBLE_CATEGORIES
from .models import MessageTemplate, TemplateCategory

logger = logging.getLogger(__name__)

SEGMENT_LENGTH = 160  # GSM 7-bit single-part SMS

_PLACEHOLDER_RE = re.compile(r"\{([^{}\s]+)\}")
_BRACED_RE = re.compile(r"\{[^{}]*\}")

PLACEHOLDERS: dict[TemplateCategory, frozenset[str]] = {
    TemplateCategory.LICENSE_EXPIRY: frozenset(
        {"license_name", "license_number", "station", "expiry_date", "days_remaining", "category", "renewal_url"}
    ),
    TemplateCategory.INVENTORY_ALERT: frozenset(
        {"product_name", "station", "current_stock", "minimum_stock", "reorder_date"}
    ),
    TemplateCategory.PAYMENT_REMINDER: frozenset(
        {"vendor_name", "amount", "due_date", "invoice_number", "days_overdue"}
    ),
    TemplateCategory.DELIVERY_NOTIFICATION: frozenset(
        {"delivery_date", "station", "product_type", "quantity", "bol_number"}
    ),
    TemplateCategory.EMERGENCY_ALERT: frozenset(
        {"alert_type", "station", "timestamp", "contact_info", "action_required"}
    ),
    TemplateCategory.GENERAL_NOTIFICATION: frozenset(
        {"recipient_name", "station", "date", "message_details", "contact_info"}
    ),
}

# Values used by the template preview
SAMPLE_VALUES: dict[str, str] = {
    "license_name": "Business License",
    "license_number": "BL-2024-001",
    "station": "MOBIL",
    "expiry_date": "2024-12-31",
    "days_remaining": "15",
    "category": "Business",
    "renewal_url": "https://example.com/renew",
    "product_name": "Regular Gas",
    "current_stock": "150",
    "minimum_stock": "500",
    "reorder_date": "2024-03-15",
    "vendor_name": "ABC Suppliers",
    "amount": "$1,250.00",
    "due_date": "2024-03-20",
    "invoice_number": "INV-2024-001",
    "days_overdue": "5",
    "delivery_date": "2024-03-10",
    "product_type": "Fuel Delivery",
    "quantity": "5000 gallons",
    "bol_number": "BOL-2024-001",
    "alert_type": "Equipment Failure",
    "timestamp": "2024-03-10 14:30",
    "contact_info": "+1-555-0123",
    "action_required": "Immediate attention required",
    "recipient_name": "John Doe",
    "date": "2024-03-10",
    "message_details": "Monthly report available",
}


@dataclass(frozen=True)
class RenderedMessage:
    body: str
    segment_count: int


def extract_placeholders(body: str) -> list[str]:
    """Return placeholder names in order of first appearance."""
    seen: list[str] = []
    for name in _PLACEHOLDER_RE.findall(body or ""):
        if name not in seen:
            seen.append(name)
    return seen


def malformed_tokens(body: str) -> list[str]:
    """Brace sequences that are not well-formed placeholders, such as ``{}`` or ``{license name}``."""
    rest = _PLACEHOLDER_RE.sub("", body or "")
    tokens = _BRACED_RE.findall(rest)
    leftover = _BRACED_RE.sub("", rest)
    tokens += [brace for brace in "{}" if brace in leftover]
    return list(dict.fromkeys(tokens))


def segment_count(body: str) -> int:
    return math.ceil(len(body) / SEGMENT_LENGTH)


def validate_body(category: TemplateCategory | str, body: str) -> None:
    """Reject placeholders the category does not recognize.

    Malformed brace tokens are rejected as well.
    """
    cat = TemplateCategory(category)
    allowed = PLACEHOLDERS[cat]
    unknown = [p for p in extract_placeholders(body) if p not in allowed] + malformed_tokens(body)
    if unknown:
        raise TemplateValidationError(cat.value, unknown)


def render(template: MessageTemplate, context: dict[str, object]) -> RenderedMessage:
    """Substitute every placeholder in the template body from ``context``.

    Raises TemplateRenderError listing every placeholder without a value and
    every malformed brace token; ``None`` counts as missing.
    """
    body = template.body or ""
    missing = [p for p in extract_placeholders(body) if context.get(p) is None] + malformed_tokens(body)
    if missing:
        raise TemplateRenderError(missing)

    text = _PLACEHOLDER_RE.sub(lambda m: str(context[m.group(1)]), body)
    return RenderedMessage(body=text, segment_count=segment_count(text))


def preview(category: TemplateCategory | str, body: str) -> RenderedMessage:
    """Render a draft body with sample values for its category."""
    cat = TemplateCategory(category)
    validate_body(cat, body)
    context = {name: SAMPLE_VALUES[name] for name in PLACEHOLDERS[cat]}
    return render(MessageTemplate(category=cat, body=body), context)


def entity_context(entity, now: datetime) -> dict[str, object]:
    """Standard render context for a candidate entity evaluated at ``now``.

    Entity attributes (license_name, product_name, ...) come first; the
    computed fields below always win for station and days_remaining.
    """
    when = entity.expiry_or_threshold_date
    context: dict[str, object] = dict(entity.attributes)
    context.setdefault("expiry_date", when.isoformat())
    context.setdefault("reorder_date", when.isoformat())
    context.setdefault("date", now.date().isoformat())
    context.setdefault("timestamp", now.strftime("%Y-%m-%d %H:%M"))
    context["station"] = entity.station
    context["days_remaining"] = (when - now.date()).days
    return context


# ── Persistence ────────────────────────────────────────────────────────


def create_template(
    db: Session,
    name: str,
    category: TemplateCategory | str,
    body: str,
    is_active: bool = True,
) -> MessageTemplate:
    cat = TemplateCategory(category)
    validate_body(cat, body)
    template = MessageTemplate(name=name, category=cat, body=body, is_active=is_active)
    db.add(template)
    db.flush()
    logger.info("Template created: %s (%s, %d segments)", name, cat.value, segment_count(body))
    return template


def _check_referencing_schedules(db: Session, template: MessageTemplate, category: TemplateCategory) -> None:
    schedules = db.query(AlertSchedule).filter(AlertSchedule.template_id == template.id).all()
    broken = [s.name for s in schedules if category not in COMPATIBLE_CATEGORIES[AlertType(s.alert_type)]]
    if broken:
        raise TemplateInUseError(category.value, broken)


def update_template(
    db: Session,
    template: MessageTemplate,
    name: str | None = None,
    category: TemplateCategory | str | None = None,
    body: str | None = None,
    is_active: bool | None = None,
) -> MessageTemplate:
    new_category = TemplateCategory(category) if category is not None else TemplateCategory(template.category)
    new_body = body if body is not None else template.body
    validate_body(new_category, new_body)
    if new_category != TemplateCategory(template.category):
        _check_referencing_schedules(db, template, new_category)

    template.category = new_category
    template.body = new_body
    if name is not None:
        template.name = name
    if is_active is not None:
        template.is_active = is_active
    db.flush()
    return template


def get_template_by_id(db: Session, template_id: str | UUID | None) -> MessageTemplate | None:
    uid = to_uuid(template_id)
    if uid is None:
        return None
    return db.query(MessageTemplate).filter(MessageTemplate.id == uid).first()


def list_templates(
    db: Session,
    category: TemplateCategory | str | None = None,
    active_only: bool = False,
) -> list[MessageTemplate]:
    query = db.query(MessageTemplate)
    if category:
        query = query.filter(MessageTemplate.category == TemplateCategory(category))
    if active_only:
        query = query.filter(MessageTemplate.is_active == True)  # noqa: E712
    return query.order_by(MessageTemplate.name.asc()).all()

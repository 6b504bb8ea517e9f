"""Message template routes."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..database.base import get_db
from ..errors import TemplateInUseError, TemplateValidationError
from .models import MessageTemplate
from .schemas import TemplateCreateRequest, TemplatePreviewRequest, TemplateUpdateRequest
from .service import (
    PLACEHOLDERS,
    create_template,
    get_template_by_id,
    list_templates,
    preview,
    segment_count,
    update_template,
)

router = APIRouter(prefix="/templates", tags=["templates"])


def _template_dict(t: MessageTemplate) -> dict:
    return {
        "id": str(t.id),
        "name": t.name,
        "category": str(t.category),
        "body": t.body,
        "is_active": bool(t.is_active),
        "character_count": len(t.body or ""),
        "segment_count": segment_count(t.body or ""),
    }


@router.get("")
def list_templates_route(
    category: str | None = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
):
    return JSONResponse({"templates": [_template_dict(t) for t in list_templates(db, category, active_only)]})


@router.get("/placeholders")
def placeholders_route():
    return JSONResponse({cat.value: sorted(names) for cat, names in PLACEHOLDERS.items()})


@router.post("/preview")
def preview_route(payload: TemplatePreviewRequest):
    try:
        rendered = preview(payload.category, payload.body)
    except TemplateValidationError as exc:
        return JSONResponse({"error": exc.message, "unknown": exc.unknown}, status_code=400)
    return JSONResponse({"body": rendered.body, "segment_count": rendered.segment_count})


@router.post("")
def create_template_route(
    request: Request,
    payload: TemplateCreateRequest,
    db: Session = Depends(get_db),
):
    try:
        template = create_template(db, payload.name, payload.category, payload.body, payload.is_active)
    except TemplateValidationError as exc:
        return JSONResponse({"error": exc.message, "unknown": exc.unknown}, status_code=400)
    audit(db, request, "template_create", f"template={template.id}, name={template.name}")
    db.commit()
    return JSONResponse({"ok": True, "template": _template_dict(template)}, status_code=201)


@router.get("/{template_id}")
def get_template_route(template_id: str, db: Session = Depends(get_db)):
    template = get_template_by_id(db, template_id)
    if not template:
        return JSONResponse({"error": "Template not found"}, status_code=404)
    return JSONResponse(_template_dict(template))


@router.put("/{template_id}")
def update_template_route(
    request: Request,
    template_id: str,
    payload: TemplateUpdateRequest,
    db: Session = Depends(get_db),
):
    template = get_template_by_id(db, template_id)
    if not template:
        return JSONResponse({"error": "Template not found"}, status_code=404)
    try:
        update_template(db, template, payload.name, payload.category, payload.body, payload.is_active)
    except TemplateValidationError as exc:
        db.rollback()
        return JSONResponse({"error": exc.message, "unknown": exc.unknown}, status_code=400)
    except TemplateInUseError as exc:
        db.rollback()
        return JSONResponse({"error": exc.message, "schedules": exc.schedule_names}, status_code=409)
    audit(db, request, "template_update", f"template={template_id}")
    db.commit()
    return JSONResponse({"ok": True, "template": _template_dict(template)})

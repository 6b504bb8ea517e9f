"""Audit log service."""

from fastapi import Request
from sqlalchemy.orm import Session

from .models import AuditLog


def _get_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def audit(db: Session, request: Request, action: str, detail: str = "") -> None:
    """Write an audit log entry. The caller commits."""
    db.add(
        AuditLog(
            action=action,
            detail=detail,
            ip_address=_get_ip(request),
        )
    )


def get_recent_audit_logs(db: Session, action: str | None = None, limit: int = 100) -> list[AuditLog]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.created_at.desc()).limit(limit).all()

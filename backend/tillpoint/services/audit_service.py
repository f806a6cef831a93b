# Overview: Audit sink for mutating operations; fire-and-forget, never aborts the caller.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent
from tillpoint.time_utils import utcnow


def log_audit_event(
    *,
    actor_id: int | None,
    action: str,
    description: str | None = None,
    details: dict | None = None,
    success: bool = True,
    severity: str = "medium",
) -> AuditEvent | None:
    """
    Append an audit event in its own commit.

    Call this after the business transaction has committed or rolled back.
    A failure to write is logged and swallowed; the business outcome stands.

    action examples:
    - SALE_CREATED / SALE_CREATION_ERROR
    - SALE_CANCELLED / SALE_CANCELLATION_ERROR
    - CASH_DRAWER_OPENED / CASH_DRAWER_CLOSED
    - STOCK_MOVEMENT_RECORDED / STOCK_TRANSFERRED
    """
    try:
        event = AuditEvent(
            actor_id=actor_id,
            action=action,
            description=description,
            details=details or {},
            success=success,
            severity=severity,
            occurred_at=utcnow(),
        )
        db.session.add(event)
        db.session.commit()
        return event
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record audit event %s", action)
        return None


def list_audit_events(
    *,
    actor_id: int | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    q = db.session.query(AuditEvent)
    if actor_id is not None:
        q = q.filter(AuditEvent.actor_id == actor_id)
    if action is not None:
        q = q.filter(AuditEvent.action == action)
    return q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()


def failure_details(exc: Exception, **extra) -> dict:
    """Audit details for a failed operation; business errors carry their own details."""
    details = {"error": str(exc), "error_type": exc.__class__.__name__}
    details.update(extra)
    details.update(getattr(exc, "details", None) or {})
    return details

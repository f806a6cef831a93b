from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Security/audit log of mutating operations, successful or failed.

    Written after the business transaction finishes, in its own commit.
    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_actor_action", "actor_id", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    actor_id = db.Column(db.Integer, nullable=True, index=True)  # Nullable for system actions
    action = db.Column(db.String(64), nullable=False, index=True)  # SALE_CREATED, CASH_DRAWER_CLOSED, etc.
    description = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)

    success = db.Column(db.Boolean, nullable=False, default=True, index=True)
    severity = db.Column(db.String(16), nullable=False, default="medium")

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "description": self.description,
            "details": self.details,
            "success": self.success,
            "severity": self.severity,
            "occurred_at": to_utc_z(self.occurred_at),
        }

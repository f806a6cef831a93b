from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from tillpoint.time_utils import to_utc_z

DRAWER_OPEN = "open"
DRAWER_CLOSED = "closed"


class CashDrawer(db.Model):
    """
    Per-operator cash session.

    LIFECYCLE:
    - open: expected_balance_cents = opening + committed cash sales so far
    - closed: expected balance frozen, closing balance counted by the
      operator, difference = closing - expected (reported, never corrected)

    At most one open drawer per owner, enforced by a partial unique index.
    """
    __tablename__ = "cash_drawers"
    __table_args__ = (
        db.Index(
            "uq_cash_drawers_owner_open",
            "owner_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=DRAWER_OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "difference_cents": self.difference_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
        }

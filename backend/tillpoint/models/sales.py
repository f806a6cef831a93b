from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

SALE_PENDING = "pending"
SALE_COMPLETED = "completed"
SALE_CANCELLED = "cancelled"
SALE_REFUNDED = "refunded"

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_TRANSFER = "transfer"
PAYMENT_PIX = "pix"
PAYMENT_MULTIPLE = "multiple"

PAYMENT_METHODS = (
    PAYMENT_CASH,
    PAYMENT_CARD,
    PAYMENT_TRANSFER,
    PAYMENT_PIX,
    PAYMENT_MULTIPLE,
)


class Sale(db.Model):
    """
    Point-of-sale transaction with a frozen line-item snapshot.

    items is a JSON list captured at checkout; later catalog price or tax
    changes never alter it. Totals are derived at checkout and never edited:
    total_cents = subtotal_cents + tax_cents - discount_cents.

    NUMBERING: sale_number = V{yyyymmdd}-{seq:04d}; business_date and
    daily_sequence are stored separately so the next number is a MAX over an
    integer column, guarded by unique constraints.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.UniqueConstraint("business_date", "daily_sequence", name="uq_sales_day_sequence"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sale_number = db.Column(db.String(32), nullable=False)
    business_date = db.Column(db.String(8), nullable=False)
    daily_sequence = db.Column(db.Integer, nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    items = db.Column(db.JSON, nullable=False, default=list)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    payment_details = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    cash_drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=True, index=True)
    location = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy="dynamic"))
    cash_drawer = db.relationship("CashDrawer", backref=db.backref("sales", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "items": list(self.items or []),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_details": self.payment_details,
            "status": self.status,
            "notes": self.notes,
            "cash_drawer_id": self.cash_drawer_id,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }

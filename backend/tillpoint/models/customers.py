from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data.

    Owned by customer management. The sale core only touches the
    denormalized aggregates (total_purchases_cents, last_purchase_at),
    inside the same transaction as the sale or cancellation.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    # Denormalized aggregates (updated by checkout and cancellation)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "total_purchases_cents": self.total_purchases_cents,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }

from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from tillpoint.time_utils import to_utc_z

MOVEMENT_ENTRY = "entry"
MOVEMENT_WITHDRAWAL = "withdrawal"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_INITIAL = "initial"
MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_LOSS = "loss"
MOVEMENT_TRANSFER = "transfer"

MOVEMENT_TYPES = (
    MOVEMENT_ENTRY,
    MOVEMENT_WITHDRAWAL,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_INITIAL,
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_LOSS,
    MOVEMENT_TRANSFER,
)

# Types whose delta must be positive / negative.
INBOUND_TYPES = frozenset({MOVEMENT_ENTRY, MOVEMENT_INITIAL, MOVEMENT_RETURN})
OUTBOUND_TYPES = frozenset({MOVEMENT_WITHDRAWAL, MOVEMENT_SALE, MOVEMENT_LOSS})

# Types an operator may record by hand. sale / return only come from
# checkout and cancellation; transfer has its own path.
MANUAL_TYPES = frozenset({
    MOVEMENT_ENTRY,
    MOVEMENT_WITHDRAWAL,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_LOSS,
    MOVEMENT_INITIAL,
})

REFERENCE_SALE = "sale"
REFERENCE_SALE_CANCELLATION = "sale_cancellation"
REFERENCE_STOCK_COUNT = "stock_count"


class InventoryMovement(db.Model):
    """
    One immutable stock-movement record (ledger entry).

    INVARIANTS:
    - new_quantity = previous_quantity + quantity_delta, both captured at
      write time, never recomputed.
    - new_quantity equals Product.stock right after the row is appended.
    - unit_cost_cents is the cost at movement time; total_value_cents is
      |quantity_delta| * unit_cost_cents (|transfer_quantity| for transfers).
    - Transfers have quantity_delta = 0 and carry transfer_quantity plus
      location_from / location_to.

    IMMUTABLE: Never update or delete. Reversals are new rows.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_invmov_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_invmov_reference", "reference_id", "reference_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)

    # Link back to the originating document (sale, cancellation, count)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)

    transfer_quantity = db.Column(db.Integer, nullable=True)
    location_from = db.Column(db.String(128), nullable=True)
    location_to = db.Column(db.String(128), nullable=True)

    note = db.Column(db.Text, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    @property
    def reference(self) -> str | None:
        if self.reference_id is None:
            return None
        return f"{self.reference_type}#{self.reference_id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_value_cents": self.total_value_cents,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "reference": self.reference,
            "transfer_quantity": self.transfer_quantity,
            "location_from": self.location_from,
            "location_to": self.location_to,
            "note": self.note,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@event.listens_for(InventoryMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError("inventory movements are append-only")


@event.listens_for(InventoryMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError("inventory movements are append-only")

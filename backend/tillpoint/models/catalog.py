from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_INACTIVE = "inactive"
PRODUCT_STATUS_DISCONTINUED = "discontinued"

PRODUCT_STATUSES = (
    PRODUCT_STATUS_ACTIVE,
    PRODUCT_STATUS_INACTIVE,
    PRODUCT_STATUS_DISCONTINUED,
)


class Product(db.Model):
    """
    Product master data plus the cached stock projection.

    STOCK: Product.stock is a projection of the inventory ledger. It is only
    written by stock_ledger.append_movement / append_transfer, in the same
    transaction as the InventoryMovement row that explains the change.
    Catalog management owns every other column.

    MONEY: price and cost are integer cents; tax rate is basis points
    (10% = 1000).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        db.Index("ix_products_status_name", "status", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=0)
    location = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_sellable(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "stock": self.stock,
            "reorder_threshold": self.reorder_threshold,
            "location": self.location,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

# Overview: Minimal product creation with an opening stock entry in the ledger.

from __future__ import annotations

from ..errors import InvalidInput
from ..models import Product
from ..models.catalog import PRODUCT_STATUS_ACTIVE
from ..models.ledger import MOVEMENT_INITIAL
from . import stock_ledger
from .concurrency import run_with_retry, unit_of_work


def create_product(
    *,
    actor_id: int | None,
    sku: str,
    name: str,
    price_cents: int,
    cost_cents: int = 0,
    tax_rate_bps: int = 0,
    initial_stock: int = 0,
    reorder_threshold: int = 0,
    location: str | None = None,
    status: str = PRODUCT_STATUS_ACTIVE,
) -> Product:
    """
    Create a product. Stock starts at 0; a positive initial_stock is booked
    as an `initial` movement in the same transaction so the ledger explains
    every unit on hand.
    """
    sku = (sku or "").strip()
    if not sku:
        raise InvalidInput("sku is required")
    if not name or not name.strip():
        raise InvalidInput("name is required")
    for field, value in (
        ("price_cents", price_cents),
        ("cost_cents", cost_cents),
        ("tax_rate_bps", tax_rate_bps),
        ("initial_stock", initial_stock),
        ("reorder_threshold", reorder_threshold),
    ):
        if value is None or value < 0:
            raise InvalidInput(f"{field} must be >= 0")

    def _op():
        with unit_of_work() as session:
            if session.query(Product).filter_by(sku=sku).first():
                raise InvalidInput(f"SKU '{sku}' already exists", details={"sku": sku})

            product = Product(
                sku=sku,
                name=name.strip(),
                price_cents=price_cents,
                cost_cents=cost_cents,
                tax_rate_bps=tax_rate_bps,
                stock=0,
                reorder_threshold=reorder_threshold,
                location=location,
                status=status,
            )
            session.add(product)
            session.flush()

            if initial_stock > 0:
                stock_ledger.append_movement(
                    session,
                    product_id=product.id,
                    movement_type=MOVEMENT_INITIAL,
                    quantity_delta=initial_stock,
                    actor_id=actor_id,
                    unit_cost_cents=cost_cents,
                    note="Initial stock",
                )
            return product

    return run_with_retry(_op)

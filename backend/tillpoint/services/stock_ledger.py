# Overview: Service-layer operations for the stock ledger; owns movements and the stock projection.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..errors import InsufficientStock, InvalidInput, NotFound
from ..extensions import db
from ..models import InventoryMovement, Product
from ..models.catalog import PRODUCT_STATUS_ACTIVE
from ..models.ledger import (
    INBOUND_TYPES,
    MANUAL_TYPES,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER,
    MOVEMENT_TYPES,
    OUTBOUND_TYPES,
    REFERENCE_STOCK_COUNT,
)
from tillpoint.time_utils import utcnow, to_utc_z
from . import audit_service
from .concurrency import lock_for_update, run_with_retry, unit_of_work
"""
Stock Ledger Invariants (authoritative)

- InventoryMovement rows are append-only; corrections are new rows.
- Product.stock is a cached projection of the ledger:
    Product.stock == SUM(quantity_delta) over the product's movements
  and equals new_quantity of the product's latest movement.
- append_movement() writes the movement and the projection in the caller's
  unit of work, after locking the product row; neither write is ever
  visible without the other.
- Stock may never go negative. Stock-reducing movements (withdrawal, sale,
  loss, negative adjustment) fail with InsufficientStock instead.
- Valuation always uses the unit cost captured on the movement, never the
  product's current cost.

Type/sign rule:
- entry, initial, return: delta > 0
- withdrawal, sale, loss: delta < 0
- adjustment: any non-zero delta; stock-reducing exactly when negative
- transfer: append_transfer() only; zero net delta
"""


def _get_product(session, product_id: int, *, lock: bool = False) -> Product:
    query = session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFound("Product not found", details={"product_id": product_id})
    return product


def _validate_direction(movement_type: str, quantity_delta: int) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise InvalidInput(
            f"Unknown movement type '{movement_type}'",
            details={"valid_types": list(MOVEMENT_TYPES)},
        )
    if movement_type == MOVEMENT_TRANSFER:
        raise InvalidInput("Transfers must be recorded with append_transfer")
    if not isinstance(quantity_delta, int) or isinstance(quantity_delta, bool):
        raise InvalidInput("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise InvalidInput("quantity_delta cannot be zero")
    if movement_type in INBOUND_TYPES and quantity_delta < 0:
        raise InvalidInput(
            f"'{movement_type}' movements must increase stock",
            details={"movement_type": movement_type, "quantity_delta": quantity_delta},
        )
    if movement_type in OUTBOUND_TYPES and quantity_delta > 0:
        raise InvalidInput(
            f"'{movement_type}' movements must decrease stock",
            details={"movement_type": movement_type, "quantity_delta": quantity_delta},
        )


def is_stock_reducing(movement_type: str, quantity_delta: int) -> bool:
    if movement_type in OUTBOUND_TYPES:
        return True
    return movement_type == MOVEMENT_ADJUSTMENT and quantity_delta < 0


def check_availability(product_id: int, requested_quantity: int, *, session=None, lock: bool = False) -> dict:
    """
    Report whether requested_quantity can be taken from stock.

    No side effect. Inside a unit of work pass lock=True so the answer stays
    valid until the same transaction appends the movement.
    """
    session = session or db.session
    product = _get_product(session, product_id, lock=lock)
    current = product.stock
    shortfall = max(0, requested_quantity - current)
    return {
        "product_id": product.id,
        "available": shortfall == 0,
        "current_quantity": current,
        "requested_quantity": requested_quantity,
        "shortfall": shortfall,
    }


def insufficient_stock_error(product: Product, requested: int) -> InsufficientStock:
    return InsufficientStock(
        f"Insufficient stock for {product.name}. Available: {product.stock}, requested: {requested}",
        details={
            "product_id": product.id,
            "sku": product.sku,
            "requested": requested,
            "available": product.stock,
            "shortfall": requested - product.stock,
        },
    )


def append_movement(
    session,
    *,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    actor_id: int | None,
    unit_cost_cents: int | None = None,
    reference_id: int | None = None,
    reference_type: str | None = None,
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> InventoryMovement:
    """
    Append one movement and update the product's stock projection.

    Must run inside unit_of_work(); nothing is committed here. When
    unit_cost_cents is None the product's cost at this moment is captured.
    """
    _validate_direction(movement_type, quantity_delta)
    if unit_cost_cents is not None and unit_cost_cents < 0:
        raise InvalidInput("unit_cost_cents cannot be negative")

    product = _get_product(session, product_id, lock=True)

    previous = product.stock
    new = previous + quantity_delta
    if new < 0 and is_stock_reducing(movement_type, quantity_delta):
        raise insufficient_stock_error(product, -quantity_delta)

    cost = product.cost_cents if unit_cost_cents is None else unit_cost_cents

    movement = InventoryMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        previous_quantity=previous,
        new_quantity=new,
        unit_cost_cents=cost,
        total_value_cents=abs(quantity_delta) * cost,
        reference_id=reference_id,
        reference_type=reference_type,
        note=note,
        actor_id=actor_id,
        occurred_at=occurred_at or utcnow(),
    )
    product.stock = new

    session.add(movement)
    session.flush()
    return movement


def append_transfer(
    session,
    *,
    product_id: int,
    quantity: int,
    to_location: str,
    actor_id: int | None,
    note: str | None = None,
) -> InventoryMovement:
    """
    Record a relocation of stock. Total stock is unchanged; the movement
    exists for audit and moves the product's location to the destination.
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InvalidInput("Transfer quantity must be a positive integer")
    if not to_location:
        raise InvalidInput("to_location is required")

    product = _get_product(session, product_id, lock=True)
    if quantity > product.stock:
        raise insufficient_stock_error(product, quantity)
    if product.location == to_location:
        raise InvalidInput("Product is already at that location", details={"location": to_location})

    movement = InventoryMovement(
        product_id=product.id,
        movement_type=MOVEMENT_TRANSFER,
        quantity_delta=0,
        previous_quantity=product.stock,
        new_quantity=product.stock,
        unit_cost_cents=product.cost_cents,
        total_value_cents=quantity * product.cost_cents,
        transfer_quantity=quantity,
        location_from=product.location,
        location_to=to_location,
        note=note,
        actor_id=actor_id,
        occurred_at=utcnow(),
    )
    product.location = to_location

    session.add(movement)
    session.flush()
    return movement


# =============================================================================
# STANDALONE OPERATIONS (own unit of work + audit)
# =============================================================================

def record_movement(
    *,
    actor_id: int,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    unit_cost_cents: int | None = None,
    note: str | None = None,
    reference_id: int | None = None,
    reference_type: str | None = None,
) -> InventoryMovement:
    """
    Manual stock movement (entry, withdrawal, adjustment, loss, initial).

    sale and return movements are rejected here: they are only written by
    checkout and cancellation, with the sale as their reference.
    """
    def _op():
        with unit_of_work() as session:
            return append_movement(
                session,
                product_id=product_id,
                movement_type=movement_type,
                quantity_delta=quantity_delta,
                actor_id=actor_id,
                unit_cost_cents=unit_cost_cents,
                reference_id=reference_id,
                reference_type=reference_type,
                note=note,
            )

    try:
        if movement_type not in MANUAL_TYPES:
            raise InvalidInput(
                f"'{movement_type}' movements cannot be recorded manually",
                details={"valid_types": sorted(MANUAL_TYPES)},
            )
        movement = run_with_retry(_op)
    except Exception as exc:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="STOCK_MOVEMENT_ERROR",
            description=f"Stock movement rejected: {exc}",
            details=audit_service.failure_details(exc, product_id=product_id, movement_type=movement_type),
            success=False,
        )
        raise

    audit_service.log_audit_event(
        actor_id=actor_id,
        action="STOCK_MOVEMENT_RECORDED",
        description=f"{movement.movement_type} of {movement.quantity_delta} for product {product_id}",
        details={
            "movement_id": movement.id,
            "product_id": product_id,
            "quantity_delta": movement.quantity_delta,
            "new_quantity": movement.new_quantity,
        },
    )
    return movement


def transfer_stock(
    *,
    actor_id: int,
    product_id: int,
    quantity: int,
    to_location: str,
    note: str | None = None,
) -> InventoryMovement:
    def _op():
        with unit_of_work() as session:
            return append_transfer(
                session,
                product_id=product_id,
                quantity=quantity,
                to_location=to_location,
                actor_id=actor_id,
                note=note,
            )

    try:
        movement = run_with_retry(_op)
    except Exception as exc:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="STOCK_TRANSFER_ERROR",
            description=f"Stock transfer rejected: {exc}",
            details=audit_service.failure_details(
                exc, product_id=product_id, quantity=quantity, to_location=to_location
            ),
            success=False,
        )
        raise

    audit_service.log_audit_event(
        actor_id=actor_id,
        action="STOCK_TRANSFERRED",
        description=f"Transferred {quantity} units of product {product_id} to {to_location}",
        details={
            "movement_id": movement.id,
            "product_id": product_id,
            "quantity": quantity,
            "from_location": movement.location_from,
            "to_location": to_location,
        },
    )
    return movement


def set_stock_level(
    *,
    actor_id: int,
    product_id: int,
    counted_quantity: int,
    note: str | None = None,
) -> InventoryMovement | None:
    """
    Stock count correction. Appends an adjustment for the difference between
    the counted and the recorded quantity; returns None when they agree.
    """
    def _op():
        with unit_of_work() as session:
            product = _get_product(session, product_id, lock=True)
            delta = counted_quantity - product.stock
            if delta == 0:
                return None
            return append_movement(
                session,
                product_id=product_id,
                movement_type=MOVEMENT_ADJUSTMENT,
                quantity_delta=delta,
                actor_id=actor_id,
                reference_type=REFERENCE_STOCK_COUNT,
                note=note or "Stock count correction",
            )

    try:
        if not isinstance(counted_quantity, int) or isinstance(counted_quantity, bool) or counted_quantity < 0:
            raise InvalidInput("counted_quantity must be a non-negative integer")
        movement = run_with_retry(_op)
    except Exception as exc:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="STOCK_MOVEMENT_ERROR",
            description=f"Stock count rejected: {exc}",
            details=audit_service.failure_details(
                exc, product_id=product_id, counted_quantity=counted_quantity
            ),
            success=False,
        )
        raise

    if movement is not None:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="STOCK_MOVEMENT_RECORDED",
            description=f"Stock count set product {product_id} to {counted_quantity}",
            details={
                "movement_id": movement.id,
                "product_id": product_id,
                "quantity_delta": movement.quantity_delta,
                "new_quantity": movement.new_quantity,
            },
        )
    return movement


# =============================================================================
# READS
# =============================================================================

def get_product_history(product_id: int, limit: int = 100) -> list[InventoryMovement]:
    _get_product(db.session, product_id)
    return (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def movement_summary(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    movement_type: str | None = None,
) -> dict:
    """
    Movement report: per-type counts, quantities and values, plus inbound
    and outbound totals. Bounds are inclusive on occurred_at.
    """
    inbound_qty = func.sum(case((InventoryMovement.quantity_delta > 0, InventoryMovement.quantity_delta), else_=0))
    outbound_qty = func.sum(case((InventoryMovement.quantity_delta < 0, -InventoryMovement.quantity_delta), else_=0))
    inbound_value = func.sum(case((InventoryMovement.quantity_delta > 0, InventoryMovement.total_value_cents), else_=0))
    outbound_value = func.sum(case((InventoryMovement.quantity_delta < 0, InventoryMovement.total_value_cents), else_=0))

    q = db.session.query(
        InventoryMovement.movement_type,
        func.count(InventoryMovement.id),
        func.coalesce(func.sum(InventoryMovement.quantity_delta), 0),
        func.coalesce(func.sum(InventoryMovement.total_value_cents), 0),
        func.coalesce(inbound_qty, 0),
        func.coalesce(outbound_qty, 0),
        func.coalesce(inbound_value, 0),
        func.coalesce(outbound_value, 0),
    )
    if start is not None:
        q = q.filter(InventoryMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(InventoryMovement.occurred_at <= end)
    if movement_type is not None:
        q = q.filter(InventoryMovement.movement_type == movement_type)

    summary = {
        "total_movements": 0,
        "inbound_quantity": 0,
        "outbound_quantity": 0,
        "inbound_value_cents": 0,
        "outbound_value_cents": 0,
        "by_type": {},
    }
    for mtype, count, qty, value, qty_in, qty_out, value_in, value_out in q.group_by(InventoryMovement.movement_type):
        summary["total_movements"] += int(count)
        summary["inbound_quantity"] += int(qty_in)
        summary["outbound_quantity"] += int(qty_out)
        summary["inbound_value_cents"] += int(value_in)
        summary["outbound_value_cents"] += int(value_out)
        summary["by_type"][mtype] = {
            "count": int(count),
            "quantity": int(qty),
            "value_cents": int(value),
        }

    summary["net_movement"] = summary["inbound_quantity"] - summary["outbound_quantity"]
    summary["net_value_cents"] = summary["inbound_value_cents"] - summary["outbound_value_cents"]
    summary["start"] = to_utc_z(start)
    summary["end"] = to_utc_z(end)
    return summary


def verify_projection(product_id: int) -> dict:
    """Compare Product.stock against the ledger it is projected from."""
    product = _get_product(db.session, product_id)
    ledger_sum = int(
        db.session.query(func.coalesce(func.sum(InventoryMovement.quantity_delta), 0))
        .filter(InventoryMovement.product_id == product_id)
        .scalar()
        or 0
    )
    last = (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.id.desc())
        .first()
    )
    last_new_quantity = last.new_quantity if last else 0
    return {
        "product_id": product.id,
        "sku": product.sku,
        "stock": product.stock,
        "ledger_sum": ledger_sum,
        "last_new_quantity": last_new_quantity,
        "consistent": product.stock == ledger_sum == last_new_quantity,
    }


def list_low_stock() -> list[Product]:
    """Active products at or below their reorder threshold."""
    return (
        db.session.query(Product)
        .filter(
            Product.status == PRODUCT_STATUS_ACTIVE,
            Product.stock <= Product.reorder_threshold,
        )
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )

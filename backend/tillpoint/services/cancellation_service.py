"""
Sale Cancellation - reverse a committed sale

WHY: A completed sale can be taken back shortly after checkout. Stock is
restored by compensating `return` movements (the original `sale` movements
stay untouched) and the customer's purchase total is reduced.

POLICY:
- Only completed sales, and only within CANCELLATION_WINDOW of created_at
- Reversal cost: each return uses the unit cost captured by the original
  sale movement for that product, so the reversal values stock exactly as
  the sale did. The product's current cost is used only when no original
  movement exists.
- The cash drawer is not adjusted; the drawer only ever accumulates
  committed cash sales.
"""

from __future__ import annotations

from datetime import timedelta

from ..errors import CancellationWindowExpired, InvalidInput, NotFound
from ..models import Customer, InventoryMovement, Sale
from ..models.ledger import MOVEMENT_RETURN, MOVEMENT_SALE, REFERENCE_SALE, REFERENCE_SALE_CANCELLATION
from ..models.sales import SALE_CANCELLED, SALE_COMPLETED
from tillpoint.time_utils import utcnow
from . import audit_service, stock_ledger
from .concurrency import lock_for_update, run_with_retry, unit_of_work

CANCELLATION_WINDOW = timedelta(hours=24)


def _original_unit_costs(session, sale_id: int) -> dict[int, int]:
    movements = session.query(InventoryMovement).filter_by(
        reference_id=sale_id,
        reference_type=REFERENCE_SALE,
        movement_type=MOVEMENT_SALE,
    ).all()
    return {m.product_id: m.unit_cost_cents for m in movements}


def cancel_sale(*, actor_id: int, sale_id: int, reason: str) -> Sale:
    """
    Cancel a completed sale atomically.

    Raises:
        NotFound: no such sale
        InvalidInput: missing reason, or the sale is not completed
        CancellationWindowExpired: the sale is older than 24 hours
    """
    def _op():
        with unit_of_work() as session:
            sale = lock_for_update(session.query(Sale).filter_by(id=sale_id)).first()
            if not sale:
                raise NotFound("Sale not found", details={"sale_id": sale_id})

            if sale.status != SALE_COMPLETED:
                raise InvalidInput(
                    f"Only completed sales can be cancelled (sale is {sale.status})",
                    details={"sale_id": sale_id, "status": sale.status},
                )

            now = utcnow()
            age = now - sale.created_at
            if age > CANCELLATION_WINDOW:
                raise CancellationWindowExpired(
                    "Sales older than 24 hours cannot be cancelled",
                    details={"sale_id": sale_id, "age_hours": round(age.total_seconds() / 3600, 2)},
                )

            unit_costs = _original_unit_costs(session, sale.id)
            for line in sale.items:
                stock_ledger.append_movement(
                    session,
                    product_id=line["product_id"],
                    movement_type=MOVEMENT_RETURN,
                    quantity_delta=line["quantity"],
                    actor_id=actor_id,
                    unit_cost_cents=unit_costs.get(line["product_id"]),
                    reference_id=sale.id,
                    reference_type=REFERENCE_SALE_CANCELLATION,
                    note=f"Cancellation of sale {sale.sale_number}: {reason}",
                    occurred_at=now,
                )

            sale.status = SALE_CANCELLED
            sale.cancelled_at = now
            sale.cancelled_by_user_id = actor_id
            sale.notes = f"{sale.notes}\nCancelled: {reason}" if sale.notes else f"Cancelled: {reason}"

            if sale.customer_id:
                customer = lock_for_update(session.query(Customer).filter_by(id=sale.customer_id)).first()
                if customer:
                    customer.total_purchases_cents = max(0, (customer.total_purchases_cents or 0) - sale.total_cents)

            session.flush()
            return sale

    try:
        if not reason or not str(reason).strip():
            raise InvalidInput("reason required")
        reason = str(reason).strip()
        sale = run_with_retry(_op)
    except Exception as exc:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="SALE_CANCELLATION_ERROR",
            description=f"Cancellation of sale {sale_id} failed",
            details=audit_service.failure_details(exc, sale_id=sale_id),
            success=False,
        )
        raise

    audit_service.log_audit_event(
        actor_id=actor_id,
        action="SALE_CANCELLED",
        description=f"Sale cancelled: {sale.sale_number}",
        details={"sale_id": sale.id, "sale_number": sale.sale_number, "reason": reason},
        severity="high",
    )
    return sale

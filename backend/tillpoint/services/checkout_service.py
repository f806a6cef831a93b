"""
Checkout Orchestrator - one atomic point-of-sale transaction

WHY: A checkout touches Sale, InventoryMovement, Product, CashDrawer and
Customer. All of it commits together or not at all.

STATES:
    validating -> pricing -> committing -> completed
    any failure -> aborted (the unit of work is rolled back)

Validation runs inside the same write transaction as the commit, with the
cart's product rows locked, so stock cannot change between the check and
the decrement. Sale numbers are assigned in that transaction too.
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import DrawerNotOpen, InvalidInput, NotFound, PosError
from ..models import Customer, Product, Sale
from ..models.ledger import MOVEMENT_SALE, REFERENCE_SALE
from ..models.sales import PAYMENT_CASH, PAYMENT_METHODS, SALE_COMPLETED
from ..validation import normalize_cart
from tillpoint.time_utils import utcnow
from . import audit_service, stock_ledger
from .concurrency import RETRYABLE_ERRORS, lock_for_update, run_with_retry, unit_of_work
from .drawer_service import get_open_drawer, record_cash_sale
from .pricing import PricingLine, calculate_totals

STATE_VALIDATING = "validating"
STATE_PRICING = "pricing"
STATE_COMMITTING = "committing"
STATE_COMPLETED = "completed"
STATE_ABORTED = "aborted"


class CheckoutRun:
    """State tracker for one checkout attempt."""

    def __init__(self):
        self.state = None
        self.failed_stage = None

    def enter(self, state: str) -> None:
        current_app.logger.debug("checkout %s -> %s", self.state, state)
        self.state = state

    def abort(self) -> None:
        self.failed_stage = self.state
        self.enter(STATE_ABORTED)


def format_sale_number(business_date: str, sequence: int) -> str:
    return f"V{business_date}-{sequence:04d}"


def next_sale_sequence(session, business_date: str) -> int:
    """
    Next daily sequence: MAX(daily_sequence) for the day + 1.

    Must run inside the checkout's unit of work. The write lock serializes
    it on SQLite; elsewhere the (business_date, daily_sequence) unique
    constraint turns a collision into an IntegrityError that is retried.
    """
    current = (
        session.query(func.max(Sale.daily_sequence))
        .filter(Sale.business_date == business_date)
        .scalar()
    )
    return (current or 0) + 1


def _lock_cart_products(session, product_ids: list[int]) -> dict[int, Product]:
    # Ascending id order so concurrent checkouts lock rows in the same order
    products = (
        lock_for_update(session.query(Product).filter(Product.id.in_(product_ids)))
        .order_by(Product.id)
        .all()
    )
    by_id = {p.id: p for p in products}
    missing = [pid for pid in product_ids if pid not in by_id]
    if missing:
        raise NotFound("Product not found", details={"product_id": missing[0]})
    return by_id


def _validate_cart(session, cart: list[dict], products: dict[int, Product]) -> None:
    requested: OrderedDict[int, int] = OrderedDict()
    for item in cart:
        requested[item["product_id"]] = requested.get(item["product_id"], 0) + item["quantity"]

    for product_id, quantity in requested.items():
        product = products[product_id]
        if not product.is_sellable:
            raise InvalidInput(
                f"Product {product.name} is not available for sale",
                details={"product_id": product_id, "status": product.status},
            )
        availability = stock_ledger.check_availability(product_id, quantity, session=session)
        if not availability["available"]:
            raise stock_ledger.insufficient_stock_error(product, quantity)


def _validate_request(payment_method: str, discount_cents) -> None:
    if payment_method not in PAYMENT_METHODS:
        raise InvalidInput(
            f"Invalid payment method '{payment_method}'",
            details={"valid_methods": list(PAYMENT_METHODS)},
        )
    if not isinstance(discount_cents, int) or isinstance(discount_cents, bool) or discount_cents < 0:
        raise InvalidInput("discount_cents must be a non-negative integer")


def _snapshot_lines(cart: list[dict], products: dict[int, Product]) -> list[dict]:
    lines = []
    for item in cart:
        product = products[item["product_id"]]
        lines.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "unit_price_cents": product.price_cents,
            "quantity": item["quantity"],
            "tax_rate_bps": product.tax_rate_bps,
        })
    return lines


def checkout(
    *,
    actor_id: int,
    items: list[dict],
    payment_method: str,
    customer_id: int | None = None,
    discount_cents: int = 0,
    payment_details: dict | None = None,
    notes: str | None = None,
    location: str | None = None,
) -> Sale:
    """
    Check out a cart as one atomic sale.

    Args:
        actor_id: operator performing the sale (owner of the cash drawer)
        items: [{"product_id": int, "quantity": int}, ...]
        payment_method: cash, card, transfer, pix or multiple
        customer_id: optional customer whose aggregates are updated
        discount_cents: overall discount, 0 <= discount <= subtotal + tax

    Raises:
        InvalidInput, NotFound, InsufficientStock, DrawerNotOpen,
        ConcurrencyConflict. On any of them nothing has been persisted.
    """
    if discount_cents is None:
        discount_cents = 0
    run = CheckoutRun()
    cart: list[dict] = []

    def _op() -> Sale:
        run.enter(STATE_VALIDATING)
        with unit_of_work() as session:
            products = _lock_cart_products(session, sorted({item["product_id"] for item in cart}))
            _validate_cart(session, cart, products)

            customer = None
            if customer_id is not None:
                customer = lock_for_update(session.query(Customer).filter_by(id=customer_id)).first()
                if not customer:
                    raise NotFound("Customer not found", details={"customer_id": customer_id})

            run.enter(STATE_PRICING)
            lines = _snapshot_lines(cart, products)
            totals = calculate_totals(
                [PricingLine(line["unit_price_cents"], line["quantity"], line["tax_rate_bps"]) for line in lines],
                discount_cents,
            )
            for line, line_totals in zip(lines, totals.lines):
                line["subtotal_cents"] = line_totals.subtotal_cents
                line["tax_cents"] = line_totals.tax_cents

            run.enter(STATE_COMMITTING)
            if totals.total_cents != totals.subtotal_cents + totals.tax_cents - totals.discount_cents:
                raise InvalidInput("Sale totals are inconsistent")

            drawer = None
            if payment_method == PAYMENT_CASH:
                drawer = get_open_drawer(session, actor_id, lock=True)
                if not drawer:
                    raise DrawerNotOpen(
                        "Cash drawer is not open. Open the drawer before processing cash sales.",
                        details={"owner_id": actor_id},
                    )

            now = utcnow()
            business_date = now.strftime("%Y%m%d")
            sequence = next_sale_sequence(session, business_date)

            sale = Sale(
                sale_number=format_sale_number(business_date, sequence),
                business_date=business_date,
                daily_sequence=sequence,
                customer_id=customer_id,
                user_id=actor_id,
                items=lines,
                subtotal_cents=totals.subtotal_cents,
                tax_cents=totals.tax_cents,
                discount_cents=totals.discount_cents,
                total_cents=totals.total_cents,
                payment_method=payment_method,
                payment_details=payment_details,
                status=SALE_COMPLETED,
                notes=notes,
                cash_drawer_id=drawer.id if drawer else None,
                location=location or current_app.config.get("DEFAULT_SALE_LOCATION"),
                created_at=now,
                completed_at=now,
            )
            session.add(sale)
            session.flush()

            for line in lines:
                stock_ledger.append_movement(
                    session,
                    product_id=line["product_id"],
                    movement_type=MOVEMENT_SALE,
                    quantity_delta=-line["quantity"],
                    actor_id=actor_id,
                    reference_id=sale.id,
                    reference_type=REFERENCE_SALE,
                    note=f"Sale {sale.sale_number} - {line['quantity']} units",
                    occurred_at=now,
                )

            if drawer is not None:
                record_cash_sale(session, drawer.id, totals.total_cents)

            if customer is not None:
                customer.total_purchases_cents = (customer.total_purchases_cents or 0) + totals.total_cents
                customer.last_purchase_at = now
                session.flush()

        run.enter(STATE_COMPLETED)
        return sale

    try:
        run.enter(STATE_VALIDATING)
        _validate_request(payment_method, discount_cents)
        cart = normalize_cart(items)
        sale = run_with_retry(_op, retry_on=RETRYABLE_ERRORS + (IntegrityError,))
    except PosError as exc:
        run.abort()
        exc.details.setdefault("stage", run.failed_stage)
        current_app.logger.info("Checkout aborted during %s: %s", run.failed_stage, exc)
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="SALE_CREATION_ERROR",
            description="Checkout failed",
            details=audit_service.failure_details(exc),
            success=False,
        )
        raise
    except Exception as exc:
        run.abort()
        current_app.logger.exception("Checkout failed during %s", run.failed_stage)
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="SALE_CREATION_ERROR",
            description="Checkout failed",
            details=audit_service.failure_details(exc, stage=run.failed_stage),
            success=False,
        )
        raise

    audit_service.log_audit_event(
        actor_id=actor_id,
        action="SALE_CREATED",
        description=f"Sale created: {sale.sale_number}",
        details={
            "sale_id": sale.id,
            "sale_number": sale.sale_number,
            "total_cents": sale.total_cents,
            "payment_method": sale.payment_method,
            "items_count": len(cart),
        },
    )
    return sale

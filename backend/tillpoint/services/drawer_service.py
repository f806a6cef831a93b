"""
Cash Drawer Reconciler

WHY: Cashier accountability. Each drawer session has an opening balance,
a running expected balance fed by committed cash sales, and a counted
closing balance. The difference is reported, never corrected.

DESIGN PRINCIPLES:
- At most one open drawer per owner
- expected_balance_cents only moves through record_cash_sale(), inside the
  checkout's unit of work
- Closing freezes expected_balance_cents and computes difference_cents
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import DrawerAlreadyOpen, DrawerNotOpen, InvalidInput, NoOpenDrawer, NotFound
from ..extensions import db
from ..models import CashDrawer, Sale
from ..models.drawers import DRAWER_CLOSED, DRAWER_OPEN
from ..models.sales import PAYMENT_CASH, SALE_CANCELLED, SALE_COMPLETED
from tillpoint.time_utils import utcnow
from . import audit_service
from .concurrency import lock_for_update, run_with_retry, unit_of_work


def get_open_drawer(session, owner_id: int, *, lock: bool = False) -> CashDrawer | None:
    """Get the currently open drawer for an owner, if any."""
    query = session.query(CashDrawer).filter_by(owner_id=owner_id, status=DRAWER_OPEN)
    if lock:
        query = lock_for_update(query)
    return query.first()


def open_drawer(
    *,
    actor_id: int,
    opening_balance_cents: int = 0,
    notes: str | None = None,
) -> CashDrawer:
    """
    Open a drawer session for the acting operator.

    Raises:
        DrawerAlreadyOpen: the operator already has an open drawer
    """
    def _op():
        with unit_of_work() as session:
            existing = get_open_drawer(session, actor_id, lock=True)
            if existing:
                raise DrawerAlreadyOpen(
                    "A drawer is already open. Close it before opening another.",
                    details={"drawer_id": existing.id},
                )

            drawer = CashDrawer(
                owner_id=actor_id,
                status=DRAWER_OPEN,
                opening_balance_cents=opening_balance_cents,
                expected_balance_cents=opening_balance_cents,  # Initially same as opening cash
                opened_at=utcnow(),
                notes=notes,
            )
            session.add(drawer)
            try:
                session.flush()
            except IntegrityError as exc:
                # Partial unique index: another open drawer won the race
                raise DrawerAlreadyOpen("A drawer is already open for this operator") from exc
            return drawer

    if opening_balance_cents is None:
        opening_balance_cents = 0

    try:
        if opening_balance_cents < 0:
            raise InvalidInput("Opening balance cannot be negative")
        drawer = run_with_retry(_op)
    except Exception as exc:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="CASH_DRAWER_OPEN_ERROR",
            description=str(exc),
            details=audit_service.failure_details(exc),
            success=False,
        )
        raise

    audit_service.log_audit_event(
        actor_id=actor_id,
        action="CASH_DRAWER_OPENED",
        description="Cash drawer opened",
        details={"drawer_id": drawer.id, "opening_balance_cents": drawer.opening_balance_cents},
    )
    return drawer


def record_cash_sale(session, drawer_id: int, amount_cents: int) -> CashDrawer:
    """
    Add a committed cash sale to the drawer's expected balance.

    Only called from the checkout commit step, with its session. The row is
    locked so concurrent sales on the same drawer cannot lose increments.
    """
    drawer = lock_for_update(session.query(CashDrawer).filter_by(id=drawer_id)).first()
    if not drawer:
        raise NotFound("Cash drawer not found", details={"drawer_id": drawer_id})
    if drawer.status != DRAWER_OPEN:
        raise DrawerNotOpen("Cash drawer is closed", details={"drawer_id": drawer_id})

    drawer.expected_balance_cents = drawer.expected_balance_cents + amount_cents
    session.flush()
    return drawer


def close_drawer(
    *,
    actor_id: int,
    closing_balance_cents: int,
    notes: str | None = None,
) -> dict:
    """
    Close the operator's open drawer and compute the reconciliation difference.

    Returns:
        {"drawer", "expected_balance_cents", "difference_cents"}; a negative
        difference is a shortage, a positive one an overage.
    """
    def _op():
        with unit_of_work() as session:
            drawer = get_open_drawer(session, actor_id, lock=True)
            if not drawer:
                raise NoOpenDrawer("No open cash drawer found", details={"owner_id": actor_id})

            expected = drawer.expected_balance_cents
            drawer.status = DRAWER_CLOSED
            drawer.closed_at = utcnow()
            drawer.closing_balance_cents = closing_balance_cents
            drawer.difference_cents = closing_balance_cents - expected
            if notes:
                drawer.notes = f"{drawer.notes}\n{notes}" if drawer.notes else notes
            return drawer

    try:
        if closing_balance_cents is None or closing_balance_cents < 0:
            raise InvalidInput("Closing balance must be a non-negative amount")
        drawer = run_with_retry(_op)
    except Exception as exc:
        audit_service.log_audit_event(
            actor_id=actor_id,
            action="CASH_DRAWER_CLOSE_ERROR",
            description=str(exc),
            details=audit_service.failure_details(exc),
            success=False,
        )
        raise

    audit_service.log_audit_event(
        actor_id=actor_id,
        action="CASH_DRAWER_CLOSED",
        description="Cash drawer closed",
        details={
            "drawer_id": drawer.id,
            "opening_balance_cents": drawer.opening_balance_cents,
            "closing_balance_cents": drawer.closing_balance_cents,
            "expected_balance_cents": drawer.expected_balance_cents,
            "difference_cents": drawer.difference_cents,
        },
        severity="high" if drawer.difference_cents else "medium",
    )

    return {
        "drawer": drawer,
        "expected_balance_cents": drawer.expected_balance_cents,
        "difference_cents": drawer.difference_cents,
    }


def _cash_sales_total(drawer_id: int, status: str) -> int:
    value = (
        db.session.query(func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(
            Sale.cash_drawer_id == drawer_id,
            Sale.payment_method == PAYMENT_CASH,
            Sale.status == status,
        )
        .scalar()
    )
    return int(value or 0)


def get_drawer_status(actor_id: int) -> dict:
    """
    Open/closed state of the operator's drawer with a running summary.

    Cancelled cash sales stay in expected_balance_cents (the drawer is not
    adjusted on cancellation), so they are reported separately:
        expected = opening + cash_sales + cancelled_cash_sales
    """
    drawer = get_open_drawer(db.session, actor_id)
    if not drawer:
        return {"is_open": False, "drawer": None}

    return {
        "is_open": True,
        "drawer": drawer,
        "opening_balance_cents": drawer.opening_balance_cents,
        "cash_sales_cents": _cash_sales_total(drawer.id, SALE_COMPLETED),
        "cancelled_cash_sales_cents": _cash_sales_total(drawer.id, SALE_CANCELLED),
        "expected_balance_cents": drawer.expected_balance_cents,
        "open_minutes": int((utcnow() - drawer.opened_at).total_seconds() // 60),
    }

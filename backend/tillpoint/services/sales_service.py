# Overview: Read-side queries over committed sales (lookup, listing, statistics, receipts).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import NotFound
from ..extensions import db
from ..models import Sale
from ..models.sales import SALE_COMPLETED
from tillpoint.time_utils import day_bounds, month_start, to_utc_z, utcnow


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    status: str | None = None,
    payment_method: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Filtered, newest-first page of sales with the total match count."""
    q = db.session.query(Sale)
    if status:
        q = q.filter(Sale.status == status)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)
    if search:
        q = q.filter(Sale.sale_number.ilike(f"%{search}%"))

    total = q.count()
    sales = q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).offset(offset).all()
    return {"sales": sales, "total": total, "limit": limit, "offset": offset}


def _completed_total(start: datetime, end: datetime) -> int:
    value = (
        db.session.query(func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(
            Sale.status == SALE_COMPLETED,
            Sale.created_at >= start,
            Sale.created_at < end,
        )
        .scalar()
    )
    return int(value or 0)


def sales_statistics(now: datetime | None = None) -> dict:
    """Completed sales totals for today and month-to-date (UTC days)."""
    now = now or utcnow()
    today_start, tomorrow = day_bounds(now)
    return {
        "today_cents": _completed_total(today_start, tomorrow),
        "month_to_date_cents": _completed_total(month_start(now), tomorrow),
        "completed_count": db.session.query(Sale).filter(Sale.status == SALE_COMPLETED).count(),
    }


def receipt_data(sale: Sale) -> dict:
    return {
        "sale_number": sale.sale_number,
        "date": to_utc_z(sale.created_at),
        "items": [
            {
                "sku": item["sku"],
                "name": item["name"],
                "quantity": item["quantity"],
                "unit_price_cents": item["unit_price_cents"],
                "tax_cents": item["tax_cents"],
                "subtotal_cents": item["subtotal_cents"],
            }
            for item in sale.items
        ],
        "subtotal_cents": sale.subtotal_cents,
        "tax_cents": sale.tax_cents,
        "discount_cents": sale.discount_cents,
        "total_cents": sale.total_cents,
        "payment_method": sale.payment_method,
        "status": sale.status,
        "location": sale.location,
    }


def daily_report(day: datetime | None = None, *, user_id: int | None = None) -> dict:
    """
    Completed sales for one UTC day: counts, revenue, items sold, average
    ticket, a per-payment-method breakdown and the sales themselves
    (newest first). Optionally restricted to one operator.
    """
    start, end = day_bounds(day or utcnow())
    q = db.session.query(Sale).filter(
        Sale.status == SALE_COMPLETED,
        Sale.created_at >= start,
        Sale.created_at < end,
    )
    if user_id is not None:
        q = q.filter(Sale.user_id == user_id)
    sales = q.order_by(Sale.created_at.desc(), Sale.id.desc()).all()

    revenue = sum(s.total_cents for s in sales)
    items = sum(item["quantity"] for s in sales for item in s.items)

    by_method: dict[str, dict] = {}
    for s in sales:
        entry = by_method.setdefault(s.payment_method, {"count": 0, "total_cents": 0})
        entry["count"] += 1
        entry["total_cents"] += s.total_cents

    count = len(sales)
    return {
        "date": start.strftime("%Y-%m-%d"),
        "summary": {
            "total_sales": count,
            "total_revenue_cents": revenue,
            "total_items": items,
            # Half-up to the cent
            "average_ticket_cents": (2 * revenue + count) // (2 * count) if count else 0,
        },
        "payment_summary": by_method,
        "sales": [
            {
                "id": s.id,
                "sale_number": s.sale_number,
                "customer": s.customer.name if s.customer else None,
                "total_cents": s.total_cents,
                "payment_method": s.payment_method,
                "time": to_utc_z(s.created_at),
            }
            for s in sales
        ],
    }

# Overview: Flask API routes for checkout, sale lookup and cancellation.

# backend/tillpoint/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PosError
from ..services import cancellation_service, checkout_service, sales_service
from ..decorators import require_actor
from ..validation import coerce_cents, coerce_int
from tillpoint.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error_response(e: PosError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


@sales_bp.post("/checkout")
@require_actor
def checkout_route():
    """
    Check out a cart as one atomic sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "payment_method": "cash",
        "customer_id": 3,            (optional)
        "discount_cents": 100,       (optional)
        "payment_details": {...},    (optional)
        "notes": "...",              (optional)
        "location": "Main POS"       (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        payment_method = data.get("payment_method")
        if not payment_method:
            return jsonify({"error": "payment_method required"}), 400

        customer_id = data.get("customer_id")
        if customer_id is not None:
            customer_id = coerce_int(customer_id, "customer_id")

        sale = checkout_service.checkout(
            actor_id=g.actor_id,
            items=data.get("items"),
            payment_method=payment_method,
            customer_id=customer_id,
            discount_cents=coerce_cents(data.get("discount_cents"), "discount_cents", default=0),
            payment_details=data.get("payment_details"),
            notes=data.get("notes"),
            location=data.get("location"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check out sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@sales_bp.get("/")
@require_actor
def list_sales_route():
    """
    List sales, newest first.

    Query params: status, payment_method, customer_id, start, end (ISO-8601),
    search (sale number fragment), limit (default 50, max 200), offset
    """
    try:
        args = request.args
        customer_id = args.get("customer_id")
        limit = min(coerce_int(args.get("limit", "50"), "limit"), 200)
        offset = coerce_int(args.get("offset", "0"), "offset")
        if limit < 1 or offset < 0:
            return jsonify({"error": "limit must be >= 1 and offset >= 0"}), 400

        try:
            start = parse_iso_datetime(args.get("start"))
            end = parse_iso_datetime(args.get("end"))
        except ValueError:
            return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

        result = sales_service.list_sales(
            status=args.get("status"),
            payment_method=args.get("payment_method"),
            customer_id=coerce_int(customer_id, "customer_id") if customer_id else None,
            start=start,
            end=end,
            search=args.get("search"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "sales": [sale.to_dict() for sale in result["sales"]],
            "total": result["total"],
            "limit": result["limit"],
            "offset": result["offset"],
        }), 200

    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/statistics")
@require_actor
def sales_statistics_route():
    try:
        return jsonify(sales_service.sales_statistics()), 200
    except Exception:
        current_app.logger.exception("Failed to compute sales statistics")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/daily-report")
@require_actor
def daily_report_route():
    """
    Completed sales for one day.

    Query params: date (YYYY-MM-DD, default today UTC), user_id (optional)
    """
    try:
        day = parse_iso_datetime(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD"}), 400

    try:
        user_id = request.args.get("user_id")
        report = sales_service.daily_report(
            day,
            user_id=coerce_int(user_id, "user_id") if user_id else None,
        )
        return jsonify(report), 200
    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build daily report")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except PosError as e:
        return _error_response(e)


@sales_bp.get("/<int:sale_id>/receipt")
@require_actor
def sale_receipt_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"receipt": sales_service.receipt_data(sale)}), 200
    except PosError as e:
        return _error_response(e)


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
def cancel_sale_route(sale_id: int):
    """
    Cancel a completed sale within 24 hours of checkout.

    Request body:
    {
        "reason": "Customer changed their mind"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400

        sale = cancellation_service.cancel_sale(
            actor_id=g.actor_id,
            sale_id=sale_id,
            reason=reason,
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

# backend/tillpoint/routes/inventory.py
"""Inventory ledger routes: manual movements, transfers, counts and reports"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PosError
from ..services import stock_ledger
from ..decorators import require_actor
from ..validation import coerce_cents, coerce_int
from tillpoint.time_utils import parse_iso_datetime


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/<int:product_id>/movements")
@require_actor
def record_movement_route(product_id: int):
    """
    Record a manual stock movement.

    Request body:
    {
        "movement_type": "entry",
        "quantity_delta": 10,
        "unit_cost_cents": 450,   (optional, defaults to product cost)
        "note": "..."             (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("movement_type"):
            return jsonify({"error": "movement_type required"}), 400
        if data.get("quantity_delta") is None:
            return jsonify({"error": "quantity_delta required"}), 400

        unit_cost = data.get("unit_cost_cents")
        movement = stock_ledger.record_movement(
            actor_id=g.actor_id,
            product_id=product_id,
            movement_type=data["movement_type"],
            quantity_delta=coerce_int(data["quantity_delta"], "quantity_delta"),
            unit_cost_cents=coerce_cents(unit_cost, "unit_cost_cents") if unit_cost is not None else None,
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:product_id>/transfer")
@require_actor
def transfer_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("to_location") or data.get("quantity") is None:
            return jsonify({"error": "quantity and to_location required"}), 400

        movement = stock_ledger.transfer_stock(
            actor_id=g.actor_id,
            product_id=product_id,
            quantity=coerce_int(data["quantity"], "quantity"),
            to_location=data["to_location"],
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:product_id>/count")
@require_actor
def stock_count_route(product_id: int):
    """
    Set a product's stock to a counted quantity.

    Request body:
    {
        "counted_quantity": 42,
        "note": "Cycle count"  (optional)
    }

    Returns movement null when the count matches the recorded stock.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("counted_quantity") is None:
            return jsonify({"error": "counted_quantity required"}), 400

        movement = stock_ledger.set_stock_level(
            actor_id=g.actor_id,
            product_id=product_id,
            counted_quantity=coerce_int(data["counted_quantity"], "counted_quantity"),
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict() if movement else None}), 200

    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply stock count")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:product_id>/history")
@require_actor
def product_history_route(product_id: int):
    try:
        limit = min(coerce_int(request.args.get("limit", "100"), "limit"), 500)
        movements = stock_ledger.get_product_history(product_id, limit=limit)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code


@inventory_bp.get("/<int:product_id>/verify")
@require_actor
def verify_projection_route(product_id: int):
    try:
        return jsonify(stock_ledger.verify_projection(product_id)), 200
    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code


@inventory_bp.get("/summary")
@require_actor
def movement_summary_route():
    """Movement report. Query params: start, end (ISO-8601), movement_type"""
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    summary = stock_ledger.movement_summary(
        start=start,
        end=end,
        movement_type=request.args.get("movement_type"),
    )
    return jsonify(summary), 200


@inventory_bp.get("/low-stock")
@require_actor
def low_stock_route():
    products = stock_ledger.list_low_stock()
    return jsonify({"products": [p.to_dict() for p in products]}), 200

# Overview: Flask API routes for cash drawer sessions.

# backend/tillpoint/routes/drawers.py
"""
Cash Drawer API Routes

Shift lifecycle for the acting operator: open -> close. Cash sales feed the
expected balance; closing reports the counted difference.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PosError
from ..services import drawer_service
from ..decorators import require_actor
from ..validation import coerce_cents


drawers_bp = Blueprint("drawers", __name__, url_prefix="/api/drawers")


@drawers_bp.post("/open")
@require_actor
def open_drawer_route():
    """
    Open a drawer session.

    Request body:
    {
        "opening_balance_cents": 10000,
        "notes": "Morning shift"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        drawer = drawer_service.open_drawer(
            actor_id=g.actor_id,
            opening_balance_cents=coerce_cents(
                data.get("opening_balance_cents"), "opening_balance_cents", default=0
            ),
            notes=data.get("notes"),
        )
        return jsonify({"drawer": drawer.to_dict()}), 201

    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open cash drawer")
        return jsonify({"error": "Internal server error"}), 500


@drawers_bp.post("/close")
@require_actor
def close_drawer_route():
    """
    Close the operator's open drawer.

    Request body:
    {
        "closing_balance_cents": 12000,
        "notes": "..."  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("closing_balance_cents") is None:
            return jsonify({"error": "closing_balance_cents required"}), 400

        result = drawer_service.close_drawer(
            actor_id=g.actor_id,
            closing_balance_cents=coerce_cents(data.get("closing_balance_cents"), "closing_balance_cents"),
            notes=data.get("notes"),
        )
        return jsonify({
            "drawer": result["drawer"].to_dict(),
            "expected_balance_cents": result["expected_balance_cents"],
            "difference_cents": result["difference_cents"],
        }), 200

    except PosError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close cash drawer")
        return jsonify({"error": "Internal server error"}), 500


@drawers_bp.get("/status")
@require_actor
def drawer_status_route():
    status = drawer_service.get_drawer_status(g.actor_id)
    if status["drawer"] is not None:
        status["drawer"] = status["drawer"].to_dict()
    return jsonify(status), 200

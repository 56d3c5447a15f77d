# backend/settlement/routes/inventory.py
"""
Inventory routes.

Manual stock movements and reads. Sale deductions happen inside checkout,
never through this blueprint.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_operator
from ..services import inventory_service
from ..validation import ValidationError, NotFoundError, require_payload, require_fields, parse_int, clean_text


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@require_operator
def adjust_inventory_route():
    """
    Request body:
    {
        "product_id": 1,
        "adjustment_type": "add" | "remove" | "set" | "purchase" | "return" | "manual" | "adjustment",
        "quantity": 5,
        "reason": "Delivery 4411"
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "product_id", "adjustment_type", "quantity")

        result = inventory_service.adjust_inventory(
            parse_int(data.get("product_id"), "product_id", minimum=1),
            data.get("adjustment_type"),
            data.get("quantity"),
            reason=clean_text(data.get("reason"), "reason", max_length=255),
            operator_id=g.operator_id,
        )
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:product_id>")
def get_stock_route(product_id: int):
    try:
        inventory = inventory_service.get_stock(product_id)
        return jsonify({"inventory": inventory.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@inventory_bp.get("/<int:product_id>/adjustments")
def list_adjustments_route(product_id: int):
    limit = min(request.args.get("limit", 50, type=int), 500)
    adjustments = inventory_service.list_adjustments(product_id, limit=limit)
    return jsonify({"adjustments": [a.to_dict() for a in adjustments]}), 200

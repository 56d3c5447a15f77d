# Overview: Flask API routes for the cash drawer lifecycle; parses input and returns JSON responses.

"""
Cash Drawer API Routes

WHY: The till polls GET /api/cash-drawer for the open drawer and its
recent movements; supervisors close and reconcile.

DESIGN:
- Lifecycle: open -> close -> reconcile (no re-open)
- GET endpoints are read-only
- 409 for wrong-state transitions and a second open drawer
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_operator
from ..services import drawer_service
from ..validation import ValidationError, ConflictError, NotFoundError, require_payload, require_fields


cash_drawer_bp = Blueprint("cash_drawer", __name__, url_prefix="/api/cash-drawer")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    return jsonify({"error": str(e)}), 404


@cash_drawer_bp.get("")
@cash_drawer_bp.get("/")
def current_drawer_route():
    """Open drawer (or null) plus its latest transactions."""
    drawer = drawer_service.get_open_drawer()
    if drawer is None:
        return jsonify({"drawer": None, "transactions": []}), 200
    limit = min(request.args.get("limit", 50, type=int), 500)
    txns = drawer_service.list_drawer_transactions(drawer.id, limit=limit)
    return jsonify({
        "drawer": drawer.to_dict(),
        "transactions": [t.to_dict() for t in txns],
    }), 200


@cash_drawer_bp.get("/<int:drawer_id>")
def drawer_summary_route(drawer_id: int):
    try:
        return jsonify(drawer_service.drawer_summary(drawer_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@cash_drawer_bp.post("/open")
@require_operator
def open_drawer_route():
    """Body: {"opening_balance": "50000"}"""
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "opening_balance")
        drawer = drawer_service.open_drawer(data.get("opening_balance"), operator_id=g.operator_id)
        return jsonify({"drawer": drawer.to_dict()}), 201

    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open cash drawer")
        return jsonify({"error": "Internal server error"}), 500


@cash_drawer_bp.post("/<int:drawer_id>/transactions")
@require_operator
def add_transaction_route(drawer_id: int):
    """
    Request body:
    {
        "transaction_type": "cash_in" | "cash_out" | "deposit" | "withdrawal" | "adjustment",
        "amount": "20000",
        "description": "Float top-up",
        "notes": "optional"
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "transaction_type", "amount", "description")
        txn = drawer_service.record_drawer_transaction(
            drawer_id,
            data.get("transaction_type"),
            data.get("amount"),
            data.get("description"),
            operator_id=g.operator_id,
            notes=data.get("notes"),
        )
        return jsonify({"transaction": txn.to_dict(), "drawer": txn.drawer.to_dict()}), 201

    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record cash drawer transaction")
        return jsonify({"error": "Internal server error"}), 500


@cash_drawer_bp.post("/<int:drawer_id>/close")
@require_operator
def close_drawer_route(drawer_id: int):
    """Body: {"actual_balance": "64000", "notes": "optional"}"""
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "actual_balance")
        drawer = drawer_service.close_drawer(
            drawer_id,
            data.get("actual_balance"),
            operator_id=g.operator_id,
            notes=data.get("notes"),
        )
        return jsonify({
            "drawer": drawer.to_dict(),
            "discrepancy_status": drawer_service.classify_discrepancy(drawer.discrepancy),
        }), 200

    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to close cash drawer")
        return jsonify({"error": "Internal server error"}), 500


@cash_drawer_bp.post("/<int:drawer_id>/reconcile")
@require_operator
def reconcile_drawer_route(drawer_id: int):
    """Body: {"actual_balance": "64000", "notes": "Counted twice, 1000 short"}"""
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "actual_balance")
        result = drawer_service.reconcile_drawer(
            drawer_id,
            data.get("actual_balance"),
            data.get("notes"),
            operator_id=g.operator_id,
        )
        return jsonify(result.to_dict()), 200

    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reconcile cash drawer")
        return jsonify({"error": "Internal server error"}), 500

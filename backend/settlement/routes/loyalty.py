# Overview: Flask API routes for loyalty enrollment, manual points and redemption.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_operator
from ..services import loyalty_service
from ..validation import ValidationError, ConflictError, NotFoundError, require_payload, require_fields, parse_int, clean_text


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.post("/enroll")
@require_operator
def enroll_route():
    """
    Request body:
    {
        "customer_id": 7,
        "program_id": 1   (optional, defaults to the first active program)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "customer_id")
        program_id = data.get("program_id")

        account = loyalty_service.enroll_customer(
            parse_int(data.get("customer_id"), "customer_id", minimum=1),
            None if program_id is None else parse_int(program_id, "program_id", minimum=1),
        )
        return jsonify({"account": account.to_dict()}), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to enroll customer")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/accounts/<int:account_id>/points")
@require_operator
def add_points_route(account_id: int):
    """Manual adjustment. Body: {"points": 50, "reason": "Goodwill"}"""
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "points")
        txn = loyalty_service.add_points(
            account_id,
            data.get("points"),
            reason=clean_text(data.get("reason"), "reason", max_length=255),
            operator_id=g.operator_id,
        )
        return jsonify({"transaction": txn.to_dict()}), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust loyalty points")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/accounts/<int:account_id>/redeem")
@require_operator
def redeem_route(account_id: int):
    """Body: {"points": 100, "reason": "Voucher"}"""
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "points")
        txn = loyalty_service.redeem_points(
            account_id,
            data.get("points"),
            reason=clean_text(data.get("reason"), "reason", max_length=255),
            operator_id=g.operator_id,
        )
        return jsonify({"transaction": txn.to_dict()}), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to redeem loyalty points")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/accounts/<int:account_id>/transactions")
def list_transactions_route(account_id: int):
    try:
        limit = min(request.args.get("limit", 50, type=int), 500)
        txns = loyalty_service.list_transactions(account_id, limit=limit)
        return jsonify({"transactions": [t.to_dict() for t in txns]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

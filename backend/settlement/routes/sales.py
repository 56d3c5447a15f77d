# Overview: Flask API routes for totals preview and checkout; parses input and returns JSON responses.

"""
Sales API Routes

DESIGN:
- POST /totals is a read-only preview; it never writes
- POST /checkout settles a cart and returns the receipt (201)
- Payment declines are 402 with the processor's reason
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_operator
from ..services import sales_service
from ..services.inventory_service import InventoryAdjustmentError
from ..services.payment_service import CardDetails, PaymentError
from ..services.sales_service import CheckoutError, CheckoutRequest
from ..services.totals_service import compute_totals
from ..validation import (
    ValidationError, ConflictError, NotFoundError,
    require_payload, parse_amount, parse_int, clean_text,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _parse_card(data) -> CardDetails | None:
    card = data.get("card")
    if card is None:
        return None
    if not isinstance(card, dict):
        raise ValidationError("card must be an object")
    return CardDetails(
        number=clean_text(card.get("number"), "card.number", required=True, max_length=32),
        exp_month=parse_int(card.get("exp_month"), "card.exp_month", minimum=1),
        exp_year=parse_int(card.get("exp_year"), "card.exp_year", minimum=2000),
        cvv=clean_text(card.get("cvv"), "card.cvv", required=True, max_length=4),
        holder_name=clean_text(card.get("holder_name"), "card.holder_name", max_length=128),
    )


@sales_bp.post("/totals")
def preview_totals_route():
    """
    Totals preview for the cart being edited.

    Request body:
    {
        "lines": [{"product_id": 1, "quantity": 3, "unit_price": "1000", "tax_rate": "18"}]
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        lines = sales_service.parse_cart(data.get("lines"))
        sales_service.validate_cart(lines)
        totals = compute_totals(lines)
        return jsonify({"totals": totals.to_dict(), "line_count": len(lines)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to compute totals")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/checkout")
@require_operator
def checkout_route():
    """
    Settle a cart.

    Request body:
    {
        "lines": [...],
        "payment_method_id": 1,
        "amount_tendered": "5000",          (cash only, optional)
        "customer_id": 7,                   (optional)
        "card": {"number": "...", "exp_month": 12, "exp_year": 2030, "cvv": "123"},
        "phone_number": "+256700000000",    (mobile money)
        "client_request_id": "till-1-000123"  (optional idempotency key)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        tendered = data.get("amount_tendered")
        customer_id = data.get("customer_id")

        checkout_request = CheckoutRequest(
            lines=sales_service.parse_cart(data.get("lines")),
            payment_method_id=parse_int(data.get("payment_method_id"), "payment_method_id", minimum=1),
            operator_id=g.operator_id,
            amount_tendered=None if tendered is None else parse_amount(tendered, "amount_tendered"),
            customer_id=None if customer_id is None else parse_int(customer_id, "customer_id", minimum=1),
            card=_parse_card(data),
            phone_number=clean_text(data.get("phone_number"), "phone_number", max_length=32),
            client_request_id=clean_text(data.get("client_request_id"), "client_request_id", max_length=64),
        )
        receipt = sales_service.checkout(checkout_request)
        return jsonify({"receipt": receipt.to_dict()}), 200 if receipt.replayed else 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except PaymentError as e:
        return jsonify({"error": str(e) or "Payment processing failed"}), 402
    except InventoryAdjustmentError as e:
        return jsonify({
            "error": "Inventory update failed; the sale was not saved and the payment was reversed",
            "product_id": e.product_id,
            "line_number": e.line_number,
        }), 500
    except CheckoutError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to check out")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "sale": sale.to_dict(),
            "lines": [line.to_dict() for line in sale.lines],
            "payment": sale.payment.to_dict() if sale.payment else None,
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

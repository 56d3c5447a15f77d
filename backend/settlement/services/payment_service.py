# Overview: Payment routing by method category; dispatches to cash, card or mobile-money gateways.

"""
Payment Router

WHY: A sale is only created once its payment has succeeded, so the router
is the gate between a priced cart and a persisted sale.

DESIGN PRINCIPLES:
- Routing uses PaymentMethod.category; display-name matching only for
  legacy rows without one
- Unrecognized methods settle as cash and are flagged for audit
- Raw card data never leaves this module: gateways and storage see only
  the token and last four digits
- Every attempt is appended to payment_attempts
- Gateways are pluggable per payment type (app.extensions["payment_gateways"])
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import PaymentAttempt, PaymentMethod
from ..time_utils import utcnow
from . import pci


class PaymentError(Exception):
    """Raised when a payment is declined or cannot be processed."""

    def __init__(self, message: str = "Payment processing failed", *, reference: str | None = None):
        super().__init__(message)
        self.reference = reference


# =============================================================================
# PAYMENT TYPES (CONSTANTS)
# =============================================================================

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_MOBILE = "mobile"
PAYMENT_OTHER = "other"

VALID_PAYMENT_TYPES = [PAYMENT_CASH, PAYMENT_CARD, PAYMENT_MOBILE, PAYMENT_OTHER]

CARD_KEYWORDS = ("card", "credit", "debit", "visa", "mastercard")
MOBILE_KEYWORDS = ("mobile", "momo", "airtel", "mtn", "mpesa")

ATTEMPT_INITIATED = "initiated"
ATTEMPT_COMPLETED = "completed"
ATTEMPT_FAILED = "failed"
ATTEMPT_REFUNDED = "refunded"


@dataclass(frozen=True)
class CardDetails:
    number: str
    exp_month: int
    exp_year: int
    cvv: str
    holder_name: str | None = None


@dataclass(frozen=True)
class PaymentRequest:
    payment_method: PaymentMethod
    amount: Decimal
    invoice_number: str
    operator_id: str | None = None
    card: CardDetails | None = None
    phone_number: str | None = None


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    payment_type: str
    reference: str | None = None
    error: str | None = None
    audit_flag: bool = False
    card_token: str | None = None
    card_last_four: str | None = None
    masked_phone: str | None = None


@dataclass(frozen=True)
class GatewayCharge:
    """What a gateway is allowed to see."""
    amount: Decimal
    invoice_number: str
    card_token: str | None = None
    card_last_four: str | None = None
    phone_number: str | None = None


@dataclass(frozen=True)
class GatewayResponse:
    approved: bool
    reference: str | None = None
    error: str | None = None


# =============================================================================
# GATEWAYS
# =============================================================================

class PaymentGateway:
    """Settlement path for one payment type."""

    name = "gateway"

    def charge(self, charge: GatewayCharge) -> GatewayResponse:
        raise NotImplementedError

    def refund(self, reference: str, amount: Decimal) -> bool:
        raise NotImplementedError


class CashGateway(PaymentGateway):
    """Cash needs no external call; the reference is local."""

    name = "cash"

    def charge(self, charge: GatewayCharge) -> GatewayResponse:
        return GatewayResponse(approved=True, reference=f"cash_{uuid.uuid4().hex[:16]}")

    def refund(self, reference: str, amount: Decimal) -> bool:
        return True


class LocalCardGateway(PaymentGateway):
    """Approves any tokenized charge. Stand-in until a processor is configured."""

    name = "local-card"

    def charge(self, charge: GatewayCharge) -> GatewayResponse:
        if not charge.card_token:
            return GatewayResponse(approved=False, error="Card token required")
        return GatewayResponse(approved=True, reference=f"txn_{uuid.uuid4().hex[:16]}")

    def refund(self, reference: str, amount: Decimal) -> bool:
        return True


class LocalMobileMoneyGateway(PaymentGateway):
    name = "local-mobile"

    def charge(self, charge: GatewayCharge) -> GatewayResponse:
        if not charge.phone_number:
            return GatewayResponse(approved=False, error="Phone number required")
        return GatewayResponse(approved=True, reference=f"mm_{uuid.uuid4().hex[:16]}")

    def refund(self, reference: str, amount: Decimal) -> bool:
        return True


def register_default_gateways(app) -> None:
    app.extensions.setdefault("payment_gateways", {
        PAYMENT_CASH: CashGateway(),
        PAYMENT_CARD: LocalCardGateway(),
        PAYMENT_MOBILE: LocalMobileMoneyGateway(),
    })


def get_gateway(payment_type: str) -> PaymentGateway:
    gateways = current_app.extensions.get("payment_gateways", {})
    # "other" settles as cash
    key = PAYMENT_CASH if payment_type == PAYMENT_OTHER else payment_type
    gateway = gateways.get(key)
    if gateway is None:
        raise PaymentError(f"No gateway configured for {payment_type} payments")
    return gateway


# =============================================================================
# ROUTING
# =============================================================================

def classify_payment_method(method: PaymentMethod) -> str:
    """
    Resolve a payment method to cash, card, mobile or other.

    The explicit category wins. Legacy rows fall back to substring matching
    on the display name.
    """
    category = (method.category or "").strip().lower()
    if category in VALID_PAYMENT_TYPES:
        return category

    name = (method.name or "").lower()
    if "cash" in name:
        return PAYMENT_CASH
    if any(keyword in name for keyword in CARD_KEYWORDS):
        return PAYMENT_CARD
    if any(keyword in name for keyword in MOBILE_KEYWORDS):
        return PAYMENT_MOBILE
    return PAYMENT_OTHER


def settles_as_cash(payment_type: str) -> bool:
    return payment_type in (PAYMENT_CASH, PAYMENT_OTHER)


def _validate_card(card: CardDetails | None) -> str | None:
    if card is None or not card.number:
        return "Card details required"
    if not pci.luhn_valid(card.number):
        return "Invalid card number"
    if not 1 <= int(card.exp_month) <= 12:
        return "Invalid card expiry"
    now = utcnow()
    if (int(card.exp_year), int(card.exp_month)) < (now.year, now.month):
        return "Card expired"
    cvv = pci.digits_only(card.cvv)
    if len(cvv) not in (3, 4) or cvv != (card.cvv or "").strip():
        return "Invalid card security code"
    return None


def _record_attempt(request: PaymentRequest, result: PaymentResult, status: str) -> PaymentAttempt:
    attempt = PaymentAttempt(
        invoice_number=request.invoice_number,
        payment_method_id=request.payment_method.id,
        payment_type=result.payment_type,
        amount=request.amount,
        status=status,
        processor_reference=result.reference,
        error=result.error,
        operator_id=request.operator_id,
        occurred_at=utcnow(),
    )
    db.session.add(attempt)
    return attempt


def process_payment(request: PaymentRequest) -> PaymentResult:
    """
    Route and execute a payment. Never raises for a decline; the result
    says whether it succeeded.

    An `initiated` attempt is committed before the gateway is contacted
    (together with anything else pending in the session). Its final status
    is left in the session for the caller to commit.
    """
    payment_type = classify_payment_method(request.payment_method)
    audit_flag = payment_type == PAYMENT_OTHER
    if audit_flag:
        current_app.logger.warning(
            "Unrecognized payment method %r (id=%s) settled as cash for %s",
            request.payment_method.name, request.payment_method.id, request.invoice_number,
        )

    charge = GatewayCharge(amount=request.amount, invoice_number=request.invoice_number)
    card_token = card_last_four = masked_phone = None

    if payment_type == PAYMENT_CARD:
        error = _validate_card(request.card)
        if error:
            result = PaymentResult(success=False, payment_type=payment_type, error=error)
            _record_attempt(request, result, ATTEMPT_FAILED)
            return result
        card_token = pci.tokenize_card(request.card.number)
        card_last_four = pci.last_four(request.card.number)
        charge = GatewayCharge(
            amount=request.amount,
            invoice_number=request.invoice_number,
            card_token=card_token,
            card_last_four=card_last_four,
        )
    elif payment_type == PAYMENT_MOBILE:
        phone = pci.normalize_phone(request.phone_number)
        if not phone:
            result = PaymentResult(success=False, payment_type=payment_type, error="Valid phone number required for mobile money")
            _record_attempt(request, result, ATTEMPT_FAILED)
            return result
        masked_phone = pci.mask_phone(phone)
        charge = GatewayCharge(amount=request.amount, invoice_number=request.invoice_number, phone_number=phone)

    attempt = _record_attempt(
        request, PaymentResult(success=False, payment_type=payment_type), ATTEMPT_INITIATED
    )
    db.session.commit()

    try:
        response = get_gateway(payment_type).charge(charge)
    except Exception:
        current_app.logger.exception("Payment gateway error for %s", request.invoice_number)
        response = GatewayResponse(approved=False, error="Payment processing failed")

    result = PaymentResult(
        success=response.approved,
        payment_type=payment_type,
        reference=response.reference,
        error=None if response.approved else (response.error or "Payment declined"),
        audit_flag=audit_flag,
        card_token=card_token,
        card_last_four=card_last_four,
        masked_phone=masked_phone,
    )
    attempt.status = ATTEMPT_COMPLETED if result.success else ATTEMPT_FAILED
    attempt.processor_reference = result.reference
    attempt.error = result.error
    return result


def refund_payment(request: PaymentRequest, result: PaymentResult) -> bool:
    """
    Compensating action for a charge whose sale could not be stored.

    Returns False (and logs) if the gateway refuses or errors.
    """
    try:
        refunded = get_gateway(result.payment_type).refund(result.reference, request.amount)
    except Exception:
        current_app.logger.exception("Refund failed for %s (%s)", request.invoice_number, result.reference)
        refunded = False

    if refunded:
        _record_attempt(request, result, ATTEMPT_REFUNDED)
    else:
        current_app.logger.error(
            "Payment %s for %s was charged but not refunded; manual follow-up required",
            result.reference, request.invoice_number,
        )
    return refunded

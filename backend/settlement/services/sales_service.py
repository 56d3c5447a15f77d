# Overview: Checkout orchestration: totals, invoice number, payment, persistence, inventory, loyalty.

"""
Sale Orchestrator

WHY: Turning a cart into a completed sale touches five subsystems. The
order and the failure policy of those calls is the whole point of this
module.

SEQUENCE:
1. Validate the cart and tender (nothing written on failure)
2. Compute totals (pure)
3. For cash with change due: an open drawer must be able to pay it out
4. Generate the invoice number (never fails) and commit it
5. Charge the payment with no write transaction open. A decline aborts
   here; only the attempt is kept.
6. One transaction: sale header, lines, payment record, stock deductions
   and the cash drawer posting. On failure everything rolls back and the
   charge is refunded.
7. Best-effort, each in its own savepoint: customer aggregates, loyalty
8. Return the receipt

DESIGN:
- The cart is an immutable tuple of CartLine; checkout holds no state
- A sale row exists only for a successful payment
- client_request_id makes a re-submitted checkout return the first receipt
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Customer, PaymentMethod, PaymentRecord, Product, Sale, SaleLine
from ..money_utils import ZERO, quantize
from ..validation import (
    ValidationError, ConflictError, NotFoundError, parse_amount, parse_int, parse_rate, clean_text,
)
from .customer_service import update_customer_aggregates
from .drawer_service import TXN_CASH_IN, ensure_cash_for_change, record_drawer_transaction
from .inventory_service import InventoryAdjustmentError, deduct_for_sale
from .invoice_service import generate_invoice_number
from .loyalty_service import accrue_loyalty, find_account_for_customer
from .payment_service import (
    CardDetails, PaymentError, PaymentRequest, classify_payment_method,
    process_payment, refund_payment, settles_as_cash,
)
from .totals_service import CartLine, Totals, compute_line, compute_totals


class CheckoutError(Exception):
    """The sale could not be stored after payment; the charge was reversed."""


@dataclass(frozen=True)
class CheckoutRequest:
    lines: tuple[CartLine, ...]
    payment_method_id: int
    operator_id: str
    amount_tendered: Decimal | None = None
    customer_id: int | None = None
    card: CardDetails | None = None
    phone_number: str | None = None
    client_request_id: str | None = None


@dataclass(frozen=True)
class SaleHeader:
    invoice_number: str
    operator_id: str
    payment_method_id: int
    amount_tendered: Decimal
    change_due: Decimal
    customer_id: int | None = None
    client_request_id: str | None = None


@dataclass(frozen=True)
class Receipt:
    sale: Sale
    totals: Totals
    payment_method: str
    payment_reference: str | None
    amount_tendered: Decimal
    change_due: Decimal
    points_earned: int = 0
    shortfalls: tuple[dict, ...] = field(default_factory=tuple)
    replayed: bool = False

    def to_dict(self) -> dict:
        customer = self.sale.customer
        return {
            "sale_id": self.sale.id,
            "invoice_number": self.sale.invoice_number,
            "created_at": self.sale.to_dict()["created_at"],
            "operator_id": self.sale.operator_id,
            "lines": [line.to_dict() for line in self.sale.lines],
            **self.totals.to_dict(),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "currency": current_app.config.get("CURRENCY"),
            "amount_tendered": str(self.amount_tendered),
            "change_due": str(self.change_due),
            "customer": {"id": customer.id, "name": customer.name} if customer else None,
            "points_earned": self.points_earned,
            "shortfalls": list(self.shortfalls),
            "replayed": self.replayed,
        }


# =============================================================================
# CART PARSING
# =============================================================================

def parse_cart(items) -> tuple[CartLine, ...]:
    """
    Build CartLines from request JSON.

    Missing name, price or tax rate are filled from the product row; a
    provided unit_price is the price the cashier charged.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Cart is empty")

    lines = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Line {index}: invalid line item")
        product_id = parse_int(item.get("product_id"), f"lines[{index}].product_id", minimum=1)
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ValidationError(f"Line {index}: product {product_id} not found or inactive")

        unit_price = item.get("unit_price")
        tax_rate = item.get("tax_rate")
        lines.append(CartLine(
            product_id=product_id,
            product_name=clean_text(item.get("product_name"), "product_name", max_length=255) or product.name,
            unit_price=parse_amount(product.price if unit_price is None else unit_price, f"lines[{index}].unit_price"),
            quantity=parse_int(item.get("quantity"), f"lines[{index}].quantity", minimum=1),
            discount_amount=parse_amount(item.get("discount_amount") or 0, f"lines[{index}].discount_amount"),
            tax_rate=parse_rate(product.tax_rate if tax_rate is None else tax_rate, f"lines[{index}].tax_rate"),
        ))
    return tuple(lines)


def validate_cart(lines: Sequence[CartLine]) -> None:
    if not lines:
        raise ValidationError("Cart is empty")
    for index, line in enumerate(lines, start=1):
        if line.quantity <= 0:
            raise ValidationError(f"Line {index}: quantity must be > 0")
        if line.unit_price < 0:
            raise ValidationError(f"Line {index}: unit_price must be >= 0")
        if line.discount_amount < 0:
            raise ValidationError(f"Line {index}: discount_amount must be >= 0")
        if line.tax_rate < 0:
            raise ValidationError(f"Line {index}: tax_rate must be >= 0")
        amounts = compute_line(line)
        if amounts.discount_amount > amounts.gross:
            raise ValidationError(f"Line {index}: discount exceeds line amount")


# =============================================================================
# PERSISTENCE
# =============================================================================

def create_sale(header: SaleHeader, lines: Sequence[CartLine]) -> Sale:
    """
    Insert the sale header and its lines. Flushes; the caller commits.

    Amounts are recomputed from the lines so total == sum(line_total).
    """
    totals = compute_totals(lines)
    sale = Sale(
        invoice_number=header.invoice_number,
        operator_id=header.operator_id,
        customer_id=header.customer_id,
        payment_method_id=header.payment_method_id,
        status="completed",
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        discount_amount=totals.discount_amount,
        total=totals.total,
        amount_tendered=header.amount_tendered,
        change_due=header.change_due,
        points_earned=0,
        client_request_id=header.client_request_id,
    )
    db.session.add(sale)
    db.session.flush()

    for number, line in enumerate(lines, start=1):
        amounts = compute_line(line)
        db.session.add(SaleLine(
            sale_id=sale.id,
            line_number=number,
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price=quantize(line.unit_price),
            tax_rate=line.tax_rate,
            tax_amount=amounts.tax_amount,
            discount_amount=amounts.discount_amount,
            line_total=amounts.line_total,
        ))
    db.session.flush()
    db.session.refresh(sale)
    return sale


def _resolve_tender(total: Decimal, tendered: Decimal | None, is_cash: bool) -> tuple[Decimal, Decimal]:
    """Return (amount_tendered, change_due)."""
    if not is_cash:
        return total, ZERO
    if tendered is None:
        return total, ZERO
    tendered = quantize(tendered)
    if tendered < total:
        raise ValidationError(f"Amount tendered {tendered} is less than the total {total}")
    return tendered, tendered - total


def _best_effort(label: str, invoice_number: str, func):
    try:
        with db.session.begin_nested():
            return func()
    except Exception:
        current_app.logger.warning("%s failed for %s; sale kept", label, invoice_number, exc_info=True)
        return None


def build_receipt(sale: Sale, *, shortfalls=(), replayed: bool = False) -> Receipt:
    payment = sale.payment
    return Receipt(
        sale=sale,
        totals=Totals(
            subtotal=quantize(sale.subtotal),
            tax_amount=quantize(sale.tax_amount),
            discount_amount=quantize(sale.discount_amount),
            total=quantize(sale.total),
        ),
        payment_method=sale.payment_method.name,
        payment_reference=payment.processor_reference if payment else None,
        amount_tendered=quantize(sale.amount_tendered),
        change_due=quantize(sale.change_due),
        points_earned=sale.points_earned or 0,
        shortfalls=tuple(shortfalls),
        replayed=replayed,
    )


def find_sale_by_request_id(client_request_id: str | None) -> Sale | None:
    if not client_request_id:
        return None
    return db.session.query(Sale).filter_by(client_request_id=client_request_id).first()


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


# =============================================================================
# CHECKOUT
# =============================================================================

def checkout(request: CheckoutRequest) -> Receipt:
    """
    Settle a cart.

    Raises:
        ValidationError: Cart, tender or method invalid (nothing written)
        ConflictError: Cash change due but no drawer can pay it, or the drawer
            was closed before the sale was posted (payment refunded)
        PaymentError: Payment declined (only the attempt is written)
        InventoryAdjustmentError: A stock deduction failed; sale rolled back, payment refunded
        CheckoutError: Any other failure storing the sale; payment refunded
    """
    validate_cart(request.lines)
    operator_id = clean_text(request.operator_id, "operator_id", required=True, max_length=64)
    client_request_id = clean_text(request.client_request_id, "client_request_id", max_length=64)

    existing = find_sale_by_request_id(client_request_id)
    if existing is not None:
        return build_receipt(existing, replayed=True)

    method = db.session.get(PaymentMethod, request.payment_method_id)
    if method is None or not method.is_active:
        raise ValidationError("Payment method not found or inactive")
    if request.customer_id is not None and db.session.get(Customer, request.customer_id) is None:
        raise ValidationError(f"Customer {request.customer_id} not found")

    totals = compute_totals(request.lines)
    if totals.total < ZERO:
        raise ValidationError("Sale total cannot be negative")

    payment_type = classify_payment_method(method)
    is_cash = settles_as_cash(payment_type)
    amount_tendered, change_due = _resolve_tender(totals.total, request.amount_tendered, is_cash)
    drawer = ensure_cash_for_change(change_due) if is_cash else None

    invoice_number = generate_invoice_number()
    # No write transaction may stay open across the gateway call
    db.session.commit()

    payment_request = PaymentRequest(
        payment_method=method,
        amount=totals.total,
        invoice_number=invoice_number,
        operator_id=operator_id,
        card=request.card,
        phone_number=request.phone_number,
    )
    result = process_payment(payment_request)
    # Final attempt status
    db.session.commit()
    if not result.success:
        raise PaymentError(result.error or "Payment processing failed")

    header = SaleHeader(
        invoice_number=invoice_number,
        operator_id=operator_id,
        payment_method_id=method.id,
        amount_tendered=amount_tendered,
        change_due=change_due,
        customer_id=request.customer_id,
        client_request_id=client_request_id,
    )

    try:
        sale = create_sale(header, request.lines)
        db.session.add(PaymentRecord(
            sale_id=sale.id,
            payment_method_id=method.id,
            payment_type=result.payment_type,
            amount=totals.total,
            processor_reference=result.reference,
            card_token=result.card_token,
            card_last_four=result.card_last_four,
            masked_phone=result.masked_phone,
            audit_flag=result.audit_flag,
        ))
        adjustments = deduct_for_sale(sale, operator_id)
        if is_cash:
            if drawer is not None:
                record_drawer_transaction(
                    drawer.id,
                    TXN_CASH_IN,
                    totals.total,
                    f"Sale {invoice_number}",
                    operator_id,
                    sale_id=sale.id,
                    commit=False,
                )
            else:
                current_app.logger.warning("Cash sale %s recorded with no open drawer", invoice_number)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _compensate(payment_request, result)

        if isinstance(exc, IntegrityError) and client_request_id:
            replay = find_sale_by_request_id(client_request_id)
            if replay is not None:
                return build_receipt(replay, replayed=True)
        if isinstance(exc, ConflictError):
            current_app.logger.warning("Checkout %s aborted: %s", invoice_number, exc)
            raise
        if isinstance(exc, InventoryAdjustmentError):
            current_app.logger.error("Checkout %s aborted: %s", invoice_number, exc)
            raise
        current_app.logger.exception("Failed to store sale %s", invoice_number)
        raise CheckoutError("Sale could not be saved; payment was reversed") from exc

    if request.customer_id is not None:
        _best_effort(
            "Customer aggregate update",
            invoice_number,
            lambda: update_customer_aggregates(request.customer_id, totals.total, visited_at=sale.created_at),
        )

        def _accrue() -> int:
            account = find_account_for_customer(request.customer_id)
            accrual = accrue_loyalty(
                account.id if account else None,
                totals.total,
                sale_id=sale.id,
                operator_id=operator_id,
                reason=f"Purchase: {invoice_number}",
                commit=False,
            )
            sale.points_earned = accrual.points_earned
            db.session.flush()
            return accrual.points_earned

        _best_effort("Loyalty accrual", invoice_number, _accrue)

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Post-sale updates for %s were not saved", invoice_number, exc_info=True)

    shortfalls = [
        {
            "product_id": item.adjustment.product_id,
            "requested": item.shortfall - item.quantity_change,
            "deducted": -item.quantity_change,
            "shortfall": item.shortfall,
        }
        for item in adjustments
        if item.shortfall
    ]
    current_app.logger.info(
        "Sale %s completed: total %s via %s by %s", invoice_number, totals.total, method.name, operator_id
    )
    return build_receipt(sale, shortfalls=shortfalls)


def _compensate(payment_request: PaymentRequest, result) -> None:
    refund_payment(payment_request, result)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Could not record refund for %s", payment_request.invoice_number, exc_info=True)

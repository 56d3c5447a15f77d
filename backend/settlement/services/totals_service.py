# Overview: Pure cart arithmetic shared by the totals preview and checkout.

"""
Totals Calculator

WHY: The preview shown while the cart is edited and the amounts persisted
at checkout must agree to the cent. Both go through compute_totals.

DESIGN:
- No I/O, no session access; same input gives the same output
- Each line is rounded half-up to cents on its own, so the sale total is
  exactly the sum of the stored line totals
- Tax is a percentage of the line gross (before discount)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..money_utils import ZERO, quantize

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CartLine:
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    discount_amount: Decimal = ZERO
    tax_rate: Decimal = ZERO  # percent


@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "discount_amount": str(self.discount_amount),
            "total": str(self.total),
        }


def compute_line(line: CartLine) -> LineAmounts:
    gross = quantize(Decimal(line.unit_price) * line.quantity)
    tax = quantize(Decimal(line.unit_price) * line.quantity * Decimal(line.tax_rate) / HUNDRED)
    discount = quantize(line.discount_amount)
    return LineAmounts(
        gross=gross,
        tax_amount=tax,
        discount_amount=discount,
        line_total=gross + tax - discount,
    )


def compute_totals(cart_lines: Iterable[CartLine]) -> Totals:
    """
    subtotal = sum(unit_price * quantity)
    tax_amount = sum(unit_price * quantity * tax_rate / 100)
    discount_amount = sum(line discount)
    total = subtotal + tax_amount - discount_amount
    """
    subtotal = ZERO
    tax = ZERO
    discount = ZERO
    for line in cart_lines:
        amounts = compute_line(line)
        subtotal += amounts.gross
        tax += amounts.tax_amount
        discount += amounts.discount_amount
    return Totals(
        subtotal=subtotal,
        tax_amount=tax,
        discount_amount=discount,
        total=subtotal + tax - discount,
    )

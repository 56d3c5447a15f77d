# Overview: Stock movements; every change to Inventory.quantity goes through adjust_inventory.

"""
Inventory Ledger

WHY: Stock on hand must never go negative, and every movement must be
explainable after the fact.

DESIGN PRINCIPLES:
- Inventory.quantity is the running balance; inventory_adjustments is the
  append-only history (quantity_after == quantity_before + quantity_change)
- Deductions clamp at zero: selling 5 with 2 on hand logs a change of -2
  and a shortfall of 3
- Set-type adjustments overwrite with a counted quantity and log the delta
- Rows are read FOR UPDATE and version-counted
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Inventory, InventoryAdjustment, Product, Sale
from ..time_utils import utcnow
from ..validation import ValidationError, NotFoundError, parse_int
from .concurrency import lock_for_update, run_with_retry


class InventoryAdjustmentError(Exception):
    """
    Stock deduction failed for one line of a sale being settled.

    Distinct from payment or validation failures: the payment has already
    gone through when this is raised.
    """

    def __init__(self, message: str, *, product_id: int | None = None, line_number: int | None = None):
        super().__init__(message)
        self.product_id = product_id
        self.line_number = line_number


# =============================================================================
# ADJUSTMENT TYPES (CONSTANTS)
# =============================================================================

ADJUST_SALE = "sale"
ADJUST_PURCHASE = "purchase"
ADJUST_RETURN = "return"
ADJUST_ADD = "add"
ADJUST_REMOVE = "remove"
ADJUST_SET = "set"
ADJUST_MANUAL = "manual"
ADJUST_ADJUSTMENT = "adjustment"

INCREASE_TYPES = (ADJUST_ADD, ADJUST_PURCHASE, ADJUST_RETURN)
DECREASE_TYPES = (ADJUST_REMOVE, ADJUST_SALE)
SET_TYPES = (ADJUST_SET, ADJUST_MANUAL, ADJUST_ADJUSTMENT)

VALID_ADJUSTMENT_TYPES = INCREASE_TYPES + DECREASE_TYPES + SET_TYPES


@dataclass(frozen=True)
class AdjustmentResult:
    quantity_before: int
    quantity_after: int
    quantity_change: int
    shortfall: int
    low_stock: bool
    adjustment: InventoryAdjustment

    def to_dict(self) -> dict:
        return {
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "quantity_change": self.quantity_change,
            "shortfall": self.shortfall,
            "low_stock": self.low_stock,
            "adjustment": self.adjustment.to_dict(),
        }


def resolve_quantity(adjustment_type: str, quantity_before: int, entered: int) -> tuple[int, int]:
    """
    Return (quantity_after, shortfall) for an adjustment.

    For increase/decrease types the entered value is a magnitude (sign
    ignored). For set types it is the new absolute quantity.
    """
    if adjustment_type in INCREASE_TYPES:
        return quantity_before + abs(entered), 0
    if adjustment_type in DECREASE_TYPES:
        requested = abs(entered)
        applied = min(requested, quantity_before)
        return quantity_before - applied, requested - applied
    if adjustment_type in SET_TYPES:
        if entered < 0:
            raise ValidationError("quantity must be >= 0 for set adjustments")
        return entered, 0
    raise ValidationError(f"Unknown adjustment_type: {adjustment_type}")


def _load_inventory(product_id: int) -> Inventory:
    inventory = lock_for_update(
        db.session.query(Inventory).filter_by(product_id=product_id)
    ).first()
    if inventory is not None:
        return inventory

    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    inventory = Inventory(product_id=product_id, quantity=0, min_stock_level=0)
    db.session.add(inventory)
    db.session.flush()
    return inventory


def adjust_inventory(
    product_id: int,
    adjustment_type: str,
    quantity_change,
    reason: str | None = None,
    operator_id: str | None = None,
    *,
    sale_id: int | None = None,
    sale_line_id: int | None = None,
    commit: bool = True,
) -> AdjustmentResult:
    """
    Apply one stock movement and append its ledger row.

    Args:
        product_id: Product whose stock changes
        adjustment_type: One of VALID_ADJUSTMENT_TYPES
        quantity_change: Magnitude for add/remove types, new quantity for set types
        reason: Free text stored on the adjustment
        operator_id: Who made the change
        commit: False when called inside a larger transaction (checkout);
            the caller then owns commit, rollback and retry

    Raises:
        ValidationError: Unknown type or bad quantity
        NotFoundError: Product does not exist
    """
    adjustment_type = (adjustment_type or "").strip().lower()
    if adjustment_type not in VALID_ADJUSTMENT_TYPES:
        raise ValidationError(
            f"adjustment_type must be one of: {', '.join(VALID_ADJUSTMENT_TYPES)}"
        )
    entered = parse_int(quantity_change, "quantity_change")
    if adjustment_type in SET_TYPES and entered < 0:
        raise ValidationError("quantity must be >= 0 for set adjustments")
    if adjustment_type not in SET_TYPES and entered == 0:
        raise ValidationError("quantity_change must be non-zero")

    def _op() -> AdjustmentResult:
        inventory = _load_inventory(product_id)
        before = inventory.quantity
        after, shortfall = resolve_quantity(adjustment_type, before, entered)

        inventory.quantity = after
        adjustment = InventoryAdjustment(
            product_id=product_id,
            operator_id=operator_id,
            adjustment_type=adjustment_type,
            quantity_change=after - before,
            quantity_before=before,
            quantity_after=after,
            shortfall=shortfall,
            reason=reason,
            sale_id=sale_id,
            sale_line_id=sale_line_id,
            occurred_at=utcnow(),
        )
        db.session.add(adjustment)
        db.session.flush()

        if commit:
            db.session.commit()

        low_stock = after <= inventory.min_stock_level
        if shortfall:
            current_app.logger.warning(
                "Stock shortfall for product %s: requested %s, applied %s (%s)",
                product_id, abs(entered), before - after, reason or adjustment_type,
            )
        if after == 0 and before > 0:
            current_app.logger.warning("Product %s is out of stock", product_id)
        elif low_stock and after < before:
            current_app.logger.warning(
                "Product %s is low on stock: %s left (minimum %s)",
                product_id, after, inventory.min_stock_level,
            )

        return AdjustmentResult(
            quantity_before=before,
            quantity_after=after,
            quantity_change=after - before,
            shortfall=shortfall,
            low_stock=low_stock,
            adjustment=adjustment,
        )

    if commit:
        return run_with_retry(_op)
    return _op()


def deduct_for_sale(sale: Sale, operator_id: str | None = None) -> list[AdjustmentResult]:
    """
    Deduct stock for every line of a sale inside the caller's transaction.

    Raises:
        InventoryAdjustmentError: Naming the product and line that failed
    """
    results = []
    for line in sale.lines:
        try:
            results.append(adjust_inventory(
                line.product_id,
                ADJUST_SALE,
                line.quantity,
                reason=f"Sale: {sale.invoice_number}",
                operator_id=operator_id,
                sale_id=sale.id,
                sale_line_id=line.id,
                commit=False,
            ))
        except Exception as exc:
            raise InventoryAdjustmentError(
                f"Inventory update failed for product {line.product_id} "
                f"(line {line.line_number}) of {sale.invoice_number}: {exc}",
                product_id=line.product_id,
                line_number=line.line_number,
            ) from exc
    return results


def get_stock(product_id: int) -> Inventory:
    inventory = db.session.query(Inventory).filter_by(product_id=product_id).first()
    if inventory is None:
        raise NotFoundError(f"No inventory record for product {product_id}")
    return inventory


def list_adjustments(product_id: int, limit: int = 50) -> list[InventoryAdjustment]:
    return (
        db.session.query(InventoryAdjustment)
        .filter_by(product_id=product_id)
        .order_by(InventoryAdjustment.occurred_at.desc(), InventoryAdjustment.id.desc())
        .limit(limit)
        .all()
    )

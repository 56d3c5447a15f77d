# Overview: Cash drawer state machine: open -> closed -> reconciled, with balance tracking and audit log.

"""
Cash Drawer Service

WHY: Cash accountability. Every note that enters or leaves the drawer is
recorded, and the counted cash at close is compared with what the ledger
says should be there.

DESIGN PRINCIPLES:
- One open drawer system-wide (service check + partial unique index)
- Transitions only move forward: open -> closed -> reconciled
- expected_balance == opening_balance + sum(signed transaction amounts)
- discrepancy == current_balance - expected_balance
- |discrepancy| <= tolerance is balanced, above is over, below is short
- Every action appends a cash_drawer_audit_logs row
- Read paths never write
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashDrawer, CashTransaction, CashDrawerAuditLog
from ..models.drawers import DRAWER_OPEN, DRAWER_CLOSED, DRAWER_RECONCILED
from ..money_utils import ZERO, quantize, to_decimal
from ..time_utils import utcnow
from ..validation import ValidationError, ConflictError, NotFoundError, parse_amount, clean_text
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# TRANSACTION TYPES (CONSTANTS)
# =============================================================================

TXN_CASH_IN = "cash_in"
TXN_CASH_OUT = "cash_out"
TXN_DEPOSIT = "deposit"
TXN_WITHDRAWAL = "withdrawal"
TXN_ADJUSTMENT = "adjustment"

INFLOW_TYPES = (TXN_CASH_IN, TXN_DEPOSIT)
OUTFLOW_TYPES = (TXN_CASH_OUT, TXN_WITHDRAWAL)
VALID_TRANSACTION_TYPES = INFLOW_TYPES + OUTFLOW_TYPES + (TXN_ADJUSTMENT,)

BALANCED = "balanced"
OVER = "over"
SHORT = "short"

DEFAULT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class Reconciliation:
    drawer: CashDrawer
    discrepancy: Decimal
    status: str
    message: str

    def to_dict(self) -> dict:
        return {
            "drawer": self.drawer.to_dict(),
            "discrepancy": str(self.discrepancy),
            "status": self.status,
            "message": self.message,
        }


# =============================================================================
# PURE HELPERS
# =============================================================================

def _tolerance() -> Decimal:
    if has_app_context():
        return to_decimal(current_app.config.get("DRAWER_DISCREPANCY_TOLERANCE", DEFAULT_TOLERANCE))
    return DEFAULT_TOLERANCE


def classify_discrepancy(discrepancy, tolerance=None) -> str:
    """balanced within +/- tolerance (inclusive), otherwise over or short."""
    value = to_decimal(discrepancy)
    limit = to_decimal(tolerance) if tolerance is not None else _tolerance()
    if abs(value) <= limit:
        return BALANCED
    return OVER if value > 0 else SHORT


def signed_amount(transaction_type: str, amount: Decimal) -> Decimal:
    """Inflows positive, outflows negative, adjustments as given."""
    if transaction_type in INFLOW_TYPES:
        return abs(amount)
    if transaction_type in OUTFLOW_TYPES:
        return -abs(amount)
    return amount


def _append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n{note}"


def _audit(drawer: CashDrawer, action: str, operator_id: str | None, details: dict) -> None:
    db.session.add(CashDrawerAuditLog(
        drawer_id=drawer.id,
        operator_id=operator_id,
        action=action,
        details=details,
        occurred_at=utcnow(),
    ))


# =============================================================================
# READS
# =============================================================================

def get_open_drawer() -> CashDrawer | None:
    return db.session.query(CashDrawer).filter_by(status=DRAWER_OPEN).first()


def get_drawer(drawer_id: int) -> CashDrawer:
    drawer = db.session.get(CashDrawer, drawer_id)
    if drawer is None:
        raise NotFoundError(f"Cash drawer {drawer_id} not found")
    return drawer


def list_drawer_transactions(drawer_id: int, limit: int = 50) -> list[CashTransaction]:
    return (
        db.session.query(CashTransaction)
        .filter_by(drawer_id=drawer_id)
        .order_by(CashTransaction.occurred_at.desc(), CashTransaction.id.desc())
        .limit(limit)
        .all()
    )


def list_drawers(status: str | None = None, limit: int = 20) -> list[CashDrawer]:
    query = db.session.query(CashDrawer)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(CashDrawer.opened_at.desc(), CashDrawer.id.desc()).limit(limit).all()


def ledger_expected_balance(drawer: CashDrawer) -> Decimal:
    """Expected balance recomputed from the transaction ledger."""
    total = (
        db.session.query(func.coalesce(func.sum(CashTransaction.amount), 0))
        .filter(CashTransaction.drawer_id == drawer.id)
        .scalar()
    )
    return quantize(to_decimal(drawer.opening_balance) + to_decimal(total))


def drawer_summary(drawer_id: int) -> dict:
    drawer = get_drawer(drawer_id)
    expected = quantize(drawer.expected_balance)
    discrepancy = (
        quantize(drawer.discrepancy)
        if drawer.discrepancy is not None
        else quantize(drawer.current_balance) - expected
    )
    count = db.session.query(func.count(CashTransaction.id)).filter_by(drawer_id=drawer.id).scalar()
    return {
        "drawer": drawer.to_dict(),
        "ledger_expected_balance": str(ledger_expected_balance(drawer)),
        "transaction_count": count,
        "discrepancy": str(discrepancy),
        "discrepancy_status": classify_discrepancy(discrepancy),
    }


# =============================================================================
# LIFECYCLE
# =============================================================================

def _locked_drawer(drawer_id: int) -> CashDrawer:
    drawer = lock_for_update(
        db.session.query(CashDrawer).filter_by(id=drawer_id)
    ).first()
    if drawer is None:
        raise NotFoundError(f"Cash drawer {drawer_id} not found")
    return drawer


def open_drawer(opening_balance, operator_id: str | None = None) -> CashDrawer:
    """
    Open the drawer with a counted float.

    Raises:
        ValidationError: Negative or malformed opening balance
        ConflictError: Another drawer is already open
    """
    amount = parse_amount(opening_balance, "opening_balance")

    def _op() -> CashDrawer:
        if get_open_drawer() is not None:
            raise ConflictError("A cash drawer is already open")

        drawer = CashDrawer(
            status=DRAWER_OPEN,
            opening_balance=amount,
            current_balance=amount,
            expected_balance=amount,
            opened_at=utcnow(),
            opened_by=operator_id,
        )
        db.session.add(drawer)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("A cash drawer is already open")

        _audit(drawer, "opened", operator_id, {"opening_balance": str(amount)})
        db.session.commit()
        current_app.logger.info("Cash drawer %s opened with %s by %s", drawer.id, amount, operator_id)
        return drawer

    return run_with_retry(_op)


def record_drawer_transaction(
    drawer_id: int,
    transaction_type: str,
    amount,
    description: str | None,
    operator_id: str | None = None,
    notes: str | None = None,
    *,
    sale_id: int | None = None,
    commit: bool = True,
) -> CashTransaction:
    """
    Record a cash movement against an open drawer.

    Args:
        transaction_type: cash_in, cash_out, deposit, withdrawal or adjustment
        amount: Positive for directional types; signed, non-zero for adjustment
        commit: False when called inside checkout (caller owns the transaction)

    Raises:
        ValidationError: Bad type, amount or missing description
        ConflictError: Drawer not open, or movement would overdraw it
    """
    transaction_type = (transaction_type or "").strip().lower()
    if transaction_type not in VALID_TRANSACTION_TYPES:
        raise ValidationError(
            f"transaction_type must be one of: {', '.join(VALID_TRANSACTION_TYPES)}"
        )
    if transaction_type == TXN_ADJUSTMENT:
        value = parse_amount(amount, "amount", allow_negative=True, allow_zero=False)
    else:
        value = parse_amount(amount, "amount", allow_zero=False)
    description = clean_text(description, "description", required=True, max_length=255)
    notes = clean_text(notes, "notes")

    def _op() -> CashTransaction:
        drawer = _locked_drawer(drawer_id)
        if drawer.status != DRAWER_OPEN:
            raise ConflictError(f"Cash drawer is {drawer.status}; transactions require an open drawer")

        signed = signed_amount(transaction_type, value)
        before = quantize(drawer.current_balance)
        after = before + signed
        if after < ZERO:
            raise ConflictError(
                f"Insufficient cash in drawer: balance {before}, requested {abs(signed)}"
            )

        txn = CashTransaction(
            drawer_id=drawer.id,
            transaction_type=transaction_type,
            amount=signed,
            description=description,
            balance_before=before,
            balance_after=after,
            sale_id=sale_id,
            operator_id=operator_id,
            notes=notes,
            occurred_at=utcnow(),
        )
        db.session.add(txn)
        drawer.current_balance = after
        drawer.expected_balance = quantize(drawer.expected_balance) + signed
        db.session.flush()

        _audit(drawer, "transaction_added", operator_id, {
            "transaction_id": txn.id,
            "transaction_type": transaction_type,
            "amount": str(signed),
            "balance_after": str(after),
            "sale_id": sale_id,
        })
        if commit:
            db.session.commit()
        return txn

    if commit:
        return run_with_retry(_op)
    return _op()


def close_drawer(drawer_id: int, actual_balance, operator_id: str | None = None, notes: str | None = None) -> CashDrawer:
    """
    Close an open drawer with the counted cash.

    current_balance becomes the counted amount; discrepancy is set
    against expected_balance.
    """
    actual = parse_amount(actual_balance, "actual_balance")
    notes = clean_text(notes, "notes")

    def _op() -> CashDrawer:
        drawer = _locked_drawer(drawer_id)
        if drawer.status != DRAWER_OPEN:
            raise ConflictError(f"Cash drawer is {drawer.status}; only an open drawer can be closed")

        expected = quantize(drawer.expected_balance)
        drawer.status = DRAWER_CLOSED
        drawer.current_balance = actual
        drawer.discrepancy = actual - expected
        drawer.closed_at = utcnow()
        drawer.closed_by = operator_id
        drawer.notes = _append_note(drawer.notes, notes)

        _audit(drawer, "closed", operator_id, {
            "actual_balance": str(actual),
            "expected_balance": str(expected),
            "discrepancy": str(actual - expected),
        })
        db.session.commit()
        current_app.logger.info(
            "Cash drawer %s closed: counted %s, expected %s", drawer.id, actual, expected
        )
        return drawer

    return run_with_retry(_op)


def reconcile_drawer(drawer_id: int, actual_balance, notes: str | None, operator_id: str | None = None) -> Reconciliation:
    """
    Confirm the count of a closed drawer and finalize its discrepancy.

    Raises:
        ValidationError: Notes missing
        ConflictError: Drawer is not closed
    """
    actual = parse_amount(actual_balance, "actual_balance")
    notes = clean_text(notes, "notes")
    if not notes:
        raise ValidationError("notes are required to reconcile a drawer")

    def _op() -> Reconciliation:
        drawer = _locked_drawer(drawer_id)
        if drawer.status != DRAWER_CLOSED:
            raise ConflictError(f"Cash drawer is {drawer.status}; only a closed drawer can be reconciled")

        expected = quantize(drawer.expected_balance)
        discrepancy = actual - expected
        status = classify_discrepancy(discrepancy)
        balance_before = quantize(drawer.current_balance)

        drawer.status = DRAWER_RECONCILED
        drawer.current_balance = actual
        drawer.discrepancy = discrepancy
        drawer.reconciled_at = utcnow()
        drawer.reconciled_by = operator_id
        drawer.notes = _append_note(drawer.notes, notes)

        _audit(drawer, "reconciled", operator_id, {
            "actual_balance": str(actual),
            "expected_balance": str(expected),
            "discrepancy": str(discrepancy),
            "status": status,
        })
        if discrepancy != ZERO:
            # Write-off lives in the audit log only; cash_transactions must
            # still sum to expected_balance - opening_balance
            _audit(drawer, "reconciliation_adjustment", operator_id, {
                "amount": str(discrepancy),
                "balance_before": str(balance_before),
                "balance_after": str(actual),
                "expected_balance": str(expected),
                "notes": notes,
            })
        db.session.commit()

        if status == BALANCED:
            message = "Drawer reconciled and balanced"
        else:
            message = f"Drawer reconciled with discrepancy of {discrepancy} ({status})"
            current_app.logger.warning("Cash drawer %s %s by %s", drawer.id, status, abs(discrepancy))
        return Reconciliation(drawer=drawer, discrepancy=discrepancy, status=status, message=message)

    return run_with_retry(_op)


def ensure_cash_for_change(change_due: Decimal) -> CashDrawer | None:
    """
    Return the open drawer if it can pay out change_due.

    Raises:
        ConflictError: Change is due but no drawer is open or it holds too little
    """
    drawer = get_open_drawer()
    if change_due <= ZERO:
        return drawer
    if not current_app.config.get("REQUIRE_DRAWER_FOR_CASH_CHANGE", True):
        return drawer
    if drawer is None:
        raise ConflictError("An open cash drawer is required to give change")
    if quantize(drawer.current_balance) < change_due:
        raise ConflictError(
            f"Insufficient cash in drawer for change: balance {quantize(drawer.current_balance)}, change {change_due}"
        )
    return drawer

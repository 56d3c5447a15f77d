# Overview: Loyalty points ledger: accrual on sales, enrollment, manual adjustment and redemption.

"""
Loyalty Accrual

WHY: Customers earn floor(amount * points_per_currency) points per sale.
Checkout treats accrual as best-effort, so nothing here may leave the
sale half-written: the orchestrator runs it in a savepoint.

DESIGN:
- Unenrolled customers are a no-op, not an error
- loyalty_transactions is append-only with balance before/after
- Account rows are locked and version-counted
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Customer, LoyaltyAccount, LoyaltyProgram, LoyaltyTransaction
from ..money_utils import floor_int, to_decimal
from ..time_utils import utcnow
from ..validation import ValidationError, ConflictError, NotFoundError, parse_int
from .concurrency import lock_for_update


TXN_EARN = "earn"
TXN_REDEEM = "redeem"
TXN_ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class LoyaltyAccrual:
    points_earned: int
    balance_after: int
    transaction: LoyaltyTransaction | None = None

    def to_dict(self) -> dict:
        return {
            "points_earned": self.points_earned,
            "balance_after": self.balance_after,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


def calculate_points(amount_spent, points_per_currency) -> int:
    """floor(amount * rate); never negative."""
    points = floor_int(to_decimal(amount_spent) * to_decimal(points_per_currency))
    return max(points, 0)


def _locked_account(account_id: int) -> LoyaltyAccount:
    account = lock_for_update(
        db.session.query(LoyaltyAccount).filter_by(id=account_id)
    ).first()
    if account is None:
        raise NotFoundError(f"Loyalty account {account_id} not found")
    return account


def _append(account: LoyaltyAccount, transaction_type: str, points: int, *, sale_id=None, reason=None, operator_id=None) -> LoyaltyTransaction:
    before = account.current_points
    account.current_points = before + points
    txn = LoyaltyTransaction(
        account_id=account.id,
        transaction_type=transaction_type,
        points=points,
        points_balance_before=before,
        points_balance_after=account.current_points,
        sale_id=sale_id,
        reason=reason,
        operator_id=operator_id,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn


def find_account_for_customer(customer_id: int | None) -> LoyaltyAccount | None:
    """Active account in an active program, oldest first."""
    if customer_id is None:
        return None
    return (
        db.session.query(LoyaltyAccount)
        .join(LoyaltyProgram, LoyaltyAccount.program_id == LoyaltyProgram.id)
        .filter(
            LoyaltyAccount.customer_id == customer_id,
            LoyaltyAccount.is_active.is_(True),
            LoyaltyProgram.is_active.is_(True),
        )
        .order_by(LoyaltyAccount.id)
        .first()
    )


def accrue_loyalty(
    account_id: int | None,
    amount_spent,
    *,
    sale_id: int | None = None,
    operator_id: str | None = None,
    reason: str | None = None,
    commit: bool = True,
) -> LoyaltyAccrual:
    """
    Credit points for a purchase.

    Returns points_earned == 0 without writing anything when the account
    is missing, inactive, in an inactive program, or the amount earns
    less than one point.
    """
    if account_id is None:
        return LoyaltyAccrual(points_earned=0, balance_after=0)

    account = lock_for_update(
        db.session.query(LoyaltyAccount).filter_by(id=account_id)
    ).first()
    if account is None or not account.is_active or not account.program.is_active:
        return LoyaltyAccrual(points_earned=0, balance_after=account.current_points if account else 0)

    points = calculate_points(amount_spent, account.program.points_per_currency)
    if points <= 0:
        return LoyaltyAccrual(points_earned=0, balance_after=account.current_points)

    txn = _append(account, TXN_EARN, points, sale_id=sale_id, reason=reason, operator_id=operator_id)
    account.total_points_earned += points
    account.last_points_earned_at = utcnow()
    db.session.flush()

    if commit:
        db.session.commit()

    return LoyaltyAccrual(points_earned=points, balance_after=account.current_points, transaction=txn)


def enroll_customer(customer_id: int, program_id: int | None = None) -> LoyaltyAccount:
    """
    Open a loyalty account for a customer.

    Raises:
        NotFoundError: Customer or program missing
        ConflictError: Already enrolled in that program
    """
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found")

    if program_id is None:
        program = (
            db.session.query(LoyaltyProgram)
            .filter_by(is_active=True)
            .order_by(LoyaltyProgram.id)
            .first()
        )
    else:
        program = db.session.get(LoyaltyProgram, program_id)
    if program is None or not program.is_active:
        raise NotFoundError("Active loyalty program not found")

    existing = db.session.query(LoyaltyAccount).filter_by(
        customer_id=customer_id, program_id=program.id
    ).first()
    if existing:
        raise ConflictError("Customer is already enrolled in this program")

    account = LoyaltyAccount(
        customer_id=customer_id,
        program_id=program.id,
        current_points=0,
        total_points_earned=0,
        total_points_redeemed=0,
        tier="bronze",
        is_active=True,
    )
    db.session.add(account)
    db.session.commit()
    return account


def add_points(account_id: int, points, reason: str | None = None, operator_id: str | None = None) -> LoyaltyTransaction:
    """Manual adjustment. Positive credits count towards lifetime earned."""
    points = parse_int(points, "points")
    if points == 0:
        raise ValidationError("points must be non-zero")

    account = _locked_account(account_id)
    if account.current_points + points < 0:
        raise ConflictError("Adjustment would make the points balance negative")

    txn = _append(account, TXN_ADJUSTMENT, points, reason=reason or "Manual adjustment", operator_id=operator_id)
    if points > 0:
        account.total_points_earned += points
    db.session.commit()
    return txn


def redeem_points(account_id: int, points, reason: str | None = None, operator_id: str | None = None) -> LoyaltyTransaction:
    points = parse_int(points, "points", minimum=1)

    account = _locked_account(account_id)
    if not account.is_active:
        raise ConflictError("Loyalty account is inactive")
    if account.current_points < points:
        raise ConflictError(
            f"Insufficient points: {account.current_points} available, {points} requested"
        )

    txn = _append(account, TXN_REDEEM, -points, reason=reason or "Redemption", operator_id=operator_id)
    account.total_points_redeemed += points
    db.session.commit()
    return txn


def list_transactions(account_id: int, limit: int = 50) -> list[LoyaltyTransaction]:
    if db.session.get(LoyaltyAccount, account_id) is None:
        raise NotFoundError(f"Loyalty account {account_id} not found")
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(account_id=account_id)
        .order_by(LoyaltyTransaction.occurred_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )

"""Loyalty accrual and the points ledger."""

from decimal import Decimal

import pytest

from settlement.models import LoyaltyTransaction
from settlement.services import loyalty_service
from settlement.validation import ConflictError, NotFoundError, ValidationError


@pytest.mark.parametrize(
    "amount,rate,expected",
    [
        ("3540", "0.01", 35),
        ("99.99", "1", 99),
        ("0.99", "1", 0),
        ("1000", "0", 0),
        ("250", "0.5", 125),
    ],
)
def test_points_are_floored(amount, rate, expected):
    assert loyalty_service.calculate_points(Decimal(amount), Decimal(rate)) == expected


def test_accrual_updates_balance_and_ledger(db_session, loyalty_account):
    accrual = loyalty_service.accrue_loyalty(loyalty_account.id, Decimal("3540"), reason="Purchase: INV-1")

    assert accrual.points_earned == 35
    assert accrual.balance_after == 35
    db_session.refresh(loyalty_account)
    assert loyalty_account.current_points == 35
    assert loyalty_account.total_points_earned == 35
    assert loyalty_account.last_points_earned_at is not None
    txn = db_session.query(LoyaltyTransaction).one()
    assert (txn.transaction_type, txn.points_balance_before, txn.points_balance_after) == ("earn", 0, 35)
    assert txn.reason == "Purchase: INV-1"


def test_unenrolled_customer_is_a_noop(db_session):
    accrual = loyalty_service.accrue_loyalty(None, Decimal("5000"))

    assert accrual.points_earned == 0
    assert db_session.query(LoyaltyTransaction).count() == 0


def test_inactive_program_earns_nothing(db_session, loyalty_account, loyalty_program):
    loyalty_program.is_active = False
    db_session.commit()

    assert loyalty_service.accrue_loyalty(loyalty_account.id, Decimal("5000")).points_earned == 0


def test_amount_below_one_point_writes_nothing(db_session, loyalty_account):
    assert loyalty_service.accrue_loyalty(loyalty_account.id, Decimal("50")).points_earned == 0
    assert db_session.query(LoyaltyTransaction).count() == 0


def test_enroll_uses_first_active_program(db_session, customer, loyalty_program):
    account = loyalty_service.enroll_customer(customer.id)

    assert account.program_id == loyalty_program.id
    assert account.tier == "bronze"
    assert account.current_points == 0


def test_enroll_twice_conflicts(db_session, loyalty_account, customer):
    with pytest.raises(ConflictError):
        loyalty_service.enroll_customer(customer.id)


def test_enroll_unknown_customer(db_session, loyalty_program):
    with pytest.raises(NotFoundError):
        loyalty_service.enroll_customer(4242)


def test_redeem_and_overdraw(db_session, loyalty_account):
    loyalty_service.add_points(loyalty_account.id, 100, reason="Welcome bonus")

    txn = loyalty_service.redeem_points(loyalty_account.id, 60)

    assert txn.points == -60
    assert txn.points_balance_after == 40
    db_session.refresh(loyalty_account)
    assert loyalty_account.total_points_redeemed == 60
    assert loyalty_account.total_points_earned == 100
    with pytest.raises(ConflictError):
        loyalty_service.redeem_points(loyalty_account.id, 41)


def test_negative_adjustment_cannot_overdraw(db_session, loyalty_account):
    loyalty_service.add_points(loyalty_account.id, 10)

    with pytest.raises(ConflictError):
        loyalty_service.add_points(loyalty_account.id, -11)
    with pytest.raises(ValidationError):
        loyalty_service.add_points(loyalty_account.id, 0)


def test_list_transactions_newest_first(db_session, loyalty_account):
    loyalty_service.add_points(loyalty_account.id, 10, reason="a")
    loyalty_service.redeem_points(loyalty_account.id, 5, reason="b")

    reasons = [t.reason for t in loyalty_service.list_transactions(loyalty_account.id)]

    assert reasons == ["b", "a"]

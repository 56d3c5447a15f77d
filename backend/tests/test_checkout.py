"""Checkout orchestration: ordering, atomicity, compensation and best-effort steps."""

import re
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from settlement.extensions import db
from settlement.models import (
    CashDrawer, CashTransaction, Customer, Inventory, InventoryAdjustment, InvoiceNumberReservation,
    LoyaltyTransaction, PaymentAttempt, PaymentRecord, Sale, SaleLine,
)
from settlement.services import drawer_service, invoice_service, loyalty_service, sales_service
from settlement.services.inventory_service import InventoryAdjustmentError
from settlement.services.payment_service import CardDetails, GatewayResponse, PaymentError, PaymentGateway
from settlement.services.sales_service import CheckoutError, CheckoutRequest
from settlement.validation import ConflictError, ValidationError
from conftest import OPERATOR, VALID_CARD, cart_line


class RecordingCardGateway(PaymentGateway):
    def __init__(self, approve=True):
        self.approve = approve
        self.charges = []
        self.refunds = []

    def charge(self, charge):
        self.charges.append(charge)
        if not self.approve:
            return GatewayResponse(approved=False, error="Do not honour")
        return GatewayResponse(approved=True, reference=f"txn_{len(self.charges):04d}")

    def refund(self, reference, amount):
        self.refunds.append((reference, amount))
        return True


@pytest.fixture
def card_gateway(app):
    gateways = app.extensions["payment_gateways"]
    saved = gateways["card"]
    gateway = RecordingCardGateway()
    gateways["card"] = gateway
    yield gateway
    gateways["card"] = saved


def _card():
    return CardDetails(number=VALID_CARD, exp_month=12, exp_year=2099, cvv="123")


def _request(lines, method, **kwargs):
    return CheckoutRequest(lines=tuple(lines), payment_method_id=method.id, operator_id=OPERATOR, **kwargs)


def test_cash_checkout_end_to_end(db_session, soap, payment_methods, open_drawer):
    receipt = sales_service.checkout(
        _request([cart_line(soap, 3)], payment_methods["cash"], amount_tendered=Decimal("5000"))
    )

    assert receipt.totals.total == Decimal("3540.00")
    assert receipt.change_due == Decimal("1460.00")
    assert receipt.payment_method == "Cash"
    assert receipt.payment_reference.startswith("cash_")

    sale = db_session.query(Sale).one()
    assert sale.status == "completed"
    assert sale.invoice_number == receipt.sale.invoice_number
    assert re.match(r"^INV-\d{8}-\d{4}-\d{4}$", sale.invoice_number)
    assert sale.total == sum(line.line_total for line in sale.lines)
    assert db_session.query(PaymentRecord).one().payment_type == "cash"

    assert db_session.query(Inventory).filter_by(product_id=soap.id).one().quantity == 7
    adjustment = db_session.query(InventoryAdjustment).one()
    assert (adjustment.adjustment_type, adjustment.quantity_change, adjustment.sale_id) == ("sale", -3, sale.id)

    posting = db_session.query(CashTransaction).one()
    assert posting.transaction_type == "cash_in"
    assert posting.amount == Decimal("3540.00")
    assert posting.sale_id == sale.id
    db_session.refresh(open_drawer)
    assert open_drawer.expected_balance == Decimal("53540.00")


def test_receipt_serializes_lines_and_totals(db_session, soap, payment_methods, open_drawer):
    receipt = sales_service.checkout(_request([cart_line(soap, 3)], payment_methods["cash"]))

    data = receipt.to_dict()

    assert data["total"] == "3540.00"
    assert data["tax_amount"] == "540.00"
    assert data["lines"][0]["line_total"] == "3540.00"
    assert data["change_due"] == "0.00"
    assert data["replayed"] is False


def test_empty_cart_rejected_before_anything_is_written(db_session, payment_methods):
    with pytest.raises(ValidationError):
        sales_service.checkout(_request([], payment_methods["cash"]))

    assert db_session.query(Sale).count() == 0
    assert db_session.query(PaymentAttempt).count() == 0


def test_under_tender_rejected(db_session, soap, payment_methods, open_drawer):
    with pytest.raises(ValidationError):
        sales_service.checkout(
            _request([cart_line(soap, 3)], payment_methods["cash"], amount_tendered=Decimal("3000"))
        )
    assert db_session.query(Sale).count() == 0


def test_discount_larger_than_line_rejected(db_session, soap, payment_methods):
    with pytest.raises(ValidationError):
        sales_service.checkout(_request([cart_line(soap, 1, discount="1000.01")], payment_methods["cash"]))


def test_change_requires_open_drawer(db_session, soap, payment_methods):
    with pytest.raises(ConflictError):
        sales_service.checkout(
            _request([cart_line(soap, 1)], payment_methods["cash"], amount_tendered=Decimal("2000"))
        )
    assert db_session.query(Sale).count() == 0


def test_exact_cash_without_drawer_still_sells(db_session, soap, payment_methods):
    receipt = sales_service.checkout(_request([cart_line(soap, 1)], payment_methods["cash"]))

    assert receipt.change_due == Decimal("0.00")
    assert db_session.query(CashTransaction).count() == 0


def test_card_checkout_stores_only_token(db_session, soap, payment_methods, card_gateway):
    receipt = sales_service.checkout(
        _request([cart_line(soap, 2)], payment_methods["card"], card=_card(), amount_tendered=Decimal("99999"))
    )

    record = db_session.query(PaymentRecord).one()
    assert record.card_last_four == "4242"
    assert record.card_token.startswith("tok_")
    assert VALID_CARD not in (record.card_token or "")
    assert record.processor_reference == "txn_0001"
    assert receipt.amount_tendered == receipt.totals.total
    assert receipt.change_due == Decimal("0.00")
    assert card_gateway.charges[0].card_token == record.card_token


def test_declined_payment_creates_no_sale(db_session, soap, payment_methods, card_gateway):
    card_gateway.approve = False

    with pytest.raises(PaymentError, match="Do not honour"):
        sales_service.checkout(_request([cart_line(soap, 1)], payment_methods["card"], card=_card()))

    assert db_session.query(Sale).count() == 0
    assert db_session.query(InventoryAdjustment).count() == 0
    assert db_session.query(Inventory).filter_by(product_id=soap.id).one().quantity == 10
    assert db_session.query(PaymentAttempt).one().status == "failed"


def test_stock_shortfall_does_not_block_sale(db_session, sugar, payment_methods):
    receipt = sales_service.checkout(_request([cart_line(sugar, 5)], payment_methods["mobile"], phone_number="0700123456"))

    assert db_session.query(Inventory).filter_by(product_id=sugar.id).one().quantity == 0
    adjustment = db_session.query(InventoryAdjustment).one()
    assert adjustment.quantity_change == -2
    assert adjustment.shortfall == 3
    assert receipt.shortfalls == ({"product_id": sugar.id, "requested": 5, "deducted": 2, "shortfall": 3},)


def test_inventory_failure_rolls_back_sale_and_refunds(db_session, soap, sugar, payment_methods, card_gateway, monkeypatch):
    original = sales_service.deduct_for_sale

    def failing_deduct(sale, operator_id=None):
        original(sale, operator_id)
        raise InventoryAdjustmentError("boom", product_id=sugar.id, line_number=2)

    monkeypatch.setattr(sales_service, "deduct_for_sale", failing_deduct)

    with pytest.raises(InventoryAdjustmentError):
        sales_service.checkout(
            _request([cart_line(soap, 1), cart_line(sugar, 1)], payment_methods["card"], card=_card())
        )

    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleLine).count() == 0
    assert db_session.query(InventoryAdjustment).count() == 0
    assert db_session.query(Inventory).filter_by(product_id=soap.id).one().quantity == 10
    assert card_gateway.refunds == [("txn_0001", Decimal("5680.00"))]
    statuses = sorted(a.status for a in db_session.query(PaymentAttempt))
    assert statuses == ["completed", "refunded"]


def test_unexpected_persistence_failure_is_wrapped(db_session, soap, payment_methods, card_gateway, monkeypatch):
    def broken_create_sale(header, lines):
        raise RuntimeError("disk full")

    monkeypatch.setattr(sales_service, "create_sale", broken_create_sale)

    with pytest.raises(CheckoutError):
        sales_service.checkout(_request([cart_line(soap, 1)], payment_methods["card"], card=_card()))

    assert len(card_gateway.refunds) == 1


def test_invoice_fallback_still_completes_checkout(db_session, soap, payment_methods, monkeypatch):
    calls = []
    original = invoice_service._reserve

    def flaky_reserve(candidate):
        calls.append(candidate)
        if len(calls) <= 3:
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        return original(candidate)

    monkeypatch.setattr(invoice_service, "_reserve", flaky_reserve)

    receipt = sales_service.checkout(_request([cart_line(soap, 1)], payment_methods["cash"]))

    assert re.match(r"^INV-\d{13}-\d{1,3}$", receipt.sale.invoice_number)
    assert db_session.query(Sale).count() == 1


def test_customer_aggregates_and_loyalty(db_session, soap, payment_methods, customer, loyalty_account, open_drawer):
    receipt = sales_service.checkout(
        _request([cart_line(soap, 3)], payment_methods["cash"], customer_id=customer.id)
    )

    assert receipt.points_earned == 35
    db_session.expire_all()
    refreshed = db_session.get(Customer, customer.id)
    assert refreshed.total_spent == Decimal("3540.00")
    assert refreshed.total_visits == 1
    assert refreshed.last_visit_at is not None
    txn = db_session.query(LoyaltyTransaction).one()
    assert txn.reason == f"Purchase: {receipt.sale.invoice_number}"
    assert txn.sale_id == receipt.sale.id
    assert db_session.get(Sale, receipt.sale.id).points_earned == 35


def test_loyalty_failure_keeps_sale(db_session, soap, payment_methods, customer, loyalty_account, monkeypatch):
    def broken_accrual(*args, **kwargs):
        raise RuntimeError("loyalty ledger offline")

    monkeypatch.setattr(sales_service, "accrue_loyalty", broken_accrual)

    receipt = sales_service.checkout(
        _request([cart_line(soap, 1)], payment_methods["cash"], customer_id=customer.id)
    )

    assert receipt.points_earned == 0
    assert db_session.query(Sale).count() == 1
    assert db_session.query(LoyaltyTransaction).count() == 0
    db_session.expire_all()
    assert db_session.get(Customer, customer.id).total_visits == 1


def test_unenrolled_customer_earns_nothing(db_session, soap, payment_methods, customer):
    receipt = sales_service.checkout(
        _request([cart_line(soap, 1)], payment_methods["cash"], customer_id=customer.id)
    )

    assert receipt.points_earned == 0
    assert loyalty_service.find_account_for_customer(customer.id) is None


def test_client_request_id_replays_original_receipt(db_session, soap, payment_methods):
    request = _request([cart_line(soap, 1)], payment_methods["cash"], client_request_id="till-1-0001")

    first = sales_service.checkout(request)
    second = sales_service.checkout(request)

    assert second.replayed
    assert second.sale.id == first.sale.id
    assert db_session.query(Sale).count() == 1
    assert db_session.query(Inventory).filter_by(product_id=soap.id).one().quantity == 9


def test_resubmission_without_key_creates_new_sale(db_session, soap, payment_methods):
    request = _request([cart_line(soap, 1)], payment_methods["cash"])

    first = sales_service.checkout(request)
    second = sales_service.checkout(request)

    assert first.sale.invoice_number != second.sale.invoice_number
    assert db_session.query(Sale).count() == 2


def test_unknown_payment_method_flagged(db_session, soap, payment_methods):
    sales_service.checkout(_request([cart_line(soap, 1)], payment_methods["voucher"]))

    record = db_session.query(PaymentRecord).one()
    assert record.payment_type == "other"
    assert record.audit_flag is True


class CallbackCashGateway(PaymentGateway):
    """Cash gateway that runs a callback while the charge is in flight."""

    def __init__(self, on_charge):
        self.on_charge = on_charge
        self.refunds = []

    def charge(self, charge):
        self.on_charge(charge)
        return GatewayResponse(approved=True, reference="cash_cb")

    def refund(self, reference, amount):
        self.refunds.append((reference, amount))
        return True


@pytest.fixture
def cash_gateway(app):
    gateways = app.extensions["payment_gateways"]
    saved = gateways["cash"]

    def _install(on_charge):
        gateways["cash"] = CallbackCashGateway(on_charge)
        return gateways["cash"]

    yield _install
    gateways["cash"] = saved


def test_invoice_and_attempt_committed_before_gateway_call(db_session, soap, payment_methods, cash_gateway):
    seen = {}

    def on_charge(charge):
        seen["pending"] = bool(db.session.new or db.session.dirty or db.session.deleted)
        # Anything not yet committed is discarded here
        db.session.rollback()
        seen["reserved"] = db.session.query(InvoiceNumberReservation).filter_by(
            invoice_number=charge.invoice_number
        ).count()
        seen["attempts"] = [a.status for a in db.session.query(PaymentAttempt)]

    cash_gateway(on_charge)

    receipt = sales_service.checkout(_request([cart_line(soap, 1)], payment_methods["cash"]))

    assert seen == {"pending": False, "reserved": 1, "attempts": ["initiated"]}
    assert db_session.query(Sale).one().invoice_number == receipt.sale.invoice_number
    assert [a.status for a in db_session.query(PaymentAttempt)] == ["completed"]


def test_drawer_closed_during_payment_is_a_conflict(db_session, soap, payment_methods, open_drawer, cash_gateway):
    drawer_id = open_drawer.id
    gateway = cash_gateway(lambda charge: drawer_service.close_drawer(drawer_id, "50000", "supervisor"))

    with pytest.raises(ConflictError):
        sales_service.checkout(
            _request([cart_line(soap, 1)], payment_methods["cash"], amount_tendered=Decimal("2000"))
        )

    assert db_session.query(Sale).count() == 0
    assert db_session.query(CashTransaction).count() == 0
    assert db_session.query(Inventory).filter_by(product_id=soap.id).one().quantity == 10
    assert db_session.get(CashDrawer, drawer_id).status == "closed"
    assert gateway.refunds == [("cash_cb", Decimal("1180.00"))]
    statuses = sorted(a.status for a in db_session.query(PaymentAttempt))
    assert statuses == ["completed", "refunded"]

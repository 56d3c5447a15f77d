"""HTTP surface: status codes, operator header, JSON shapes."""

from settlement.models import CashDrawer, Sale
from conftest import VALID_CARD, operator_headers


def test_health(client, db_session):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_totals_preview_fills_from_catalog(client, db_session, soap):
    response = client.post("/api/sales/totals", json={"lines": [{"product_id": soap.id, "quantity": 3}]})

    assert response.status_code == 200
    assert response.get_json()["totals"] == {
        "subtotal": "3000.00",
        "tax_amount": "540.00",
        "discount_amount": "0.00",
        "total": "3540.00",
    }
    assert db_session.query(Sale).count() == 0


def test_totals_preview_rejects_empty_cart(client, db_session):
    response = client.post("/api/sales/totals", json={"lines": []})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Cart is empty"


def test_checkout_requires_operator(client, db_session, soap, payment_methods):
    response = client.post("/api/sales/checkout", json={
        "lines": [{"product_id": soap.id, "quantity": 1}],
        "payment_method_id": payment_methods["cash"].id,
    })

    assert response.status_code == 400
    assert "X-Operator-Id" in response.get_json()["error"]


def test_cash_checkout_over_http(client, db_session, soap, payment_methods):
    client.post("/api/cash-drawer/open", json={"opening_balance": "50000"}, headers=operator_headers())

    response = client.post("/api/sales/checkout", json={
        "lines": [{"product_id": soap.id, "quantity": 3}],
        "payment_method_id": payment_methods["cash"].id,
        "amount_tendered": "4000",
        "client_request_id": "till-9-1",
    }, headers=operator_headers())

    assert response.status_code == 201
    receipt = response.get_json()["receipt"]
    assert receipt["total"] == "3540.00"
    assert receipt["change_due"] == "460.00"
    assert receipt["operator_id"] == "cashier-1"

    replay = client.post("/api/sales/checkout", json={
        "lines": [{"product_id": soap.id, "quantity": 3}],
        "payment_method_id": payment_methods["cash"].id,
        "client_request_id": "till-9-1",
    }, headers=operator_headers())
    assert replay.status_code == 200
    assert replay.get_json()["receipt"]["invoice_number"] == receipt["invoice_number"]

    detail = client.get(f"/api/sales/{receipt['sale_id']}")
    assert detail.status_code == 200
    assert detail.get_json()["payment"]["payment_type"] == "cash"


def test_declined_card_is_402(client, db_session, soap, payment_methods):
    response = client.post("/api/sales/checkout", json={
        "lines": [{"product_id": soap.id, "quantity": 1}],
        "payment_method_id": payment_methods["card"].id,
        "card": {"number": "4242424242424241", "exp_month": 1, "exp_year": 2099, "cvv": "123"},
    }, headers=operator_headers())

    assert response.status_code == 402
    assert response.get_json()["error"] == "Invalid card number"


def test_card_checkout_never_echoes_card_number(client, db_session, soap, payment_methods):
    response = client.post("/api/sales/checkout", json={
        "lines": [{"product_id": soap.id, "quantity": 1}],
        "payment_method_id": payment_methods["card"].id,
        "card": {"number": VALID_CARD, "exp_month": 1, "exp_year": 2099, "cvv": "123"},
    }, headers=operator_headers())

    assert response.status_code == 201
    assert VALID_CARD not in response.get_data(as_text=True)


def test_change_without_drawer_is_409(client, db_session, soap, payment_methods):
    response = client.post("/api/sales/checkout", json={
        "lines": [{"product_id": soap.id, "quantity": 1}],
        "payment_method_id": payment_methods["cash"].id,
        "amount_tendered": "5000",
    }, headers=operator_headers())

    assert response.status_code == 409


def test_unknown_sale_is_404(client, db_session):
    assert client.get("/api/sales/12345").status_code == 404


def test_inventory_adjust_and_history(client, db_session, sugar):
    response = client.post("/api/inventory/adjust", json={
        "product_id": sugar.id, "adjustment_type": "remove", "quantity": 5, "reason": "Damaged",
    }, headers=operator_headers("manager-2"))

    assert response.status_code == 201
    body = response.get_json()
    assert (body["quantity_before"], body["quantity_after"], body["shortfall"]) == (2, 0, 3)

    stock = client.get(f"/api/inventory/{sugar.id}").get_json()["inventory"]
    assert stock["quantity"] == 0
    assert stock["is_low_stock"] is True

    history = client.get(f"/api/inventory/{sugar.id}/adjustments").get_json()["adjustments"]
    assert history[0]["operator_id"] == "manager-2"


def test_inventory_adjust_bad_type(client, db_session, sugar):
    response = client.post("/api/inventory/adjust", json={
        "product_id": sugar.id, "adjustment_type": "vanish", "quantity": 1,
    }, headers=operator_headers())

    assert response.status_code == 400


def test_loyalty_flow(client, db_session, customer, loyalty_program):
    enrolled = client.post("/api/loyalty/enroll", json={"customer_id": customer.id}, headers=operator_headers())
    assert enrolled.status_code == 201
    account_id = enrolled.get_json()["account"]["id"]

    again = client.post("/api/loyalty/enroll", json={"customer_id": customer.id}, headers=operator_headers())
    assert again.status_code == 409

    added = client.post(f"/api/loyalty/accounts/{account_id}/points", json={"points": 100}, headers=operator_headers())
    assert added.status_code == 201

    too_many = client.post(f"/api/loyalty/accounts/{account_id}/redeem", json={"points": 101}, headers=operator_headers())
    assert too_many.status_code == 409

    redeemed = client.post(f"/api/loyalty/accounts/{account_id}/redeem", json={"points": 40}, headers=operator_headers())
    assert redeemed.get_json()["transaction"]["points_balance_after"] == 60

    txns = client.get(f"/api/loyalty/accounts/{account_id}/transactions").get_json()["transactions"]
    assert [t["transaction_type"] for t in txns] == ["redeem", "adjustment"]


def test_drawer_lifecycle_over_http(client, db_session):
    assert client.get("/api/cash-drawer").get_json()["drawer"] is None

    opened = client.post("/api/cash-drawer/open", json={"opening_balance": 50000}, headers=operator_headers())
    assert opened.status_code == 201
    drawer_id = opened.get_json()["drawer"]["id"]

    assert client.post("/api/cash-drawer/open", json={"opening_balance": 1}, headers=operator_headers()).status_code == 409

    for kind, amount in [("cash_in", "20000"), ("cash_out", "5000")]:
        response = client.post(f"/api/cash-drawer/{drawer_id}/transactions", json={
            "transaction_type": kind, "amount": amount, "description": kind,
        }, headers=operator_headers())
        assert response.status_code == 201

    current = client.get("/api/cash-drawer").get_json()
    assert current["drawer"]["expected_balance"] == "65000.00"
    assert len(current["transactions"]) == 2

    closed = client.post(f"/api/cash-drawer/{drawer_id}/close", json={"actual_balance": "64000"}, headers=operator_headers())
    assert closed.status_code == 200
    assert closed.get_json()["drawer"]["discrepancy"] == "-1000.00"
    assert closed.get_json()["discrepancy_status"] == "short"

    no_notes = client.post(f"/api/cash-drawer/{drawer_id}/reconcile", json={"actual_balance": "64000"}, headers=operator_headers())
    assert no_notes.status_code == 400

    reconciled = client.post(f"/api/cash-drawer/{drawer_id}/reconcile", json={
        "actual_balance": "64000", "notes": "1000 short, float miscounted",
    }, headers=operator_headers("supervisor"))
    assert reconciled.status_code == 200
    body = reconciled.get_json()
    assert body["status"] == "short"
    assert body["drawer"]["status"] == "reconciled"

    summary = client.get(f"/api/cash-drawer/{drawer_id}").get_json()
    assert summary["ledger_expected_balance"] == "65000.00"
    assert db_session.query(CashDrawer).filter_by(status="open").count() == 0


def test_drawer_transaction_on_missing_drawer(client, db_session):
    response = client.post("/api/cash-drawer/999/transactions", json={
        "transaction_type": "cash_in", "amount": "1", "description": "x",
    }, headers=operator_headers())

    assert response.status_code == 404

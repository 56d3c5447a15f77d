"""
Pytest fixtures for settlement backend tests.

Provides test database setup, catalog/payment/loyalty fixtures, and test client.
"""

from decimal import Decimal

import pytest
from settlement import create_app
from settlement.extensions import db
from settlement.models import (
    Product, Inventory, PaymentMethod, Customer, LoyaltyProgram, LoyaltyAccount,
)
from settlement.services import drawer_service
from settlement.services.totals_service import CartLine


OPERATOR = "cashier-1"
VALID_CARD = "4242424242424242"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret',
        'INVOICE_RETRY_DELAY_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_product(session, sku, name, price, tax_rate="0", quantity=10, min_stock_level=0):
    product = Product(sku=sku, name=name, price=Decimal(price), tax_rate=Decimal(tax_rate), is_active=True)
    session.add(product)
    session.flush()
    session.add(Inventory(product_id=product.id, quantity=quantity, min_stock_level=min_stock_level))
    session.commit()
    return product


@pytest.fixture(scope='function')
def soap(db_session):
    """1000 per bar, 18% tax, 10 in stock."""
    return make_product(db_session, "SOAP-001", "Bar Soap", "1000", tax_rate="18", quantity=10, min_stock_level=3)


@pytest.fixture(scope='function')
def sugar(db_session):
    """Untaxed, only 2 in stock."""
    return make_product(db_session, "SUGAR-1KG", "Sugar 1kg", "4500", quantity=2, min_stock_level=5)


@pytest.fixture(scope='function')
def payment_methods(db_session):
    methods = {
        "cash": PaymentMethod(name="Cash", category="cash"),
        "card": PaymentMethod(name="Card", category="card"),
        "mobile": PaymentMethod(name="Mobile Money", category="mobile"),
        "legacy_card": PaymentMethod(name="Visa Debit", category=None),
        "voucher": PaymentMethod(name="Gift Voucher", category=None),
    }
    db_session.add_all(methods.values())
    db_session.commit()
    return methods


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Amina Nakato", email="amina@example.com", phone="+256700111222")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def loyalty_program(db_session):
    program = LoyaltyProgram(name="Default", points_per_currency=Decimal("0.01"), is_active=True)
    db_session.add(program)
    db_session.commit()
    return program


@pytest.fixture(scope='function')
def loyalty_account(db_session, customer, loyalty_program):
    account = LoyaltyAccount(customer_id=customer.id, program_id=loyalty_program.id)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def open_drawer(db_session):
    """Drawer opened with a 50,000 float."""
    return drawer_service.open_drawer("50000", operator_id=OPERATOR)


def cart_line(product, quantity, unit_price=None, discount="0", tax_rate=None):
    return CartLine(
        product_id=product.id,
        product_name=product.name,
        unit_price=Decimal(unit_price) if unit_price is not None else Decimal(product.price),
        quantity=quantity,
        discount_amount=Decimal(discount),
        tax_rate=Decimal(tax_rate) if tax_rate is not None else Decimal(product.tax_rate),
    )


def operator_headers(operator=OPERATOR):
    return {"X-Operator-Id": operator}

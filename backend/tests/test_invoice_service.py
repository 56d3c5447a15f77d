"""Invoice number generation: uniqueness, retry on conflict, fallback."""

import re

import pytest
from sqlalchemy.exc import IntegrityError

from settlement.extensions import db
from settlement.models import InvoiceNumberReservation
from settlement.services import invoice_service

FALLBACK_PATTERN = re.compile(r"^INV-\d{13}-\d{1,3}$")
PRIMARY_PATTERN = re.compile(r"^INV-\d{8}-\d{4}-\d{4}$")


def _conflict():
    return IntegrityError("INSERT INTO invoice_number_reservations", {}, Exception("UNIQUE constraint failed"))


def test_primary_path_uses_date_sequence_and_suffix(db_session):
    number = invoice_service.generate_invoice_number()

    assert PRIMARY_PATTERN.match(number)
    assert db_session.query(InvoiceNumberReservation).filter_by(invoice_number=number).count() == 1


def test_sequence_increments_within_a_day(db_session):
    first = invoice_service.generate_invoice_number()
    second = invoice_service.generate_invoice_number()

    assert first.rsplit("-", 1)[0].endswith("-0001")
    assert second.rsplit("-", 1)[0].endswith("-0002")


def test_generated_numbers_are_unique(db_session):
    numbers = {invoice_service.generate_invoice_number() for _ in range(25)}

    assert len(numbers) == 25


def test_conflict_is_retried(db_session, monkeypatch):
    db_session.add(InvoiceNumberReservation(invoice_number="INV-BASE-1111"))
    db_session.commit()
    suffixes = iter([1111, 2222])
    monkeypatch.setattr(invoice_service.random, "randint", lambda a, b: next(suffixes))

    number = invoice_service.generate_invoice_number(lambda: "INV-BASE")

    assert number == "INV-BASE-2222"


def test_three_conflicts_fall_back_to_timestamp_composite(db_session, monkeypatch):
    calls = []
    original = invoice_service._reserve

    def flaky_reserve(candidate):
        calls.append(candidate)
        if len(calls) <= 3:
            raise _conflict()
        return original(candidate)

    monkeypatch.setattr(invoice_service, "_reserve", flaky_reserve)

    number = invoice_service.generate_invoice_number()

    assert FALLBACK_PATTERN.match(number)
    assert len(calls) == 4


def test_provider_error_falls_back_without_retry(db_session):
    attempts = []

    def broken_provider():
        attempts.append(1)
        raise RuntimeError("sequence service unavailable")

    number = invoice_service.generate_invoice_number(broken_provider)

    assert FALLBACK_PATTERN.match(number)
    assert len(attempts) == 1


def test_generator_never_raises_even_if_fallback_cannot_be_reserved(db_session, monkeypatch):
    def always_conflict(candidate):
        raise _conflict()

    monkeypatch.setattr(invoice_service, "_reserve", always_conflict)

    assert FALLBACK_PATTERN.match(invoice_service.generate_invoice_number())


@pytest.mark.parametrize("prefix", ["INV", "SHOP2"])
def test_prefix_comes_from_config(app, db_session, prefix):
    app.config["INVOICE_PREFIX"] = prefix
    try:
        assert invoice_service.generate_invoice_number().startswith(f"{prefix}-")
    finally:
        app.config["INVOICE_PREFIX"] = "INV"
        db.session.rollback()

"""Totals calculator: pure cart arithmetic."""

from decimal import Decimal

from settlement.services.totals_service import CartLine, compute_line, compute_totals


def line(price, qty, tax="0", discount="0", product_id=1):
    return CartLine(
        product_id=product_id,
        product_name=f"Item {product_id}",
        unit_price=Decimal(price),
        quantity=qty,
        discount_amount=Decimal(discount),
        tax_rate=Decimal(tax),
    )


def test_single_taxed_line():
    totals = compute_totals([line("1000", 3, tax="18")])

    assert totals.subtotal == Decimal("3000.00")
    assert totals.tax_amount == Decimal("540.00")
    assert totals.discount_amount == Decimal("0.00")
    assert totals.total == Decimal("3540.00")


def test_empty_cart_is_all_zero():
    totals = compute_totals([])

    assert totals.subtotal == totals.tax_amount == totals.discount_amount == totals.total == Decimal("0")


def test_total_identity_holds_for_mixed_cart():
    cart = (
        line("1000", 3, tax="18", discount="100", product_id=1),
        line("4500", 1, product_id=2),
        line("19.99", 7, tax="7.5", discount="5.5", product_id=3),
    )

    totals = compute_totals(cart)

    assert totals.total == totals.subtotal + totals.tax_amount - totals.discount_amount
    assert totals.total == sum(compute_line(item).line_total for item in cart)


def test_line_rounding_is_per_line_half_up():
    # 0.335 * 1 at 10% -> tax 0.0335 -> 0.03; gross 0.335 -> 0.34
    amounts = compute_line(line("0.335", 1, tax="10"))

    assert amounts.gross == Decimal("0.34")
    assert amounts.tax_amount == Decimal("0.03")
    assert amounts.line_total == Decimal("0.37")


def test_tax_is_computed_before_discount():
    amounts = compute_line(line("200", 2, tax="10", discount="50"))

    assert amounts.tax_amount == Decimal("40.00")
    assert amounts.line_total == Decimal("390.00")


def test_compute_totals_is_repeatable():
    cart = (line("333.33", 3, tax="16"), line("0.01", 99, discount="0.50"))

    assert compute_totals(cart) == compute_totals(cart)


def test_totals_serialize_as_two_decimal_strings():
    assert compute_totals([line("1000", 3, tax="18")]).to_dict() == {
        "subtotal": "3000.00",
        "tax_amount": "540.00",
        "discount_amount": "0.00",
        "total": "3540.00",
    }

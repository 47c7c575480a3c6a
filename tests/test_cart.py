"""Unit tests for the cart engine and its pricing helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest

from till_pos import cart
from till_pos.constants import DiscountType


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------


def test_to_decimal_accepts_int_str_and_decimal():
    """Integers, strings and Decimals are all valid money inputs."""

    assert cart.to_decimal(5) == Decimal("5")
    assert cart.to_decimal("12.5") == Decimal("12.5")
    assert cart.to_decimal(Decimal("7")) == Decimal("7")


@pytest.mark.parametrize("value", [0.1, True, None, [1]])
def test_to_decimal_rejects_floats_and_other_types(value):
    """Binary floats and non-numeric types must never reach money math."""

    with pytest.raises(TypeError):
        cart.to_decimal(value)


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
def test_to_decimal_rejects_invalid_text(value):
    """Unparseable or non-finite text raises ValueError."""

    with pytest.raises(ValueError):
        cart.to_decimal(value)


def test_to_money_rounds_half_up_to_whole_units():
    assert cart.to_money("10.5") == Decimal("11")
    assert cart.to_money("10.49") == Decimal("10")


def test_calculate_tax_rounds_half_up():
    """Tax halves round away from zero."""

    assert cart.calculate_tax(Decimal("25005")) == Decimal("2501")
    assert cart.calculate_tax(Decimal("25004")) == Decimal("2500")


def test_calculate_tax_honours_custom_rate():
    assert cart.calculate_tax(Decimal("50000"), Decimal("0.11")) == Decimal("5500")


def test_calculate_discount_amount_percentage_rounds_half_up():
    amount = cart.calculate_discount_amount(Decimal("333"), Decimal("50"), DiscountType.PERCENTAGE)
    assert amount == Decimal("167")


def test_calculate_discount_amount_without_discount_is_zero():
    assert cart.calculate_discount_amount(Decimal("1000"), None, None) == Decimal("0")


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


def test_add_line_increments_existing_line(make_product):
    """Adding the same product twice bumps the quantity of a single line."""

    product = make_product(stock=5)
    basket = cart.Cart()

    basket.add_line(product)
    line = basket.add_line(product)

    assert len(basket) == 1
    assert line.quantity == 2


def test_add_line_caps_at_available_stock(make_product):
    """Quantity never exceeds the product's stock."""

    product = make_product(stock=3)
    basket = cart.Cart()

    for _ in range(5):
        basket.add_line(product)

    assert basket.get_line(product.product_id).quantity == 3


def test_add_line_skips_out_of_stock_products(make_product):
    basket = cart.Cart()

    assert basket.add_line(make_product(stock=0)) is None
    assert basket.is_empty()


def test_add_line_preserves_insertion_order(make_product):
    basket = cart.Cart()
    for product_id in ("P3", "P1", "P2"):
        basket.add_line(make_product(product_id))

    assert [line.product_id for line in basket] == ["P3", "P1", "P2"]


@pytest.mark.parametrize("requested, expected", [(2, 2), (10, 4), (1, 1)])
def test_set_quantity_clamps_to_stock(make_product, requested, expected):
    product = make_product(stock=4)
    basket = cart.Cart()
    basket.add_line(product)

    line = basket.set_quantity(product.product_id, requested)

    assert line.quantity == expected


@pytest.mark.parametrize("requested", [0, -3])
def test_set_quantity_non_positive_removes_line(make_product, requested):
    product = make_product()
    basket = cart.Cart()
    basket.add_line(product)

    assert basket.set_quantity(product.product_id, requested) is None
    assert basket.get_line(product.product_id) is None


def test_set_quantity_rejects_non_integer(make_product):
    product = make_product()
    basket = cart.Cart()
    basket.add_line(product)

    with pytest.raises(TypeError):
        basket.set_quantity(product.product_id, "2")


def test_set_quantity_unknown_product_is_ignored():
    assert cart.Cart().set_quantity("missing", 2) is None


def test_remove_line_is_idempotent(make_product):
    product = make_product()
    basket = cart.Cart()
    basket.add_line(product)

    basket.remove_line(product.product_id)
    basket.remove_line(product.product_id)

    assert basket.is_empty()


# ---------------------------------------------------------------------------
# Discounts and totals
# ---------------------------------------------------------------------------


def test_two_units_with_default_tax(make_product):
    """Two 25,000 items: subtotal 50,000, tax 5,000, total 55,000."""

    product = make_product(price="25000")
    basket = cart.Cart()
    basket.add_line(product)
    basket.add_line(product)

    assert basket.subtotal() == Decimal("50000")
    assert basket.tax() == Decimal("5000")
    assert basket.total() == Decimal("55000")
    assert basket.item_count() == 2


def test_percentage_discount_reduces_line_total(make_product):
    product = make_product(price="25000")
    basket = cart.Cart()
    basket.add_line(product)
    basket.set_discount(product.product_id, "10", DiscountType.PERCENTAGE)

    assert basket.subtotal() == Decimal("22500")
    assert basket.total() == Decimal("24750")


def test_fixed_discount_larger_than_line_clamps_to_zero(make_product):
    """A discount larger than the line total yields zero, never a negative line."""

    product = make_product(price="25000")
    basket = cart.Cart()
    basket.add_line(product)
    basket.add_line(product)
    line = basket.set_discount(product.product_id, "60000", DiscountType.FIXED)

    assert cart.line_total(line) == Decimal("0")
    assert basket.total() == Decimal("0")


def test_set_discount_zero_clears_existing_discount(make_product):
    product = make_product()
    basket = cart.Cart()
    basket.add_line(product)
    basket.set_discount(product.product_id, "5000", DiscountType.FIXED)

    line = basket.set_discount(product.product_id, 0)

    assert line.discount is None
    assert line.discount_type is None


def test_set_discount_rejects_out_of_range_percentage(make_product):
    product = make_product()
    basket = cart.Cart()
    basket.add_line(product)

    with pytest.raises(ValueError):
        basket.set_discount(product.product_id, "150", DiscountType.PERCENTAGE)


def test_set_discount_rejects_negative_fixed(make_product):
    product = make_product()
    basket = cart.Cart()
    basket.add_line(product)

    with pytest.raises(ValueError):
        basket.set_discount(product.product_id, "-5", DiscountType.FIXED)


def test_set_discount_requires_line_in_cart():
    with pytest.raises(KeyError):
        cart.Cart().set_discount("missing", "10")


def test_discount_survives_quantity_change(make_product):
    product = make_product(price="10000", stock=5)
    basket = cart.Cart()
    basket.add_line(product)
    basket.set_discount(product.product_id, "50", DiscountType.PERCENTAGE)

    basket.set_quantity(product.product_id, 3)

    assert basket.subtotal() == Decimal("15000")


def test_clear_empties_cart(make_product):
    basket = cart.Cart()
    basket.add_line(make_product())
    basket.clear()

    assert basket.is_empty()
    assert basket.total() == Decimal("0")


def test_to_money_out_of_range_raises_value_error():
    with pytest.raises(ValueError):
        cart.to_money("1e30")


def test_quantity_stays_within_stock_over_mixed_sequence(make_product):
    """Every add/set step keeps the line between one unit and the available stock."""

    product = make_product(stock=4)
    basket = cart.Cart()
    steps = [
        ("add", None),
        ("add", None),
        ("set", 10),
        ("add", None),
        ("set", 2),
        ("add", None),
        ("add", None),
        ("add", None),
        ("set", -1),
        ("add", None),
        ("set", 0),
        ("add", None),
        ("set", 3),
    ]

    for action, quantity in steps:
        if action == "add":
            basket.add_line(product)
        else:
            basket.set_quantity(product.product_id, quantity)
        line = basket.get_line(product.product_id)
        if line is not None:
            assert 1 <= line.quantity <= product.stock

    assert basket.get_line(product.product_id).quantity == 3

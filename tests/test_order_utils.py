import re
from decimal import Decimal
import pytest
from storefront.common.custom_exceptions import EmptyCart, InvalidState, ValidationFailed
from storefront.orders.utils import (PricingPolicy, can_transition, compute_order_totals, ensure_transition,
                                     generate_order_number, normalize_cart_items)
from storefront.payments.utils import from_minor_units, to_minor_units
from helpers import make_cart


def test_default_pricing_applies_vat_and_flat_shipping():
    items = normalize_cart_items(make_cart(5000, 3000))
    totals = compute_order_totals(items, PricingPolicy())

    assert totals["subtotal"] == Decimal("8000.00")
    assert totals["shipping_cost"] == Decimal("2000.00")
    assert totals["tax"] == Decimal("600.00")
    assert totals["total"] == Decimal("10600.00")


def test_free_shipping_above_threshold():
    items = normalize_cart_items(make_cart(60000))
    totals = compute_order_totals(items, PricingPolicy())

    assert totals["shipping_cost"] == Decimal("0.00")
    assert totals["total"] == Decimal("64500.00")


def test_quantities_multiply_line_prices():
    cart = make_cart(1500)
    cart[0]["quantity"] = 3
    totals = compute_order_totals(normalize_cart_items(cart),
                                  PricingPolicy(tax_rate=Decimal("0"), flat_shipping=Decimal("0")))
    assert totals["total"] == Decimal("4500.00")


def test_empty_cart_rejected():
    with pytest.raises(EmptyCart):
        normalize_cart_items([])


@pytest.mark.parametrize("field,value", [("quantity", 0), ("price", "-1"), ("price", "abc")])
def test_malformed_items_rejected(field, value):
    cart = make_cart(1000)
    cart[0][field] = value
    with pytest.raises(ValidationFailed):
        normalize_cart_items(cart)


def test_order_number_format_and_uniqueness():
    numbers = {generate_order_number("TF") for _ in range(200)}
    assert len(numbers) == 200
    for n in numbers:
        assert re.fullmatch(r"TF-[0-9A-Z]+-[0-9A-Z]{6}", n)


def test_transition_table():
    assert can_transition("pending", "confirmed")
    assert can_transition("pending", "cancelled")
    assert can_transition("confirmed", "processing")
    assert can_transition("processing", "shipped")
    assert can_transition("shipped", "delivered")

    assert not can_transition("pending", "shipped")
    assert not can_transition("processing", "cancelled")
    assert not can_transition("delivered", "cancelled")
    assert not can_transition("cancelled", "pending")

    with pytest.raises(InvalidState) as exc:
        ensure_transition("delivered", "pending")
    assert exc.value.current_status == "delivered"


def test_minor_unit_conversion():
    assert to_minor_units(Decimal("8500")) == 850000
    assert to_minor_units("10.005") == 1001
    assert to_minor_units(Decimal("0.01")) == 1
    assert from_minor_units(850000) == Decimal("8500.00")
    assert from_minor_units(1) == Decimal("0.01")

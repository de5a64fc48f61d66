"""
Unit tests for cart totals (discount engine).
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from estoque_pdv.services.sale_cart import (
    Cart, calculate_cart_totals, DISCOUNT_PERCENT, DISCOUNT_AMOUNT
)
from estoque_pdv.exceptions import ValidationError


def _cart_with(*items):
    cart = Cart()
    for index, (price, qty) in enumerate(items, start=1):
        product = SimpleNamespace(
            id=index, name=f'P{index}', code=str(index).zfill(3),
            stock=1000, sale_price=Decimal(price), active=True
        )
        cart.add_line(product, qty)
    return cart


class TestCartTotals:

    def test_empty_cart(self):
        totals = calculate_cart_totals(Cart())
        assert totals['subtotal'] == Decimal('0.00')
        assert totals['total'] == Decimal('0.00')
        assert totals['lines'] == []

    def test_subtotal_subtracts_line_discounts(self):
        cart = _cart_with(('10.00', 2), ('4.50', 1))
        cart.set_line_discount(1, '1.00')

        totals = calculate_cart_totals(cart)

        assert totals['gross'] == Decimal('24.50')
        assert totals['line_discounts'] == Decimal('1.00')
        assert totals['subtotal'] == Decimal('23.50')
        assert totals['total'] == Decimal('23.50')
        assert totals['items'] == 3

    def test_percent_then_amount_switches_mode(self):
        # Subtotal R$100: 10% -> total 90; fixed R$5 -> total 95
        cart = _cart_with(('25.00', 4))

        cart.set_discount(DISCOUNT_PERCENT, 10)
        totals = calculate_cart_totals(cart)
        assert totals['discount'] == Decimal('10.00')
        assert totals['total'] == Decimal('90.00')

        cart.set_discount(DISCOUNT_AMOUNT, 5)
        totals = calculate_cart_totals(cart)
        assert cart.discount_percent == Decimal('0.00')
        assert totals['discount'] == Decimal('5.00')
        assert totals['total'] == Decimal('95.00')

    def test_amount_discount_capped_at_subtotal(self):
        cart = _cart_with(('10.00', 1))
        cart.set_discount(DISCOUNT_AMOUNT, 50)

        totals = calculate_cart_totals(cart)

        assert totals['discount'] == Decimal('10.00')
        assert totals['total'] == Decimal('0.00')

    def test_percent_clamped_to_100(self):
        cart = _cart_with(('10.00', 1))
        cart.set_discount(DISCOUNT_PERCENT, 150)

        assert cart.discount_percent == Decimal('100.00')
        assert calculate_cart_totals(cart)['total'] == Decimal('0.00')

    def test_percent_rounds_half_up(self):
        # 0.05 * 50% = 0.025 -> 0.03
        cart = _cart_with(('0.05', 1))
        cart.set_discount(DISCOUNT_PERCENT, 50)

        totals = calculate_cart_totals(cart)

        assert totals['discount'] == Decimal('0.03')
        assert totals['total'] == Decimal('0.02')

    def test_remove_discount(self):
        cart = _cart_with(('10.00', 1))
        cart.set_discount(DISCOUNT_PERCENT, 10)
        cart.set_discount(None)

        assert calculate_cart_totals(cart)['discount'] == Decimal('0.00')

    def test_invalid_discount_type(self):
        with pytest.raises(ValidationError):
            _cart_with(('10.00', 1)).set_discount('BOGO', 1)

    def test_change_for_cash(self):
        cart = _cart_with(('10.00', 3))
        cart.set_payment('dinheiro', '50')

        totals = calculate_cart_totals(cart)

        assert totals['total'] == Decimal('30.00')
        assert totals['change'] == Decimal('20.00')

    def test_no_change_for_card_or_pix(self):
        cart = _cart_with(('10.00', 3))
        cart.set_payment('pix', '50')

        assert calculate_cart_totals(cart)['change'] == Decimal('0.00')

    def test_total_never_exceeds_subtotal(self):
        cart = _cart_with(('19.99', 3), ('0.01', 7))
        for discount_type, value in [(DISCOUNT_PERCENT, 33), (DISCOUNT_AMOUNT, '12.34'), (None, 0)]:
            cart.set_discount(discount_type, value)
            totals = calculate_cart_totals(cart)
            assert Decimal('0.00') <= totals['total'] <= totals['subtotal']

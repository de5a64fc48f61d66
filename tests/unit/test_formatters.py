"""
Unit tests for Brazilian number formatting / parsing and sale notes.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from estoque_pdv.utils.formatters import money_br, percent_br
from estoque_pdv.utils.number_format import parse_br_decimal, parse_quantity, to_money
from estoque_pdv.services.sale_cart import Cart, calculate_cart_totals, DISCOUNT_PERCENT, DISCOUNT_AMOUNT
from estoque_pdv.services.settlement_service import build_sale_note


class TestFormatters:

    def test_money_br(self):
        assert money_br(Decimal('1500')) == '1.500,00'
        assert money_br('1234567.891') == '1.234.567,89'
        assert money_br(-3.5) == '-3,50'
        assert money_br(None) == '-'
        assert money_br('abc') == '-'

    def test_percent_br(self):
        assert percent_br(10) == '10%'
        assert percent_br(Decimal('12.50')) == '12,5%'
        assert percent_br(None) == '-'


class TestNumberParsing:

    @pytest.mark.parametrize('raw, expected', [
        ('1.234,56', Decimal('1234.56')),
        ('R$ 10,5', Decimal('10.50')),
        ('99.90', Decimal('99.90')),
        (7, Decimal('7.00')),
        (Decimal('0.005'), Decimal('0.01')),
    ])
    def test_parse_br_decimal(self, raw, expected):
        assert parse_br_decimal(raw) == expected

    @pytest.mark.parametrize('raw', [None, '', 'dez', '-1,00', 'Infinity', 'NaN', '1e400'])
    def test_parse_br_decimal_rejects(self, raw):
        with pytest.raises(ValueError):
            parse_br_decimal(raw)

    def test_parse_quantity(self):
        assert parse_quantity('3') == 3
        assert parse_quantity(4) == 4
        assert parse_quantity('2,0') == 2
        with pytest.raises(ValueError):
            parse_quantity('2,5')
        with pytest.raises(ValueError):
            parse_quantity(True)

    @pytest.mark.parametrize('raw', ['Infinity', '-Infinity', 'NaN', 'sNaN', '1e400', 10 ** 12])
    def test_parse_quantity_rejects_non_finite_and_huge(self, raw):
        with pytest.raises(ValueError):
            parse_quantity(raw)

    def test_to_money_rounds_half_up(self):
        assert to_money('2.675') == Decimal('2.68')
        assert to_money(None) == Decimal('0.00')

    @pytest.mark.parametrize('raw', ['Infinity', 'NaN', 'abc', Decimal('1e400')])
    def test_to_money_rejects_invalid(self, raw):
        with pytest.raises(ValueError):
            to_money(raw)


class TestSaleNote:

    def _cart(self):
        cart = Cart()
        cart.add_line(SimpleNamespace(
            id=1, name='Arroz', code='001', stock=10, sale_price=Decimal('50.00'), active=True
        ), 2)
        return cart

    def test_plain_note(self):
        cart = self._cart()
        assert build_sale_note(cart, calculate_cart_totals(cart)) == 'Venda PDV'

    def test_note_with_customer_and_percent(self):
        cart = self._cart()
        cart.set_customer(SimpleNamespace(id=3, name='Ana'), default_discount_percent=Decimal('5'))
        note = build_sale_note(cart, calculate_cart_totals(cart))
        assert note == 'Venda PDV - Cliente: Ana - Desconto: 5%'

    def test_note_with_amount(self):
        cart = self._cart()
        cart.set_discount(DISCOUNT_AMOUNT, '7.5')
        note = build_sale_note(cart, calculate_cart_totals(cart), prefix='Venda')
        assert note == 'Venda - Desconto: R$ 7,50'

    def test_percent_without_effect_not_noted(self):
        cart = Cart()
        cart.set_discount(DISCOUNT_PERCENT, 10)
        assert build_sale_note(cart, calculate_cart_totals(cart)) == 'Venda PDV'

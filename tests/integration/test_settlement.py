"""
Integration tests for sale settlement.
"""

import pytest
from decimal import Decimal

from sqlalchemy.exc import OperationalError

from estoque_pdv.exceptions import (
    EstoqueError, ValidationError, InsufficientStockError, PaymentInsufficientError,
    CreditLimitExceededError, PartialCommitError, NotFoundError, BusinessLogicError
)
from estoque_pdv.models import Movement, MovementType, PaymentMethod, Product
from estoque_pdv.services import settlement_service
from estoque_pdv.services.catalog_service import apply_stock_delta
from estoque_pdv.services.movement_service import reverse_movement
from estoque_pdv.services.sale_cart import Cart, DISCOUNT_PERCENT
from estoque_pdv.services.settlement_service import SaleSettlement, SettlementState, settle_sale


def _stock(session, product_id):
    return session.get(Product, product_id, populate_existing=True).stock


class TestSettleSale:

    def test_cash_sale(self, session, product, tenant_id, user_id):
        # Stock 10, min 2; sell 3 in cash with exact change
        cart = Cart()
        cart.add_line(product, 3)
        cart.set_payment('dinheiro', '30.00')

        receipt = settle_sale(session, cart, tenant_id, user_id)

        assert _stock(session, product.id) == 7
        movements = session.query(Movement).all()
        assert len(movements) == 1
        movement = movements[0]
        assert movement.type is MovementType.SAIDA
        assert movement.quantity == 3
        assert movement.total_value == Decimal('30.00')
        assert movement.sale_ref == receipt.sale_ref
        assert movement.payment_method is PaymentMethod.DINHEIRO
        assert movement.note == 'Venda PDV'

        assert receipt.total == Decimal('30.00')
        assert receipt.change == Decimal('0.00')
        assert receipt.movement_ids == [movement.id]
        assert cart.is_empty

    def test_change_is_recorded(self, session, product, tenant_id, user_id):
        cart = Cart()
        cart.add_line(product, 2)
        cart.set_payment('dinheiro', '50')

        receipt = settle_sale(session, cart, tenant_id, user_id)

        assert receipt.change == Decimal('30.00')
        movement = session.query(Movement).one()
        assert movement.amount_tendered == Decimal('50.00')
        assert movement.change == Decimal('30.00')

    def test_multi_line_sale_with_discounts(self, session, product, product_b, customer, tenant_id, user_id):
        cart = Cart()
        cart.add_line(product, 2)      # 20.00
        cart.add_line(product_b, 2)    # 9.00
        cart.set_line_discount(product.id, '2.00')
        cart.set_customer(customer, default_discount_percent=Decimal('5'))
        cart.set_payment('pix')

        receipt = settle_sale(session, cart, tenant_id, user_id)

        assert receipt.subtotal == Decimal('27.00')
        assert receipt.discount == Decimal('1.35')
        assert receipt.total == Decimal('25.65')
        assert receipt.amount_tendered == Decimal('25.65')
        assert receipt.customer_name == 'Ana Souza'
        assert [line['product_id'] for line in receipt.lines] == [product.id, product_b.id]

        movements = session.query(Movement).order_by(Movement.id).all()
        assert [m.total_value for m in movements] == [Decimal('18.00'), Decimal('9.00')]
        assert {m.sale_ref for m in movements} == {receipt.sale_ref}
        assert movements[0].note == 'Venda PDV - Cliente: Ana Souza - Desconto: 5%'
        assert movements[0].customer_id == customer.id
        assert _stock(session, product.id) == 8
        assert _stock(session, product_b.id) == 3

    def test_receipt_to_dict(self, session, product, tenant_id, user_id):
        cart = Cart()
        cart.add_line(product, 1)
        cart.set_payment('cartao')

        data = settle_sale(session, cart, tenant_id, user_id).to_dict()

        assert data['total'] == '10.00'
        assert data['payment_method'] == 'cartao'
        assert data['lines'][0]['quantity'] == 1
        assert 'timestamp' in data

    def test_receipt_time_matches_ledger(self, session, product, product_b, tenant_id, user_id):
        cart = Cart()
        cart.add_line(product, 1)
        cart.add_line(product_b, 1)
        cart.set_payment('pix')

        receipt = settle_sale(session, cart, tenant_id, user_id)

        assert receipt.timestamp.tzinfo is not None
        stored = {m.occurred_at.replace(tzinfo=None) for m in session.query(Movement).all()}
        # SQLite hands back naive UTC values
        assert stored == {receipt.timestamp.replace(tzinfo=None)}

    def test_sale_then_reversal_restores_stock(self, session, product, tenant_id, user_id):
        cart = Cart()
        cart.add_line(product, 4)
        cart.set_payment('pix')
        receipt = settle_sale(session, cart, tenant_id, user_id)
        assert _stock(session, product.id) == 6

        reverse_movement(session, receipt.movement_ids[0], tenant_id, user_id)

        assert _stock(session, product.id) == 10
        assert session.query(Movement).count() == 0


class TestValidation:

    def _cart(self, product, qty=1, method='pix', tendered=None):
        cart = Cart()
        cart.add_line(product, qty)
        cart.set_payment(method, tendered)
        return cart

    def test_empty_cart(self, session, tenant_id, user_id):
        settlement = SaleSettlement(session, Cart(), tenant_id, user_id)
        with pytest.raises(ValidationError):
            settlement.run()
        assert settlement.state is SettlementState.OPEN

    def test_cash_below_total(self, session, product, tenant_id, user_id):
        cart = self._cart(product, 3, 'dinheiro', '29.99')
        with pytest.raises(PaymentInsufficientError):
            settle_sale(session, cart, tenant_id, user_id)
        assert _stock(session, product.id) == 10
        assert len(cart.lines) == 1

    def test_cash_without_tendered_amount(self, session, product, tenant_id, user_id):
        with pytest.raises(PaymentInsufficientError):
            settle_sale(session, self._cart(product, 1, 'dinheiro'), tenant_id, user_id)

    def test_stock_drift_since_add(self, session, product, tenant_id, user_id):
        cart = self._cart(product, 8)
        # Another terminal sold in the meantime
        session.query(Product).filter(Product.id == product.id).update({'stock': 5})
        session.commit()

        settlement = SaleSettlement(session, cart, tenant_id, user_id)
        with pytest.raises(InsufficientStockError):
            settlement.run()

        assert settlement.state is SettlementState.OPEN
        assert session.query(Movement).count() == 0

    def test_product_deactivated_since_add(self, session, product, tenant_id, user_id):
        cart = self._cart(product)
        product.active = False
        session.commit()

        with pytest.raises(ValidationError):
            settle_sale(session, cart, tenant_id, user_id)

    def test_on_account_requires_customer(self, session, product, tenant_id, user_id):
        with pytest.raises(ValidationError):
            settle_sale(session, self._cart(product, 1, 'prazo'), tenant_id, user_id)

    def test_on_account_within_credit_limit(self, session, product, customer, tenant_id, user_id):
        cart = self._cart(product, 10, 'prazo')
        cart.customer_id, cart.customer_name = customer.id, customer.name

        receipt = settle_sale(session, cart, tenant_id, user_id)

        assert receipt.total == Decimal('100.00')
        assert receipt.payment_method is PaymentMethod.PRAZO

    def test_on_account_over_credit_limit(self, session, make_product, customer, tenant_id, user_id):
        expensive = make_product(sale_price='60.00')
        cart = self._cart(expensive, 2, 'prazo')
        cart.set_customer(customer, default_discount_percent=0)

        with pytest.raises(CreditLimitExceededError):
            settle_sale(session, cart, tenant_id, user_id)
        assert _stock(session, expensive.id) == 10

    def test_commit_requires_validation(self, session, product, tenant_id, user_id):
        settlement = SaleSettlement(session, self._cart(product), tenant_id, user_id)
        with pytest.raises(BusinessLogicError):
            settlement.commit()

    def test_states(self, session, product, tenant_id, user_id):
        settlement = SaleSettlement(session, self._cart(product), tenant_id, user_id)
        assert settlement.state is SettlementState.OPEN

        totals = settlement.validate()
        assert settlement.state is SettlementState.VALIDATING
        assert totals['total'] == Decimal('10.00')

        settlement.commit()
        assert settlement.state is SettlementState.CLOSED


class TestAtomicCommit:

    def _two_line_cart(self, product, product_b):
        cart = Cart()
        cart.add_line(product, 2)
        cart.add_line(product_b, 1)
        cart.set_payment('pix')
        return cart

    def test_failure_on_first_line_is_clean(self, session, product, product_b, tenant_id, user_id, monkeypatch):
        cart = self._two_line_cart(product, product_b)

        def broken(*args, **kwargs):
            raise RuntimeError('conexão perdida')

        monkeypatch.setattr(settlement_service, 'apply_stock_delta', broken)
        settlement = SaleSettlement(session, cart, tenant_id, user_id)

        with pytest.raises(Exception) as exc:
            settlement.run()

        assert not isinstance(exc.value, PartialCommitError)
        assert settlement.state is SettlementState.OPEN
        assert session.query(Movement).count() == 0
        assert len(cart.lines) == 2

    def test_failure_on_later_line_rolls_back_whole_sale(self, session, product, product_b, tenant_id, user_id,
                                                          monkeypatch):
        cart = self._two_line_cart(product, product_b)
        real_apply = settlement_service.apply_stock_delta

        def fail_on_second(session_, product_id, delta, tenant_id_):
            if product_id == product_b.id:
                raise RuntimeError('conexão perdida')
            return real_apply(session_, product_id, delta, tenant_id_)

        monkeypatch.setattr(settlement_service, 'apply_stock_delta', fail_on_second)
        settlement = SaleSettlement(session, cart, tenant_id, user_id)

        with pytest.raises(EstoqueError) as exc:
            settlement.run()

        assert not isinstance(exc.value, PartialCommitError)
        assert settlement.state is SettlementState.OPEN
        assert _stock(session, product.id) == 10
        assert _stock(session, product_b.id) == 5
        assert session.query(Movement).count() == 0
        assert len(cart.lines) == 2

    def test_concurrent_sale_after_validation(self, session, product, product_b, tenant_id, user_id):
        cart = self._two_line_cart(product, product_b)
        settlement = SaleSettlement(session, cart, tenant_id, user_id)
        settlement.validate()

        # Another terminal drains the second product before commit
        apply_stock_delta(session, product_b.id, -5, tenant_id)
        session.commit()

        with pytest.raises(InsufficientStockError) as exc:
            settlement.commit()

        assert exc.value.product_id == product_b.id
        assert settlement.state is SettlementState.OPEN
        assert session.query(Movement).count() == 0
        assert _stock(session, product.id) == 10
        assert _stock(session, product_b.id) == 0
        assert len(cart.lines) == 2

    def test_commit_error_with_nothing_stored_is_clean(self, session, product, product_b, tenant_id, user_id,
                                                        monkeypatch):
        raw_session = session()

        def lost_connection():
            raise OperationalError('COMMIT', {}, Exception('conexão perdida'))

        monkeypatch.setattr(raw_session, 'commit', lost_connection)
        settlement = SaleSettlement(raw_session, self._two_line_cart(product, product_b), tenant_id, user_id)

        with pytest.raises(EstoqueError) as exc:
            settlement.run()
        monkeypatch.undo()

        assert not isinstance(exc.value, PartialCommitError)
        assert settlement.state is SettlementState.OPEN
        assert session.query(Movement).count() == 0
        assert _stock(session, product.id) == 10

    def test_commit_error_after_sale_was_stored(self, session, product, product_b, tenant_id, user_id, monkeypatch):
        raw_session = session()
        real_commit = raw_session.commit

        def commit_then_lose_reply():
            real_commit()
            raise OperationalError('COMMIT', {}, Exception('conexão perdida'))

        monkeypatch.setattr(raw_session, 'commit', commit_then_lose_reply)
        settlement = SaleSettlement(raw_session, self._two_line_cart(product, product_b), tenant_id, user_id)

        receipt = settlement.run()
        monkeypatch.undo()

        assert settlement.state is SettlementState.CLOSED
        assert len(receipt.movement_ids) == 2
        assert _stock(session, product.id) == 8
        assert _stock(session, product_b.id) == 4

    def test_commit_error_with_some_lines_stored(self, session, product, product_b, tenant_id, user_id,
                                                 monkeypatch):
        raw_session = session()
        real_commit = raw_session.commit
        product_b_id = product_b.id

        def commit_losing_second_line():
            raw_session.query(Movement).filter(Movement.product_id == product_b_id).delete()
            real_commit()
            raise OperationalError('COMMIT', {}, Exception('conexão perdida'))

        monkeypatch.setattr(raw_session, 'commit', commit_losing_second_line)
        cart = self._two_line_cart(product, product_b)
        settlement = SaleSettlement(raw_session, cart, tenant_id, user_id)

        with pytest.raises(PartialCommitError) as exc:
            settlement.run()
        monkeypatch.undo()

        error = exc.value
        assert [line['product_id'] for line in error.committed_lines] == [product.id]
        assert [line['product_id'] for line in error.pending_lines] == [product_b_id]
        assert error.status_code == 500
        assert settlement.state is SettlementState.COMMITTING
        assert not cart.is_empty

    def test_unknown_product_fails_validation(self, session, product, tenant_id, user_id):
        cart = Cart()
        cart.add_line(product, 1)
        cart.lines[0].product_id = 9999
        cart.set_payment('pix')

        with pytest.raises(NotFoundError):
            settle_sale(session, cart, tenant_id, user_id)

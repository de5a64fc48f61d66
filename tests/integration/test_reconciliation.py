"""
Integration tests for ledger reconciliation and the stock CLI commands.
"""

import pytest

from estoque_pdv.models import Movement, MovementType, Product
from estoque_pdv.services.movement_service import register_manual_movement
from estoque_pdv.services.reconciliation_service import (
    compute_ledger_stock, find_stock_drift, repair_stock_drift, ADJUSTMENT_NOTE
)


def _force_stock(session, product_id, stock):
    """Simulate a write that bypassed the ledger."""
    session.query(Product).filter(Product.id == product_id).update({'stock': stock})
    session.commit()


class TestReconciliation:

    def test_consistent_ledger_has_no_drift(self, session, product, tenant_id, user_id):
        register_manual_movement(session, product.id, 'entrada', 4, tenant_id, user_id)
        register_manual_movement(session, product.id, 'saida', 6, tenant_id, user_id)

        assert compute_ledger_stock(session, product.id, tenant_id) == 8
        assert find_stock_drift(session, tenant_id) == []

    def test_drift_detected(self, session, product, product_b, tenant_id):
        _force_stock(session, product.id, 13)

        drifts = find_stock_drift(session, tenant_id)

        assert len(drifts) == 1
        assert drifts[0]['product_id'] == product.id
        assert drifts[0]['ledger_stock'] == 10
        assert drifts[0]['drift'] == 3

    def test_dry_run_writes_nothing(self, session, product, tenant_id, user_id):
        _force_stock(session, product.id, 7)

        results = repair_stock_drift(session, tenant_id, user_id, dry_run=True)

        assert results[0]['status'] == 'planned'
        assert results[0]['movement_type'] == 'saida'
        assert results[0]['quantity'] == 3
        assert session.query(Movement).count() == 0

    @pytest.mark.parametrize('forced, movement_type', [(13, MovementType.ENTRADA), (7, MovementType.SAIDA)])
    def test_repair_records_corrective_movement(self, session, product, tenant_id, user_id, forced, movement_type):
        _force_stock(session, product.id, forced)

        results = repair_stock_drift(session, tenant_id, user_id, dry_run=False)

        assert results[0]['status'] == 'repaired'
        movement = session.get(Movement, results[0]['movement_id'])
        assert movement.type is movement_type
        assert movement.quantity == 3
        assert movement.note == ADJUSTMENT_NOTE
        # Stock untouched, ledger caught up
        assert session.get(Product, product.id, populate_existing=True).stock == forced
        assert find_stock_drift(session, tenant_id) == []


class TestCliCommands:

    def test_reconcile_stock_dry_run(self, app, session, product, tenant_id):
        _force_stock(session, product.id, 12)
        runner = app.test_cli_runner()

        result = runner.invoke(args=['reconcile-stock', '--tenant', tenant_id])

        assert result.exit_code == 0
        assert 'diferença +2' in result.output
        assert session.query(Movement).count() == 0

    def test_reconcile_stock_apply(self, app, session, product, tenant_id):
        _force_stock(session, product.id, 12)
        runner = app.test_cli_runner()

        result = runner.invoke(args=['reconcile-stock', '--tenant', tenant_id, '--apply'])

        assert result.exit_code == 0
        assert '1 produto(s) ajustado(s)' in result.output
        assert find_stock_drift(session, tenant_id) == []

    def test_reconcile_stock_clean(self, app, product, tenant_id):
        result = app.test_cli_runner().invoke(args=['reconcile-stock', '--tenant', tenant_id])
        assert 'consistente' in result.output

    def test_low_stock(self, app, make_product, tenant_id):
        make_product(name='Óleo de soja', stock=1, min_stock=3)
        result = app.test_cli_runner().invoke(args=['low-stock', '--tenant', tenant_id])
        assert 'Óleo de soja: 1 (mínimo 3)' in result.output

"""
Stock reconciliation - Multi-Tenant.

The ledger invariant is:

    product.stock == product.initial_stock + sum(entrada) - sum(saida)

Drift can only appear from data written outside the services (imports,
manual SQL) or from a crash in the middle of a partial sale. These helpers
find it and record corrective movements so the history explains the stock
again.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from estoque_pdv.exceptions import EstoqueError
from estoque_pdv.models import Movement, MovementType, Product
from estoque_pdv.services.catalog_service import get_product
from estoque_pdv.services.movement_service import record_movement

logger = logging.getLogger(__name__)

ADJUSTMENT_NOTE = 'Ajuste de reconciliação'


def _ledger_sums(session: Session, tenant_id: str, product_id: Optional[int] = None) -> Dict[int, int]:
    """Signed movement quantity per product."""
    signed = case(
        (Movement.type == MovementType.ENTRADA, Movement.quantity),
        else_=-Movement.quantity
    )
    query = session.query(
        Movement.product_id,
        func.coalesce(func.sum(signed), 0)
    ).filter(Movement.tenant_id == tenant_id)

    if product_id is not None:
        query = query.filter(Movement.product_id == product_id)

    return {pid: int(total) for pid, total in query.group_by(Movement.product_id).all()}


def compute_ledger_stock(session: Session, product_id: int, tenant_id: str) -> int:
    """Stock implied by the product's initial count and its movements."""
    product = get_product(session, product_id, tenant_id)
    sums = _ledger_sums(session, tenant_id, product_id=product.id)
    return product.initial_stock + sums.get(product.id, 0)


def find_stock_drift(session: Session, tenant_id: str) -> List[Dict[str, Any]]:
    """Products whose stored stock differs from their ledger stock."""
    sums = _ledger_sums(session, tenant_id)
    products = session.query(Product).filter(
        Product.tenant_id == tenant_id
    ).order_by(Product.code).all()

    drifts = []
    for product in products:
        ledger_stock = product.initial_stock + sums.get(product.id, 0)
        if ledger_stock != product.stock:
            drifts.append({
                'product_id': product.id,
                'code': product.code,
                'name': product.name,
                'stock': product.stock,
                'ledger_stock': ledger_stock,
                'drift': product.stock - ledger_stock,
            })
    return drifts


def repair_stock_drift(session: Session, tenant_id: str, user_id: str, dry_run: bool = True) -> List[Dict[str, Any]]:
    """
    Record one corrective movement per drifted product.

    The stored stock is kept (it is what the shop counted and sold from);
    an entrada or saida of the difference is appended to the ledger. With
    ``dry_run`` nothing is written and the planned corrections are returned.
    """
    results = []

    for drift in find_stock_drift(session, tenant_id):
        movement_type = MovementType.ENTRADA if drift['drift'] > 0 else MovementType.SAIDA
        result = {
            **drift,
            'movement_type': movement_type.value,
            'quantity': abs(drift['drift']),
            'status': 'planned',
            'movement_id': None,
        }

        if not dry_run:
            try:
                product = get_product(session, drift['product_id'], tenant_id)
                movement = record_movement(
                    session, product, movement_type, abs(drift['drift']),
                    tenant_id, user_id,
                    unit_value=product.cost_price,
                    note=ADJUSTMENT_NOTE
                )
                session.commit()
            except EstoqueError:
                session.rollback()
                raise
            except Exception as e:
                session.rollback()
                raise EstoqueError(f'Erro ao reconciliar produto {drift["code"]}: {str(e)}') from e

            result['status'] = 'repaired'
            result['movement_id'] = movement.id
            logger.warning(
                f"Stock drift repaired for product {drift['code']}: stock={drift['stock']} "
                f"ledger={drift['ledger_stock']} -> {movement_type.value} x{abs(drift['drift'])} "
                f"(movement {movement.id}, by {user_id})"
            )

        results.append(result)

    if results and dry_run:
        logger.warning(f"Stock drift found for {len(results)} product(s) of tenant {tenant_id}")
    return results

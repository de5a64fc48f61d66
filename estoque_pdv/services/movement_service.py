"""
Movement ledger service - Multi-Tenant.

Every stock change is a Movement row written in the same transaction as the
matching ``apply_stock_delta`` call. Reversal deletes the row and applies the
opposite delta, so the ledger always explains the current stock.
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from estoque_pdv.events import emit, movement_recorded, movement_reversed
from estoque_pdv.exceptions import (
    EstoqueError, ValidationError, NotFoundError, InsufficientStockError, WouldGoNegativeError
)
from estoque_pdv.models import Movement, MovementType, Product, normalize_movement_type
from estoque_pdv.services.catalog_service import get_product, apply_stock_delta, notify_stock_level
from estoque_pdv.utils.number_format import to_money, parse_quantity

logger = logging.getLogger(__name__)

WITHOUT_CATEGORY = 'sem_categoria'

_ORDERINGS = {
    'date_desc': lambda: (Movement.occurred_at.desc(), Movement.id.desc()),
    'date_asc': lambda: (Movement.occurred_at.asc(), Movement.id.asc()),
    'product_asc': lambda: (Movement.product_name.asc(), Movement.occurred_at.desc()),
    'value_desc': lambda: (Movement.total_value.desc(), Movement.occurred_at.desc()),
}


def _coerce_type(movement_type) -> MovementType:
    try:
        return normalize_movement_type(movement_type)
    except ValueError as e:
        raise ValidationError(str(e), field='type')


def _coerce_quantity(quantity) -> int:
    try:
        qty = parse_quantity(quantity)
    except ValueError as e:
        raise ValidationError(str(e), field='quantity')
    if qty <= 0:
        raise ValidationError('A quantidade deve ser maior que zero.', field='quantity')
    return qty


def _coerce_money(value, field: str) -> Decimal:
    try:
        return to_money(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field)


def record_movement(
    session: Session,
    product: Product,
    movement_type,
    quantity,
    tenant_id: str,
    user_id: str,
    unit_value=None,
    discount=Decimal('0'),
    note: str = '',
    sale_context: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None
) -> Movement:
    """
    Append a movement for ``product`` to the session (flush, no commit).

    The product's name and code are copied onto the row so history stays
    readable after catalog edits. ``unit_value`` defaults to the cost price
    for entradas and the sale price for saidas.

    ``sale_context`` keys: sale_ref, customer_id, customer_name,
    payment_method, amount_tendered, change.
    """
    movement_type = _coerce_type(movement_type)
    qty = _coerce_quantity(quantity)

    if unit_value is None:
        unit_value = product.cost_price if movement_type is MovementType.ENTRADA else product.sale_price
    unit_value = _coerce_money(unit_value, 'unit_value')
    discount = _coerce_money(discount or 0, 'discount')
    if unit_value < 0:
        raise ValidationError('O valor unitário não pode ser negativo.', field='unit_value')

    gross = to_money(unit_value * qty)
    if discount < 0 or discount > gross:
        raise ValidationError('Desconto inválido para o item.', field='discount')

    movement = Movement(
        tenant_id=tenant_id,
        product_id=product.id,
        product_name=product.name,
        product_code=product.code,
        type=movement_type,
        quantity=qty,
        unit_value=unit_value,
        discount=discount,
        total_value=gross - discount,
        note=note or '',
        created_by=user_id,
        **(sale_context or {})
    )
    if occurred_at is not None:
        movement.occurred_at = occurred_at

    session.add(movement)
    session.flush()
    return movement


def register_manual_movement(
    session: Session,
    product_id: int,
    movement_type,
    quantity,
    tenant_id: str,
    user_id: str,
    note: str = '',
    unit_value=None
) -> Movement:
    """
    Register a manual entrada (purchase, count correction) or saida (loss,
    internal use) and apply it to the stock in one transaction.

    Raises:
        ValidationError: invalid type/quantity or inactive product
        InsufficientStockError: saida larger than the current stock
        NotFoundError: product not found
    """
    movement_type = _coerce_type(movement_type)
    qty = _coerce_quantity(quantity)

    try:
        product = get_product(session, product_id, tenant_id)
        if not product.active:
            raise ValidationError(f'O produto "{product.name}" está inativo.', field='product_id')

        if movement_type is MovementType.SAIDA and qty > product.stock:
            raise InsufficientStockError(product.name, qty, product.stock, product_id=product.id)

        movement = record_movement(
            session, product, movement_type, qty, tenant_id, user_id,
            unit_value=unit_value, note=note
        )
        try:
            product = apply_stock_delta(session, product.id, movement_type.sign * qty, tenant_id)
        except WouldGoNegativeError as e:
            # Stock changed between the read above and the update
            raise InsufficientStockError(product.name, qty, e.current_stock, product_id=product.id)

        session.commit()

    except EstoqueError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise EstoqueError(f'Erro ao registrar movimentação: {str(e)}') from e

    logger.info(
        f"Movement {movement.id} ({movement_type.value} x{qty}) on product {product.code} "
        f"by {user_id} -> stock {product.stock}"
    )
    emit(movement_recorded, movement, tenant_id=tenant_id, user_id=user_id)
    if movement_type is MovementType.SAIDA:
        notify_stock_level(product, tenant_id)
    return movement


def reverse_movement(session: Session, movement_id: int, tenant_id: str, user_id: str) -> Dict[str, Any]:
    """
    Undo a movement: delete it and apply the opposite stock delta atomically.

    If the product no longer exists the movement is simply removed.

    Returns:
        dict with movement_id, product_id, delta and new_stock (None when the
        product is gone)

    Raises:
        NotFoundError: movement not found
        WouldGoNegativeError: compensating would drive stock below zero
    """
    try:
        movement = session.query(Movement).filter(
            Movement.id == movement_id,
            Movement.tenant_id == tenant_id
        ).first()
        if not movement:
            raise NotFoundError(
                f'Movimentação #{movement_id} não encontrada.',
                payload={'movement_id': movement_id}
            )

        snapshot = movement.to_dict()
        delta = -movement.signed_quantity

        product = session.query(Product).filter(
            Product.id == movement.product_id,
            Product.tenant_id == tenant_id
        ).first()

        new_stock = None
        if product is None:
            logger.warning(
                f"Reversing movement {movement_id}: product {movement.product_id} no longer exists, "
                f"no stock correction applied"
            )
            delta = 0
        else:
            product = apply_stock_delta(session, product.id, delta, tenant_id)
            new_stock = product.stock

        session.delete(movement)
        session.commit()

    except EstoqueError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise EstoqueError(f'Erro ao estornar movimentação: {str(e)}') from e

    logger.info(f"Movement {movement_id} reversed by {user_id} (delta {delta:+d}, stock {new_stock})")
    emit(movement_reversed, snapshot, tenant_id=tenant_id, user_id=user_id, new_stock=new_stock)
    if product is not None and delta < 0:
        notify_stock_level(product, tenant_id)

    return {
        'movement_id': movement_id,
        'product_id': snapshot['product_id'],
        'delta': delta,
        'new_stock': new_stock,
    }


def reverse_movements(session: Session, movement_ids: List[int], tenant_id: str, user_id: str) -> List[Dict[str, Any]]:
    """
    Bulk reversal. Each movement is reversed in its own transaction; one
    refusal does not block the others.
    """
    results = []
    for movement_id in movement_ids:
        try:
            result = reverse_movement(session, movement_id, tenant_id, user_id)
            result['status'] = 'reversed'
        except (NotFoundError, WouldGoNegativeError) as e:
            result = {
                'movement_id': movement_id,
                'status': 'failed',
                'error': type(e).__name__,
                'message': e.message,
            }
        results.append(result)

    failed = [r for r in results if r['status'] == 'failed']
    if failed:
        logger.warning(f"Bulk reversal by {user_id}: {len(failed)}/{len(results)} movement(s) refused")
    return results


# =====================================================
# QUERIES
# =====================================================

def _end_of_day(value):
    if isinstance(value, datetime):
        return value
    return datetime.combine(value + timedelta(days=1), datetime.min.time())


def _filtered_query(
    session: Session,
    tenant_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    product_id: Optional[int] = None,
    movement_type=None,
    category_id: Optional[str] = None,
    search: Optional[str] = None
):
    query = session.query(Movement).filter(Movement.tenant_id == tenant_id)

    if date_from:
        if not isinstance(date_from, datetime):
            date_from = datetime.combine(date_from, datetime.min.time())
        query = query.filter(Movement.occurred_at >= date_from)
    if date_to:
        # A plain date includes the whole day
        if isinstance(date_to, datetime):
            query = query.filter(Movement.occurred_at <= date_to)
        else:
            query = query.filter(Movement.occurred_at < _end_of_day(date_to))
    if product_id:
        query = query.filter(Movement.product_id == product_id)
    if movement_type:
        query = query.filter(Movement.type == _coerce_type(movement_type))
    if category_id:
        query = query.join(Product, Product.id == Movement.product_id)
        if category_id == WITHOUT_CATEGORY:
            query = query.filter(Product.category_id.is_(None))
        else:
            query = query.filter(Product.category_id == category_id)
    if search:
        term = f'%{search.strip()}%'
        query = query.filter(or_(
            Movement.product_name.ilike(term),
            Movement.product_code.ilike(term),
            Movement.note.ilike(term)
        ))

    return query


def list_movements(
    session: Session,
    tenant_id: str,
    order: str = 'date_desc',
    limit: Optional[int] = None,
    **filters
) -> List[Movement]:
    """
    List movements of a tenant.

    Filters: date_from, date_to, product_id, movement_type, category_id
    (``'sem_categoria'`` for uncategorized products) and search (product
    name, code or note).
    Orders: date_desc (default), date_asc, product_asc, value_desc.
    """
    if order not in _ORDERINGS:
        raise ValidationError(f'Ordenação inválida: {order}', field='order')

    query = _filtered_query(session, tenant_id, **filters).order_by(*_ORDERINGS[order]())
    if limit:
        query = query.limit(limit)
    return query.all()


def summarize_movements(session: Session, tenant_id: str, **filters) -> Dict[str, Any]:
    """
    Totals for the movement report: counts and values per type, and values
    per product category.
    """
    movements = _filtered_query(session, tenant_id, **filters).all()

    product_ids = {m.product_id for m in movements}
    categories = {}
    if product_ids:
        categories = dict(session.query(Product.id, Product.category_id).filter(
            Product.tenant_id == tenant_id,
            Product.id.in_(product_ids)
        ).all())

    summary = {
        'entradas': 0,
        'saidas': 0,
        'entradas_value': Decimal('0.00'),
        'saidas_value': Decimal('0.00'),
        'units_in': 0,
        'units_out': 0,
    }
    by_category: Dict[str, Dict[str, Any]] = {}

    for movement in movements:
        key = 'entradas' if movement.type is MovementType.ENTRADA else 'saidas'
        summary[key] += 1
        summary[f'{key}_value'] += movement.total_value
        summary['units_in' if key == 'entradas' else 'units_out'] += movement.quantity

        category = categories.get(movement.product_id) or WITHOUT_CATEGORY
        bucket = by_category.setdefault(category, {
            'category_id': category, 'entradas_value': Decimal('0.00'), 'saidas_value': Decimal('0.00'), 'count': 0
        })
        bucket[f'{key}_value'] += movement.total_value
        bucket['count'] += 1

    summary['movements'] = len(movements)
    summary['by_category'] = sorted(
        by_category.values(),
        key=lambda b: b['entradas_value'] + b['saidas_value'],
        reverse=True
    )
    return summary

"""
Product catalog service - Multi-Tenant.

Owns the single write path of ``Product.stock`` (``apply_stock_delta``) plus
the registration / update / deactivation of products.
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from estoque_pdv.events import emit, stock_below_minimum
from estoque_pdv.exceptions import (
    EstoqueError, BusinessLogicError, ValidationError, NotFoundError, WouldGoNegativeError
)
from estoque_pdv.models import (
    Product, ProductAttribute, AttributeKind, Movement, DEFAULT_EXPIRY_ALERT_DAYS, encode_attribute_value
)
from estoque_pdv.utils.number_format import MAX_MONEY, MAX_QUANTITY, to_money

logger = logging.getLogger(__name__)

# Fields that never change through update_product
_PROTECTED_FIELDS = {'id', 'tenant_id', 'code', 'stock', 'initial_stock', 'version', 'created_by'}
_EDITABLE_FIELDS = {
    'name', 'barcode', 'category_id', 'min_stock', 'cost_price', 'sale_price',
    'has_expiry', 'expiry_date', 'expiry_alert_days',
}


# =====================================================
# STOCK (ledger write path)
# =====================================================

def get_product(session: Session, product_id: int, tenant_id: str) -> Product:
    """Get product by ID with tenant validation."""
    product = session.query(Product).filter(
        Product.id == product_id,
        Product.tenant_id == tenant_id
    ).first()

    if not product:
        raise NotFoundError(
            f'Produto #{product_id} não encontrado.',
            payload={'product_id': product_id}
        )
    return product


def find_by_barcode(session: Session, barcode: str, tenant_id: str) -> Product:
    """Look up an active product by barcode (PDV scanner input)."""
    barcode = (barcode or '').strip()
    product = None
    if barcode:
        product = session.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.barcode == barcode,
            Product.active.is_(True)
        ).first()

    if not product:
        raise NotFoundError('Código de barras não cadastrado.', payload={'barcode': barcode})
    return product


def apply_stock_delta(session: Session, product_id: int, delta: int, tenant_id: str) -> Product:
    """
    Atomically apply ``delta`` to the product's stock.

    A single conditional UPDATE reads, checks and writes the stock, so two
    concurrent callers on the same product are serialized by the database
    row lock and neither can observe a stale value. Callers on different
    products never contend.

    Caller is responsible for committing the session (the Movement that
    justifies the delta must be part of the same transaction).

    Raises:
        NotFoundError: product missing or owned by another tenant
        WouldGoNegativeError: stock + delta < 0 (nothing is written)
    """
    delta = int(delta)
    result = session.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.tenant_id == tenant_id,
            Product.stock + delta >= 0
        )
        .values(stock=Product.stock + delta, version=Product.version + 1)
        .execution_options(synchronize_session=False)
    )

    product = session.get(Product, product_id, populate_existing=True)

    if result.rowcount == 0:
        if product is None or product.tenant_id != tenant_id:
            raise NotFoundError(
                f'Produto #{product_id} não encontrado.',
                payload={'product_id': product_id}
            )
        raise WouldGoNegativeError(product.name, product.stock, delta, product_id=product.id)

    logger.debug(f"Stock delta {delta:+d} applied to product {product_id} -> {product.stock}")
    return product


def notify_stock_level(product: Product, tenant_id: str) -> None:
    """Emit ``stock-below-minimum`` when the (committed) stock reached the threshold."""
    if product is not None and product.is_below_minimum:
        logger.info(
            f"Product {product.code} '{product.name}' at or below minimum stock "
            f"({product.stock}/{product.min_stock})"
        )
        emit(
            stock_below_minimum, product,
            tenant_id=tenant_id, stock=product.stock, min_stock=product.min_stock
        )


# =====================================================
# REGISTRATION / UPDATE
# =====================================================

def next_product_code(session: Session, tenant_id: str, width: int = 3) -> str:
    """
    Next sequential product code, zero padded ("001", "002", ...).

    Derived from the highest numeric code ever issued for the tenant, so
    deactivated products never cause a code to be reused.
    """
    codes = session.query(Product.code).filter(Product.tenant_id == tenant_id).all()
    highest = 0
    for (code,) in codes:
        if code and code.isdigit():
            highest = max(highest, int(code))
    return str(highest + 1).zfill(width)


def _parse_decimal(data: Dict[str, Any], key: str, label: str) -> Decimal:
    raw = data.get(key, 0)
    if raw is None or raw == '':
        raw = 0
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{label} inválido: {raw}', field=key)
    if not value.is_finite():
        raise ValidationError(f'{label} inválido: {raw}', field=key)
    if value < 0:
        raise ValidationError(f'{label} não pode ser negativo.', field=key)
    if value > MAX_MONEY:
        raise ValidationError(f'{label} fora do limite.', field=key)
    return to_money(value)


def _parse_int(data: Dict[str, Any], key: str, label: str, default: int = 0) -> int:
    raw = data.get(key, default)
    if raw is None or raw == '':
        raw = default
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{label} inválido: {raw}', field=key)
    if not value.is_finite():
        raise ValidationError(f'{label} inválido: {raw}', field=key)
    if value != value.to_integral_value():
        raise ValidationError(f'{label} deve ser um número inteiro.', field=key)
    if value < 0:
        raise ValidationError(f'{label} não pode ser negativo.', field=key)
    if value > MAX_QUANTITY:
        raise ValidationError(f'{label} fora do limite.', field=key)
    return int(value)


def _parse_date(raw) -> Optional[date]:
    if raw is None or raw == '':
        return None
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        raise ValidationError(f'Data de validade inválida: {raw}', field='expiry_date')


def _validate_product_data(
    session: Session,
    data: Dict[str, Any],
    tenant_id: str,
    product_id: Optional[int] = None,
    today: Optional[date] = None,
    check_expiry: bool = True,
    default_alert_days: int = DEFAULT_EXPIRY_ALERT_DAYS
) -> Tuple[Dict[str, Any], List[str]]:
    """
    Validate and normalize product fields.

    ``check_expiry=False`` keeps an already stored (possibly past) expiry
    date valid when the patch does not touch it. ``default_alert_days``
    fills a missing or zero ``expiry_alert_days``.

    Returns:
        (clean values, warnings). Warnings never block the operation.
    """
    warnings: List[str] = []
    clean: Dict[str, Any] = {}

    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('O nome do produto é obrigatório.', field='name')
    clean['name'] = name

    clean['cost_price'] = _parse_decimal(data, 'cost_price', 'Valor de compra')
    clean['sale_price'] = _parse_decimal(data, 'sale_price', 'Valor de venda')
    clean['min_stock'] = _parse_int(data, 'min_stock', 'Estoque mínimo')

    category_id = data.get('category_id')
    if category_id is not None:
        category_id = str(category_id).strip() or None
    clean['category_id'] = category_id

    barcode = (data.get('barcode') or '').strip() or None
    if barcode:
        query = session.query(Product.id).filter(
            Product.tenant_id == tenant_id,
            Product.barcode == barcode
        )
        if product_id is not None:
            query = query.filter(Product.id != product_id)
        if query.first():
            raise ValidationError(
                f'O código de barras {barcode} já está sendo usado.', field='barcode'
            )
    clean['barcode'] = barcode

    has_expiry = bool(data.get('has_expiry', False))
    clean['has_expiry'] = has_expiry
    clean['expiry_date'] = None
    if has_expiry:
        expiry_date = _parse_date(data.get('expiry_date'))
        today = today or date.today()
        if check_expiry and expiry_date is not None and expiry_date <= today:
            raise ValidationError('A data de validade deve ser futura.', field='expiry_date')
        clean['expiry_date'] = expiry_date
    clean['expiry_alert_days'] = (
        _parse_int(data, 'expiry_alert_days', 'Dias de alerta', default=default_alert_days) or default_alert_days
    )

    if clean['sale_price'] > 0 and clean['cost_price'] > 0 and clean['sale_price'] < clean['cost_price']:
        warnings.append('Valor de venda menor que o valor de compra.')

    return clean, warnings


def register_product(
    session: Session,
    data: Dict[str, Any],
    tenant_id: str,
    user_id: str,
    code_width: int = 3,
    default_alert_days: int = DEFAULT_EXPIRY_ALERT_DAYS
) -> Tuple[Product, List[str]]:
    """
    Register a new product (tenant-scoped).

    The initial count becomes both ``stock`` and ``initial_stock``; every later
    stock change goes through the movement ledger.

    Returns:
        (product, warnings)
    """
    try:
        clean, warnings = _validate_product_data(
            session, data, tenant_id, default_alert_days=default_alert_days
        )
        initial_stock = _parse_int(data, 'stock', 'Estoque inicial')

        product = Product(
            tenant_id=tenant_id,
            code=next_product_code(session, tenant_id, width=code_width),
            stock=initial_stock,
            initial_stock=initial_stock,
            active=True,
            created_by=user_id,
            **clean
        )
        session.add(product)
        session.flush()
        session.commit()

        for warning in warnings:
            logger.warning(f"Product {product.code} registered with warning: {warning}")
        logger.info(f"Product {product.code} '{product.name}' registered by {user_id} (stock={initial_stock})")
        return product, warnings

    except IntegrityError as e:
        session.rollback()
        raise BusinessLogicError('Código de produto já utilizado, tente novamente.') from e
    except EstoqueError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise EstoqueError(f'Erro ao cadastrar produto: {str(e)}') from e


def update_product(
    session: Session,
    product_id: int,
    patch: Dict[str, Any],
    tenant_id: str,
    user_id: str,
    default_alert_days: int = DEFAULT_EXPIRY_ALERT_DAYS
) -> Tuple[Product, List[str]]:
    """
    Update catalog fields of a product. Stock is never patched here.

    Returns:
        (product, warnings)
    """
    protected = _PROTECTED_FIELDS.intersection(patch)
    if protected:
        field = sorted(protected)[0]
        if field == 'stock':
            raise ValidationError(
                'O estoque só pode ser alterado por movimentações.', field='stock'
            )
        raise ValidationError(f'O campo {field} não pode ser alterado.', field=field)

    unknown = set(patch) - _EDITABLE_FIELDS - {'active'}
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f'Campo desconhecido: {field}', field=field)

    try:
        product = get_product(session, product_id, tenant_id)

        merged = {key: getattr(product, key) for key in _EDITABLE_FIELDS}
        merged.update(patch)
        clean, warnings = _validate_product_data(
            session, merged, tenant_id, product_id=product.id,
            check_expiry='expiry_date' in patch or 'has_expiry' in patch,
            default_alert_days=default_alert_days
        )

        for key, value in clean.items():
            setattr(product, key, value)
        if 'active' in patch:
            product.active = bool(patch['active'])

        session.commit()

        for warning in warnings:
            logger.warning(f"Product {product.code} updated with warning: {warning}")
        logger.info(f"Product {product.code} updated by {user_id}: {sorted(patch)}")
        return product, warnings

    except EstoqueError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise EstoqueError(f'Erro ao atualizar produto: {str(e)}') from e


def _set_active(session: Session, product_id: int, tenant_id: str, user_id: str, active: bool) -> Product:
    try:
        product = get_product(session, product_id, tenant_id)
        product.active = active
        session.commit()
        logger.info(f"Product {product.code} {'reactivated' if active else 'deactivated'} by {user_id}")
        return product
    except EstoqueError:
        session.rollback()
        raise


def deactivate_product(session: Session, product_id: int, tenant_id: str, user_id: str) -> Product:
    """Soft delete: the product disappears from the PDV but keeps its history."""
    return _set_active(session, product_id, tenant_id, user_id, False)


def reactivate_product(session: Session, product_id: int, tenant_id: str, user_id: str) -> Product:
    return _set_active(session, product_id, tenant_id, user_id, True)


def delete_product(session: Session, product_id: int, tenant_id: str, user_id: str) -> None:
    """
    Hard delete a product.

    Refused while any movement references it, so the ledger never holds
    orphaned history; deactivate the product instead.
    """
    try:
        product = get_product(session, product_id, tenant_id)

        movement_count = session.query(func.count(Movement.id)).filter(
            Movement.tenant_id == tenant_id,
            Movement.product_id == product.id
        ).scalar()

        if movement_count:
            raise BusinessLogicError(
                f'O produto "{product.name}" possui {movement_count} movimentação(ões) '
                f'e não pode ser excluído. Desative-o.',
                payload={'product_id': product.id, 'movements': movement_count}
            )

        session.delete(product)
        session.commit()
        logger.info(f"Product {product.code} '{product.name}' deleted by {user_id}")

    except EstoqueError:
        session.rollback()
        raise


# =====================================================
# TYPED ATTRIBUTES
# =====================================================

def set_product_attributes(
    session: Session,
    product_id: int,
    attributes: List[Dict[str, Any]],
    tenant_id: str
) -> Dict[str, Any]:
    """
    Replace the category-specific attributes of a product.

    Each item is ``{'name': str, 'kind': 'TEXT'|'NUMBER'|'DATE'|'BOOLEAN', 'value': ...}``;
    empty values are dropped.
    """
    try:
        product = get_product(session, product_id, tenant_id)

        rows = []
        seen = set()
        for item in attributes:
            name = (item.get('name') or '').strip()
            if not name:
                raise ValidationError('Atributo sem nome.', field='attributes')
            if name in seen:
                raise ValidationError(f'Atributo "{name}" repetido.', field='attributes')
            seen.add(name)

            value = item.get('value')
            if value is None or value == '':
                continue

            try:
                kind = AttributeKind(str(item.get('kind', 'TEXT')).upper())
            except ValueError:
                raise ValidationError(f'Tipo de atributo inválido: {item.get("kind")}', field='attributes')
            try:
                encoded = encode_attribute_value(kind, value)
            except ValueError as e:
                raise ValidationError(f'Atributo "{name}": {e}', field='attributes')

            rows.append(ProductAttribute(
                tenant_id=tenant_id, name=name, kind=kind, value=encoded
            ))

        # Flush the removals first: (product_id, name) is unique
        product.attributes.clear()
        session.flush()
        product.attributes.extend(rows)
        session.commit()
        return get_product_attributes(product)

    except EstoqueError:
        session.rollback()
        raise


def get_product_attributes(product: Product) -> Dict[str, Any]:
    """Attributes of a product decoded to Python values."""
    return {attr.name: attr.typed_value for attr in product.attributes}

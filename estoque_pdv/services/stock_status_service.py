"""Stock level and expiry status of products (dashboard / alerts)."""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from estoque_pdv.models import Product, DEFAULT_EXPIRY_ALERT_DAYS
from estoque_pdv.utils.number_format import to_money

OUT_OF_STOCK = 'sem_estoque'
LOW_STOCK = 'estoque_baixo'
STOCK_OK = 'ok'

NO_EXPIRY = 'sem_validade'
EXPIRED = 'vencido'
EXPIRES_TODAY = 'vence_hoje'
EXPIRES_IN_7_DAYS = 'vence_em_7_dias'
EXPIRING_SOON = 'proximo_vencimento'
VALID = 'valido'

EXPIRY_ALERT_STATUSES = (EXPIRED, EXPIRES_TODAY, EXPIRES_IN_7_DAYS, EXPIRING_SOON)


def stock_status(product: Product) -> str:
    if product.stock <= 0:
        return OUT_OF_STOCK
    if product.stock <= product.min_stock:
        return LOW_STOCK
    return STOCK_OK


def _expiry_text(days_left: int) -> str:
    if days_left < 0:
        days = abs(days_left)
        return f"Vencido há {days} dia{'s' if days != 1 else ''}"
    if days_left == 0:
        return 'Vence hoje'
    if days_left == 1:
        return 'Vence amanhã'
    return f'Vence em {days_left} dias'


def expiry_status(product: Product, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Expiry classification of a product.

    Returns:
        {'status': ..., 'days_left': int | None, 'text': str}
    """
    if not product.has_expiry or not product.expiry_date:
        return {'status': NO_EXPIRY, 'days_left': None, 'text': 'Sem validade'}

    today = today or date.today()
    days_left = (product.expiry_date - today).days
    alert_days = product.expiry_alert_days or DEFAULT_EXPIRY_ALERT_DAYS

    if days_left < 0:
        status = EXPIRED
    elif days_left == 0:
        status = EXPIRES_TODAY
    elif days_left <= 7:
        status = EXPIRES_IN_7_DAYS
    elif days_left <= alert_days:
        status = EXPIRING_SOON
    else:
        status = VALID

    return {'status': status, 'days_left': days_left, 'text': _expiry_text(days_left)}


def list_low_stock(session: Session, tenant_id: str) -> List[Product]:
    """Active products at or below their minimum stock, emptiest first."""
    return session.query(Product).filter(
        Product.tenant_id == tenant_id,
        Product.active.is_(True),
        Product.stock <= Product.min_stock
    ).order_by(Product.stock.asc(), Product.name.asc()).all()


def list_expiring(session: Session, tenant_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Active products that are expired or inside their alert window, soonest first."""
    products = session.query(Product).filter(
        Product.tenant_id == tenant_id,
        Product.active.is_(True),
        Product.has_expiry.is_(True),
        Product.expiry_date.isnot(None)
    ).order_by(Product.expiry_date.asc()).all()

    expiring = []
    for product in products:
        info = expiry_status(product, today)
        if info['status'] in EXPIRY_ALERT_STATUSES:
            expiring.append({**product.to_dict(), 'expiry': info})
    return expiring


def inventory_value(session: Session, tenant_id: str) -> Dict[str, Any]:
    """Stock valued at cost and at sale price (active products only)."""
    products = session.query(Product).filter(
        Product.tenant_id == tenant_id,
        Product.active.is_(True)
    ).all()

    cost_total = Decimal('0.00')
    sale_total = Decimal('0.00')
    units = 0
    for product in products:
        cost_total += product.cost_price * product.stock
        sale_total += product.sale_price * product.stock
        units += product.stock

    return {
        'products': len(products),
        'units': units,
        'cost_value': to_money(cost_total),
        'sale_value': to_money(sale_total),
    }

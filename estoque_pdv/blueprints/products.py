"""Products blueprint - catalog JSON endpoints (Multi-Tenant)."""
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy import or_

from estoque_pdv.database import get_session
from estoque_pdv.middleware import require_tenant
from estoque_pdv.models import Product, DEFAULT_EXPIRY_ALERT_DAYS
from estoque_pdv.services import catalog_service
from estoque_pdv.services.stock_status_service import (
    stock_status, expiry_status, list_low_stock, list_expiring, inventory_value
)

products_bp = Blueprint('products', __name__, url_prefix='/products')


def _product_payload(product: Product) -> dict:
    data = product.to_dict()
    data['stock_status'] = stock_status(product)
    data['expiry'] = expiry_status(product)
    return data


@products_bp.route('', methods=['GET'])
@require_tenant
def list_products():
    """List products. Query params: q (name/code/barcode), category_id, include_inactive."""
    db_session = get_session()

    query = db_session.query(Product).filter(Product.tenant_id == g.tenant_id)

    if request.args.get('include_inactive') != '1':
        query = query.filter(Product.active.is_(True))

    category_id = request.args.get('category_id')
    if category_id:
        query = query.filter(Product.category_id == category_id)

    search = (request.args.get('q') or '').strip()[:100]
    if search:
        like = f'%{search}%'
        query = query.filter(or_(
            Product.name.ilike(like),
            Product.code.ilike(like),
            Product.barcode == search
        ))

    products = query.order_by(Product.code).all()
    return jsonify({'products': [_product_payload(p) for p in products]})


@products_bp.route('', methods=['POST'])
@require_tenant
def create_product():
    db_session = get_session()
    payload = request.get_json(silent=True) or {}

    product, warnings = catalog_service.register_product(
        db_session, payload, g.tenant_id, g.user_id,
        code_width=current_app.config.get('PRODUCT_CODE_WIDTH', 3),
        default_alert_days=current_app.config.get('DEFAULT_EXPIRY_ALERT_DAYS', DEFAULT_EXPIRY_ALERT_DAYS)
    )
    return jsonify({'product': _product_payload(product), 'warnings': warnings}), 201


@products_bp.route('/<int:product_id>', methods=['GET'])
@require_tenant
def get_product(product_id: int):
    db_session = get_session()
    product = catalog_service.get_product(db_session, product_id, g.tenant_id)
    data = _product_payload(product)
    data['attributes'] = catalog_service.get_product_attributes(product)
    return jsonify({'product': data})


@products_bp.route('/barcode/<barcode>', methods=['GET'])
@require_tenant
def get_by_barcode(barcode: str):
    db_session = get_session()
    product = catalog_service.find_by_barcode(db_session, barcode, g.tenant_id)
    return jsonify({'product': _product_payload(product)})


@products_bp.route('/<int:product_id>', methods=['PATCH'])
@require_tenant
def update_product(product_id: int):
    db_session = get_session()
    patch = request.get_json(silent=True) or {}

    product, warnings = catalog_service.update_product(
        db_session, product_id, patch, g.tenant_id, g.user_id,
        default_alert_days=current_app.config.get('DEFAULT_EXPIRY_ALERT_DAYS', DEFAULT_EXPIRY_ALERT_DAYS)
    )
    return jsonify({'product': _product_payload(product), 'warnings': warnings})


@products_bp.route('/<int:product_id>/deactivate', methods=['POST'])
@require_tenant
def deactivate_product(product_id: int):
    db_session = get_session()
    product = catalog_service.deactivate_product(db_session, product_id, g.tenant_id, g.user_id)
    return jsonify({'product': _product_payload(product)})


@products_bp.route('/<int:product_id>/reactivate', methods=['POST'])
@require_tenant
def reactivate_product(product_id: int):
    db_session = get_session()
    product = catalog_service.reactivate_product(db_session, product_id, g.tenant_id, g.user_id)
    return jsonify({'product': _product_payload(product)})


@products_bp.route('/<int:product_id>', methods=['DELETE'])
@require_tenant
def delete_product(product_id: int):
    db_session = get_session()
    catalog_service.delete_product(db_session, product_id, g.tenant_id, g.user_id)
    return jsonify({'status': 'ok', 'product_id': product_id})


@products_bp.route('/<int:product_id>/attributes', methods=['PUT'])
@require_tenant
def put_attributes(product_id: int):
    db_session = get_session()
    payload = request.get_json(silent=True) or {}
    attributes = catalog_service.set_product_attributes(
        db_session, product_id, payload.get('attributes', []), g.tenant_id
    )
    return jsonify({'attributes': attributes})


@products_bp.route('/alerts', methods=['GET'])
@require_tenant
def alerts():
    """Low stock and expiry alerts plus the inventory valuation (dashboard)."""
    db_session = get_session()
    low_stock = list_low_stock(db_session, g.tenant_id)
    return jsonify({
        'low_stock': [_product_payload(p) for p in low_stock],
        'expiring': list_expiring(db_session, g.tenant_id),
        'inventory': inventory_value(db_session, g.tenant_id),
    })

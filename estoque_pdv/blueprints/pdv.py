"""PDV blueprint - cart and checkout (Multi-Tenant)."""
from decimal import Decimal

from flask import Blueprint, request, jsonify, current_app, g, session

from estoque_pdv.database import get_session
from estoque_pdv.exceptions import ValidationError, PartialCommitError
from estoque_pdv.middleware import require_tenant
from estoque_pdv.services import catalog_service
from estoque_pdv.services.customer_service import get_customer, search_customers
from estoque_pdv.services.sale_cart import Cart, calculate_cart_totals
from estoque_pdv.services.settlement_service import settle_sale
from estoque_pdv.utils.number_format import parse_br_decimal

pdv_bp = Blueprint('pdv', __name__, url_prefix='/pdv')


def get_cart() -> Cart:
    """Get cart from session for current tenant."""
    carts = session.get('cart_by_tenant') or {}
    return Cart.from_dict(carts.get(str(g.tenant_id)))


def save_cart(cart: Cart) -> None:
    """Save cart to session for current tenant."""
    carts = dict(session.get('cart_by_tenant') or {})
    carts[str(g.tenant_id)] = cart.to_dict()
    session['cart_by_tenant'] = carts
    session.modified = True


def _cart_response(cart: Cart, status: int = 200):
    totals = calculate_cart_totals(cart)
    return jsonify({'cart': cart.to_dict(), 'totals': totals}), status


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _product_id(payload: dict) -> int:
    try:
        return int(payload.get('product_id'))
    except (TypeError, ValueError):
        raise ValidationError('Falta o ID do produto.', field='product_id')


def _money(value, field: str) -> Decimal:
    try:
        return parse_br_decimal(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field)


@pdv_bp.route('/cart', methods=['GET'])
@require_tenant
def show_cart():
    return _cart_response(get_cart())


@pdv_bp.route('/cart/add', methods=['POST'])
@require_tenant
def cart_add():
    """Add a product by id or barcode. Body: product_id | barcode, quantity (default 1)."""
    db_session = get_session()
    payload = _payload()

    if payload.get('barcode'):
        product = catalog_service.find_by_barcode(db_session, payload['barcode'], g.tenant_id)
    else:
        product = catalog_service.get_product(db_session, _product_id(payload), g.tenant_id)

    cart = get_cart()
    cart.add_line(product, payload.get('quantity', 1))
    save_cart(cart)

    current_app.logger.info(f"[pdv] cart_add tenant={g.tenant_id} product={product.id} lines={len(cart.lines)}")
    return _cart_response(cart)


@pdv_bp.route('/cart/update', methods=['POST'])
@require_tenant
def cart_update():
    """Change line quantity; 0 removes the line."""
    db_session = get_session()
    payload = _payload()
    product_id = _product_id(payload)

    cart = get_cart()
    available = 0
    if cart.get_line(product_id) is not None:
        available = catalog_service.get_product(db_session, product_id, g.tenant_id).stock
    cart.set_line_quantity(product_id, payload.get('quantity'), available)
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/cart/line-discount', methods=['POST'])
@require_tenant
def cart_line_discount():
    payload = _payload()
    cart = get_cart()
    cart.set_line_discount(_product_id(payload), _money(payload.get('amount', 0), 'amount'))
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/cart/remove', methods=['POST'])
@require_tenant
def cart_remove():
    payload = _payload()
    cart = get_cart()
    cart.remove_line(_product_id(payload))
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/cart/clear', methods=['POST'])
@require_tenant
def cart_clear():
    cart = get_cart()
    cart.clear()
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/cart/discount', methods=['POST'])
@require_tenant
def cart_discount():
    """Whole-cart discount. Body: type (PERCENT | AMOUNT | null), value."""
    payload = _payload()
    discount_type = payload.get('type') or None
    value = _money(payload.get('value', 0), 'value') if discount_type else 0

    cart = get_cart()
    cart.set_discount(discount_type, value)
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/customers', methods=['GET'])
@require_tenant
def customer_lookup():
    """Customer search for the sale screen. Query: q (name or CPF/CNPJ)."""
    db_session = get_session()
    customers = search_customers(db_session, g.tenant_id, request.args.get('q', ''))
    return jsonify({'customers': [customer.to_dict() for customer in customers]})


@pdv_bp.route('/cart/customer', methods=['POST'])
@require_tenant
def cart_set_customer():
    db_session = get_session()
    payload = _payload()
    try:
        customer_id = int(payload.get('customer_id'))
    except (TypeError, ValueError):
        raise ValidationError('Selecione um cliente.', field='customer_id')

    customer = get_customer(db_session, customer_id, g.tenant_id)
    cart = get_cart()
    cart.set_customer(
        customer,
        default_discount_percent=Decimal(str(current_app.config.get('CUSTOMER_DEFAULT_DISCOUNT_PERCENT', '5')))
    )
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/cart/customer', methods=['DELETE'])
@require_tenant
def cart_remove_customer():
    cart = get_cart()
    cart.remove_customer()
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/cart/payment', methods=['POST'])
@require_tenant
def cart_payment():
    """Body: method (dinheiro | cartao | pix | prazo), amount_tendered."""
    payload = _payload()
    tendered = payload.get('amount_tendered')
    if tendered not in (None, ''):
        tendered = _money(tendered, 'amount_tendered')

    cart = get_cart()
    cart.set_payment(payload.get('method'), tendered)
    save_cart(cart)
    return _cart_response(cart)


@pdv_bp.route('/checkout', methods=['POST'])
@require_tenant
def checkout():
    """Settle the cart. On success the cart is emptied and the receipt returned."""
    db_session = get_session()
    cart = get_cart()

    try:
        receipt = settle_sale(
            db_session, cart, g.tenant_id, g.user_id,
            note_prefix=current_app.config.get('SALE_NOTE_PREFIX', 'Venda PDV')
        )
    except PartialCommitError as e:
        # Committed lines must not be sold twice on retry
        cart.drop_settled_lines(line['product_id'] for line in e.committed_lines)
        save_cart(cart)
        raise

    save_cart(cart)
    current_app.logger.info(f"[pdv] checkout tenant={g.tenant_id} sale={receipt.sale_ref} total={receipt.total}")
    return jsonify({
        'receipt': receipt.to_dict(),
        'business_name': current_app.config.get('BUSINESS_NAME'),
    }), 201

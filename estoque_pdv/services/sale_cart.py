"""
PDV cart - in-memory sale assembly and discount calculation.

Nothing here touches the database: the cart is built from Product rows the
caller already loaded and is kept in the Flask session between requests.
Settlement (settlement_service) is the only path that turns a cart into
durable Movements.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from estoque_pdv.exceptions import ValidationError, NotFoundError, InsufficientStockError
from estoque_pdv.models import PaymentMethod, normalize_payment_method
from estoque_pdv.utils.number_format import to_money, parse_quantity

DISCOUNT_PERCENT = 'PERCENT'
DISCOUNT_AMOUNT = 'AMOUNT'
DISCOUNT_TYPES = (DISCOUNT_PERCENT, DISCOUNT_AMOUNT)

ZERO = Decimal('0.00')


def _qty(value) -> int:
    try:
        return parse_quantity(value)
    except ValueError as e:
        raise ValidationError(str(e), field='quantity')


def _amount(value, field: str) -> Decimal:
    try:
        return to_money(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field)


@dataclass
class CartLine:
    product_id: int
    product_name: str
    product_code: str
    quantity: int
    unit_price: Decimal  # sale price snapshot taken when the line was added
    discount: Decimal = ZERO

    @property
    def gross(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    @property
    def total(self) -> Decimal:
        return self.gross - self.discount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'product_code': self.product_code,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'discount': str(self.discount),
            'line_total': str(self.total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLine':
        return cls(
            product_id=int(data['product_id']),
            product_name=data['product_name'],
            product_code=data['product_code'],
            quantity=int(data['quantity']),
            unit_price=to_money(data['unit_price']),
            discount=to_money(data.get('discount', '0')),
        )


@dataclass
class Cart:
    """
    Cart of the current PDV session.

    Whole-cart discount is either a percentage or a fixed amount; choosing one
    mode zeroes the other.
    """
    lines: List[CartLine] = field(default_factory=list)
    discount_type: Optional[str] = None
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.DINHEIRO
    amount_tendered: Optional[Decimal] = None

    # ---- lines -------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def get_line(self, product_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def _require_line(self, product_id: int) -> CartLine:
        line = self.get_line(product_id)
        if line is None:
            raise NotFoundError(
                'O produto não está no carrinho.', payload={'product_id': product_id}
            )
        return line

    def add_line(self, product, quantity=1) -> CartLine:
        """
        Add ``quantity`` units of ``product``. A product already in the cart
        gets its quantity increased instead of a second line.
        """
        qty = _qty(quantity)
        if not product.active:
            raise ValidationError(f'O produto "{product.name}" está inativo.', field='product_id')
        if qty <= 0:
            raise ValidationError('A quantidade deve ser maior que zero.', field='quantity')

        line = self.get_line(product.id)
        requested = qty + (line.quantity if line else 0)
        if requested > product.stock:
            raise InsufficientStockError(product.name, requested, product.stock, product_id=product.id)

        if line:
            line.quantity = requested
            return line

        line = CartLine(
            product_id=product.id,
            product_name=product.name,
            product_code=product.code,
            quantity=qty,
            unit_price=to_money(product.sale_price),
        )
        self.lines.append(line)
        return line

    def set_line_quantity(self, product_id: int, quantity, available: int) -> Optional[CartLine]:
        """
        Change a line's quantity; zero or less removes the line.

        ``available`` is the product's current stock.
        """
        line = self._require_line(product_id)
        qty = _qty(quantity)

        if qty <= 0:
            self.remove_line(product_id)
            return None
        if qty > available:
            raise InsufficientStockError(line.product_name, qty, available, product_id=product_id)

        line.quantity = qty
        # A smaller line cannot keep a discount larger than itself
        if line.discount > line.gross:
            line.discount = line.gross
        return line

    def set_line_discount(self, product_id: int, amount) -> CartLine:
        line = self._require_line(product_id)
        amount = _amount(amount or 0, 'discount')
        line.discount = min(max(amount, ZERO), line.gross)
        return line

    def remove_line(self, product_id: int) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def clear(self) -> None:
        """Empty the cart and forget discount, customer and payment."""
        self.lines = []
        self.discount_type = None
        self.discount_percent = ZERO
        self.discount_amount = ZERO
        self.customer_id = None
        self.customer_name = None
        self.payment_method = PaymentMethod.DINHEIRO
        self.amount_tendered = None

    def drop_settled_lines(self, product_ids) -> None:
        """
        Remove lines already written by a partially stored sale.

        A fixed amount discount was meant for the whole sale, so it is
        dropped; a percentage still applies to what is left.
        """
        settled = set(product_ids)
        self.lines = [line for line in self.lines if line.product_id not in settled]
        if self.discount_type == DISCOUNT_AMOUNT:
            self.set_discount(None)

    # ---- discount / customer / payment -------------------------------

    def set_discount(self, discount_type: Optional[str], value=0) -> None:
        """Set the whole-cart discount (``None`` removes it)."""
        if discount_type is None:
            self.discount_type = None
            self.discount_percent = ZERO
            self.discount_amount = ZERO
            return

        discount_type = str(discount_type).upper()
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f'Tipo de desconto inválido: {discount_type}', field='discount_type')

        value = max(_amount(value or 0, 'discount_value'), ZERO)
        self.discount_type = discount_type
        if discount_type == DISCOUNT_PERCENT:
            self.discount_percent = min(value, Decimal('100.00'))
            self.discount_amount = ZERO
        else:
            self.discount_amount = value
            self.discount_percent = ZERO

    def set_customer(self, customer, default_discount_percent=Decimal('5')) -> None:
        """
        Attach a registered customer. When the cart has no whole-cart
        discount yet, the customer discount percentage is applied.
        """
        self.customer_id = customer.id
        self.customer_name = customer.name
        if not self.discount_percent and not self.discount_amount and default_discount_percent:
            self.set_discount(DISCOUNT_PERCENT, default_discount_percent)

    def remove_customer(self) -> None:
        self.customer_id = None
        self.customer_name = None
        self.set_discount(None)
        # On-account sales need a customer
        if self.payment_method is PaymentMethod.PRAZO:
            self.payment_method = PaymentMethod.DINHEIRO

    def set_payment(self, method, amount_tendered=None) -> None:
        try:
            self.payment_method = normalize_payment_method(method)
        except ValueError as e:
            raise ValidationError(str(e), field='payment_method')
        if amount_tendered is None or amount_tendered == '':
            self.amount_tendered = None
        else:
            self.amount_tendered = _amount(amount_tendered, 'amount_tendered')
            if self.amount_tendered < 0:
                raise ValidationError('O valor pago não pode ser negativo.', field='amount_tendered')

    # ---- session storage ----------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lines': [line.to_dict() for line in self.lines],
            'discount_type': self.discount_type,
            'discount_percent': str(self.discount_percent),
            'discount_amount': str(self.discount_amount),
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'payment_method': self.payment_method.value,
            'amount_tendered': str(self.amount_tendered) if self.amount_tendered is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Cart':
        if not data:
            return cls()
        tendered = data.get('amount_tendered')
        return cls(
            lines=[CartLine.from_dict(item) for item in data.get('lines', [])],
            discount_type=data.get('discount_type'),
            discount_percent=to_money(data.get('discount_percent', '0')),
            discount_amount=to_money(data.get('discount_amount', '0')),
            customer_id=data.get('customer_id'),
            customer_name=data.get('customer_name'),
            payment_method=normalize_payment_method(data.get('payment_method')),
            amount_tendered=to_money(tendered) if tendered is not None else None,
        )


def calculate_cart_totals(cart: Cart) -> Dict[str, Any]:
    """
    Calculate totals for the cart.

    subtotal = sum(unit_price x qty) - sum(line discounts)
    discount = subtotal x pct / 100  or  min(amount, subtotal)
    total    = max(0, subtotal - discount)
    change   = max(0, tendered - total) for cash payments
    """
    lines_details = []
    gross = ZERO
    line_discounts = ZERO

    for line in cart.lines:
        lines_details.append(line.to_dict())
        gross += line.gross
        line_discounts += line.discount

    subtotal = to_money(gross - line_discounts)

    if cart.discount_type == DISCOUNT_PERCENT:
        discount = to_money(subtotal * cart.discount_percent / Decimal('100'))
    elif cart.discount_type == DISCOUNT_AMOUNT:
        discount = min(cart.discount_amount, subtotal)
    else:
        discount = ZERO

    total = max(ZERO, to_money(subtotal - discount))

    change = ZERO
    if cart.payment_method is PaymentMethod.DINHEIRO and cart.amount_tendered is not None:
        change = max(ZERO, to_money(cart.amount_tendered - total))

    return {
        'gross': to_money(gross),
        'line_discounts': to_money(line_discounts),
        'subtotal': subtotal,
        'discount': discount,
        'total': total,
        'amount_tendered': cart.amount_tendered,
        'change': change,
        'items': sum(line.quantity for line in cart.lines),
        'lines': lines_details,
    }

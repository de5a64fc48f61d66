"""
Sale settlement - Multi-Tenant.

Turns a validated PDV cart into one ``saida`` Movement per line.

Flow:
    OPEN -> VALIDATING -> COMMITTING -> CLOSED
              |
              +-> OPEN  (validation failed, nothing written)

All lines (Movement insert + stock decrement) are flushed into a single
transaction and committed once, so any failure while writing leaves no
trace and the cart returns to OPEN. PartialCommitError is only raised when
the COMMIT itself fails and some, but not all, lines turn out to be stored.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from estoque_pdv.events import emit, movement_recorded
from estoque_pdv.exceptions import (
    EstoqueError, BusinessLogicError, ValidationError, NotFoundError,
    InsufficientStockError, WouldGoNegativeError, CreditLimitExceededError,
    PaymentInsufficientError, PartialCommitError
)
from estoque_pdv.models import Customer, Movement, MovementType, PaymentMethod, Product
from estoque_pdv.services.catalog_service import apply_stock_delta, notify_stock_level
from estoque_pdv.services.movement_service import record_movement
from estoque_pdv.services.sale_cart import Cart, DISCOUNT_PERCENT, calculate_cart_totals
from estoque_pdv.utils.formatters import money_br, percent_br

logger = logging.getLogger(__name__)


class SettlementState(enum.Enum):
    OPEN = "open"
    VALIDATING = "validating"
    COMMITTING = "committing"
    CLOSED = "closed"


@dataclass
class Receipt:
    """Summary of a closed sale, handed to printing / export."""
    sale_ref: str
    lines: List[Dict[str, Any]]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    payment_method: PaymentMethod
    amount_tendered: Optional[Decimal]
    change: Decimal
    timestamp: datetime
    customer_name: Optional[str] = None
    movement_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sale_ref': self.sale_ref,
            'lines': self.lines,
            'subtotal': str(self.subtotal),
            'discount': str(self.discount),
            'total': str(self.total),
            'payment_method': self.payment_method.value,
            'amount_tendered': str(self.amount_tendered) if self.amount_tendered is not None else None,
            'change': str(self.change),
            'timestamp': self.timestamp.isoformat(),
            'customer_name': self.customer_name,
            'movement_ids': self.movement_ids,
        }


def build_sale_note(cart: Cart, totals: Dict[str, Any], prefix: str = 'Venda PDV') -> str:
    """Movement note describing the sale context, e.g. 'Venda PDV - Cliente: Ana - Desconto: 5%'."""
    note = prefix
    if cart.customer_name:
        note += f' - Cliente: {cart.customer_name}'
    if totals['discount'] > 0:
        if cart.discount_type == DISCOUNT_PERCENT:
            note += f' - Desconto: {percent_br(cart.discount_percent)}'
        else:
            note += f' - Desconto: R$ {money_br(totals["discount"])}'
    return note


class SaleSettlement:
    """
    Settlement of one cart.

    Usage:
        settlement = SaleSettlement(session, cart, tenant_id, user_id)
        receipt = settlement.run()
    """

    def __init__(self, session: Session, cart: Cart, tenant_id: str, user_id: str,
                 note_prefix: str = 'Venda PDV'):
        self.session = session
        self.cart = cart
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.note_prefix = note_prefix
        self.state = SettlementState.OPEN
        self.totals: Optional[Dict[str, Any]] = None
        self.customer: Optional[Customer] = None

    # ---- VALIDATING ---------------------------------------------------

    def validate(self) -> Dict[str, Any]:
        """
        Authoritative checks against live data. Nothing is written.

        Raises:
            ValidationError, NotFoundError, InsufficientStockError,
            PaymentInsufficientError, CreditLimitExceededError
        """
        if self.state is not SettlementState.OPEN:
            raise BusinessLogicError(f'Venda não pode ser validada no estado {self.state.value}.')

        self.state = SettlementState.VALIDATING
        try:
            self.totals = self._validate()
        except EstoqueError:
            self.state = SettlementState.OPEN
            self.session.rollback()
            raise
        return self.totals

    def _validate(self) -> Dict[str, Any]:
        cart = self.cart
        if cart.is_empty:
            raise ValidationError('O carrinho está vazio.', field='lines')

        product_ids = [line.product_id for line in cart.lines]
        products = {
            p.id: p for p in self.session.query(Product).filter(
                Product.id.in_(product_ids),
                Product.tenant_id == self.tenant_id
            ).populate_existing().all()
        }

        for line in cart.lines:
            product = products.get(line.product_id)
            if product is None:
                raise NotFoundError(
                    f'Produto "{line.product_name}" não encontrado.',
                    payload={'product_id': line.product_id}
                )
            if not product.active:
                raise ValidationError(f'O produto "{product.name}" está inativo.', field='product_id')
            if line.quantity <= 0:
                raise ValidationError('A quantidade deve ser maior que zero.', field='quantity')
            if line.quantity > product.stock:
                raise InsufficientStockError(product.name, line.quantity, product.stock, product_id=product.id)

        totals = calculate_cart_totals(cart)
        total = totals['total']

        if cart.payment_method is PaymentMethod.DINHEIRO:
            tendered = cart.amount_tendered if cart.amount_tendered is not None else Decimal('0.00')
            if tendered < total:
                raise PaymentInsufficientError(total, tendered)

        elif cart.payment_method is PaymentMethod.PRAZO:
            if cart.customer_id is None:
                raise ValidationError('Venda a prazo exige um cliente selecionado.', field='customer_id')
            customer = self.session.query(Customer).filter(
                Customer.id == cart.customer_id,
                Customer.tenant_id == self.tenant_id,
                Customer.active.is_(True)
            ).first()
            if customer is None:
                raise NotFoundError('Cliente não encontrado.', payload={'customer_id': cart.customer_id})
            if total > customer.credit_limit:
                raise CreditLimitExceededError(
                    customer.name, total, customer.credit_limit, customer_id=customer.id
                )
            self.customer = customer

        return totals

    # ---- COMMITTING ---------------------------------------------------

    def commit(self) -> Receipt:
        """Write the lines. Must follow a successful ``validate()``."""
        if self.state is not SettlementState.VALIDATING or self.totals is None:
            raise BusinessLogicError('A venda precisa ser validada antes de ser finalizada.')

        self.state = SettlementState.COMMITTING
        cart = self.cart
        totals = self.totals
        sale_ref = str(uuid.uuid4())
        occurred_at = datetime.now(timezone.utc)
        note = build_sale_note(cart, totals, self.note_prefix)

        if cart.payment_method is PaymentMethod.DINHEIRO:
            tendered = cart.amount_tendered
        else:
            tendered = totals['total']

        sale_context = {
            'sale_ref': sale_ref,
            'customer_id': cart.customer_id,
            'customer_name': cart.customer_name,
            'payment_method': cart.payment_method,
            'amount_tendered': tendered,
            'change': totals['change'],
        }

        movements: List[Movement] = []

        try:
            for line in cart.lines:
                product = self.session.get(Product, line.product_id)
                if product is None or product.tenant_id != self.tenant_id:
                    raise NotFoundError(
                        f'Produto "{line.product_name}" não encontrado.',
                        payload={'product_id': line.product_id}
                    )
                movements.append(record_movement(
                    self.session, product, MovementType.SAIDA, line.quantity,
                    self.tenant_id, self.user_id,
                    unit_value=line.unit_price,
                    discount=line.discount,
                    note=note,
                    sale_context=sale_context,
                    occurred_at=occurred_at
                ))
                try:
                    apply_stock_delta(self.session, line.product_id, -line.quantity, self.tenant_id)
                except WouldGoNegativeError as e:
                    # Stock drifted after validation (concurrent sale)
                    raise InsufficientStockError(
                        line.product_name, line.quantity, e.current_stock, product_id=line.product_id
                    )
        except Exception as e:
            self.session.rollback()
            self.state = SettlementState.OPEN
            logger.error(f"Sale {sale_ref} failed, nothing written: {e}")
            if isinstance(e, EstoqueError):
                raise
            raise EstoqueError(f'Erro ao finalizar venda: {str(e)}') from e

        movement_ids = [movement.id for movement in movements]
        try:
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            movement_ids = self._recover_commit_outcome(sale_ref, e)

        for movement_id in movement_ids:
            emit(
                movement_recorded, self.session.get(Movement, movement_id),
                tenant_id=self.tenant_id, user_id=self.user_id
            )
        for line in cart.lines:
            notify_stock_level(self.session.get(Product, line.product_id), self.tenant_id)

        receipt = Receipt(
            sale_ref=sale_ref,
            lines=[line.to_dict() for line in cart.lines],
            subtotal=totals['subtotal'],
            discount=totals['discount'],
            total=totals['total'],
            payment_method=cart.payment_method,
            amount_tendered=tendered,
            change=totals['change'],
            timestamp=occurred_at,
            customer_name=cart.customer_name,
            movement_ids=movement_ids,
        )

        # ---- CLOSED ----
        cart.clear()
        self.state = SettlementState.CLOSED
        logger.info(
            f"Sale {sale_ref} closed by {self.user_id}: {len(movement_ids)} line(s), "
            f"total {receipt.total} ({receipt.payment_method.value})"
        )
        return receipt

    def _recover_commit_outcome(self, sale_ref: str, cause: Exception) -> List[int]:
        """
        Find out what a failed COMMIT actually left in the database.

        The driver may report an error after the server applied the
        transaction (connection dropped on the reply). Returns the movement
        ids when the whole sale landed; raises otherwise.
        """
        cart = self.cart
        try:
            landed = {
                movement.product_id: movement.id
                for movement in self.session.query(Movement).filter(
                    Movement.tenant_id == self.tenant_id,
                    Movement.sale_ref == sale_ref
                ).all()
            }
        except Exception as e:
            self.session.rollback()
            logger.critical(
                f"PARTIAL SALE {sale_ref} (tenant {self.tenant_id}, user {self.user_id}): "
                f"commit failed and its outcome could not be checked: {cause} / {e}"
            )
            raise PartialCommitError(sale_ref, [], [line.to_dict() for line in cart.lines], cause) from cause

        if not landed:
            self.state = SettlementState.OPEN
            logger.error(f"Sale {sale_ref} commit failed, nothing written: {cause}")
            if isinstance(cause, EstoqueError):
                raise cause
            raise EstoqueError(f'Erro ao finalizar venda: {str(cause)}') from cause

        if len(landed) == len(cart.lines):
            logger.warning(f"Sale {sale_ref} commit reported an error but every line was written: {cause}")
            return [landed[line.product_id] for line in cart.lines]

        committed = [
            {**line.to_dict(), 'movement_id': landed[line.product_id]}
            for line in cart.lines if line.product_id in landed
        ]
        pending = [line.to_dict() for line in cart.lines if line.product_id not in landed]
        logger.critical(
            f"PARTIAL SALE {sale_ref} (tenant {self.tenant_id}, user {self.user_id}): "
            f"committed={committed} pending={pending} cause={cause}"
        )
        raise PartialCommitError(sale_ref, committed, pending, cause) from cause

    def run(self) -> Receipt:
        self.validate()
        return self.commit()


def settle_sale(session: Session, cart: Cart, tenant_id: str, user_id: str,
                note_prefix: str = 'Venda PDV') -> Receipt:
    """Validate and commit ``cart``; the cart is cleared on success."""
    return SaleSettlement(session, cart, tenant_id, user_id, note_prefix=note_prefix).run()

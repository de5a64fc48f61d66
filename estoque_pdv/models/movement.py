"""Movement model (append-only stock ledger)."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.sql import func
from estoque_pdv.database import Base
import enum


class MovementType(enum.Enum):
    """Movement direction."""
    ENTRADA = "entrada"
    SAIDA = "saida"

    @property
    def sign(self) -> int:
        return 1 if self is MovementType.ENTRADA else -1


class PaymentMethod(enum.Enum):
    """PDV payment methods."""
    DINHEIRO = "dinheiro"
    CARTAO = "cartao"
    PIX = "pix"
    PRAZO = "prazo"  # On account (fiado), requires a customer


def normalize_movement_type(value) -> MovementType:
    """
    Normalize a movement type given as enum or string.

    Raises:
        ValueError: If value is invalid
    """
    if isinstance(value, MovementType):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower().replace('í', 'i')
        for member in MovementType:
            if member.value == normalized:
                return member
    raise ValueError(f"Tipo de movimentação inválido: {value}. Use 'entrada' ou 'saida'.")


def normalize_payment_method(value) -> PaymentMethod:
    """
    Normalize payment method value (enum or string).

    Defaults to DINHEIRO when value is None.

    Raises:
        ValueError: If value is invalid
    """
    if value is None:
        return PaymentMethod.DINHEIRO

    if isinstance(value, PaymentMethod):
        return value

    if isinstance(value, str):
        normalized = value.strip().lower()
        for member in PaymentMethod:
            if member.value == normalized:
                return member

    raise ValueError(
        f"Forma de pagamento inválida: {value}. "
        f"Use uma de: {', '.join(m.value for m in PaymentMethod)}."
    )


class Movement(Base):
    """Stock movement (movimentação). Immutable once written; removed only by reversal."""

    __tablename__ = 'movement'
    __table_args__ = (
        Index('ix_movement_tenant_occurred', 'tenant_id', 'occurred_at'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    # No FK constraint: history of hard-deleted products must stay readable
    product_id = Column(BigInteger().with_variant(Integer, 'sqlite'), nullable=False, index=True)
    product_name = Column(String, nullable=False)
    product_code = Column(String(20), nullable=False)
    type = Column(Enum(MovementType, name='movement_type'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_value = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0, server_default='0.00')
    total_value = Column(Numeric(12, 2), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    note = Column(Text, nullable=False, default='', server_default='')

    # Sale context
    sale_ref = Column(String(36), nullable=True, index=True)
    customer_id = Column(BigInteger().with_variant(Integer, 'sqlite'), ForeignKey('customer.id'), nullable=True)
    customer_name = Column(String(200), nullable=True)
    payment_method = Column(Enum(PaymentMethod, name='payment_method'), nullable=True)
    amount_tendered = Column(Numeric(12, 2), nullable=True)
    change = Column(Numeric(12, 2), nullable=True)

    created_by = Column(String(128), nullable=True)

    @property
    def signed_quantity(self) -> int:
        return self.type.sign * self.quantity

    def __repr__(self):
        return f"<Movement(id={self.id}, type={self.type.value}, product_id={self.product_id}, qty={self.quantity})>"

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'product_code': self.product_code,
            'type': self.type.value,
            'quantity': self.quantity,
            'unit_value': str(self.unit_value),
            'discount': str(self.discount),
            'total_value': str(self.total_value),
            'occurred_at': self.occurred_at.isoformat() if self.occurred_at else None,
            'note': self.note,
            'sale_ref': self.sale_ref,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'payment_method': self.payment_method.value if self.payment_method else None,
            'amount_tendered': str(self.amount_tendered) if self.amount_tendered is not None else None,
            'change': str(self.change) if self.change is not None else None,
        }

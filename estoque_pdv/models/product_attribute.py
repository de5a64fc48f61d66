"""Product Attribute model."""
import enum
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy import Column, BigInteger, Integer, String, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from estoque_pdv.database import Base


class AttributeKind(enum.Enum):
    """Closed set of value kinds for category-specific fields."""
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"


_TRUE = {'1', 'true', 'sim', 's', 'yes', 'y'}
_FALSE = {'0', 'false', 'nao', 'não', 'n', 'no'}


def encode_attribute_value(kind: AttributeKind, value) -> str:
    """
    Validate ``value`` against ``kind`` and return its storage form.

    Raises:
        ValueError: if the value does not match the declared kind.
    """
    if value is None or value == '':
        raise ValueError('Valor vazio')

    if kind is AttributeKind.TEXT:
        return str(value).strip()

    if kind is AttributeKind.NUMBER:
        try:
            return str(Decimal(str(value)))
        except (InvalidOperation, ValueError):
            raise ValueError(f'"{value}" não é um número')

    if kind is AttributeKind.DATE:
        if isinstance(value, date):
            return value.isoformat()
        try:
            return date.fromisoformat(str(value)).isoformat()
        except ValueError:
            raise ValueError(f'"{value}" não é uma data (AAAA-MM-DD)')

    if isinstance(value, bool):
        return 'true' if value else 'false'
    normalized = str(value).strip().lower()
    if normalized in _TRUE:
        return 'true'
    if normalized in _FALSE:
        return 'false'
    raise ValueError(f'"{value}" não é um booleano')


def decode_attribute_value(kind: AttributeKind, raw: str):
    if kind is AttributeKind.NUMBER:
        return Decimal(raw)
    if kind is AttributeKind.DATE:
        return date.fromisoformat(raw)
    if kind is AttributeKind.BOOLEAN:
        return raw == 'true'
    return raw


class ProductAttribute(Base):
    """Typed, category-specific extra field of a product (e.g. "Tamanho" = "M")."""

    __tablename__ = 'product_attribute'
    __table_args__ = (
        UniqueConstraint('product_id', 'name', name='uq_product_attribute_name'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    product_id = Column(BigInteger().with_variant(Integer, 'sqlite'), ForeignKey('product.id'), nullable=False)
    name = Column(String(100), nullable=False)
    kind = Column(Enum(AttributeKind, name='attribute_kind'), nullable=False, default=AttributeKind.TEXT)
    value = Column(String(255), nullable=False)

    product = relationship('Product', back_populates='attributes')

    @property
    def typed_value(self):
        return decode_attribute_value(self.kind, self.value)

    def __repr__(self):
        return f"<ProductAttribute(id={self.id}, product_id={self.product_id}, name='{self.name}')>"

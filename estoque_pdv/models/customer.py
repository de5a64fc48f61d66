"""Customer model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, Boolean
from sqlalchemy.sql import func
from estoque_pdv.database import Base


class Customer(Base):
    """Customer (cliente). Only the fields the PDV needs for on-account sales."""

    __tablename__ = 'customer'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    tax_id = Column(String(50), nullable=True)  # CPF / CNPJ
    credit_limit = Column(Numeric(12, 2), nullable=False, default=0, server_default='0.00')
    active = Column(Boolean, nullable=False, default=True, server_default='true')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'tax_id': self.tax_id,
            'credit_limit': str(self.credit_limit),
        }

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}')>"

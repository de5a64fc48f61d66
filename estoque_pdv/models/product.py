"""Product model."""
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from estoque_pdv.database import Base

DEFAULT_EXPIRY_ALERT_DAYS = 30


class Product(Base):
    """Product model (catalog entry holding the current stock level)."""

    __tablename__ = 'product'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_product_tenant_code'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    code = Column(String(20), nullable=False)  # Sequential, zero-padded ("001")
    barcode = Column(String, nullable=True)
    name = Column(String, nullable=False)
    category_id = Column(String(64), nullable=True, index=True)
    min_stock = Column(Integer, nullable=False, default=0, server_default='0')
    cost_price = Column(Numeric(10, 2), nullable=False, default=0, server_default='0.00')
    sale_price = Column(Numeric(10, 2), nullable=False, default=0, server_default='0.00')
    # Written only by catalog_service.apply_stock_delta
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    initial_stock = Column(Integer, nullable=False, default=0, server_default='0')
    version = Column(Integer, nullable=False, default=0, server_default='0')
    active = Column(Boolean, nullable=False, default=True)

    # Expiry control
    has_expiry = Column(Boolean, nullable=False, default=False, server_default='false')
    expiry_date = Column(Date, nullable=True)
    expiry_alert_days = Column(
        Integer, nullable=False, default=DEFAULT_EXPIRY_ALERT_DAYS, server_default=str(DEFAULT_EXPIRY_ALERT_DAYS)
    )

    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    attributes = relationship('ProductAttribute', back_populates='product', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Product(id={self.id}, code='{self.code}', name='{self.name}', stock={self.stock})>"

    @property
    def is_below_minimum(self):
        return self.stock <= self.min_stock

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'barcode': self.barcode,
            'name': self.name,
            'category_id': self.category_id,
            'min_stock': self.min_stock,
            'cost_price': str(self.cost_price),
            'sale_price': str(self.sale_price),
            'stock': self.stock,
            'active': self.active,
            'has_expiry': self.has_expiry,
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
            'expiry_alert_days': self.expiry_alert_days,
        }

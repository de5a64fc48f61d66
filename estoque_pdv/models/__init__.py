"""Models package - exports all SQLAlchemy models."""
from estoque_pdv.models.product import Product, DEFAULT_EXPIRY_ALERT_DAYS
from estoque_pdv.models.product_attribute import (
    ProductAttribute, AttributeKind, encode_attribute_value, decode_attribute_value
)
from estoque_pdv.models.customer import Customer
from estoque_pdv.models.movement import (
    Movement, MovementType, PaymentMethod, normalize_movement_type, normalize_payment_method
)

__all__ = [
    'Product', 'DEFAULT_EXPIRY_ALERT_DAYS',
    'ProductAttribute', 'AttributeKind', 'encode_attribute_value', 'decode_attribute_value',
    'Customer',
    'Movement', 'MovementType', 'PaymentMethod', 'normalize_movement_type', 'normalize_payment_method',
]

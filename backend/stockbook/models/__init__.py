from .inventory import (
    Product,
    StockMovement,
    CostAllocation,
    MOVEMENT_RECEIVED,
    MOVEMENT_SOLD,
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
    MOVEMENT_TYPES,
)
from .customers import Customer, CreditCollection
from .sales import Sale, SaleItem, PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_PARTIAL, PAYMENT_TYPES

__all__ = [
    'Product', 'StockMovement', 'CostAllocation',
    'Customer', 'CreditCollection', 'Sale', 'SaleItem',
    'MOVEMENT_RECEIVED', 'MOVEMENT_SOLD', 'MOVEMENT_ADJUSTMENT_IN', 'MOVEMENT_ADJUSTMENT_OUT', 'MOVEMENT_TYPES',
    'PAYMENT_CASH', 'PAYMENT_CREDIT', 'PAYMENT_PARTIAL', 'PAYMENT_TYPES',
]

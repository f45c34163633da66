from .catalog import Product, Prescription
from .inventory import Lot, StockMovement, MovementType, ImmutableRecordError
from .sales import Sale, SaleLine, SaleStatus
from .orders import Order, OrderLine, OrderStatus
from .cash import CashClosing
from .documents import DocumentSequence

__all__ = [
    'Product', 'Prescription',
    'Lot', 'StockMovement', 'MovementType', 'ImmutableRecordError',
    'Sale', 'SaleLine', 'SaleStatus',
    'Order', 'OrderLine', 'OrderStatus',
    'CashClosing',
    'DocumentSequence',
]

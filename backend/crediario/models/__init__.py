from .catalog import Product, Customer, Order
from .stock import StockMovement
from .reservations import Reservation
from .credit import CreditAccount, CreditAccountItem, CreditPayment
from .documents import DocumentSequence

__all__ = [
    'Product', 'Customer', 'Order',
    'StockMovement',
    'Reservation',
    'CreditAccount', 'CreditAccountItem', 'CreditPayment',
    'DocumentSequence',
]
